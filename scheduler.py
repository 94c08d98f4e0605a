import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import Settings, get_settings
from orchestrator import AggregateRunResult, RecurringExpenseOrchestrator
from recurrence import utcnow


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DAILY_JOB_ID = "recurring_expenses_daily"


class SchedulerManager:
    def __init__(
        self,
        orchestrator: RecurringExpenseOrchestrator,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.orchestrator = orchestrator
        self.clock = clock
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> Optional[AggregateRunResult]:
        as_of = self.clock()
        logger.info(f"scheduler_run: source={source} as_of={as_of.isoformat()}")
        try:
            results = self.orchestrator.process_all(as_of)
        except Exception:
            logger.exception(f"scheduler_run_failed: source={source}")
            return None
        logger.info(
            f"scheduler_run: source={source} "
            f"tenants={results.total_tenants_processed} "
            f"expenses_created={results.total_expenses_created} "
            f"errors={len(results.errors)}"
        )
        for error in results.errors:
            logger.error(
                f"scheduler_run_error: source={source} scope={error.scope} "
                f"tenant={error.tenant_id} template={error.template_id} "
                f"error={error.error}"
            )
        return results

    def run_now(self, as_of: Optional[datetime] = None) -> AggregateRunResult:
        """Synchronous manual trigger; returns the full run result to the caller."""
        logger.info("scheduler_run: source=manual")
        results = self.orchestrator.process_all(as_of or self.clock())
        logger.info(
            f"scheduler_run: source=manual tenants={results.total_tenants_processed} "
            f"expenses_created={results.total_expenses_created} "
            f"errors={len(results.errors)}"
        )
        return results

    def start(self) -> None:
        if self.settings.run_on_startup:
            self._run_job("startup")

        hour = self.settings.run_hour
        minute = self.settings.run_minute
        trigger = CronTrigger(hour=hour, minute=minute, timezone=self.settings.timezone)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{hour:02d}:{minute:02d}"],
            id=DAILY_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily {hour:02d}:{minute:02d} "
            f"{self.settings.timezone} run"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
