import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from config import get_settings
from database import dispose_engines, tenant_session_scope
from errors import TenantDeadlineExceeded, TenantProcessingError
from recurrence import (
    RecurringEngine,
    RunError,
    TenantRunResult,
    to_naive_utc,
    utcnow,
)
from tenants import TenantDirectory, TenantHandle


logger = logging.getLogger(__name__)


@dataclass
class AggregateRunResult:
    as_of: datetime
    total_tenants_processed: int = 0
    total_expenses_created: int = 0
    tenant_results: list[TenantRunResult] = field(default_factory=list)
    errors: list[RunError] = field(default_factory=list)


class RecurringExpenseOrchestrator:
    """Runs the recurring engine against every tenant store.

    Tenants are fanned out over a bounded thread pool. Each worker owns its own
    session; results come back through futures and are merged on the calling
    thread. A failure in one tenant is recorded and never stops the others.
    """

    def __init__(
        self,
        directory: TenantDirectory,
        *,
        max_workers: Optional[int] = None,
        tenant_timeout_secs: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self.directory = directory
        self.max_workers = max_workers or settings.max_workers
        self.tenant_timeout_secs = (
            tenant_timeout_secs
            if tenant_timeout_secs is not None
            else settings.tenant_timeout_secs
        )
        self.clock = clock
        self._run_lock = threading.Lock()

    def process_tenant(
        self, handle: TenantHandle, as_of: datetime, deadline: Optional[float] = None
    ) -> TenantRunResult:
        try:
            with tenant_session_scope(handle.database_url) as session:
                engine = RecurringEngine(
                    session, tenant_id=handle.tenant_id, clock=self.clock
                )
                return engine.process_due_templates(
                    as_of, deadline=deadline, timeout_secs=self.tenant_timeout_secs
                )
        except TenantProcessingError:
            raise
        except Exception as exc:
            raise TenantProcessingError(handle.tenant_id, exc) from exc

    def _run_with_deadline(
        self, handle: TenantHandle, as_of: datetime
    ) -> TenantRunResult:
        deadline = time.monotonic() + self.tenant_timeout_secs
        return self.process_tenant(handle, as_of, deadline)

    def process_all(self, as_of: Optional[datetime] = None) -> AggregateRunResult:
        as_of = to_naive_utc(as_of) if as_of else self.clock()
        with self._run_lock:
            return self._process_all(as_of)

    def _process_all(self, as_of: datetime) -> AggregateRunResult:
        result = AggregateRunResult(as_of=as_of)
        try:
            handles = self.directory.list_tenants()
        except Exception as exc:
            logger.error(f"recurring_discovery_failed: error={exc!r}")
            result.errors.append(RunError(scope="run", error=str(exc)))
            return result

        released = dispose_engines(handle.database_url for handle in handles)
        if released:
            logger.info(f"recurring_engines_released: count={len(released)}")

        logger.info(
            f"recurring_run_start: as_of={as_of.isoformat()} tenants={len(handles)}"
        )
        if not handles:
            return result

        workers = max(1, min(self.max_workers, len(handles)))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="recurring-tenant"
        ) as pool:
            futures: list[tuple[TenantHandle, Future]] = [
                (handle, pool.submit(self._run_with_deadline, handle, as_of))
                for handle in handles
            ]
            for handle, future in futures:
                try:
                    tenant_result = future.result()
                except TenantDeadlineExceeded as exc:
                    logger.error(
                        f"recurring_tenant_deadline: tenant={handle.tenant_id} "
                        f"error={exc}"
                    )
                    if exc.partial_result is not None:
                        # Templates committed before the deadline still count.
                        self._merge(result, exc.partial_result)
                    result.errors.append(
                        RunError(
                            scope="tenant", error=str(exc), tenant_id=handle.tenant_id
                        )
                    )
                    continue
                except Exception as exc:
                    logger.error(
                        f"recurring_tenant_failed: tenant={handle.tenant_id} "
                        f"error={exc!r}"
                    )
                    result.errors.append(
                        RunError(
                            scope="tenant", error=str(exc), tenant_id=handle.tenant_id
                        )
                    )
                    continue
                result.total_tenants_processed += 1
                self._merge(result, tenant_result)

        logger.info(
            f"recurring_run_done: as_of={as_of.isoformat()} "
            f"tenants={result.total_tenants_processed} "
            f"expenses={result.total_expenses_created} errors={len(result.errors)}"
        )
        return result

    @staticmethod
    def _merge(result: AggregateRunResult, tenant_result: TenantRunResult) -> None:
        result.tenant_results.append(tenant_result)
        result.total_expenses_created += tenant_result.expenses_created
        result.errors.extend(tenant_result.errors)
