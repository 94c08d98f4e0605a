import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from errors import (
    InvalidFrequency,
    InvalidRecurringConfig,
    TemplateProcessingError,
    TenantDeadlineExceeded,
)
from expense_numbers import next_expense_number
from models import Expense, RecurringFrequency


logger = logging.getLogger(__name__)

GENERATED_NOTE = "Generated from recurring expense"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; aware inputs are converted on the way in."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = datetime(year + 1, 1, 1)
    else:
        next_month = datetime(year, month + 1, 1)
    return (next_month - datetime(year, month, 1)).days


def _add_months(base: datetime, months: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    # Jan 31 + 1 month lands on the last day of February.
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def calculate_next_due_date(
    current: datetime,
    frequency: Union[RecurringFrequency, str],
    interval: int = 1,
) -> datetime:
    try:
        frequency = RecurringFrequency(frequency)
    except ValueError as exc:
        raise InvalidFrequency(f"Invalid frequency: {frequency}") from exc
    if interval is None or interval < 1:
        raise InvalidRecurringConfig("Recurring interval must be at least 1")

    if frequency == RecurringFrequency.daily:
        return current + timedelta(days=interval)
    if frequency == RecurringFrequency.weekly:
        return current + timedelta(weeks=interval)
    if frequency == RecurringFrequency.monthly:
        return _add_months(current, interval)
    return _add_months(current, 12 * interval)


@dataclass(frozen=True)
class RecurringConfig:
    frequency: Optional[str]
    interval: Optional[int]
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    next_due_date: Optional[datetime]

    @classmethod
    def of(cls, template: Expense) -> "RecurringConfig":
        return cls(
            frequency=template.frequency,
            interval=template.interval,
            start_date=template.start_date,
            end_date=template.end_date,
            next_due_date=template.next_due_date,
        )


def is_recurring_active(config: RecurringConfig, as_of: datetime) -> bool:
    if config.end_date is None:
        return True
    return config.end_date >= as_of


@dataclass
class TemplateOutcome:
    template_id: int
    expense_id: int
    expense_number: str
    previous_due_date: datetime
    next_due_date: datetime
    created: bool = True


@dataclass
class RunError:
    scope: str
    error: str
    tenant_id: Optional[str] = None
    template_id: Optional[int] = None


@dataclass
class TenantRunResult:
    tenant_id: Optional[str]
    as_of: datetime
    processed_count: int = 0
    outcomes: list[TemplateOutcome] = field(default_factory=list)
    skipped_template_ids: list[int] = field(default_factory=list)
    errors: list[RunError] = field(default_factory=list)

    @property
    def expenses_created(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.created)


class TemplateAlreadyAdvanced(RuntimeError):
    pass


class RecurringEngine:
    """Materializes due recurring templates for a single tenant store."""

    def __init__(
        self,
        session: Session,
        tenant_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.tenant_id = tenant_id
        self.clock = clock

    def due_template_ids(self, as_of: datetime) -> list[int]:
        stmt = (
            select(Expense.id)
            .where(
                Expense.is_recurring.is_(True),
                Expense.next_due_date <= as_of,
            )
            .order_by(Expense.next_due_date, Expense.id)
        )
        return list(self.session.scalars(stmt).all())

    def process_due_templates(
        self,
        as_of: Optional[datetime] = None,
        *,
        deadline: Optional[float] = None,
        timeout_secs: Optional[float] = None,
    ) -> TenantRunResult:
        as_of = to_naive_utc(as_of) if as_of else self.clock()
        result = TenantRunResult(tenant_id=self.tenant_id, as_of=as_of)
        template_ids = self.due_template_ids(as_of)
        logger.info(
            f"recurring_due: tenant={self.tenant_id} as_of={as_of.isoformat()} "
            f"templates={len(template_ids)}"
        )

        for template_id in template_ids:
            if deadline is not None and time.monotonic() > deadline:
                raise TenantDeadlineExceeded(
                    str(self.tenant_id), timeout_secs or 0, partial_result=result
                )
            try:
                template = self.session.get(Expense, template_id)
                if template is None:
                    continue
                if not is_recurring_active(RecurringConfig.of(template), as_of):
                    logger.info(
                        f"recurring_skip: tenant={self.tenant_id} "
                        f"template={template_id} "
                        f"end_date={template.end_date.isoformat()}"
                    )
                    result.skipped_template_ids.append(template_id)
                    continue
                outcome = self._materialize(template)
                self.session.commit()
            except Exception as exc:
                self.session.rollback()
                error = TemplateProcessingError(template_id, exc)
                logger.error(
                    f"recurring_template_failed: tenant={self.tenant_id} "
                    f"template={template_id} error={exc!r}"
                )
                result.errors.append(
                    RunError(
                        scope="template",
                        error=str(error),
                        tenant_id=self.tenant_id,
                        template_id=template_id,
                    )
                )
                continue

            result.outcomes.append(outcome)
            result.processed_count += 1
            logger.info(
                f"recurring_posted: tenant={self.tenant_id} template={template_id} "
                f"expense={outcome.expense_number} "
                f"due={outcome.previous_due_date.isoformat()} "
                f"next_due={outcome.next_due_date.isoformat()} "
                f"created={outcome.created}"
            )

        logger.info(
            f"recurring_tenant_done: tenant={self.tenant_id} "
            f"processed={result.processed_count} created={result.expenses_created} "
            f"skipped={len(result.skipped_template_ids)} errors={len(result.errors)}"
        )
        return result

    def _materialize(self, template: Expense) -> TemplateOutcome:
        due_date = template.next_due_date
        next_due = calculate_next_due_date(
            due_date, template.frequency, template.interval
        )
        now = self.clock()

        existing = self._existing_occurrence(template.id, due_date)
        if existing is not None:
            expense = existing
            created = False
        else:
            expense = self._expense_from_template(template, due_date, now)
            self.session.add(expense)
            self.session.flush()
            created = True

        # Keyed on the due date just fulfilled so an overlapping run cannot
        # advance the same occurrence twice.
        advanced = self.session.execute(
            update(Expense)
            .where(Expense.id == template.id, Expense.next_due_date == due_date)
            .values(next_due_date=next_due, updated_at=now)
        )
        if advanced.rowcount != 1:
            raise TemplateAlreadyAdvanced(
                f"Template {template.id} was advanced past {due_date.isoformat()} "
                "by another run"
            )

        return TemplateOutcome(
            template_id=template.id,
            expense_id=expense.id,
            expense_number=expense.expense_number,
            previous_due_date=due_date,
            next_due_date=next_due,
            created=created,
        )

    def _existing_occurrence(
        self, template_id: int, due_date: datetime
    ) -> Optional[Expense]:
        stmt = (
            select(Expense)
            .where(
                Expense.recurring_template_id == template_id,
                Expense.expense_date == due_date,
            )
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def _expense_from_template(
        self, template: Expense, due_date: datetime, now: datetime
    ) -> Expense:
        notes = (
            f"{template.notes} ({GENERATED_NOTE})" if template.notes else GENERATED_NOTE
        )
        return Expense(
            expense_number=next_expense_number(self.session, now),
            category_id=template.category_id,
            category_name=template.category_name,
            amount_cents=template.amount_cents,
            description=template.description,
            expense_date=due_date,
            payment_method=template.payment_method,
            vendor=dict(template.vendor) if template.vendor else None,
            attachments=[],
            tags=list(template.tags or []),
            notes=notes,
            created_by=template.created_by,
            is_recurring=False,
            recurring_template_id=template.id,
            created_at=now,
            updated_at=now,
        )
