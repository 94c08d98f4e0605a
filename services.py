from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from errors import InvalidRecurringConfig, RecurringTemplateNotFound
from models import Category, Expense, RecurringFrequency, User
from recurrence import (
    RecurringConfig,
    calculate_next_due_date,
    is_recurring_active,
    to_naive_utc,
    utcnow,
)
from schemas import (
    CategoryRef,
    RecurringConfigOut,
    RecurringTemplateOut,
    RecurringTemplateUpdate,
    UpdateResult,
    UserRef,
)


logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = (
    "category_id",
    "category_name",
    "amount_cents",
    "description",
    "payment_method",
    "vendor",
    "tags",
    "notes",
)


class CategoryLookup:
    def __init__(self, session: Session) -> None:
        self.session = session

    def by_ids(self, ids: Iterable[int]) -> dict[int, CategoryRef]:
        stmt = select(Category.id, Category.name).where(Category.id.in_(set(ids)))
        return {
            row.id: CategoryRef(id=row.id, name=row.name)
            for row in self.session.execute(stmt)
        }


class UserLookup:
    def __init__(self, session: Session) -> None:
        self.session = session

    def by_ids(self, ids: Iterable[int]) -> dict[int, UserRef]:
        stmt = select(User.id, User.name, User.email).where(User.id.in_(set(ids)))
        return {
            row.id: UserRef(id=row.id, name=row.name, email=row.email)
            for row in self.session.execute(stmt)
        }


class RecurringTemplateService:
    def __init__(
        self,
        session: Session,
        *,
        clock: Callable[[], datetime] = utcnow,
        category_lookup: Optional[CategoryLookup] = None,
        user_lookup: Optional[UserLookup] = None,
    ) -> None:
        self.session = session
        self.clock = clock
        self.category_lookup = category_lookup or CategoryLookup(session)
        self.user_lookup = user_lookup or UserLookup(session)

    def get(self, template_id: int) -> Expense:
        template = self.session.get(Expense, template_id)
        if not template or not template.is_recurring:
            raise RecurringTemplateNotFound("Recurring expense template not found")
        return template

    def list_templates(
        self,
        category_id: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> list[RecurringTemplateOut]:
        now = self.clock()
        stmt = select(Expense).where(Expense.is_recurring.is_(True))
        if category_id is not None:
            stmt = stmt.where(Expense.category_id == category_id)
        if is_active is True:
            stmt = stmt.where(or_(Expense.end_date.is_(None), Expense.end_date > now))
        elif is_active is False:
            stmt = stmt.where(Expense.end_date <= now)
        stmt = stmt.order_by(Expense.next_due_date, Expense.id)
        templates = self.session.scalars(stmt).all()

        categories = self._decorations(
            "category", self.category_lookup, [t.category_id for t in templates]
        )
        users = self._decorations(
            "user", self.user_lookup, [t.created_by for t in templates]
        )
        return [
            RecurringTemplateOut(
                id=template.id,
                expense_number=template.expense_number,
                category_id=template.category_id,
                category_name=template.category_name,
                amount_cents=template.amount_cents,
                description=template.description,
                payment_method=template.payment_method,
                vendor=template.vendor,
                tags=list(template.tags or []),
                notes=template.notes,
                created_by=template.created_by,
                is_active=is_recurring_active(RecurringConfig.of(template), now),
                recurring_config=RecurringConfigOut.model_validate(
                    RecurringConfig.of(template)
                ),
                category=categories.get(template.category_id),
                created_by_user=users.get(template.created_by),
            )
            for template in templates
        ]

    def _decorations(self, kind: str, lookup, ids: list[int]) -> dict:
        if not ids:
            return {}
        try:
            return lookup.by_ids(ids)
        except Exception as exc:
            # Display names only; the list itself must still be returned.
            logger.warning(f"recurring_lookup_failed: kind={kind} error={exc!r}")
            return {}

    def update(self, template_id: int, data: RecurringTemplateUpdate) -> UpdateResult:
        template = self.get(template_id)
        updates = data.model_dump(exclude_unset=True)
        config_updates = updates.pop("recurring_config", None) or {}
        for key in ("start_date", "end_date"):
            if config_updates.get(key) is not None:
                config_updates[key] = to_naive_utc(config_updates[key])
        self._validate_config(template, config_updates)

        if (
            "category_id" in updates
            and "category_name" not in updates
            and updates["category_id"] != template.category_id
        ):
            category = self.session.get(Category, updates["category_id"])
            if category is None:
                raise InvalidRecurringConfig("Category not found")
            updates["category_name"] = category.name

        modified = False
        for field in TEMPLATE_FIELDS:
            if field in updates and getattr(template, field) != updates[field]:
                setattr(template, field, updates[field])
                modified = True

        cadence_changed = any(
            key in config_updates and config_updates[key] != getattr(template, key)
            for key in ("frequency", "interval")
        )
        for key, value in config_updates.items():
            if getattr(template, key) != value:
                setattr(template, key, value)
                modified = True

        if cadence_changed and template.next_due_date is not None:
            # Step forward from the pending due date; past occurrences stay as-is.
            template.next_due_date = calculate_next_due_date(
                template.next_due_date, template.frequency, template.interval
            )

        if modified:
            template.updated_at = self.clock()
        self.session.commit()
        logger.info(
            f"recurring_template_updated: template={template_id} modified={modified} "
            f"next_due={template.next_due_date}"
        )
        return UpdateResult(success=True, modified_count=1 if modified else 0)

    def _validate_config(self, template: Expense, config: dict) -> None:
        if "frequency" in config:
            valid = {frequency.value for frequency in RecurringFrequency}
            if config["frequency"] not in valid:
                raise InvalidRecurringConfig("Invalid recurring frequency")
        if "interval" in config:
            interval = config["interval"]
            if interval is None or interval < 1:
                raise InvalidRecurringConfig("Recurring interval must be at least 1")
        if "start_date" in config or "end_date" in config:
            start = config.get("start_date", template.start_date)
            end = config.get("end_date", template.end_date)
            if start is not None and end is not None and end <= start:
                raise InvalidRecurringConfig(
                    "Recurring end date must be after start date"
                )

    def stop(self, template_id: int) -> UpdateResult:
        template = self.get(template_id)
        now = self.clock()
        template.end_date = now
        template.updated_at = now
        self.session.commit()
        logger.info(
            f"recurring_template_stopped: template={template_id} "
            f"end_date={now.isoformat()}"
        )
        return UpdateResult(success=True, modified_count=1)
