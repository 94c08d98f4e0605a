from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class RecurringFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class PaymentMethod(str, Enum):
    cash = "cash"
    bank = "bank"
    card = "card"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(254))


class Category(Base, TimestampMixin):
    __tablename__ = "expense_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[Optional[str]] = mapped_column(String(7))

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="category"
    )


class Expense(Base, TimestampMixin):
    """A concrete expense, or a recurring template when ``is_recurring`` is set."""

    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("expense_categories.id"), nullable=False
    )
    category_name: Mapped[Optional[str]] = mapped_column(String(100))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    expense_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SAEnum(PaymentMethod)
    )
    vendor: Mapped[Optional[dict]] = mapped_column(JSON)
    attachments: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Plain text so a corrupted value surfaces when the schedule is computed.
    frequency: Mapped[Optional[str]] = mapped_column(String(10))
    interval: Mapped[Optional[int]] = mapped_column("interval_count", Integer)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    next_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    recurring_template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("expenses.id")
    )

    category: Mapped["Category"] = relationship("Category", back_populates="expenses")
    creator: Mapped["User"] = relationship("User")
    recurring_template: Mapped[Optional["Expense"]] = relationship(
        "Expense", remote_side=[id]
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_template_id",
            "expense_date",
            name="uq_expense_template_occurrence",
        ),
        Index("ix_expenses_recurring_due", "is_recurring", "next_due_date"),
        Index("ix_expenses_category_date", "category_id", "expense_date"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "interval_count IS NULL OR interval_count > 0",
            name="ck_expenses_interval_positive",
        ),
    )


class ExpenseNumberCounter(Base):
    __tablename__ = "expense_number_counters"

    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
