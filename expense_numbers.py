"""Expense numbers of the form ``EXP-<year>-<seq>``.

The sequence is allocated from a per-year counter row that is incremented with
a single UPDATE inside the caller's transaction, so two overlapping runs in the
same tenant can never hand out the same number. The counter continues from the
highest number already present for the year, so numbers assigned elsewhere are
never handed out again.
"""

import logging
import re
from datetime import datetime
from typing import Optional

from sqlalchemy import case, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from errors import ExpenseNumberGenerationFailed
from models import Expense, ExpenseNumberCounter


logger = logging.getLogger(__name__)

EXPENSE_NUMBER_PATTERN = re.compile(r"^EXP-(\d{4})-(\d{3,})$")


def format_expense_number(year: int, sequence: int) -> str:
    return f"EXP-{year}-{sequence:03d}"


def is_valid_expense_number(value: object) -> bool:
    if not value or not isinstance(value, str):
        return False
    return EXPENSE_NUMBER_PATTERN.match(value) is not None


def extract_year(value: str) -> Optional[int]:
    if not is_valid_expense_number(value):
        return None
    return int(value.split("-")[1])


def extract_sequence(value: str) -> Optional[int]:
    if not is_valid_expense_number(value):
        return None
    return int(value.split("-")[2])


def _highest_existing_sequence(session: Session, year: int) -> int:
    prefix = f"EXP-{year}-"
    numbers = session.scalars(
        select(Expense.expense_number).where(Expense.expense_number.startswith(prefix))
    ).all()
    # Numeric max: "EXP-2024-1000" sorts before "EXP-2024-999" as text.
    sequences = [extract_sequence(number) for number in numbers]
    return max((seq for seq in sequences if seq is not None), default=0)


def _increment(session: Session, year: int, floor: int) -> bool:
    # Numbers written outside the counter raise the floor it continues from.
    current = ExpenseNumberCounter.last_value
    result = session.execute(
        update(ExpenseNumberCounter)
        .where(ExpenseNumberCounter.year == year)
        .values(last_value=case((current > floor, current), else_=floor) + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _seed(session: Session, year: int, floor: int) -> None:
    start = floor + 1
    savepoint = session.begin_nested()
    try:
        session.execute(
            insert(ExpenseNumberCounter).values(year=year, last_value=start)
        )
        savepoint.commit()
    except IntegrityError:
        # Another run seeded the counter first; take the next value from it.
        savepoint.rollback()
        logger.debug(f"expense_number_seed_race: year={year}")
        if not _increment(session, year, floor):
            raise


def next_expense_number(session: Session, now: datetime) -> str:
    year = now.year
    try:
        floor = _highest_existing_sequence(session, year)
        if not _increment(session, year, floor):
            _seed(session, year, floor)
        value = session.scalar(
            select(ExpenseNumberCounter.last_value)
            .where(ExpenseNumberCounter.year == year)
        )
    except SQLAlchemyError as exc:
        logger.error(f"expense_number_failed: year={year} error={exc!r}")
        raise ExpenseNumberGenerationFailed(
            f"Failed to generate expense number: {exc}"
        ) from exc
    if value is None:
        raise ExpenseNumberGenerationFailed(
            f"Failed to generate expense number: no counter for {year}"
        )

    number = format_expense_number(year, value)
    logger.debug(f"expense_number_generated: number={number}")
    return number
