import os
import tempfile

os.environ.setdefault("EXPENSES_DATA_DIR", tempfile.mkdtemp(prefix="expenses-tests-"))

from datetime import datetime
from itertools import count
from typing import Callable, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base, get_engine, get_sessionmaker
from models import Category, Expense, PaymentMethod, User
from tenants import TenantHandle


TemplateFactory = Callable[..., Expense]


def seed_template(
    session: Session,
    *,
    number: str,
    frequency: Optional[str] = "monthly",
    interval: Optional[int] = 1,
    next_due_date: datetime = datetime(2024, 1, 15),
    start_date: Optional[datetime] = datetime(2024, 1, 15),
    end_date: Optional[datetime] = None,
    **fields,
) -> Expense:
    user = session.get(User, 1) or User(id=1, name="Dana Owner", email="dana@shop.test")
    category = session.get(Category, 1) or Category(id=1, name="Rent")
    session.add_all([user, category])
    session.flush()
    values = {
        "category_id": category.id,
        "category_name": category.name,
        "amount_cents": 150000,
        "description": "Shop rent",
        "expense_date": start_date or next_due_date,
        "payment_method": PaymentMethod.bank,
        "vendor": {"name": "Landlord Ltd", "phone": "555-0100"},
        "tags": ["rent", "fixed"],
        "notes": "Paid by transfer",
        "created_by": user.id,
    }
    values.update(fields)
    template = Expense(
        expense_number=number,
        is_recurring=True,
        frequency=frequency,
        interval=interval,
        start_date=start_date,
        end_date=end_date,
        next_due_date=next_due_date,
        **values,
    )
    session.add(template)
    session.commit()
    return template


@pytest.fixture
def session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_template(session: Session) -> TemplateFactory:
    numbers = count(1)

    def factory(**kwargs) -> Expense:
        kwargs.setdefault("number", f"EXP-2023-{next(numbers):03d}")
        return seed_template(session, **kwargs)

    return factory


@pytest.fixture
def tenant_store(tmp_path):
    """Creates file-backed tenant stores with the schema applied."""

    def factory(tenant_id: str) -> TenantHandle:
        url = f"sqlite:///{tmp_path / f'shop_{tenant_id}.db'}"
        Base.metadata.create_all(get_engine(url))
        return TenantHandle(tenant_id=tenant_id, database_url=url)

    return factory


@pytest.fixture
def seed_tenant() -> Callable[..., int]:
    """Adds a recurring template to a file-backed tenant store, returning its id."""
    numbers = count(1)

    def factory(handle: TenantHandle, **kwargs) -> int:
        kwargs.setdefault("number", f"EXP-2023-{next(numbers):03d}")
        with get_sessionmaker(handle.database_url)() as session:
            return seed_template(session, **kwargs).id

    return factory
