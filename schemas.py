from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import PaymentMethod


class VendorIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=20)
    email: Optional[str] = Field(
        default=None,
        max_length=254,
        pattern=r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$",
    )


class RecurringConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Checked by the service so bad values are reported as config errors.
    frequency: Optional[str] = None
    interval: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class RecurringTemplateUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: Optional[int] = None
    category_name: Optional[str] = Field(default=None, max_length=100)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=1000)
    payment_method: Optional[PaymentMethod] = None
    vendor: Optional[VendorIn] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    recurring_config: Optional[RecurringConfigUpdate] = None


class UpdateResult(BaseModel):
    success: bool
    modified_count: int


class ProcessRequest(BaseModel):
    process_date: Optional[datetime] = None


class RecurringConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    frequency: Optional[str]
    interval: Optional[int]
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    next_due_date: Optional[datetime]


class CategoryRef(BaseModel):
    id: int
    name: str


class UserRef(BaseModel):
    id: int
    name: str
    email: Optional[str] = None


class RecurringTemplateOut(BaseModel):
    id: int
    expense_number: str
    category_id: int
    category_name: Optional[str]
    amount_cents: int
    description: Optional[str]
    payment_method: Optional[PaymentMethod]
    vendor: Optional[dict]
    tags: list[str]
    notes: Optional[str]
    created_by: int
    is_active: bool
    recurring_config: RecurringConfigOut
    category: Optional[CategoryRef] = None
    created_by_user: Optional[UserRef] = None


class RecurringTemplateList(BaseModel):
    success: bool = True
    data: list[RecurringTemplateOut]
    count: int
