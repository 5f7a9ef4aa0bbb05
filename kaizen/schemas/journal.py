from pydantic import BaseModel, Field, field_validator
from typing import Optional
import datetime as dt

from kaizen.models.finance_category import EntryType
from kaizen.schemas.category import CategoryResponse, _strip_markup


class JournalCreate(BaseModel):
    category_id: int
    amount: float = Field(..., gt=0)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    date: Optional[dt.date] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    location: Optional[str] = Field(None, max_length=255)
    is_recurring: bool = False
    receipt_url: Optional[str] = Field(None, max_length=500)

    @field_validator("title", "description", "location")
    @classmethod
    def sanitize_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip_markup(value)


class JournalUpdate(BaseModel):
    category_id: Optional[int] = None
    amount: Optional[float] = Field(None, gt=0)
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    date: Optional[dt.date] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    location: Optional[str] = Field(None, max_length=255)
    is_recurring: Optional[bool] = None
    receipt_url: Optional[str] = Field(None, max_length=500)

    @field_validator("title", "description", "location")
    @classmethod
    def sanitize_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip_markup(value)


class JournalResponse(BaseModel):
    id: int
    user_id: int
    category_id: int
    type: EntryType
    amount: float
    title: str
    description: Optional[str]
    date: dt.date
    payment_method: Optional[str]
    location: Optional[str]
    is_recurring: bool
    receipt_url: Optional[str]
    created_at: dt.datetime
    updated_at: Optional[dt.datetime]
    category: Optional[CategoryResponse] = None

    class Config:
        from_attributes = True


class JournalSummary(BaseModel):
    total_income: float
    total_expense: float
    net_balance: float
    start_date: dt.date
    end_date: dt.date
    entry_count: int
