from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
import bleach

from kaizen.models.finance_category import EntryType

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


def _strip_markup(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    return bleach.clean(value, tags=[], attributes={}, strip=True).strip()


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: EntryType
    description: Optional[str] = Field(None, max_length=500)
    color: str = Field("#000000", pattern=HEX_COLOR_PATTERN)
    icon: Optional[str] = Field(None, max_length=50)

    @field_validator("name", "description")
    @classmethod
    def sanitize_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip_markup(value)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[EntryType] = None
    description: Optional[str] = Field(None, max_length=500)
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)
    icon: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None

    @field_validator("name", "description")
    @classmethod
    def sanitize_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip_markup(value)


class CategoryResponse(BaseModel):
    id: int
    user_id: int
    name: str
    type: EntryType
    description: Optional[str]
    color: Optional[str]
    icon: Optional[str]
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True
