from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


def _coerce_date(value: object) -> object:
    # Clients may send a full ISO timestamp; only the calendar date matters.
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


class SignupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        clean = v.strip()
        if not clean:
            raise ValueError("Name is required")
        return clean


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(..., pattern=HEX_COLOR_PATTERN)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        clean = v.strip()
        if not clean:
            raise ValueError("Category name is required")
        return clean


class BudgetIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category_id: int = Field(..., alias="categoryId")
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2020, le=3000)


class ExpenseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category_id: int = Field(..., alias="categoryId")
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    date: date
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("date", mode="before")
    @classmethod
    def date_only(cls, v: object) -> object:
        return _coerce_date(v)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class BudgetCheckIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category_id: int = Field(..., alias="categoryId")
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    date: date

    @field_validator("date", mode="before")
    @classmethod
    def date_only(cls, v: object) -> object:
        return _coerce_date(v)
