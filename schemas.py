import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import ExpenseCategory
from money import MAX_AMOUNT_CENTS


class ExpenseIn(BaseModel):
    """Create payload for an expense.

    Owner identity and timestamps are not part of the payload; the store
    stamps them.
    """

    model_config = ConfigDict(extra="forbid")

    amount_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
    category: ExpenseCategory
    description: str = Field(..., min_length=1, max_length=500)
    date: dt.date

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        return value


class SignUpIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=72)
    full_name: Optional[str] = Field(default=None, max_length=120)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("Enter a valid email address")
        return value

    @field_validator("full_name")
    @classmethod
    def _blank_name_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None
