from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from database import Base


class ExpenseCategory(str, Enum):
    groceries = "groceries"
    water = "water"
    electricity = "electricity"
    gas = "gas"

    @property
    def label(self) -> str:
        return self.value.capitalize()


EXPENSE_CATEGORY_ENUM = SAEnum(
    ExpenseCategory,
    name="expensecategory",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


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
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(120))
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="owner", cascade="all, delete-orphan"
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(
        EXPENSE_CATEGORY_ENUM, nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    owner: Mapped["User"] = relationship("User", back_populates="expenses")

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )

    @validates("user_id")
    def _owner_is_set_once(self, _key: str, value: int) -> int:
        if self.user_id is not None and value != self.user_id:
            raise ValueError("Expense owner cannot be changed")
        return value
