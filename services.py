from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

import bcrypt
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import Expense, User
from periods import Month
from schemas import ExpenseIn, SignUpIn

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class ExpenseNotFound(StoreError):
    pass


class Unauthorized(Exception):
    pass


class AuthenticationFailed(ValueError):
    pass


@dataclass(frozen=True)
class CurrentUser:
    id: int
    email: str
    full_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    @classmethod
    def from_model(cls, user: User) -> "CurrentUser":
        return cls(id=user.id, email=user.email, full_name=user.full_name)


class ExpenseStore:
    """Owner-scoped persistence for expense records.

    A store is bound to a single owner. Every read and write is filtered on
    that owner, and ``create`` stamps it onto new records, so a caller can
    never see or touch another user's expenses.
    """

    def __init__(self, session: Session, owner: CurrentUser) -> None:
        self.session = session
        self.user_id = owner.id

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            category=data.category,
            description=data.description,
            date=data.date,
        )
        self.session.add(expense)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"expense_create_failed: user_id={self.user_id} error={exc}")
            raise StoreError("Could not save expense") from exc
        self.session.refresh(expense)
        logger.info(
            f"expense_created: user_id={self.user_id} expense_id={expense.id}"
        )
        return expense

    def get(self, expense_id: int) -> Expense:
        stmt = select(Expense).where(
            Expense.user_id == self.user_id, Expense.id == expense_id
        )
        try:
            expense = self.session.scalar(stmt)
        except SQLAlchemyError as exc:
            raise StoreError("Could not load expense") from exc
        if not expense:
            raise ExpenseNotFound("Expense not found")
        return expense

    def list_between(self, start: date, end: date) -> list[Expense]:
        """Expenses dated in the half-open range ``[start, end)``, newest first."""
        stmt = (
            select(Expense)
            .where(
                Expense.user_id == self.user_id,
                Expense.date >= start,
                Expense.date < end,
            )
            .order_by(
                Expense.date.desc(), Expense.created_at.desc(), Expense.id.desc()
            )
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise StoreError("Could not load expenses") from exc

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        expense.amount_cents = data.amount_cents
        expense.category = data.category
        expense.description = data.description
        expense.date = data.date
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Could not update expense") from exc
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Could not delete expense") from exc
        logger.info(f"expense_deleted: user_id={self.user_id} expense_id={expense_id}")


class ExpenseQueryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def fetch_month(self, user: Optional[CurrentUser], month: Month) -> list[Expense]:
        if user is None:
            raise Unauthorized("Sign in to view expenses")
        store = ExpenseStore(self.session, user)
        return store.list_between(month.start, month.end)

    def fetch_month_or_empty(
        self, user: Optional[CurrentUser], month: Month
    ) -> list[Expense]:
        try:
            return self.fetch_month(user, month)
        except StoreError as exc:
            logger.error(
                f"expense_query_failed: user_id={user.id if user else None} "
                f"month={month.slug} error={exc.__cause__ or exc}"
            )
            return []


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8")[:72], bcrypt.gensalt()).decode(
            "utf-8"
        )

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8")[:72], password_hash.encode("utf-8"))

    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        return self.session.scalar(stmt)

    def register(self, data: SignUpIn) -> User:
        if self.get_by_email(data.email):
            raise ValueError("An account with this email already exists")
        user = User(
            email=data.email,
            full_name=data.full_name,
            password_hash=self.hash_password(data.password),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError("An account with this email already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.get_by_email(email)
        if not user or not self.verify_password(password, user.password_hash):
            logger.info("sign_in_failed: reason=invalid_credentials")
            raise AuthenticationFailed("Invalid email or password")
        return user
