from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Optional, Sequence

from pydantic import ValidationError

from config import NOT_CONFIGURED_MESSAGE
from models import Expense, ExpenseCategory
from money import parse_amount
from periods import Month, trailing_months
from schemas import ExpenseIn
from services import CurrentUser, ExpenseStore, StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryStyle:
    icon: str
    badge_class: str


def category_style(category: ExpenseCategory) -> CategoryStyle:
    if category is ExpenseCategory.groceries:
        return CategoryStyle(icon="🛒", badge_class="badge-groceries")
    if category is ExpenseCategory.water:
        return CategoryStyle(icon="💧", badge_class="badge-water")
    if category is ExpenseCategory.electricity:
        return CategoryStyle(icon="⚡", badge_class="badge-electricity")
    if category is ExpenseCategory.gas:
        return CategoryStyle(icon="🔥", badge_class="badge-gas")
    raise ValueError(f"No style for category: {category!r}")


@dataclass(frozen=True)
class ExpenseSummary:
    total_cents: int
    by_category: dict[ExpenseCategory, int]
    count: int

    @property
    def is_empty(self) -> bool:
        return self.count == 0


def summarize(expenses: Iterable[Expense]) -> ExpenseSummary:
    total = 0
    count = 0
    sums: dict[ExpenseCategory, int] = {}
    for expense in expenses:
        total += expense.amount_cents
        count += 1
        sums[expense.category] = sums.get(expense.category, 0) + expense.amount_cents
    by_category = {
        category: sums[category] for category in ExpenseCategory if category in sums
    }
    return ExpenseSummary(total_cents=total, by_category=by_category, count=count)


class ExpenseEntryForm:
    """State of the "Add Expense" dialog.

    Field values are kept as the raw strings the user typed so that a failed
    submission can be shown again unchanged.
    """

    REQUIRED = (
        ("amount", "Amount"),
        ("category", "Category"),
        ("description", "Description"),
        ("date", "Date"),
    )

    def __init__(
        self,
        today: date,
        *,
        amount: str = "",
        category: str = "",
        description: str = "",
        date: Optional[str] = None,
        open: bool = False,
    ) -> None:
        self.today = today
        self.amount = amount
        self.category = category
        self.description = description
        self.date = date if date is not None else today.isoformat()
        self.open = open
        self.error = ""
        self.refresh_requested = False

    @classmethod
    def from_form(cls, form: Mapping[str, str], today: date) -> "ExpenseEntryForm":
        return cls(
            today,
            amount=str(form.get("amount", "")),
            category=str(form.get("category", "")),
            description=str(form.get("description", "")),
            date=str(form.get("date", "")),
            open=True,
        )

    @property
    def values(self) -> dict[str, str]:
        return {
            "amount": self.amount,
            "category": self.category,
            "description": self.description,
            "date": self.date,
        }

    def reset(self) -> None:
        self.amount = ""
        self.category = ""
        self.description = ""
        self.date = self.today.isoformat()
        self.error = ""

    def to_payload(self) -> ExpenseIn:
        for name, label in self.REQUIRED:
            if not getattr(self, name).strip():
                raise ValueError(f"{label} is required")
        amount_cents = parse_amount(self.amount)
        try:
            category = ExpenseCategory(self.category)
        except ValueError as exc:
            raise ValueError("Select a valid category") from exc
        try:
            expense_date = date.fromisoformat(self.date.strip())
        except ValueError as exc:
            raise ValueError("Enter a valid date") from exc
        return ExpenseIn(
            amount_cents=amount_cents,
            category=category,
            description=self.description,
            date=expense_date,
        )

    def submit(self, store: Optional[ExpenseStore]) -> bool:
        self.error = ""
        self.refresh_requested = False
        if store is None:
            self.error = NOT_CONFIGURED_MESSAGE
            return False
        try:
            payload = self.to_payload()
        except ValidationError as exc:
            self.error = exc.errors()[0]["msg"]
            return False
        except ValueError as exc:
            self.error = str(exc)
            return False
        try:
            store.create(payload)
        except StoreError as exc:
            self.error = str(exc)
            return False
        self.reset()
        self.refresh_requested = True
        self.open = False
        return True


@dataclass
class DashboardState:
    """Per-view dashboard state.

    Fetches are ticketed: only the result of the most recently issued fetch is
    applied, so a slow response for a month the user has already left is
    dropped.
    """

    user: CurrentUser
    today: date
    selected_month: Optional[Month] = None
    expenses: list[Expense] = field(default_factory=list)
    loading: bool = False
    dialog_open: bool = False
    _issued: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.selected_month is None:
            self.selected_month = Month.of(self.today)

    @property
    def month_options(self) -> list[Month]:
        return trailing_months(Month.of(self.today))

    @property
    def summary(self) -> ExpenseSummary:
        return summarize(self.expenses)

    def _begin_fetch(self) -> int:
        self._issued += 1
        self.loading = True
        return self._issued

    def mount(self) -> int:
        return self._begin_fetch()

    def select_month(self, month: Month) -> int:
        self.selected_month = month
        return self._begin_fetch()

    def complete_fetch(self, ticket: int, expenses: Sequence[Expense]) -> bool:
        if ticket != self._issued:
            logger.debug(
                f"stale_fetch_dropped: ticket={ticket} latest={self._issued}"
            )
            return False
        self.expenses = list(expenses)
        self.loading = False
        return True

    def open_dialog(self) -> None:
        self.dialog_open = True

    def close_dialog(self) -> None:
        self.dialog_open = False

    def expense_added(self) -> int:
        self.close_dialog()
        return self._begin_fetch()
