from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True, order=True)
class Month:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month: {self.month}")
        if not 1 <= self.year <= 9999:
            raise ValueError(f"Invalid year: {self.year}")

    @classmethod
    def of(cls, day: date) -> "Month":
        return cls(day.year, day.month)

    @classmethod
    def parse(cls, value: str) -> "Month":
        """Parse a ``YYYY-MM`` slug."""
        try:
            year_raw, month_raw = value.strip().split("-")
            if len(year_raw) != 4 or len(month_raw) != 2:
                raise ValueError
            return cls(int(year_raw), int(month_raw))
        except ValueError as exc:
            raise ValueError(f"Invalid month: {value!r}") from exc

    @property
    def slug(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def label(self) -> str:
        return f"{MONTH_NAMES[self.month - 1]} {self.year}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        """Exclusive upper bound: the first day of the following month."""
        return self.shift(1).start

    def shift(self, months: int) -> "Month":
        index = self.year * 12 + (self.month - 1) + months
        return Month(index // 12, index % 12 + 1)

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    def __str__(self) -> str:
        return self.slug


def today(tz: Optional[str] = None) -> date:
    zone = ZoneInfo(tz or get_settings().timezone)
    return datetime.now(zone).date()


def trailing_months(current: Month, count: int = 12) -> list[Month]:
    return [current.shift(-offset) for offset in range(count)]


def resolve_month(value: Optional[str], *, on_date: Optional[date] = None) -> Month:
    if not value:
        return Month.of(on_date or today())
    return Month.parse(value)
