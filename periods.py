from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_ABBR = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def parse_local_date(value: str) -> date:
    """Parse ``YYYY-MM-DD`` as a plain calendar date.

    Only the leading date part is read, so ``2024-01-31T23:30:00Z`` stays on
    the 31st instead of drifting through a UTC conversion.
    """
    head = value.strip()[:10]
    parts = head.split("-")
    if len(parts) != 3:
        raise ValueError(f"Invalid date: {value!r}")
    try:
        year, month, day = (int(p) for p in parts)
    except ValueError as exc:
        raise ValueError(f"Invalid date: {value!r}") from exc
    return date(year, month, day)


def month_key(d: date) -> tuple[int, int]:
    return (d.year, d.month)


def same_month(d1: date, d2: date) -> bool:
    return d1.year == d2.year and d1.month == d2.month


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def month_label(year: int, month: int) -> str:
    return f"{MONTH_ABBR[month - 1]} {year}"


@dataclass(frozen=True, order=True)
class ReferenceMonth:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError("Month must be between 1 and 12")

    @classmethod
    def from_date(cls, d: date) -> "ReferenceMonth":
        return cls(d.year, d.month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return add_months(self.start, 1) - date.resolution

    @property
    def key(self) -> tuple[int, int]:
        return (self.year, self.month)

    @property
    def label(self) -> str:
        return month_label(self.year, self.month)

    @property
    def slug(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def shift(self, count: int) -> "ReferenceMonth":
        return ReferenceMonth.from_date(add_months(self.start, count))

    def contains(self, d: date) -> bool:
        return same_month(self.start, d)


def resolve_reference_month(
    value: Optional[str], *, today: Optional[date] = None
) -> ReferenceMonth:
    if not value:
        return ReferenceMonth.from_date(today or local_today())
    parts = value.strip().split("-")
    if len(parts) != 2:
        raise ValueError("Month must look like YYYY-MM")
    try:
        year, month = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise ValueError("Month must look like YYYY-MM") from exc
    return ReferenceMonth(year, month)
