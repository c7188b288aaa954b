"""
Reporting periods.

A period string names a calendar window. Accepted formats:

    2024          year
    2024-01       month
    2024-W05      ISO week (lowercase "w" also accepted)
    2024-01-15    day

Windows are half-open UTC intervals [start, end). Unrecognized strings raise
InvalidPeriodError instead of falling back to the current month.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from teamperf.core.exceptions import InvalidPeriodError


class PeriodKind(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


_YEAR_RE = re.compile(r"^(\d{4})$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
_WEEK_RE = re.compile(r"^(\d{4})-[Ww](\d{2})$")
_DAY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def _utc(d: date) -> datetime:
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def _add_months(d: date, months: int) -> date:
    index = d.year * 12 + (d.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


@dataclass(frozen=True)
class Period:
    kind: PeriodKind
    start: datetime
    end: datetime
    label: str

    def __str__(self) -> str:
        return self.label

    def contains(self, moment: datetime) -> bool:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return self.start <= moment < self.end

    def previous(self) -> "Period":
        """The period of the same kind immediately before this one."""
        start = self.start.date()
        if self.kind is PeriodKind.DAY:
            return Period.day(start - timedelta(days=1))
        if self.kind is PeriodKind.WEEK:
            return Period.week_of(start - timedelta(days=7))
        if self.kind is PeriodKind.MONTH:
            return Period.month(_add_months(start, -1))
        return Period.year(start.year - 1)

    def last_month(self) -> "Period":
        """Month containing the last instant of this period; a year maps to its December."""
        if self.kind is PeriodKind.MONTH:
            return self
        return Period.month_of(self.end - timedelta(microseconds=1))

    def shift_months(self, months: int) -> "Period":
        """Month period offset from this period's start month."""
        return Period.month(_add_months(self.start.date(), months))

    # ==================== Constructors ====================

    @classmethod
    def day(cls, d: date) -> "Period":
        start = _utc(d)
        return cls(PeriodKind.DAY, start, start + timedelta(days=1), d.isoformat())

    @classmethod
    def week_of(cls, d: date) -> "Period":
        iso_year, iso_week, _ = d.isocalendar()
        monday = date.fromisocalendar(iso_year, iso_week, 1)
        start = _utc(monday)
        return cls(PeriodKind.WEEK, start, start + timedelta(days=7), f"{iso_year}-W{iso_week:02d}")

    @classmethod
    def month(cls, d: date) -> "Period":
        first = date(d.year, d.month, 1)
        return cls(
            PeriodKind.MONTH,
            _utc(first),
            _utc(_add_months(first, 1)),
            f"{first.year}-{first.month:02d}",
        )

    @classmethod
    def year(cls, year: int) -> "Period":
        return cls(
            PeriodKind.YEAR,
            _utc(date(year, 1, 1)),
            _utc(date(year + 1, 1, 1)),
            f"{year:04d}",
        )

    @classmethod
    def current_month(cls, now: Optional[datetime] = None) -> "Period":
        now = now or datetime.now(timezone.utc)
        return cls.month(now.date())

    @classmethod
    def month_of(cls, moment: datetime) -> "Period":
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)
        return cls.month(moment.date())


def parse_period(value: str) -> Period:
    """Parse a period string, raising InvalidPeriodError if it is not recognized."""
    if not isinstance(value, str):
        raise InvalidPeriodError(value)
    text = value.strip()

    try:
        match = _YEAR_RE.match(text)
        if match:
            return Period.year(int(match.group(1)))

        match = _MONTH_RE.match(text)
        if match:
            return Period.month(date(int(match.group(1)), int(match.group(2)), 1))

        match = _WEEK_RE.match(text)
        if match:
            year, week = int(match.group(1)), int(match.group(2))
            # fromisocalendar rejects week 53 in 52-week years
            return Period.week_of(date.fromisocalendar(year, week, 1))

        match = _DAY_RE.match(text)
        if match:
            return Period.day(date(int(match.group(1)), int(match.group(2)), int(match.group(3))))
    except ValueError as e:
        raise InvalidPeriodError(value) from e

    raise InvalidPeriodError(value)


PeriodLike = Union[str, Period, None]


def resolve_period(value: PeriodLike, now: Optional[datetime] = None) -> Period:
    """Accept a Period, a period string, or None for the current month."""
    if value is None:
        return Period.current_month(now)
    if isinstance(value, Period):
        return value
    return parse_period(value)
