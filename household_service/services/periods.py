"""Calendar period helpers for monthly duty rotation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo

from .errors import InvalidPeriod

MIN_YEAR = 1970
MAX_YEAR = 9999


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, order=True)
class Period:
    """One scheduling cycle, ordered by (year, month)."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if isinstance(self.year, bool) or not isinstance(self.year, int):
            raise InvalidPeriod(f"year must be an integer, got {self.year!r}")
        if isinstance(self.month, bool) or not isinstance(self.month, int):
            raise InvalidPeriod(f"month must be an integer, got {self.month!r}")
        if not MIN_YEAR <= self.year <= MAX_YEAR:
            raise InvalidPeriod(f"year must be between {MIN_YEAR} and {MAX_YEAR}, got {self.year}")
        if not 1 <= self.month <= 12:
            raise InvalidPeriod(f"month must be between 1 and 12, got {self.month}")

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def ordinal(self) -> int:
        """Months since year 0; adjacent periods differ by exactly one."""

        return self.year * 12 + (self.month - 1)

    @classmethod
    def from_ordinal(cls, ordinal: int) -> Period:
        year, month_index = divmod(ordinal, 12)
        return cls(year, month_index + 1)

    def next(self) -> Period:
        return Period.from_ordinal(self.ordinal + 1)

    def previous(self) -> Period:
        return Period.from_ordinal(self.ordinal - 1)

    def is_adjacent(self, other: Period) -> bool:
        return abs(self.ordinal - other.ordinal) == 1

    @classmethod
    def current(cls, tz: tzinfo | None = None, *, at: datetime | None = None) -> Period:
        moment = at or now_utc()
        if tz is not None:
            moment = moment.astimezone(tz)
        return cls(moment.year, moment.month)


def _parse_component(raw: int | float | str, *, name: str, digits: int | None = None) -> int:
    if isinstance(raw, bool):
        raise InvalidPeriod(f"{name} must be an integer")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        raise InvalidPeriod(f"{name} must be an integer, got {raw!r}")
    token = str(raw).strip()
    if not (token.isascii() and token.isdigit()):
        raise InvalidPeriod(f"{name} must be an integer, got '{raw}'")
    if digits is not None and len(token) != digits:
        raise InvalidPeriod(f"{name} must have {digits} digits, got '{raw}'")
    return int(token)


def parse_period(year: int | float | str, month: int | float | str) -> Period:
    """Validate raw year/month input from the web layer."""

    if isinstance(month, str) and len(month.strip()) > 2:
        raise InvalidPeriod(f"month must be between 1 and 12, got '{month}'")
    return Period(
        _parse_component(year, name="year", digits=4),
        _parse_component(month, name="month"),
    )
