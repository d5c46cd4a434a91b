"""
Business Calendar

Working-day arithmetic for one jurisdiction:
- is_working_day(d): not a weekend day and not a listed holiday
- advance(d, n): the date n working days after d (d itself never counts)
- retreat(d, n): the date n working days before d
- working_days_between(a, b): signed count of working days in (a, b]

Holidays are data keyed by year. A year missing from the table has no
holidays, explicitly; covers_year() tells callers whether a date's
year is actually known.

The walk is a plain day-by-day scan. Holiday sets are irregular, so
there is no arithmetic shortcut.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Union

from casedesk.core.errors import ComputationError, InvalidInput

logger = logging.getLogger(__name__)

DEFAULT_HOLIDAYS_PATH = Path(__file__).resolve().parent.parent / "data" / "holidays.json"

WEEKDAY_NUMBERS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class BusinessCalendar:
    """Immutable weekend + holiday calendar for one jurisdiction."""
    jurisdiction: str = "weekends-only"
    weekend: FrozenSet[int] = frozenset({5, 6})
    holidays: Mapping[int, FrozenSet[date]] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        weekend = frozenset(self.weekend)
        if any(day not in range(7) for day in weekend):
            raise InvalidInput("Weekend days must be weekday numbers 0-6", weekend=sorted(weekend))
        if len(weekend) >= 7:
            raise InvalidInput("A calendar needs at least one working weekday")
        object.__setattr__(self, "weekend", weekend)
        object.__setattr__(
            self,
            "holidays",
            MappingProxyType({int(year): frozenset(days) for year, days in self.holidays.items()}),
        )

    @classmethod
    def from_holidays(
        cls,
        holidays: Iterable[date],
        weekend: Iterable[int] = (5, 6),
        jurisdiction: str = "custom",
    ) -> "BusinessCalendar":
        """Build a calendar from a flat list of holiday dates."""
        by_year: Dict[int, set] = {}
        for day in holidays:
            by_year.setdefault(day.year, set()).add(day)
        return cls(
            jurisdiction=jurisdiction,
            weekend=frozenset(weekend),
            holidays={year: frozenset(days) for year, days in by_year.items()},
        )

    # -------------------------------------------------------------------------
    # Day classification
    # -------------------------------------------------------------------------

    def covers_year(self, year: int) -> bool:
        return year in self.holidays

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays.get(day.year, frozenset())

    def is_weekend(self, day: date) -> bool:
        return day.weekday() in self.weekend

    def is_working_day(self, day: date) -> bool:
        return not self.is_weekend(day) and not self.is_holiday(day)

    # -------------------------------------------------------------------------
    # Arithmetic
    # -------------------------------------------------------------------------

    def advance(self, start: date, days: int) -> date:
        """
        Walk forward until `days` working days have passed.

        The start date never counts, so advance(d, 0) == d and
        advance(d, 1) is the first working day strictly after d.
        """
        _check_day_count(days)
        current = start
        remaining = days
        while remaining > 0:
            current += ONE_DAY
            if self.is_working_day(current):
                remaining -= 1
        return current

    def retreat(self, start: date, days: int) -> date:
        """Mirror of advance(): walk backwards over `days` working days."""
        _check_day_count(days)
        current = start
        remaining = days
        while remaining > 0:
            current -= ONE_DAY
            if self.is_working_day(current):
                remaining -= 1
        return current

    def working_days_between(self, start: date, end: date) -> int:
        """
        Working days in (start, end]; negative when end is before start.

        working_days_between(d, advance(d, n)) == n.
        """
        if end == start:
            return 0
        if end < start:
            return -self.working_days_between(end, start)
        count = 0
        current = start
        while current < end:
            current += ONE_DAY
            if self.is_working_day(current):
                count += 1
        return count

    def next_working_day(self, day: date) -> date:
        """The day itself if it is a working day, else the next one."""
        current = day
        while not self.is_working_day(current):
            current += ONE_DAY
        return current


def _check_day_count(days: int) -> None:
    if isinstance(days, bool) or not isinstance(days, int):
        raise InvalidInput("Day count must be an integer", days=repr(days))
    if days < 0:
        raise InvalidInput("Day count must not be negative", days=days)


# =============================================================================
# Loading
# =============================================================================

def load_holiday_table(path: Optional[Union[str, Path]] = None) -> Dict[str, dict]:
    """Read the raw jurisdiction -> {weekend, holidays} table."""
    source = Path(path) if path else DEFAULT_HOLIDAYS_PATH
    try:
        with source.open("r", encoding="utf-8") as fh:
            table = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ComputationError(f"Cannot read holiday table: {source}", error=str(e))
    if not isinstance(table, dict):
        raise ComputationError(f"Holiday table must be an object: {source}")
    logger.debug("Loaded holiday table %s (%d jurisdictions)", source, len(table))
    return table


def calendar_from_table(table: Dict[str, dict], jurisdiction: str) -> BusinessCalendar:
    """Build the BusinessCalendar for one jurisdiction of a loaded table."""
    entry = table.get(jurisdiction)
    if entry is None:
        raise ComputationError(
            f"Unknown jurisdiction: {jurisdiction}",
            known=sorted(table),
        )

    try:
        weekend = frozenset(
            WEEKDAY_NUMBERS[str(day).lower()] if not isinstance(day, int) else day
            for day in entry.get("weekend", ["saturday", "sunday"])
        )
        holidays = {
            int(year): frozenset(date.fromisoformat(d) for d in days)
            for year, days in (entry.get("holidays") or {}).items()
        }
    except (KeyError, TypeError, ValueError) as e:
        raise ComputationError(f"Malformed holiday entry for {jurisdiction}", error=str(e))

    for year, days in holidays.items():
        stray = [d for d in days if d.year != year]
        if stray:
            raise ComputationError(
                f"Holiday listed under the wrong year for {jurisdiction}",
                year=year,
                dates=[d.isoformat() for d in stray],
            )

    return BusinessCalendar(jurisdiction=jurisdiction, weekend=weekend, holidays=holidays)


def load_business_calendar(
    jurisdiction: str = "england-and-wales",
    path: Optional[Union[str, Path]] = None,
) -> BusinessCalendar:
    """Load the holiday table and build a calendar for the jurisdiction."""
    calendar = calendar_from_table(load_holiday_table(path), jurisdiction)
    logger.info(
        "Business calendar %s covers years %s",
        jurisdiction,
        sorted(calendar.holidays) or "none",
    )
    return calendar
