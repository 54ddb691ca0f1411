from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from slotrank.errors import ValidationError


class DurationClass(StrEnum):
    ONE_HOUR = "1h"
    THREE_HOURS = "3h"
    SIX_HOURS = "6h"
    ONE_DAY = "24h"
    TWO_DAYS = "48h"
    ONE_WEEK = "1w"
    ONE_MONTH = "1m"
    THREE_MONTHS = "3m"
    SIX_MONTHS = "6m"
    ONE_YEAR = "1y"


class PeriodUnit(StrEnum):
    HOURS = "hours"  # block of whole hours aligned to local midnight
    DAYS = "days"  # block of whole days aligned to an even ordinal day
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    HALF_YEAR = "half_year"
    YEAR = "year"


@dataclass(frozen=True)
class PartitionScheme:
    """How one duration class cuts its period into slots.

    ``period_length`` counts hours for HOURS and days for DAYS and is ignored
    otherwise. ``slot_months`` > 0 puts slot boundaries on calendar months;
    0 splits the period into ``slot_count`` equal intervals, measured in real
    time for HOURS and DAYS and on the wall clock otherwise.
    """

    period: PeriodUnit
    slot_count: int
    period_length: int = 1
    slot_months: int = 0

    @property
    def is_intraday(self) -> bool:
        return self.period == PeriodUnit.HOURS or (
            self.period == PeriodUnit.DAYS and self.period_length == 1
        )


PARTITION_SCHEMES: dict[DurationClass, PartitionScheme] = {
    DurationClass.ONE_HOUR: PartitionScheme(PeriodUnit.HOURS, 4, period_length=1),
    DurationClass.THREE_HOURS: PartitionScheme(PeriodUnit.HOURS, 6, period_length=3),
    DurationClass.SIX_HOURS: PartitionScheme(PeriodUnit.HOURS, 6, period_length=6),
    DurationClass.ONE_DAY: PartitionScheme(PeriodUnit.DAYS, 8, period_length=1),
    DurationClass.TWO_DAYS: PartitionScheme(PeriodUnit.DAYS, 8, period_length=2),
    DurationClass.ONE_WEEK: PartitionScheme(PeriodUnit.WEEK, 7),
    DurationClass.ONE_MONTH: PartitionScheme(PeriodUnit.MONTH, 4),
    DurationClass.THREE_MONTHS: PartitionScheme(PeriodUnit.QUARTER, 3, slot_months=1),
    DurationClass.SIX_MONTHS: PartitionScheme(PeriodUnit.HALF_YEAR, 6, slot_months=1),
    DurationClass.ONE_YEAR: PartitionScheme(PeriodUnit.YEAR, 4, slot_months=3),
}

# Earlier slots pay more: committing early means betting under more uncertainty.
SLOT_POINTS: dict[DurationClass, tuple[int, ...]] = {
    DurationClass.ONE_HOUR: (10, 5, 2, 1),
    DurationClass.THREE_HOURS: (20, 15, 10, 5, 2, 1),
    DurationClass.SIX_HOURS: (30, 20, 15, 10, 5, 1),
    DurationClass.ONE_DAY: (40, 30, 20, 15, 10, 5, 2, 1),
    DurationClass.TWO_DAYS: (50, 40, 30, 20, 15, 10, 5, 1),
    DurationClass.ONE_WEEK: (60, 50, 40, 30, 20, 10, 5),
    DurationClass.ONE_MONTH: (80, 60, 40, 20),
    DurationClass.THREE_MONTHS: (100, 60, 30),
    DurationClass.SIX_MONTHS: (120, 100, 80, 60, 40, 20),
    DurationClass.ONE_YEAR: (150, 100, 50, 20),
}


def _check_tables() -> None:
    for duration in DurationClass:
        scheme = PARTITION_SCHEMES[duration]
        points = SLOT_POINTS[duration]
        if len(points) != scheme.slot_count:
            raise RuntimeError(f"Points table for {duration} has {len(points)} entries, "
                               f"expected {scheme.slot_count}")
        if any(a < b for a, b in zip(points, points[1:])):
            raise RuntimeError(f"Points table for {duration} must be non-increasing")


_check_tables()


def parse_duration(value: str | DurationClass) -> DurationClass:
    """Parse a duration key such as ``"24h"``. Raises ValidationError."""
    if isinstance(value, DurationClass):
        return value
    try:
        return DurationClass(str(value).strip())
    except ValueError:
        valid = ", ".join(d.value for d in DurationClass)
        raise ValidationError(f"Invalid duration {value!r}. Use one of: {valid}") from None
