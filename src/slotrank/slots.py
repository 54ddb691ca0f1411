"""Slot windowing: map timestamps to the slot of a duration class.

Every duration class partitions a calendar period (hour block, day, week,
month, quarter, half-year or year) into a fixed number of contiguous slots.
Periods follow the local calendar of the configured timezone. Their
boundaries are resolved to absolute instants before slots are cut, so the
partition has no gaps or overlaps in real time even across DST changes.

A slot's ``end`` is inclusive: one microsecond before the next slot starts.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slotrank.errors import ValidationError
from slotrank.models.duration import PARTITION_SCHEMES, DurationClass, PartitionScheme, PeriodUnit

DEFAULT_TIMEZONE = "Europe/Berlin"
SLOT_END_RESOLUTION = timedelta(microseconds=1)


@dataclass(frozen=True)
class Slot:
    duration: DurationClass
    index: int  # 1-based
    start: datetime
    end: datetime  # inclusive
    label: str

    @property
    def end_exclusive(self) -> datetime:
        return (self.end.astimezone(UTC) + SLOT_END_RESOLUTION).astimezone(self.end.tzinfo)

    def contains(self, timestamp: datetime) -> bool:
        # Same-zone comparisons ignore fold, so compare in UTC.
        instant = _as_aware(timestamp).astimezone(UTC)
        return self.start.astimezone(UTC) <= instant < self.end_exclusive.astimezone(UTC)

    def to_dict(self) -> dict:
        return {
            "duration": self.duration.value,
            "slotNumber": self.index,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "label": self.label,
        }


def resolve_zone(tz: str | tzinfo | None) -> tzinfo:
    if tz is None:
        return ZoneInfo(DEFAULT_TIMEZONE)
    if isinstance(tz, str):
        try:
            return ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError(f"Unknown timezone {tz!r}") from None
    return tz


def _as_aware(timestamp: datetime) -> datetime:
    # Naive timestamps come from UTC clocks and database drivers.
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=UTC)
    return timestamp


def _wall_clock(timestamp: datetime, zone: tzinfo) -> datetime:
    return _as_aware(timestamp).astimezone(zone).replace(tzinfo=None)


def _add_months(moment: datetime, months: int) -> datetime:
    """Shift a first-of-month wall-clock datetime by whole months."""
    total = moment.year * 12 + (moment.month - 1) + months
    return moment.replace(year=total // 12, month=total % 12 + 1)


def _period_bounds(local: datetime, scheme: PartitionScheme) -> tuple[datetime, datetime]:
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    period = scheme.period

    if period == PeriodUnit.HOURS:
        block = local.hour // scheme.period_length * scheme.period_length
        start = midnight + timedelta(hours=block)
        return start, start + timedelta(hours=scheme.period_length)
    if period == PeriodUnit.DAYS:
        ordinal = local.date().toordinal()
        first_day = date.fromordinal(ordinal - ordinal % scheme.period_length)
        start = datetime.combine(first_day, time())
        return start, start + timedelta(days=scheme.period_length)
    if period == PeriodUnit.WEEK:
        start = midnight - timedelta(days=local.weekday())
        return start, start + timedelta(days=7)
    if period == PeriodUnit.MONTH:
        start = midnight.replace(day=1)
        return start, _add_months(start, 1)
    if period == PeriodUnit.QUARTER:
        start = midnight.replace(month=(local.month - 1) // 3 * 3 + 1, day=1)
        return start, _add_months(start, 3)
    if period == PeriodUnit.HALF_YEAR:
        start = midnight.replace(month=1 if local.month <= 6 else 7, day=1)
        return start, _add_months(start, 6)
    if period == PeriodUnit.YEAR:
        start = midnight.replace(month=1, day=1)
        return start, _add_months(start, 12)
    raise ValueError(f"Unhandled period unit {period}")


def _to_utc(wall: datetime, zone: tzinfo) -> datetime:
    # fold=0 resolves a repeated wall time to its first occurrence. Boundaries
    # are whole hours, so one skipped by a forward shift lands on the jump.
    return wall.replace(tzinfo=zone, fold=0).astimezone(UTC)


def _boundaries(local: datetime, zone: tzinfo, scheme: PartitionScheme) -> list[datetime]:
    """N+1 UTC boundaries of the period around ``local``; slot i spans [b[i], b[i+1])."""
    period_start, period_end = _period_bounds(local, scheme)
    n = scheme.slot_count
    if scheme.slot_months:
        return [_to_utc(_add_months(period_start, i * scheme.slot_months), zone) for i in range(n + 1)]
    if scheme.period in (PeriodUnit.HOURS, PeriodUnit.DAYS):
        # Equal real-time slots: a DST change stretches or shrinks all of them.
        start, end = _to_utc(period_start, zone), _to_utc(period_end, zone)
        return [start + (end - start) * i / n for i in range(n + 1)]
    length = period_end - period_start
    return [_to_utc(period_start + length * i / n, zone) for i in range(n + 1)]


def _index_of(instant: datetime, bounds: list[datetime]) -> int:
    # bisect_right skips the empty slots of a period swallowed by a forward shift.
    index0 = bisect_right(bounds, instant) - 1
    return min(max(index0, 0), len(bounds) - 2)


def _format_label(start: datetime, end_exclusive: datetime, scheme: PartitionScheme) -> str:
    if scheme.is_intraday:
        first, last = start.strftime("%H:%M"), end_exclusive.strftime("%H:%M")
    else:
        last_day = end_exclusive.replace(tzinfo=None) - SLOT_END_RESOLUTION
        first, last = start.strftime("%Y-%m-%d"), last_day.strftime("%Y-%m-%d")
    return first if first == last else f"{first} - {last}"


def _make_slot(duration: DurationClass, index0: int, bounds: list[datetime],
               zone: tzinfo, scheme: PartitionScheme) -> Slot:
    start = bounds[index0].astimezone(zone)
    end_exclusive = bounds[index0 + 1].astimezone(zone)
    return Slot(
        duration=duration,
        index=index0 + 1,
        start=start,
        end=(bounds[index0 + 1] - SLOT_END_RESOLUTION).astimezone(zone),
        label=_format_label(start, end_exclusive, scheme),
    )


def slot_for(timestamp: datetime, duration: DurationClass,
             tz: str | tzinfo | None = None) -> Slot:
    """Return the slot of ``duration`` that contains ``timestamp``."""
    zone = resolve_zone(tz)
    scheme = PARTITION_SCHEMES[duration]
    bounds = _boundaries(_wall_clock(timestamp, zone), zone, scheme)
    index0 = _index_of(_as_aware(timestamp).astimezone(UTC), bounds)
    return _make_slot(duration, index0, bounds, zone, scheme)


def current_slot(duration: DurationClass, tz: str | tzinfo | None = None,
                 now: datetime | None = None) -> Slot:
    return slot_for(now or datetime.now(UTC), duration, tz)


def next_slot(duration: DurationClass, tz: str | tzinfo | None = None,
              now: datetime | None = None) -> Slot:
    """The slot after the current one, rolling into the next period after the last."""
    return slot_for(current_slot(duration, tz, now).end_exclusive, duration, tz)


def slots_for_period(timestamp: datetime, duration: DurationClass,
                     tz: str | tzinfo | None = None) -> list[Slot]:
    """All N slots of the period that contains ``timestamp``."""
    zone = resolve_zone(tz)
    scheme = PARTITION_SCHEMES[duration]
    bounds = _boundaries(_wall_clock(timestamp, zone), zone, scheme)
    return [_make_slot(duration, i, bounds, zone, scheme) for i in range(scheme.slot_count)]


def all_slots_in_range(start: datetime, end: datetime, duration: DurationClass,
                       tz: str | tzinfo | None = None) -> list[Slot]:
    """Every slot overlapping ``[start, end]``, across period boundaries."""
    zone = resolve_zone(tz)
    scheme = PARTITION_SCHEMES[duration]
    range_start = _as_aware(start).astimezone(UTC)
    range_end = _as_aware(end).astimezone(UTC)
    if range_end < range_start:
        return []

    slots: list[Slot] = []
    local = _wall_clock(range_start, zone)
    while True:
        bounds = _boundaries(local, zone, scheme)
        if bounds[0] > range_end:
            break
        for i in range(scheme.slot_count):
            if bounds[i] == bounds[i + 1] or bounds[i + 1] <= range_start or bounds[i] > range_end:
                continue
            slots.append(_make_slot(duration, i, bounds, zone, scheme))
        local = _period_bounds(local, scheme)[1]
    return slots


def period_bounds(timestamp: datetime, duration: DurationClass,
                  tz: str | tzinfo | None = None) -> tuple[datetime, datetime]:
    """``(start, end_exclusive)`` of the period containing ``timestamp``."""
    zone = resolve_zone(tz)
    start, end = _period_bounds(_wall_clock(timestamp, zone), PARTITION_SCHEMES[duration])
    return _to_utc(start, zone).astimezone(zone), _to_utc(end, zone).astimezone(zone)


def valid_slots(duration: DurationClass, now: datetime | None = None,
                tz: str | tzinfo | None = None) -> list[Slot]:
    """The current slot and every later slot of the current period."""
    now = now or datetime.now(UTC)
    current = slot_for(now, duration, tz)
    return [s for s in slots_for_period(now, duration, tz) if s.index >= current.index]


def is_valid_for_new_bet(duration: DurationClass, slot_index: int,
                         now: datetime | None = None,
                         tz: str | tzinfo | None = None) -> bool:
    """Current and future slots accept bets; earlier slots never do."""
    if not 1 <= slot_index <= PARTITION_SCHEMES[duration].slot_count:
        return False
    return slot_index >= current_slot(duration, tz, now).index


def is_within_slot(timestamp: datetime, slot: Slot) -> bool:
    return slot.contains(timestamp)


# ----------------------------------------------------------------------
# Calendar months (leaderboard periods)
# ----------------------------------------------------------------------


def month_bounds(timestamp: datetime, tz: str | tzinfo | None = None) -> tuple[datetime, datetime]:
    """``(first instant, first instant of next month)`` in the given zone."""
    zone = resolve_zone(tz)
    start = _wall_clock(timestamp, zone).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return _to_utc(start, zone).astimezone(zone), _to_utc(_add_months(start, 1), zone).astimezone(zone)


def period_key(timestamp: datetime, tz: str | tzinfo | None = None) -> str:
    local = _wall_clock(timestamp, resolve_zone(tz))
    return f"{local.year:04d}-{local.month:02d}"


def previous_period_key(timestamp: datetime, tz: str | tzinfo | None = None) -> str:
    start, _ = month_bounds(timestamp, tz)
    previous = _add_months(start.replace(tzinfo=None), -1)
    return f"{previous.year:04d}-{previous.month:02d}"


def validate_period_key(value: str) -> str:
    try:
        parsed = datetime.strptime(value, "%Y-%m")
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid month {value!r}. Use YYYY-MM") from None
    return f"{parsed.year:04d}-{parsed.month:02d}"
