import re
from datetime import date, datetime, time, timedelta
from typing import Mapping, Sequence

from carepulse.scheduling.availability import WEEKDAYS, TimeRange

SLOT_GRANULARITY_MINUTES = 30

_CLOCK_TIME_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')


def parse_clock_time(value: str | None) -> time | None:
    if not isinstance(value, str):
        return None

    match = _CLOCK_TIME_PATTERN.match(value.strip())
    if match is None:
        return None

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None

    return time(hour, minute)


def weekday_name(target_date: date) -> str:
    return WEEKDAYS[target_date.weekday()]


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def iterate_range_slots(slot_date: date, time_range: TimeRange) -> list[datetime]:
    start = parse_clock_time(time_range.start)
    end = parse_clock_time(time_range.end)
    if start is None or end is None:
        return []

    slots: list[datetime] = []
    current = datetime.combine(slot_date, start)
    slot_end = datetime.combine(slot_date, end)

    while current < slot_end:
        slots.append(current)
        current += timedelta(minutes=SLOT_GRANULARITY_MINUTES)

    return slots


def derive_slots(
    availability: Mapping[str, Sequence[TimeRange]] | None,
    target_date: date | datetime,
    now: datetime,
) -> list[datetime]:
    """Return the bookable start times for ``target_date``.

    Each range configured for the date's weekday is stepped through in
    30-minute increments, end exclusive. Ranges keep their configured order
    and are neither merged nor deduplicated. Ranges whose times do not parse
    as ``HH:MM`` contribute nothing. When ``target_date`` falls on the same
    day as ``now``, only slots strictly after ``now`` are kept.
    """
    if not availability:
        return []

    slot_date = _as_date(target_date)
    ranges = availability.get(weekday_name(slot_date)) or []
    is_today = slot_date == now.date()

    slots: list[datetime] = []
    for time_range in ranges:
        for slot in iterate_range_slots(slot_date, time_range):
            if is_today and slot <= now:
                continue
            slots.append(slot)

    return slots


def is_date_selectable(
    availability: Mapping[str, Sequence[TimeRange]] | None,
    target_date: date | datetime,
    now: datetime,
) -> bool:
    return bool(derive_slots(availability, target_date, now))


def selectable_dates(
    availability: Mapping[str, Sequence[TimeRange]] | None,
    start_date: date,
    days: int,
    now: datetime,
) -> list[date]:
    candidates = (start_date + timedelta(days=offset) for offset in range(max(days, 0)))
    return [candidate for candidate in candidates if is_date_selectable(availability, candidate, now)]
