"""Weekly availability types and their stored encoding.

Doctors keep their working hours as a JSON object mapping a weekday name to a
list of ``"HH:MM-HH:MM"`` strings. Everything in ``carepulse.scheduling``
works on the decoded form, a dict of weekday name to :class:`TimeRange`.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

logger = logging.getLogger(__name__)

WEEKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')
RANGE_SEPARATOR = '-'

_WEEKDAY_LOOKUP = {weekday.lower(): weekday for weekday in WEEKDAYS}


@dataclass(frozen=True)
class TimeRange:
    """One working window within a day, as ``HH:MM`` wall-clock strings."""

    start: str
    end: str

    def to_transport(self) -> str:
        return f'{self.start}{RANGE_SEPARATOR}{self.end}'


WeeklyAvailability = dict[str, list[TimeRange]]


def normalize_weekday(name: str) -> str | None:
    return _WEEKDAY_LOOKUP.get(name.strip().lower())


def empty_availability() -> WeeklyAvailability:
    return {weekday: [] for weekday in WEEKDAYS}


def parse_time_range(value: Any) -> TimeRange:
    """Turn one stored entry into a TimeRange.

    Accepts ``"09:00-12:00"`` strings, ``{"start": ..., "end": ...}`` mappings
    and TimeRange instances. Missing halves become empty strings.
    """
    if isinstance(value, TimeRange):
        return value
    if isinstance(value, Mapping):
        return TimeRange(start=str(value.get('start') or ''), end=str(value.get('end') or ''))

    start, _, end = str(value).partition(RANGE_SEPARATOR)
    return TimeRange(start=start.strip(), end=end.strip())


def decode_availability(raw: str | Mapping[str, Sequence[Any]] | None) -> WeeklyAvailability:
    if raw is None or raw == '':
        return {}

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning('Ignoring availability that is not valid JSON: %r', raw)
            return {}

    if not isinstance(raw, Mapping):
        logger.warning('Ignoring availability that is not an object: %r', raw)
        return {}

    availability: WeeklyAvailability = {}
    for day, entries in raw.items():
        weekday = normalize_weekday(str(day))
        if weekday is None:
            logger.warning('Ignoring availability for unknown weekday %r', day)
            continue
        if not isinstance(entries, (list, tuple)):
            availability[weekday] = []
            continue
        availability.setdefault(weekday, []).extend(parse_time_range(entry) for entry in entries)

    return availability


def encode_availability(availability: Mapping[str, Sequence[TimeRange]] | None) -> str:
    encoded = {
        weekday: [parse_time_range(time_range).to_transport() for time_range in (availability or {}).get(weekday, [])]
        for weekday in WEEKDAYS
        if weekday in (availability or {})
    }
    return json.dumps(encoded)


def availability_to_dict(availability: Mapping[str, Sequence[TimeRange]]) -> dict[str, list[dict[str, str]]]:
    return {
        weekday: [{'start': time_range.start, 'end': time_range.end} for time_range in ranges]
        for weekday, ranges in availability.items()
    }
