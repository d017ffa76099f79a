"""Working-hours shape checks and the open-now evaluation used by discovery filters."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any, Mapping

from restodir.domain.enums import WEEKDAYS

Interval = tuple[time, time]


def parse_hhmm(value: Any) -> time | None:
    """Parse an ``HH:MM`` string, returning ``None`` for anything else."""

    if not isinstance(value, str) or len(value) != 5 or value[2] != ":":
        return None
    hours, minutes = value[:2], value[3:]
    if not (hours.isdigit() and minutes.isdigit()):
        return None
    h, m = int(hours), int(minutes)
    if h > 23 or m > 59:
        return None
    return time(h, m)


def interval_shape_error(entry: Any) -> str | None:
    """Describe what is wrong with one day entry, or return ``None`` if it is well formed."""

    if not isinstance(entry, Mapping):
        return "must be an object"
    if entry.get("closed") is True:
        extra = set(entry) - {"closed"}
        return f"closed day must not define {sorted(extra)}" if extra else None
    if set(entry) - {"open", "close", "closed"}:
        return "unexpected keys"
    if "closed" in entry and entry["closed"] is not False:
        return "closed must be a boolean"
    if parse_hhmm(entry.get("open")) is None or parse_hhmm(entry.get("close")) is None:
        return "open and close must be HH:MM"
    return None


def working_hours_error(value: Any) -> str | None:
    if not isinstance(value, Mapping):
        return "working_hours must be an object keyed by weekday"
    for day, entry in value.items():
        if day not in WEEKDAYS:
            return f"unknown weekday '{day}'"
        problem = interval_shape_error(entry)
        if problem:
            return f"{day}: {problem}"
    return None


def special_hours_error(value: Any) -> str | None:
    if not isinstance(value, Mapping):
        return "special_hours must be an object keyed by ISO date"
    for key, entry in value.items():
        try:
            date.fromisoformat(key)
        except (TypeError, ValueError):
            return f"'{key}' is not an ISO date"
        problem = interval_shape_error(entry)
        if problem:
            return f"{key}: {problem}"
    return None


def _interval_for(
    day: date,
    working_hours: Mapping[str, Any] | None,
    special_hours: Mapping[str, Any] | None,
) -> Interval | None:
    if special_hours and day.isoformat() in special_hours:
        entry = special_hours[day.isoformat()]
    else:
        entry = (working_hours or {}).get(WEEKDAYS[day.weekday()])
    if not isinstance(entry, Mapping) or entry.get("closed") is True:
        return None
    opens = parse_hhmm(entry.get("open"))
    closes = parse_hhmm(entry.get("close"))
    if opens is None or closes is None:
        return None
    return opens, closes


def is_open_at(
    local_now: datetime,
    working_hours: Mapping[str, Any] | None,
    special_hours: Mapping[str, Any] | None = None,
) -> bool:
    """Return True when ``local_now`` falls inside today's interval or the spill-over of yesterday's.

    A close time at or before the open time means the interval runs past midnight;
    ``00:00-00:00`` means open around the clock.
    """

    today = local_now.date()
    moment = local_now.time().replace(tzinfo=None)

    current = _interval_for(today, working_hours, special_hours)
    if current is not None:
        opens, closes = current
        if opens == closes:
            return True
        if opens < closes:
            if opens <= moment < closes:
                return True
        elif moment >= opens:
            return True

    previous = _interval_for(today - timedelta(days=1), working_hours, special_hours)
    if previous is not None:
        opens, closes = previous
        if closes < opens and moment < closes:
            return True
    return False
