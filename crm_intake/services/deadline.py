"""Deterministic resolution of task deadline expressions.

All arithmetic is done in UTC against an injected ``now`` so that the same
expression always resolves to the same instant. Output uses the CRM's
nanosecond timestamp text, which this module also accepts as input.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

WORD_NUMBERS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6}

DEFAULT_HOUR = 9
END_OF_WEEK_HOUR = 17

_WEEKDAY_RE = re.compile(r"(?:next\s+)?(monday|tuesday|wednesday|thursday|friday|saturday|sunday)", re.IGNORECASE)
_DAYS_RE = re.compile(r"(?:in\s+)?(\d+)\s*days?", re.IGNORECASE)
_WEEKS_RE = re.compile(r"(?:in\s+)?(\d+|one|two|three|four|five|six)\s*weeks?", re.IGNORECASE)
_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_CRM_TIMESTAMP_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:?\d{2})?$")


def to_crm_timestamp(moment: datetime) -> str:
    """2024-05-01T09:00:00.000000000Z"""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond:06d}000Z"


def _at(day: datetime, hour: int) -> datetime:
    return day.replace(hour=hour, minute=0, second=0, microsecond=0)


def _parse_iso(text: str) -> Optional[datetime]:
    match = _CRM_TIMESTAMP_RE.match(text)
    if match:
        base, fraction, zone = match.groups()
        micros = int((fraction or "0")[:6].ljust(6, "0"))
        parsed = datetime.strptime(base, "%Y-%m-%dT%H:%M:%S").replace(microsecond=micros)
        if zone and zone != "Z":
            offset = datetime.strptime(zone.replace(":", ""), "%z").tzinfo
            return parsed.replace(tzinfo=offset).astimezone(timezone.utc)
        return parsed.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.strptime(text[:10], "%Y-%m-%d")
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def parse_deadline(expression: Any, now: Optional[datetime] = None) -> Optional[str]:
    """Resolve "tomorrow", "next wednesday", "in 2 weeks", "eow" or an ISO date.

    Returns None when nothing in the expression looks like a deadline.
    """
    if expression is None:
        return None
    text = str(expression).strip()
    if not text or text in ("undefined", "null", "None"):
        return None

    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    lower = text.lower()

    if _ISO_RE.match(text):
        parsed = _parse_iso(text)
        if parsed:
            return to_crm_timestamp(parsed)

    if "tomorrow" in lower:
        return to_crm_timestamp(_at(now + timedelta(days=1), DEFAULT_HOUR))

    if "next week" in lower or lower in ("1 week", "a week"):
        return to_crm_timestamp(_at(now + timedelta(days=7), DEFAULT_HOUR))

    match = _WEEKDAY_RE.search(lower)
    if match:
        days_until = WEEKDAYS.index(match.group(1).lower()) - now.weekday()
        if days_until <= 0:
            days_until += 7
        return to_crm_timestamp(_at(now + timedelta(days=days_until), DEFAULT_HOUR))

    match = _DAYS_RE.search(lower)
    if match:
        return to_crm_timestamp(_at(now + timedelta(days=int(match.group(1))), DEFAULT_HOUR))

    match = _WEEKS_RE.search(lower)
    if match:
        value = match.group(1).lower()
        weeks = WORD_NUMBERS.get(value) or int(value)
        return to_crm_timestamp(_at(now + timedelta(weeks=weeks), DEFAULT_HOUR))

    if "end of week" in lower or lower == "eow":
        days_until_friday = (4 - now.weekday()) % 7 or 7
        return to_crm_timestamp(_at(now + timedelta(days=days_until_friday), END_OF_WEEK_HOUR))

    return None
