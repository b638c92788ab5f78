"""
Timestamp utilities for consistent time handling across the system.

All stored timestamps are RFC 3339 strings in UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return the current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_rfc3339(moment: Optional[datetime] = None) -> str:
    """Convert a datetime to an RFC 3339 string.

    Args:
        moment: datetime to format (uses current time if None); naive values are taken as UTC

    Returns:
        RFC 3339 timestamp string
    """
    if moment is None:
        moment = utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def parse_rfc3339(value: str) -> Optional[datetime]:
    """Parse an RFC 3339 / ISO 8601 timestamp.

    Args:
        value: Timestamp string, 'Z' suffix accepted

    Returns:
        Timezone-aware datetime, or None if the value cannot be parsed
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def describe_today(now: Optional[datetime] = None) -> str:
    """Format the anchor date shown to the model, e.g. '2026-02-03 (Tuesday)'."""
    if now is None:
        now = utc_now()
    return now.strftime('%Y-%m-%d (%A)')


_WEEKDAYS = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']
_UNIT_DAYS = {'day': 1, 'days': 1, 'week': 7, 'weeks': 7}


def resolve_relative_date(text: str, now: datetime) -> Optional[str]:
    """Resolve a bare relative date phrase to an ISO date anchored at `now`.

    Understands 'today', 'tomorrow', 'yesterday', 'day after tomorrow',
    'in N days/weeks', 'N days/weeks ago', 'next week' and 'next <weekday>'.

    Returns:
        'YYYY-MM-DD', or None when the text is not one of those phrases
    """
    if not isinstance(text, str):
        return None
    phrase = ' '.join(text.strip().lower().split())
    today = now.date()

    fixed = {'today': 0, 'tonight': 0, 'tomorrow': 1, 'yesterday': -1, 'day after tomorrow': 2, 'next week': 7}
    if phrase in fixed:
        return (today + timedelta(days=fixed[phrase])).isoformat()

    words = phrase.split()
    if len(words) == 3 and words[0] == 'in' and words[1].isdigit() and words[2] in _UNIT_DAYS:
        return (today + timedelta(days=int(words[1]) * _UNIT_DAYS[words[2]])).isoformat()
    if len(words) == 3 and words[2] == 'ago' and words[0].isdigit() and words[1] in _UNIT_DAYS:
        return (today - timedelta(days=int(words[0]) * _UNIT_DAYS[words[1]])).isoformat()
    if len(words) == 2 and words[0] == 'next' and words[1] in _WEEKDAYS:
        ahead = (_WEEKDAYS.index(words[1]) - today.weekday()) % 7 or 7
        return (today + timedelta(days=ahead)).isoformat()
    return None
