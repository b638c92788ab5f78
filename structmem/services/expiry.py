"""
Client-side time-to-live support.

The store has no native TTL: items carry an optional `expires_at` RFC 3339
timestamp, every read path drops items whose timestamp has passed, and
pruning deletes them physically.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..utils.logging_config import get_logger
from ..utils.store import MemoryStore
from ..utils.timestamp_utils import parse_rfc3339, to_rfc3339

logger = get_logger(__name__)

_TTL_UNITS = {'h': 'hours', 'd': 'days', 'w': 'weeks'}

# Categories whose items expire at the end of their `date` attribute.
DATED_CATEGORIES = ('events',)


class TTLFormatError(ValueError):
    """Raised for TTL strings other than <n>h, <n>d or <n>w."""
    pass


def parse_ttl(value: str) -> timedelta:
    """Parse a TTL such as '24h', '7d' or '2w'.

    Raises:
        TTLFormatError: If the unit is unknown or the number is not a positive integer
    """
    text = (value or '').strip()
    if not text:
        raise TTLFormatError('TTL string is empty')

    number, unit = text[:-1], text[-1].lower()
    if unit not in _TTL_UNITS:
        raise TTLFormatError(f"Unknown TTL unit '{unit}'. Use h (hours), d (days), or w (weeks)")
    try:
        amount = int(number)
    except ValueError:
        raise TTLFormatError(f"Invalid TTL number: '{number}'")
    if amount <= 0:
        raise TTLFormatError(f'TTL must be positive, got {amount}')
    return timedelta(**{_TTL_UNITS[unit]: amount})


def compute_expires_at(ttl: timedelta, now: datetime) -> str:
    return to_rfc3339(now + ttl)


def is_expired(document: Mapping[str, Any], now: datetime) -> bool:
    """An item is expired when it has a parseable `expires_at` in the past.

    Items without `expires_at` never expire; unparseable values are treated as live.
    """
    expires_at = parse_rfc3339(document.get('expires_at'))
    if expires_at is None:
        return False
    return now > expires_at


def is_live(document: Mapping[str, Any], now: datetime) -> bool:
    return not is_expired(document, now)


def filter_expired(documents: Iterable[Dict[str, Any]], now: datetime, include_expired: bool = False) -> List[Dict[str, Any]]:
    """Drop expired documents unless the diagnostic override is set."""
    documents = list(documents)
    if include_expired:
        return documents
    return [document for document in documents if is_live(document, now)]


def auto_ttl_from_date(document: Mapping[str, Any]) -> Optional[str]:
    """End of the day (23:59:59 UTC) named by the document's `date` attribute, if any."""
    value = document.get('date')
    if not isinstance(value, str):
        return None
    try:
        day = date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None
    return to_rfc3339(datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc))


class ExpiryPolicy:
    """Decides the `expires_at` of a new item."""

    def __init__(self, category_ttls: Optional[Mapping[str, str]] = None):
        self.category_ttls = {category: parse_ttl(ttl) for category, ttl in (category_ttls or {}).items()}

    def expires_at_for(self, category: str, document: Mapping[str, Any], now: datetime,
                       ttl: Optional[str] = None) -> Optional[str]:
        """An explicit TTL wins, then the category default, then the date of a dated category.

        Raises:
            TTLFormatError: If an explicit TTL is malformed
        """
        if ttl:
            return compute_expires_at(parse_ttl(ttl), now)
        if category in self.category_ttls:
            return compute_expires_at(self.category_ttls[category], now)
        if category in DATED_CATEGORIES:
            return auto_ttl_from_date(document)
        return None


def prune_expired(store: MemoryStore, categories: Iterable[str], now: datetime) -> int:
    """Delete every expired item in the given categories.

    Idempotent: items already gone are not an error and are not counted.

    Returns:
        Number of items deleted
    """
    pruned = 0
    for category in categories:
        for document in store.scan(category):
            if is_expired(document, now) and store.delete(category, document['key']):
                pruned += 1

    if pruned > 0:
        logger.info(f'Pruned {pruned} expired memories')
    else:
        logger.debug('No expired memories found for pruning')
    return pruned
