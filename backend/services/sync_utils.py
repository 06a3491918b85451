"""
Helpers shared by the sync services: retry with backoff, duration strings,
timestamp parsing.
"""

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = MAX_RETRIES,
    initial_backoff: float = INITIAL_BACKOFF_SECONDS,
) -> T:
    """
    Await fn(), retrying on failure with doubling delays (1s, 2s, ...).

    The last exception is re-raised once all attempts fail.
    """
    last_error: Optional[Exception] = None
    for attempt in range(max_retries):
        try:
            return await fn()
        except Exception as e:
            last_error = e
            if attempt < max_retries - 1:
                backoff = initial_backoff * (2 ** attempt)
                logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt + 1, max_retries, e, backoff,
                )
                await asyncio.sleep(backoff)

    assert last_error is not None
    raise last_error


def format_duration(ms: float) -> str:
    """'1h 30m 45s', '5m 30s' or '45s'."""
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours}h {minutes % 60}m {seconds % 60}s"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_elapsed(ms: float) -> str:
    """Short form used by the GBP jobs: '2.5s' from one second up, else '850ms'."""
    if ms >= 1000:
        return f"{ms / 1000:.1f}s"
    return f"{int(ms)}ms"


def start_of_utc_day(value: datetime) -> datetime:
    """Midnight UTC of the day containing value."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a vendor timestamp.

    Accepts ISO-8601 strings (with 'Z' or an offset), epoch milliseconds
    (int or numeric string) and datetimes. Returns an aware UTC datetime, or
    None when the value is empty or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable timestamp: %r", value)
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None
