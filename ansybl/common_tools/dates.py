"""ISO-8601 timestamp helpers."""

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a `Z` suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 date-time string into an aware datetime.

    Accepts a trailing `Z`. Values without a timezone are treated as UTC.
    Returns None for anything that is not a full date-time string.
    """
    if not isinstance(value, str) or "T" not in value.upper():
        return None

    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_iso_datetime(value: Any) -> bool:
    """Check whether a value is a parsable ISO-8601 date-time string."""
    return parse_datetime(value) is not None
