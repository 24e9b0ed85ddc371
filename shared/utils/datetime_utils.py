"""
Datetime utility functions.
"""

import re
from datetime import UTC, datetime

# RFC 3339 timestamps from the backend may carry nanosecond precision
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def get_utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.

    Returns:
        Current UTC datetime
    """
    return datetime.now(UTC)


def parse_datetime(dt_str: str, fmt: str | None = None) -> datetime:
    """
    Parse datetime from string.

    Args:
        dt_str: Datetime string
        fmt: Format string (if None, uses ISO format)

    Returns:
        Parsed datetime

    Raises:
        ValueError: If parsing fails
    """
    if fmt:
        return datetime.strptime(dt_str, fmt)

    normalized = _FRACTION_RE.sub(r"\1", dt_str.strip())
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1] + "+00:00"

    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        for common_fmt in [
            "%Y-%m-%d %H:%M:%S",
            "%Y-%m-%d",
            "%Y/%m/%d %H:%M:%S",
            "%Y/%m/%d",
        ]:
            try:
                return datetime.strptime(normalized, common_fmt)
            except ValueError:
                continue

        raise ValueError(f"Unable to parse datetime: {dt_str}") from None


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure datetime has UTC timezone.

    Args:
        dt: Datetime to convert

    Returns:
        Datetime with UTC timezone
    """
    if dt.tzinfo is None:
        # Naive datetime, assume UTC
        return dt.replace(tzinfo=UTC)
    elif dt.tzinfo != UTC:
        return dt.astimezone(UTC)
    return dt


def parse_utc(value: str | datetime) -> datetime:
    """
    Parse a timestamp into an aware UTC datetime.

    Args:
        value: ISO/RFC 3339 string or datetime

    Returns:
        UTC datetime
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(parse_datetime(value))
