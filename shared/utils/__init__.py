"""
Common utility functions.
"""

from shared.utils.datetime_utils import ensure_utc, get_utc_now, parse_datetime, parse_utc

__all__ = [
    "get_utc_now",
    "parse_datetime",
    "ensure_utc",
    "parse_utc",
]
