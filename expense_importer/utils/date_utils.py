"""
Date handling utilities for expense extraction.

This module provides robust date parsing for the date formats seen in bank
transaction notifications and email headers, and the month window used to
scope an import run. Naive dates are interpreted in a configurable timezone.
"""

import calendar
import email.utils
import logging
import re
from datetime import datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

# Spanish month abbreviations mapped to their month number
SPANISH_MONTHS = {
    "ene": 1, "feb": 2, "mar": 3, "abr": 4, "may": 5, "jun": 6,
    "jul": 7, "ago": 8, "set": 9, "sep": 9, "oct": 10, "nov": 11, "dic": 12,
}

_SPANISH_DATE = re.compile(
    r"^(?P<month>[a-zA-Z]{3})[a-zA-Z]*\.?\s+(?P<day>\d{1,2}),?\s+(?P<year>\d{4})"
    r"(?:,?\s+(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?)?"
)
_SLASH_DATE = re.compile(
    r"^(?P<day>\d{1,2})/(?P<month>\d{1,2})/(?P<year>\d{4})"
    r"(?:\s+(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?)?"
)

_FORMATS = [
    "%b %d, %Y, %H:%M",
    "%b %d, %Y %H:%M",
    "%b %d, %Y",
    "%B %d, %Y, %H:%M",
    "%B %d, %Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
]


def _zone(timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone)
    except (KeyError, ValueError):
        logger.warning(f"Unknown timezone '{timezone}', using UTC")
        return ZoneInfo("UTC")


def _localize(parsed: datetime, timezone: str) -> datetime:
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=_zone(timezone))
    return parsed


def _from_groups(match: re.Match, month: int) -> datetime:
    return datetime(
        int(match.group("year")),
        month,
        int(match.group("day")),
        int(match.group("hour") or 0),
        int(match.group("minute") or 0),
        int(match.group("second") or 0),
    )


def parse_email_date(date_str: Optional[str], timezone: str = "UTC") -> Tuple[Optional[datetime], bool]:
    """
    Parse a date string from a notification body or message header.

    Handles:
    - RFC 2822 format (standard email dates)
    - ISO 8601 dates
    - "Oct 15, 2025" and "Oct 15, 2025, 14:30" style dates
    - "15/10/2025 14:30" day-first dates
    - Spanish month abbreviations ("Ago 15, 2025", "dic 3, 2025 09:10")

    Args:
        date_str: Date string to parse
        timezone: IANA zone applied when the string carries no offset

    Returns:
        Tuple of (timezone-aware datetime or None, success flag)
    """
    if not date_str or not date_str.strip():
        return None, False

    text = " ".join(date_str.split())

    # RFC 2822 only when the string looks like one, parsedate_tz is lenient
    if re.search(r"\d{1,2}\s+[A-Za-z]{3}\s+\d{4}\s+\d{1,2}:\d{2}", text):
        email_tuple = email.utils.parsedate_tz(text)
        if email_tuple:
            try:
                if email_tuple[9] is None:
                    return _localize(datetime(*email_tuple[:6]), timezone), True
                return email.utils.parsedate_to_datetime(text), True
            except (TypeError, ValueError, OverflowError):
                pass

    try:
        return _localize(datetime.fromisoformat(text.replace("Z", "+00:00")), timezone), True
    except ValueError:
        pass

    for fmt in _FORMATS:
        try:
            return _localize(datetime.strptime(text, fmt), timezone), True
        except ValueError:
            continue

    match = _SLASH_DATE.match(text)
    if match:
        try:
            return _localize(_from_groups(match, int(match.group("month"))), timezone), True
        except ValueError:
            pass

    match = _SPANISH_DATE.match(text)
    if match:
        month = SPANISH_MONTHS.get(match.group("month").lower())
        if month:
            try:
                return _localize(_from_groups(match, month), timezone), True
            except ValueError:
                pass

    logger.debug(f"Unable to parse date string: {date_str!r}")
    return None, False


def month_window(month: int, year: int) -> Tuple[datetime, datetime]:
    """
    Inclusive datetime range covering a calendar month.

    Args:
        month: 1..12
        year: Four-digit year

    Returns:
        (first day 00:00:00, last day 23:59:59.999999)

    Raises:
        ValueError: If month or year is out of range
    """
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month!r}")
    if isinstance(year, bool) or not isinstance(year, int) or not 1970 <= year <= 9999:
        raise ValueError(f"Year must be between 1970 and 9999, got {year!r}")

    last_day = calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1)
    end = datetime(year, month, last_day) + timedelta(days=1) - timedelta(microseconds=1)
    return start, end


def to_local_naive(value: datetime, timezone: str = "UTC") -> datetime:
    """
    Express ``value`` as a naive datetime in ``timezone``.

    Aware values are converted; naive values are taken to already be local.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(_zone(timezone)).replace(tzinfo=None)
