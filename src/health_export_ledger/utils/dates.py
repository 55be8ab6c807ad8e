"""
Date key utilities.

Canonical merge and storage keys are zero-padded ISO calendar dates
(YYYY-MM-DD). Dates crossing the external boundary use MM/DD/YYYY.
"""

import logging
import re
from datetime import date, datetime, timedelta

import pytz
from dateutil import parser

from health_export_ledger.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

DATE_KEY_FORMAT = "%Y-%m-%d"
EXTERNAL_FORMAT = "%m/%d/%Y"

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EXTERNAL_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")


def normalize(raw: str) -> str:
    """
    Normalize a raw date string to a canonical date key.

    Any textual form dateutil understands is accepted; month-first is assumed
    for ambiguous numeric dates. Time and zone parts are dropped, keeping the
    calendar date as written.

    Args:
        raw: Raw date string from a source file.

    Returns:
        ISO date key, or the original string when it cannot be parsed.
    """
    value = raw.strip()
    if not value:
        return raw

    if is_date_key(value):
        return value

    try:
        parsed = parser.parse(value)
    except (ValueError, OverflowError) as e:
        logger.warning(f"Unparseable date {raw!r}, keeping raw value as key: {e}")
        return raw

    return parsed.date().strftime(DATE_KEY_FORMAT)


def is_date_key(value: str) -> bool:
    """Check whether a value is a valid canonical date key."""
    if not _DATE_KEY_RE.match(value):
        return False
    try:
        datetime.strptime(value, DATE_KEY_FORMAT)
    except ValueError:
        return False
    return True


def denormalize(date_key: str) -> str:
    """
    Convert a canonical date key to the external MM/DD/YYYY form.

    Non-canonical keys (left behind by a failed normalization) are
    returned unchanged.
    """
    if not is_date_key(date_key):
        return date_key
    return datetime.strptime(date_key, DATE_KEY_FORMAT).strftime(EXTERNAL_FORMAT)


def today_in(timezone_str: str) -> date:
    """
    Get the current calendar date in a timezone.

    Args:
        timezone_str: IANA timezone name (e.g., "America/New_York").

    Returns:
        Today's date in that timezone.
    """
    try:
        tz = pytz.timezone(timezone_str)
    except pytz.UnknownTimeZoneError as e:
        raise ValidationError(f"Unknown timezone: {timezone_str}") from e
    return datetime.now(tz).date()


def parse_external_date(value: str, timezone_str: str = "UTC") -> str:
    """
    Validate an external date argument and convert it to a date key.

    Args:
        value: MM/DD/YYYY date, or "today" / "yesterday".
        timezone_str: Timezone used to resolve relative dates.

    Returns:
        Canonical date key.

    Raises:
        ValidationError: If the value is not a valid external date.
    """
    if not isinstance(value, str):
        raise ValidationError(f"Date must be a string in MM/DD/YYYY format, got {value!r}")

    text = value.strip().lower()
    if text == "today":
        return today_in(timezone_str).strftime(DATE_KEY_FORMAT)
    if text == "yesterday":
        return (today_in(timezone_str) - timedelta(days=1)).strftime(DATE_KEY_FORMAT)

    if not _EXTERNAL_RE.match(text):
        raise ValidationError(f"Date must be in MM/DD/YYYY format, got {value!r}")

    try:
        parsed = datetime.strptime(text, EXTERNAL_FORMAT)
    except ValueError as e:
        raise ValidationError(f"Invalid calendar date: {value!r}") from e

    return parsed.strftime(DATE_KEY_FORMAT)
