"""
Helper utility functions.
"""

import re
from datetime import datetime
from typing import Optional

import pytz

EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")


def format_duration(minutes: int) -> str:
    """
    Format duration in human-readable format.

    Args:
        minutes: Duration in minutes

    Returns:
        Formatted string (e.g., "1h 30m", "45m")
    """
    if minutes < 60:
        return f"{minutes}m"

    hours = minutes // 60
    mins = minutes % 60

    if mins == 0:
        return f"{hours}h"

    return f"{hours}h {mins}m"


def parse_time(time_str: str, default_tz=pytz.utc) -> Optional[datetime]:
    """
    Parse a provider timestamp into an aware datetime.

    Accepts ISO 8601 with or without offset, a trailing 'Z', and the 7-digit
    fractions Microsoft Graph emits. Naive values are localized to default_tz.

    Args:
        time_str: Time string
        default_tz: pytz timezone for values without an offset

    Returns:
        datetime object or None if parsing fails
    """
    if not time_str:
        return None

    value = time_str.strip().replace("Z", "+00:00")
    # Trim fractional seconds to microseconds
    value = re.sub(r"(\.\d{6})\d+", r"\1", value)

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = default_tz.localize(parsed)
    return parsed


def extract_number(text: str, default: int, maximum: Optional[int] = None) -> int:
    """
    First standalone integer in text (e.g. "read 5 emails" -> 5).

    Args:
        text: Text to search
        default: Returned when no positive number is present
        maximum: Upper bound for the result
    """
    match = re.search(r"\b(\d+)\b", text)
    number = int(match.group(1)) if match else default
    if number <= 0:
        number = default
    if maximum is not None:
        number = min(number, maximum)
    return number


def extract_email_address(text: str) -> Optional[str]:
    match = EMAIL_PATTERN.search(text)
    return match.group(0) if match else None


def truncate_text(text: str, max_length: int = 100) -> str:
    """
    Truncate text with ellipsis.

    Args:
        text: Text to truncate
        max_length: Maximum length

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text

    return text[:max_length-3] + "..."
