"""Display formatting helpers for event cards and calendar links."""
import logging
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_URL = 'https://www.google.com/calendar/event'


def format_time(value: Optional[str]) -> str:
    """
    Format a 24-hour HH:MM time as a compact 12-hour string.

    Args:
        value: Time such as "13:05", or None

    Returns:
        "1:05pm", or an empty string when value is empty or unparseable
    """
    if not value:
        return ''
    try:
        hours, minutes = value.strip().split(':')[:2]
        hour = int(hours)
        if not (0 <= hour < 24 and len(minutes) == 2 and 0 <= int(minutes) < 60):
            raise ValueError(f"out of range: {value}")
    except ValueError as e:
        logger.warning(f"Cannot format time '{value}': {e}")
        return ''
    suffix = 'pm' if hour >= 12 else 'am'
    hour12 = hour % 12 or 12
    return f"{hour12}:{minutes}{suffix}"


def format_month_day_year(value: Optional[str]) -> str:
    """Format an ISO date as "May 1, 2024"."""
    if not value:
        return ''
    day = datetime.strptime(value, '%Y-%m-%d')
    return f"{day:%b} {day.day}, {day.year}"


def google_calendar_url(title: str, description: str, date: Optional[str],
                        start_time: Optional[str], end_time: Optional[str],
                        location: str) -> str:
    """
    Build an "add to Google Calendar" link for an event.

    Returns "#" when the date or either time is missing.
    """
    if not date or not start_time or not end_time:
        return '#'

    compact_date = date.replace('-', '')
    start = f"{compact_date}T{start_time.replace(':', '')[:4]}00"
    end = f"{compact_date}T{end_time.replace(':', '')[:4]}00"

    params = urlencode({
        'action': 'TEMPLATE',
        'text': title,
        'details': description,
        'location': location,
        'dates': f"{start}/{end}",
    })
    return f"{GOOGLE_CALENDAR_URL}?{params}"
