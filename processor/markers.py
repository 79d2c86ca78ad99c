"""Marker classification for the campus map."""
import logging
from datetime import date, datetime, time
from typing import List, Optional

from processor.formatting import format_time
from processor.models import EventRecord, MarkerCategory

logger = logging.getLogger(__name__)

DEFAULT_START = time(0, 0)
DEFAULT_END = time(23, 59)


def _parse_clock(value: Optional[str], default: time) -> time:
    """Parse HH:MM (seconds ignored), falling back to default."""
    if not value:
        return default
    try:
        parts = value.strip().split(':')
        return time(int(parts[0]), int(parts[1]))
    except (ValueError, IndexError):
        logger.warning(f"Unparseable event time '{value}', using {default:%H:%M}")
        return default


def classify_marker(event_date: date, start_time: Optional[str],
                    end_time: Optional[str], now: datetime) -> MarkerCategory:
    """
    Classify an event relative to now for marker styling.

    First match wins: ongoing, past, future (a later calendar day), then
    today-upcoming, which is also the fallback.

    Args:
        event_date: Calendar day of the event
        start_time: HH:MM or None (defaults to 00:00)
        end_time: HH:MM or None (defaults to 23:59)
        now: Current local wall-clock time

    Returns:
        MarkerCategory
    """
    start = datetime.combine(event_date, _parse_clock(start_time, DEFAULT_START))
    end = datetime.combine(event_date, _parse_clock(end_time, DEFAULT_END))

    if start <= now <= end:
        return MarkerCategory.ONGOING
    if end < now:
        return MarkerCategory.PAST
    if event_date > now.date():
        return MarkerCategory.FUTURE
    return MarkerCategory.TODAY_UPCOMING


def classify_event(event: EventRecord, now: datetime) -> MarkerCategory:
    event_date = datetime.strptime(event.date, '%Y-%m-%d').date()
    return classify_marker(event_date, event.start_time, event.end_time, now)


def build_markers(events: List[EventRecord], now: datetime,
                  selected_event_id: Optional[str] = None) -> List[dict]:
    """
    Build the per-event marker payloads consumed by the map widget.

    Events without coordinates have no marker and are skipped.

    Args:
        events: Events to place on the map
        now: Current local wall-clock time
        selected_event_id: Event highlighted in the list, if any

    Returns:
        List of marker dictionaries
    """
    markers = []

    for event in events:
        if not event.has_coordinates:
            continue
        try:
            category = classify_event(event, now)
        except ValueError:
            logger.warning(
                f"Skipping marker for event '{event.event_id}': bad date {event.date}"
            )
            continue

        times = [format_time(event.start_time), format_time(event.end_time)]
        time_range = ' - '.join(text for text in times if text)

        markers.append({
            'event_id': event.event_id,
            'latitude': event.latitude,
            'longitude': event.longitude,
            'category': category.value,
            'selected': event.event_id == selected_event_id,
            'popup': {
                'title': event.title,
                'time_range': time_range,
            }
        })

    logger.info(f"Built {len(markers)} markers from {len(events)} events")
    return markers
