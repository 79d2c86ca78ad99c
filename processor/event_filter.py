"""Client-facing filtering of the fetched event list."""
import logging
from dataclasses import replace
from datetime import date
from typing import Iterable, List, Optional, Tuple, Union

from processor.models import (
    ALL_TYPES,
    EVENT_TYPES,
    DateRangeSelection,
    EventRecord,
    FilterConfig,
)

logger = logging.getLogger(__name__)

ALL_TOGGLE = 'All'


def normalize_event_types(value: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    """
    Normalize a stored event_type into an ordered tuple of unique tags.

    Args:
        value: A single tag, an iterable of tags, or None

    Returns:
        Tuple of tags, first occurrence order kept
    """
    if value is None:
        return ()
    if isinstance(value, str):
        candidates = [value]
    else:
        candidates = list(value)

    tags = []
    for tag in candidates:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tuple(tags)


def _type_matches(event: EventRecord, type_selection) -> bool:
    if type_selection == ALL_TYPES:
        return True
    if not type_selection:
        return False
    return any(tag in type_selection for tag in event.event_type)


def _search_matches(event: EventRecord, term: str) -> bool:
    if not term:
        return True
    return any(
        term in (text or '').lower()
        for text in (event.title, event.description, event.location)
    )


def _date_matches(event: EventRecord, selected_date: Optional[date]) -> bool:
    if selected_date is None:
        return True
    return event.date == selected_date.isoformat()


def filter_events(events: List[EventRecord], config: FilterConfig) -> List[EventRecord]:
    """
    Narrow the event list by type, search term and selected date.

    The input list is not modified and its order is preserved.

    Args:
        events: Events as fetched, already ordered
        config: Active filters

    Returns:
        New list with the matching events
    """
    term = (config.search_term or '').strip().lower()

    filtered = [
        event for event in events
        if _type_matches(event, config.type_selection)
        and _search_matches(event, term)
        and _date_matches(event, config.selected_date)
    ]

    logger.debug(f"Filtered {len(events)} events down to {len(filtered)}")
    return filtered


def filter_events_in_range(events: List[EventRecord],
                           selection: DateRangeSelection) -> List[EventRecord]:
    """
    Keep events inside a date range selection (inclusive).

    A partial selection matches its start day only, an empty one matches
    everything.
    """
    if selection.start is None:
        return list(events)

    start = selection.start.isoformat()
    end = (selection.end or selection.start).isoformat()
    return [event for event in events if start <= event.date <= end]


def toggle_type(config: FilterConfig, tag: str) -> FilterConfig:
    """
    Toggle one entry of the type filter popover.

    Toggling "All" flips between showing everything and an explicit empty
    selection. Selecting every tag individually collapses back to "all".

    Args:
        config: Current filter configuration
        tag: An entry of EVENT_TYPES or "All"

    Returns:
        New FilterConfig
    """
    if tag == ALL_TOGGLE:
        if config.type_selection == ALL_TYPES:
            return replace(config, type_selection=frozenset())
        return replace(config, type_selection=ALL_TYPES)

    if tag not in EVENT_TYPES:
        raise ValueError(f"Unknown event type: {tag}")

    if config.type_selection == ALL_TYPES:
        selected = set(EVENT_TYPES)
    else:
        selected = set(config.type_selection)

    if tag in selected:
        selected.discard(tag)
    else:
        selected.add(tag)

    if selected == set(EVENT_TYPES):
        return replace(config, type_selection=ALL_TYPES)
    return replace(config, type_selection=frozenset(selected))
