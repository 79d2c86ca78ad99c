"""Date window and date range selection for the calendar strip."""
import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Union

from processor.models import DateRangeSelection

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]


def _as_day(value: DateLike) -> date:
    """Truncate a datetime to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def date_range(anchor: DateLike, count: int,
               today: Optional[DateLike] = None) -> List[date]:
    """
    Produce count consecutive calendar days starting at anchor.

    The window never starts before today: an earlier anchor is clamped.

    Args:
        anchor: First day requested
        count: Number of days to produce (>= 0)
        today: Current local date, defaults to date.today()

    Returns:
        List of consecutive dates, exactly count long
    """
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")

    today_day = _as_day(today) if today is not None else date.today()
    start = max(_as_day(anchor), today_day)

    return [start + timedelta(days=offset) for offset in range(count)]


def shift_window(anchor: DateLike, days: int,
                 today: Optional[DateLike] = None) -> date:
    """Move the strip anchor by days, never before today."""
    today_day = _as_day(today) if today is not None else date.today()
    return max(_as_day(anchor) + timedelta(days=days), today_day)


def dates_for_month(month_anchor: DateLike,
                    today: Optional[DateLike] = None) -> List[date]:
    """
    List the selectable days of the month containing month_anchor.

    For the current month only today and later are returned, a future month
    yields every day and a past month yields nothing.
    """
    today_day = _as_day(today) if today is not None else date.today()
    anchor = _as_day(month_anchor)
    days_in_month = calendar.monthrange(anchor.year, anchor.month)[1]

    if (anchor.year, anchor.month) == (today_day.year, today_day.month):
        first = today_day.day
    elif (anchor.year, anchor.month) > (today_day.year, today_day.month):
        first = 1
    else:
        return []

    return [
        date(anchor.year, anchor.month, day)
        for day in range(first, days_in_month + 1)
    ]


@dataclass
class VisibleDates:
    """Page of the date strip that fits the viewport."""
    dates: List[date]
    items_per_page: int
    max_scroll_index: int
    safe_scroll_index: int


def items_per_page(window_width: int) -> int:
    if window_width >= 640:
        return 6
    if window_width >= 360:
        return 3
    return 2


def visible_dates(dates: List[date], window_width: int,
                  scroll_index: int) -> VisibleDates:
    """
    Slice the date strip for the given viewport width and scroll position.

    Args:
        dates: Full list of selectable dates
        window_width: Viewport width in pixels
        scroll_index: Requested first index, clamped into range

    Returns:
        VisibleDates page
    """
    per_page = items_per_page(window_width)
    max_scroll_index = max(0, len(dates) - per_page)
    safe_scroll_index = min(max(scroll_index, 0), max_scroll_index)

    return VisibleDates(
        dates=dates[safe_scroll_index:safe_scroll_index + per_page],
        items_per_page=per_page,
        max_scroll_index=max_scroll_index,
        safe_scroll_index=safe_scroll_index
    )


class RangeSelector:
    """
    Two-click state machine turning date clicks into a (start, end) range.

    Empty -> PartialStart on the first click. A second click on or after the
    start completes the range, an earlier one restarts from that day. Any
    click after a completed range starts a new selection.
    """

    def __init__(
        self,
        on_change: Optional[Callable[[DateRangeSelection], None]] = None,
        selection: Optional[DateRangeSelection] = None
    ):
        self.on_change = on_change
        self.selection = selection or DateRangeSelection()

    def click(self, day: DateLike) -> DateRangeSelection:
        """
        Apply one date click.

        Args:
            day: Clicked calendar day

        Returns:
            The new selection
        """
        clicked = _as_day(day)
        current = self.selection

        if current.start is None or current.end is not None:
            selection = DateRangeSelection(start=clicked)
        elif clicked >= current.start:
            selection = DateRangeSelection(start=current.start, end=clicked)
        else:
            selection = DateRangeSelection(start=clicked)

        return self._replace(selection)

    def reset(self) -> DateRangeSelection:
        return self._replace(DateRangeSelection())

    def _replace(self, selection: DateRangeSelection) -> DateRangeSelection:
        logger.debug(
            f"Range selection {self.selection.state} -> {selection.state}"
        )
        self.selection = selection
        if self.on_change is not None:
            self.on_change(selection)
        return selection
