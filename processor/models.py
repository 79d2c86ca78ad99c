"""Data models for campus events."""
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import FrozenSet, Optional, Tuple, Union

EVENT_TYPES = ('Study Group', 'Social', 'Sports', 'Academic', 'Other')

ALL_TYPES = 'all'


@dataclass
class EventRecord:
    """One scheduled campus event as stored in the events table."""
    event_id: str
    title: str
    description: str
    email: str
    organizer_name: str
    date: str
    start_time: Optional[str]
    end_time: Optional[str]
    location: str
    event_type: Tuple[str, ...]
    max_participants: int
    rsvp_link: str
    password: Optional[str] = None
    current_participants: int = 0
    image_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_public_dict(self) -> dict:
        """Serialize for API responses. The edit password is never returned."""
        data = asdict(self)
        data.pop('password', None)
        data['event_type'] = list(self.event_type)
        return data


@dataclass(frozen=True)
class Coordinates:
    """Latitude/longitude pair recovered from a map-share link."""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class DateRangeSelection:
    """Transient (start, end) selection driven by date clicks."""
    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def state(self) -> str:
        if self.start is None:
            return 'empty'
        if self.end is None:
            return 'partial'
        return 'complete'

    def contains(self, day: date) -> bool:
        if self.start is None or self.end is None:
            return False
        return self.start <= day <= self.end

    def is_start(self, day: date) -> bool:
        return self.start is not None and self.start == day

    def is_end(self, day: date) -> bool:
        return self.end is not None and self.end == day

    def to_dict(self) -> dict:
        return {
            'start': self.start.isoformat() if self.start else None,
            'end': self.end.isoformat() if self.end else None,
        }


@dataclass(frozen=True)
class FilterConfig:
    """
    Display filters applied to the fetched event list.

    type_selection is either ALL_TYPES or an explicit set of tags. An empty
    explicit set shows nothing.
    """
    type_selection: Union[str, FrozenSet[str]] = ALL_TYPES
    search_term: str = ''
    selected_date: Optional[date] = None

    def __post_init__(self):
        # A single tag string becomes a one-tag set, never a substring match
        selection = self.type_selection
        if selection == ALL_TYPES:
            return
        if isinstance(selection, str):
            selection = frozenset([selection])
        object.__setattr__(self, 'type_selection', frozenset(selection))


class MarkerCategory(Enum):
    """Temporal status of an event relative to now, used for marker styling."""
    ONGOING = 'ongoing'
    PAST = 'past'
    FUTURE = 'future'
    TODAY_UPCOMING = 'today-upcoming'


@dataclass(frozen=True)
class CropBox:
    """Crop rectangle in source image pixels."""
    x: int
    y: int
    width: int
    height: int


@dataclass
class ImageUpload:
    """Image attached to an event submission."""
    filename: str
    data: bytes
    content_type: str = 'image/jpeg'
    crop: Optional[CropBox] = None


@dataclass
class SubmissionResult:
    """Outcome of a create or update submission."""
    event_id: str
    created: bool
    image_url: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    warnings: list = field(default_factory=list)
