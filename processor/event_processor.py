"""Event submission: validation, image upload, coordinates and persistence."""
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from locations.map_links import MapLinkResolver, extract_coordinates
from processor.errors import (
    EventNotFoundError,
    ExternalCallError,
    PermissionDeniedError,
    ValidationError,
    friendly_error_message,
)
from processor.event_filter import normalize_event_types
from processor.images import build_image_name, prepare_image
from processor.models import (
    EVENT_TYPES,
    Coordinates,
    EventRecord,
    ImageUpload,
    SubmissionResult,
)

logger = logging.getLogger(__name__)

# Form field names used by the web client
FIELD_ALIASES = {
    'organizerName': 'organizer_name',
    'startTime': 'start_time',
    'endTime': 'end_time',
    'maxParticipants': 'max_participants',
    'rsvpLink': 'rsvp_link',
    'eventType': 'event_type',
}

FORM_FIELDS = (
    'title', 'description', 'email', 'organizer_name', 'date', 'start_time',
    'end_time', 'location', 'event_type', 'max_participants', 'rsvp_link',
    'password',
)

NO_COORDINATES_WARNING = 'Could not extract coordinates from location URL'


class EventProcessor:
    """Validates event submissions and writes them to the event store."""

    MAX_TITLE_LENGTH = 60
    MAX_DESCRIPTION_LENGTH = 250
    MIN_PASSWORD_LENGTH = 6
    EMAIL_SUFFIX = '.edu'

    def __init__(self, store, image_storage=None,
                 link_resolver: Optional[MapLinkResolver] = None,
                 clock: Optional[Callable[[], float]] = None):
        """
        Initialize the processor.

        Args:
            store: EventStore used for reads and writes
            image_storage: ImageStorage for uploads, None disables images
            link_resolver: Optional resolver for shortened map links
            clock: Returns epoch seconds, defaults to time.time
        """
        self.store = store
        self.image_storage = image_storage
        self.link_resolver = link_resolver
        self.clock = clock or time.time

    def create_event(self, form: Dict[str, Any],
                     image: Optional[ImageUpload] = None) -> SubmissionResult:
        """
        Validate and insert a new event.

        Args:
            form: Submitted form fields
            image: Optional attached image

        Returns:
            SubmissionResult for the inserted event

        Raises:
            ValidationError: If any field is invalid
            ExternalCallError: If the upload or insert fails
        """
        cleaned = self.validate_form(form)
        warnings = []

        image_url = self._upload_image(image) if image else None

        coordinates = self._resolve_coordinates(cleaned['location'])
        if coordinates is None:
            warnings.append(NO_COORDINATES_WARNING)

        record = EventRecord(
            event_id='',
            title=cleaned['title'],
            description=cleaned['description'],
            email=cleaned['email'],
            organizer_name=cleaned['organizer_name'],
            date=cleaned['date'],
            start_time=cleaned['start_time'],
            end_time=cleaned['end_time'],
            location=cleaned['location'],
            event_type=cleaned['event_type'],
            max_participants=cleaned['max_participants'],
            current_participants=0,
            rsvp_link=cleaned['rsvp_link'],
            password=cleaned['password'],
            image_url=image_url,
            latitude=coordinates.latitude if coordinates else None,
            longitude=coordinates.longitude if coordinates else None
        )

        try:
            stored = self.store.insert_event(record)
        except (ClientError, BotoCoreError) as e:
            # An image uploaded above stays in the bucket
            logger.error(f"Failed to insert event '{record.title}': {e}", exc_info=True)
            raise ExternalCallError(friendly_error_message(e), e) from e

        logger.info(
            f"Created event {stored.event_id}",
            extra={'event_id': stored.event_id, 'has_image': bool(image_url)}
        )
        return SubmissionResult(
            event_id=stored.event_id,
            created=True,
            image_url=image_url,
            coordinates=coordinates,
            warnings=warnings
        )

    def update_event(self, event_id: str, form: Dict[str, Any], password: str,
                     image: Optional[ImageUpload] = None) -> SubmissionResult:
        """
        Merge the submitted fields into an existing event.

        The stored edit password must match before anything is written. The
        image URL is replaced only when a new image is attached.

        Raises:
            EventNotFoundError: If the event does not exist
            PermissionDeniedError: If the password does not match
            ValidationError: If a submitted field is invalid
            ExternalCallError: If the upload or update fails
        """
        if not self.verify_password(event_id, password):
            logger.warning(f"Rejected update of event {event_id}: incorrect password")
            raise PermissionDeniedError('Incorrect password')

        changes = self.validate_form(form, partial=True)
        warnings = []
        coordinates = None

        if image:
            changes['image_url'] = self._upload_image(image)

        if 'location' in changes:
            coordinates = self._resolve_coordinates(changes['location'])
            if coordinates is None:
                warnings.append(NO_COORDINATES_WARNING)
            changes['latitude'] = coordinates.latitude if coordinates else None
            changes['longitude'] = coordinates.longitude if coordinates else None

        if 'event_type' in changes:
            changes['event_type'] = list(changes['event_type'])

        try:
            self.store.update_event(event_id, changes)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to update event {event_id}: {e}", exc_info=True)
            raise ExternalCallError(friendly_error_message(e), e) from e

        return SubmissionResult(
            event_id=event_id,
            created=False,
            image_url=changes.get('image_url'),
            coordinates=coordinates,
            warnings=warnings
        )

    def verify_password(self, event_id: str, password: Optional[str]) -> bool:
        """
        Check an edit password against the stored one.

        Raises:
            EventNotFoundError: If the event does not exist
            ExternalCallError: If the lookup fails
        """
        try:
            stored = self.store.get_password(event_id)
        except KeyError:
            raise EventNotFoundError(f"Event not found: {event_id}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to fetch event {event_id}: {e}")
            raise ExternalCallError('Failed to fetch event', e) from e

        return stored is not None and password == stored

    def validate_form(self, form: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        """
        Validate and normalize submitted form fields.

        Every invalid field is reported, not just the first one.

        Args:
            form: Raw form values, web client field names accepted
            partial: Only validate the fields that are present (updates)

        Returns:
            Dictionary of cleaned values keyed by record field name

        Raises:
            ValidationError: With a message per invalid field
        """
        data = self._canonical_fields(form)
        cleaned = {}
        errors = {}

        for name in FORM_FIELDS:
            if partial and name not in data:
                continue
            validator = getattr(self, f"_clean_{name}")
            try:
                cleaned[name] = validator(data.get(name))
            except ValueError as e:
                errors[name] = str(e)

        if errors:
            logger.info(f"Form validation failed: {', '.join(errors)}")
            raise ValidationError(errors)

        return cleaned

    @staticmethod
    def _canonical_fields(form: Dict[str, Any]) -> Dict[str, Any]:
        data = {}
        for key, value in (form or {}).items():
            data[FIELD_ALIASES.get(key, key)] = value
        return data

    @staticmethod
    def _text(value: Any) -> str:
        if value is None:
            return ''
        return str(value).strip()

    def _clean_title(self, value: Any) -> str:
        title = self._text(value)
        if not title:
            raise ValueError('Title is required')
        if len(title) > self.MAX_TITLE_LENGTH:
            raise ValueError('Title must be less than 60 characters')
        return title

    def _clean_description(self, value: Any) -> str:
        description = self._text(value)
        if not description:
            raise ValueError('Description is required')
        if len(description) > self.MAX_DESCRIPTION_LENGTH:
            raise ValueError('Description must be less than 250 characters')
        return description

    def _clean_email(self, value: Any) -> str:
        email = self._text(value)
        if not email:
            raise ValueError('Email is required')
        if not email.endswith(self.EMAIL_SUFFIX):
            raise ValueError('Only .edu email addresses are allowed')
        return email

    def _clean_organizer_name(self, value: Any) -> str:
        name = self._text(value)
        if not name:
            raise ValueError('Organizer name is required')
        return name

    def _clean_date(self, value: Any) -> str:
        text = self._text(value)
        if not text:
            raise ValueError('Date is required')
        normalized = self._normalize_date(text)
        if not normalized:
            raise ValueError('Date must be YYYY-MM-DD')
        return normalized

    def _clean_start_time(self, value: Any) -> str:
        return self._clean_time(value, 'Start time required')

    def _clean_end_time(self, value: Any) -> str:
        return self._clean_time(value, 'End time required')

    def _clean_time(self, value: Any, missing_message: str) -> str:
        text = self._text(value)
        if not text:
            raise ValueError(missing_message)
        normalized = self._normalize_time(text)
        if not normalized:
            raise ValueError(f"Invalid time: {text}")
        return normalized

    def _clean_location(self, value: Any) -> str:
        location = self._text(value)
        if not location:
            raise ValueError('Location URL is required')
        return location

    def _clean_rsvp_link(self, value: Any) -> str:
        link = self._text(value)
        if not link:
            raise ValueError('RSVP link is required')
        return link

    def _clean_event_type(self, value: Any) -> tuple:
        tags = normalize_event_types(value)
        if not tags:
            raise ValueError('Please select at least one event type')
        unknown = [tag for tag in tags if tag not in EVENT_TYPES]
        if unknown:
            raise ValueError(f"Unknown event type: {unknown[0]}")
        return tags

    def _clean_max_participants(self, value: Any) -> int:
        message = 'Max participants must be a positive number'
        if isinstance(value, bool):
            raise ValueError(message)
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        try:
            number = int(self._text(value))
        except ValueError:
            raise ValueError(message)
        if number <= 0:
            raise ValueError(message)
        return number

    def _clean_password(self, value: Any) -> str:
        password = '' if value is None else str(value)
        if not password:
            raise ValueError('Password is required')
        if len(password) < self.MIN_PASSWORD_LENGTH:
            raise ValueError('Password must be at least 6 characters')
        return password

    def _normalize_date(self, date_str: str) -> Optional[str]:
        """
        Normalize date to ISO 8601 format (YYYY-MM-DD).

        Args:
            date_str: Date string in various formats

        Returns:
            ISO 8601 formatted date string or None if parsing fails
        """
        date_formats = [
            '%Y-%m-%d',      # ISO 8601, what the date input sends
            '%m/%d/%Y',      # US format
            '%Y/%m/%d',
        ]

        for fmt in date_formats:
            try:
                return datetime.strptime(date_str, fmt).strftime('%Y-%m-%d')
            except ValueError:
                continue

        return None

    def _normalize_time(self, time_str: str) -> Optional[str]:
        """
        Normalize time to 24-hour format (HH:MM).

        Args:
            time_str: Time string in various formats

        Returns:
            24-hour formatted time string or None if parsing fails
        """
        time_formats = [
            '%H:%M',         # 24-hour format
            '%H:%M:%S',      # 24-hour with seconds
            '%I:%M %p',      # 12-hour format with AM/PM
            '%I:%M%p',       # 12-hour format without space
        ]

        for fmt in time_formats:
            try:
                return datetime.strptime(time_str, fmt).strftime('%H:%M')
            except ValueError:
                continue

        return None

    def _resolve_coordinates(self, location: str) -> Optional[Coordinates]:
        coordinates = extract_coordinates(location)
        if coordinates is None and self.link_resolver is not None:
            coordinates = self.link_resolver.resolve(location)
        if coordinates is None:
            logger.warning(f"{NO_COORDINATES_WARNING}: {location}")
        return coordinates

    def _upload_image(self, image: ImageUpload) -> str:
        """
        Prepare and upload an attached image.

        Returns:
            Public URL of the uploaded image
        """
        if self.image_storage is None:
            raise ExternalCallError('Image uploads are not configured')

        try:
            prepared = prepare_image(image)
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable image '{image.filename}': {e}")
            raise ValidationError({'image': 'Could not read the image file'}) from e

        name = build_image_name(prepared.filename, int(self.clock() * 1000))

        try:
            return self.image_storage.upload(name, prepared.data, prepared.content_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Upload of image {name} failed: {e}", exc_info=True)
            raise ExternalCallError(friendly_error_message(e), e) from e
