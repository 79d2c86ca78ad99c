"""AWS Lambda handler for the campus events API."""
import base64
import binascii
import json
import logging
import re
import time
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from botocore.exceptions import BotoCoreError, ClientError

from config import AppConfig
from locations.map_links import MapLinkResolver
from processor.date_window import date_range, dates_for_month
from processor.errors import (
    EventNotFoundError,
    ExternalCallError,
    PermissionDeniedError,
    ValidationError,
    friendly_error_message,
)
from processor.event_filter import filter_events, filter_events_in_range
from processor.event_processor import EventProcessor
from processor.formatting import google_calendar_url
from processor.markers import build_markers
from processor.models import (
    ALL_TYPES,
    CropBox,
    DateRangeSelection,
    EventRecord,
    FilterConfig,
    ImageUpload,
)
from storage.dynamodb_manager import ORDER_FIELDS, EventStore
from storage.image_storage import ImageStorage

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_LOG_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {
    'message', 'asctime'
}

EVENT_PATH = re.compile(r'^/events/(?P<event_id>[^/]+)$')
VERIFY_PATH = re.compile(r'^/events/(?P<event_id>[^/]+)/verify$')

DEFAULT_DATE_COUNT = 7
MAX_DATE_COUNT = 90

CORS_HEADERS = {
    'Content-Type': 'application/json',
    'Access-Control-Allow-Origin': '*',
}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


logger = logging.getLogger(__name__)


class BadRequest(Exception):
    """Malformed request outside of form validation (bad JSON, bad query)."""


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': dict(CORS_HEADERS),
        'body': json.dumps(body, default=str)
    }


def _local_now(config: AppConfig) -> datetime:
    """Campus wall-clock time as a naive datetime."""
    return datetime.now(ZoneInfo(config.timezone)).replace(tzinfo=None)


def _parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get('body') or '{}'
    try:
        if event.get('isBase64Encoded'):
            body = base64.b64decode(body).decode('utf-8')
        data = json.loads(body)
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise BadRequest(f"Request body is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise BadRequest('Request body must be a JSON object')
    return data


def _parse_date(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise BadRequest(f"{name} must be YYYY-MM-DD")


def _parse_type_selection(params: Dict[str, str]):
    if 'types' not in params:
        return ALL_TYPES
    raw = params['types'] or ''
    if raw.strip().lower() == ALL_TYPES:
        return ALL_TYPES
    return frozenset(tag.strip() for tag in raw.split(',') if tag.strip())


def _parse_image(data: Optional[Dict[str, Any]]) -> Optional[ImageUpload]:
    """Build an ImageUpload from the JSON image field of a submission."""
    if not data:
        return None
    if not isinstance(data, dict):
        raise ValidationError({'image': 'Image must be an object with filename and data'})

    try:
        payload = base64.b64decode(data.get('data') or '', validate=True)
    except (binascii.Error, TypeError, ValueError):
        raise ValidationError({'image': 'Image data is not valid base64'})
    if not payload:
        raise ValidationError({'image': 'Image data is empty'})

    crop = None
    if data.get('crop'):
        try:
            crop = CropBox(
                x=int(data['crop']['x']),
                y=int(data['crop']['y']),
                width=int(data['crop']['width']),
                height=int(data['crop']['height'])
            )
        except (KeyError, TypeError, ValueError):
            raise ValidationError({'image': 'Crop must have x, y, width and height'})

    return ImageUpload(
        filename=data.get('filename') or 'image.jpg',
        data=payload,
        content_type=data.get('content_type') or 'image/jpeg',
        crop=crop
    )


def _event_to_dict(event: EventRecord) -> Dict[str, Any]:
    data = event.to_public_dict()
    data['calendar_url'] = google_calendar_url(
        title=event.title,
        description=event.description,
        date=event.date,
        start_time=event.start_time,
        end_time=event.end_time,
        location=event.location
    )
    return data


def _route(event: Dict[str, Any]) -> Tuple[str, str]:
    method = event.get('httpMethod') or (
        event.get('requestContext', {}).get('http', {}).get('method', 'GET')
    )
    path = event.get('path') or event.get('rawPath') or '/'
    return method.upper(), path.rstrip('/') or '/'


def list_events(store: EventStore, params: Dict[str, str]) -> Dict[str, Any]:
    """
    Fetch the canonical event list and narrow it with the request filters.

    Query parameters: date, types, search, start, end, order_by.
    """
    selected_date = _parse_date(params.get('date'), 'date')
    start = _parse_date(params.get('start'), 'start')
    end = _parse_date(params.get('end'), 'end')
    if end and not start:
        raise BadRequest('end requires start')
    if start and end and end < start:
        raise BadRequest('end must not be earlier than start')

    if selected_date:
        events = store.list_events_by_date(selected_date)
    else:
        order_by = params.get('order_by', 'date')
        if order_by not in ORDER_FIELDS:
            raise BadRequest(f"order_by must be one of {', '.join(ORDER_FIELDS)}")
        events = store.list_events(order_by=order_by)

    config = FilterConfig(
        type_selection=_parse_type_selection(params),
        search_term=params.get('search', ''),
        selected_date=selected_date
    )
    filtered = filter_events(events, config)
    if start:
        filtered = filter_events_in_range(filtered, DateRangeSelection(start=start, end=end))

    return {
        'events': [_event_to_dict(item) for item in filtered],
        'count': len(filtered)
    }


def list_markers(store: EventStore, params: Dict[str, str],
                 config: AppConfig) -> Dict[str, Any]:
    """Marker payloads for the map, optionally for one day."""
    selected_date = _parse_date(params.get('date'), 'date')
    if params.get('now'):
        try:
            now = datetime.fromisoformat(params['now'])
        except ValueError:
            raise BadRequest('now must be an ISO 8601 datetime')
        if now.tzinfo is not None:
            # Markers compare against naive campus wall-clock times
            now = now.astimezone(ZoneInfo(config.timezone)).replace(tzinfo=None)
    else:
        now = _local_now(config)

    if selected_date:
        events = store.list_events_by_date(selected_date)
    else:
        events = store.list_events(order_by='start_time')

    markers = build_markers(events, now, selected_event_id=params.get('selected'))
    return {'markers': markers, 'count': len(markers)}


def list_dates(params: Dict[str, str], config: AppConfig) -> Dict[str, Any]:
    """Date strip for the calendar: either a rolling window or one month."""
    today = _local_now(config).date()

    if params.get('month'):
        try:
            month_anchor = datetime.strptime(params['month'], '%Y-%m').date()
        except ValueError:
            raise BadRequest('month must be YYYY-MM')
        days = dates_for_month(month_anchor, today=today)
    else:
        anchor = _parse_date(params.get('anchor'), 'anchor') or today
        try:
            count = int(params.get('count', DEFAULT_DATE_COUNT))
        except ValueError:
            raise BadRequest('count must be an integer')
        if not 0 <= count <= MAX_DATE_COUNT:
            raise BadRequest(f"count must be between 0 and {MAX_DATE_COUNT}")
        days = date_range(anchor, count, today=today)

    return {
        'today': today.isoformat(),
        'dates': [day.isoformat() for day in days]
    }


def build_processor(config: AppConfig, store: EventStore) -> EventProcessor:
    image_storage = ImageStorage(config.bucket_name, config.image_base_url)
    resolver = None
    if config.resolve_short_links:
        resolver = MapLinkResolver(timeout=config.timeout_seconds)
    return EventProcessor(store, image_storage=image_storage, link_resolver=resolver)


def dispatch(method: str, path: str, event: Dict[str, Any],
             config: AppConfig) -> Dict[str, Any]:
    """
    Route one API request to its operation.

    Returns:
        API Gateway proxy response
    """
    params = event.get('queryStringParameters') or {}

    if method == 'GET' and path == '/map-config':
        return _response(200, config.map_settings())

    if method == 'GET' and path == '/dates':
        return _response(200, list_dates(params, config))

    store = EventStore(table_name=config.table_name)

    if method == 'GET' and path == '/events':
        return _response(200, list_events(store, params))

    if method == 'GET' and path == '/markers':
        return _response(200, list_markers(store, params, config))

    if method == 'POST' and path == '/events':
        body = _parse_body(event)
        image = _parse_image(body.pop('image', None))
        processor = build_processor(config, store)
        result = processor.create_event(body, image=image)
        return _response(201, {
            'message': 'Event created',
            'event_id': result.event_id,
            'image_url': result.image_url,
            'warnings': result.warnings
        })

    match = VERIFY_PATH.match(path)
    if method == 'POST' and match:
        body = _parse_body(event)
        processor = EventProcessor(store)
        verified = processor.verify_password(match.group('event_id'), body.get('password'))
        return _response(200, {'verified': verified})

    match = EVENT_PATH.match(path)
    if match and method == 'GET':
        record = store.get_event(match.group('event_id'))
        if record is None:
            raise EventNotFoundError(f"Event not found: {match.group('event_id')}")
        return _response(200, _event_to_dict(record))

    if match and method == 'PUT':
        body = _parse_body(event)
        password = body.pop('current_password', None)
        image = _parse_image(body.pop('image', None))
        processor = build_processor(config, store)
        result = processor.update_event(
            match.group('event_id'), body, password=password, image=image
        )
        return _response(200, {
            'message': 'Event updated',
            'event_id': result.event_id,
            'image_url': result.image_url,
            'warnings': result.warnings
        })

    return _response(404, {'message': f"No route for {method} {path}"})


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the campus events API.

    Args:
        event: API Gateway proxy event
        context: Lambda context object

    Returns:
        API Gateway proxy response
    """
    config = AppConfig.from_env()
    setup_logging(config.log_level)

    start_time = time.time()
    method, path = _route(event)
    logger.info(
        f"Handling {method} {path}",
        extra={'table_name': config.table_name, 'bucket_name': config.bucket_name}
    )

    try:
        response = dispatch(method, path, event, config)

    except ValidationError as e:
        logger.info(f"Validation failed for {method} {path}: {e}")
        return _response(400, {'message': 'Validation failed', 'errors': e.errors})

    except BadRequest as e:
        return _response(400, {'message': str(e)})

    except PermissionDeniedError as e:
        return _response(403, {'message': str(e)})

    except EventNotFoundError as e:
        return _response(404, {'message': str(e)})

    except ExternalCallError as e:
        logger.error(
            f"External call failed for {method} {path}: {e}",
            extra={'error_type': type(e.cause).__name__ if e.cause else None}
        )
        return _response(502, {'message': str(e)})

    except (ClientError, BotoCoreError) as e:
        logger.error(
            f"AWS call failed for {method} {path}: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(502, {'message': friendly_error_message(e)})

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Request failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': 'Request failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    duration = time.time() - start_time
    logger.info(
        f"Handled {method} {path} -> {response['statusCode']}",
        extra={'duration_seconds': round(duration, 2)}
    )
    return response
