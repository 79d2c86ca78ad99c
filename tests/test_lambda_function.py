"""Integration tests for Lambda handler."""
import base64
import json
import logging
import os
from datetime import datetime
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError

from lambda_function import JsonFormatter, lambda_handler, setup_logging
from processor.errors import ExternalCallError, PermissionDeniedError, ValidationError
from processor.models import SubmissionResult


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'TABLE_NAME': 'test-events',
        'BUCKET_NAME': 'test-event-images',
        'LOG_LEVEL': 'INFO',
        'TIMEOUT_SECONDS': '5',
        'TIMEZONE': 'America/New_York'
    }
    with patch.dict(os.environ, env_vars):
        os.environ.pop('MAPBOX_ACCESS_TOKEN', None)
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 256
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def mock_store():
    """Patch the EventStore class used by the handler."""
    with patch('lambda_function.EventStore') as store_class:
        store = Mock()
        store_class.return_value = store
        yield store


@pytest.fixture
def mock_processor():
    """Patch build_processor to hand out a mock EventProcessor."""
    with patch('lambda_function.build_processor') as build:
        processor = Mock()
        build.return_value = processor
        yield processor


def api_event(method, path, params=None, body=None):
    event = {
        'httpMethod': method,
        'path': path,
        'queryStringParameters': params,
    }
    if body is not None:
        event['body'] = body if isinstance(body, str) else json.dumps(body)
    return event


def response_body(response):
    return json.loads(response['body'])


class TestReadRoutes:
    """Test cases for the read-only routes."""

    def test_list_events_filters_and_hides_password(self, mock_env, mock_context,
                                                     mock_store, make_event):
        mock_store.list_events.return_value = [
            make_event(event_id='a', title='Calculus Study Group'),
            make_event(event_id='b', title='Pizza Social', event_type=('Social', 'Other')),
        ]

        response = lambda_handler(
            api_event('GET', '/events', {'types': 'Social', 'search': ' PIZZA '}),
            mock_context
        )

        assert response['statusCode'] == 200
        assert response['headers']['Access-Control-Allow-Origin'] == '*'
        body = response_body(response)
        assert body['count'] == 1
        event = body['events'][0]
        assert event['event_id'] == 'b'
        assert event['event_type'] == ['Social', 'Other']
        assert 'password' not in event
        assert event['calendar_url'].startswith('https://www.google.com/calendar/event?')
        mock_store.list_events.assert_called_once_with(order_by='date')

    def test_empty_type_selection_returns_nothing(self, mock_env, mock_context,
                                                  mock_store, make_event):
        mock_store.list_events.return_value = [make_event()]

        response = lambda_handler(api_event('GET', '/events', {'types': ''}), mock_context)

        assert response_body(response)['count'] == 0

    def test_list_events_for_one_day(self, mock_env, mock_context, mock_store, make_event):
        mock_store.list_events_by_date.return_value = [make_event(date='2024-05-01')]

        response = lambda_handler(api_event('GET', '/events', {'date': '2024-05-01'}), mock_context)

        assert response_body(response)['count'] == 1
        mock_store.list_events_by_date.assert_called_once()
        mock_store.list_events.assert_not_called()

    def test_list_events_in_range(self, mock_env, mock_context, mock_store, make_event):
        mock_store.list_events.return_value = [
            make_event(event_id='a', date='2024-05-01'),
            make_event(event_id='b', date='2024-05-03'),
            make_event(event_id='c', date='2024-05-06'),
        ]

        response = lambda_handler(
            api_event('GET', '/events', {'start': '2024-05-02', 'end': '2024-05-06'}),
            mock_context
        )

        ids = [event['event_id'] for event in response_body(response)['events']]
        assert ids == ['b', 'c']

    @pytest.mark.parametrize('params', [
        {'end': '2024-05-06'},
        {'start': '2024-05-06', 'end': '2024-05-01'},
        {'date': '05/01/2024'},
        {'order_by': 'title'},
    ])
    def test_bad_query_is_rejected(self, mock_env, mock_context, mock_store, params):
        response = lambda_handler(api_event('GET', '/events', params), mock_context)

        assert response['statusCode'] == 400

    def test_get_event(self, mock_env, mock_context, mock_store, make_event):
        mock_store.get_event.return_value = make_event(event_id='evt-9')

        response = lambda_handler(api_event('GET', '/events/evt-9'), mock_context)

        assert response['statusCode'] == 200
        assert response_body(response)['event_id'] == 'evt-9'
        mock_store.get_event.assert_called_once_with('evt-9')

    def test_get_missing_event(self, mock_env, mock_context, mock_store):
        mock_store.get_event.return_value = None

        response = lambda_handler(api_event('GET', '/events/ghost'), mock_context)

        assert response['statusCode'] == 404

    def test_markers(self, mock_env, mock_context, mock_store, make_event):
        mock_store.list_events.return_value = [
            make_event(event_id='a', date='2024-05-10', latitude=38.98, longitude=-76.94),
            make_event(event_id='b', date='2024-05-11', latitude=38.99, longitude=-76.93),
            make_event(event_id='c'),
        ]

        response = lambda_handler(
            api_event('GET', '/markers', {'now': '2024-05-10T15:00:00', 'selected': 'b'}),
            mock_context
        )

        markers = response_body(response)['markers']
        assert [marker['category'] for marker in markers] == ['ongoing', 'future']
        assert [marker['selected'] for marker in markers] == [False, True]
        mock_store.list_events.assert_called_once_with(order_by='start_time')

    def test_markers_with_utc_offset_now(self, mock_env, mock_context, mock_store, make_event):
        """Test an offset-aware now is converted to campus local time."""
        mock_store.list_events.return_value = [
            make_event(event_id='a', date='2024-05-10', latitude=38.98, longitude=-76.94),
        ]

        response = lambda_handler(
            api_event('GET', '/markers', {'now': '2024-05-10T15:00:00+00:00'}),
            mock_context
        )

        assert response['statusCode'] == 200
        # 15:00 UTC is 11:00 in New York, before the 14:00 start
        assert response_body(response)['markers'][0]['category'] == 'today-upcoming'

    @patch('lambda_function._local_now')
    def test_dates_window(self, mock_now, mock_env, mock_context):
        mock_now.return_value = datetime(2024, 5, 1, 9, 0)

        response = lambda_handler(
            api_event('GET', '/dates', {'anchor': '2024-04-20', 'count': '3'}),
            mock_context
        )

        body = response_body(response)
        assert body['today'] == '2024-05-01'
        assert body['dates'] == ['2024-05-01', '2024-05-02', '2024-05-03']

    @patch('lambda_function._local_now')
    def test_dates_for_month(self, mock_now, mock_env, mock_context):
        mock_now.return_value = datetime(2024, 5, 29, 9, 0)

        response = lambda_handler(api_event('GET', '/dates', {'month': '2024-05'}), mock_context)

        assert response_body(response)['dates'] == ['2024-05-29', '2024-05-30', '2024-05-31']

    def test_dates_count_limit(self, mock_env, mock_context):
        response = lambda_handler(api_event('GET', '/dates', {'count': '500'}), mock_context)

        assert response['statusCode'] == 400

    def test_map_config_disabled_without_token(self, mock_env, mock_context):
        response = lambda_handler(api_event('GET', '/map-config'), mock_context)

        assert response_body(response) == {'enabled': False}

    def test_map_config_with_token(self, mock_env, mock_context):
        with patch.dict(os.environ, {'MAPBOX_ACCESS_TOKEN': 'pk.test'}):
            response = lambda_handler(api_event('GET', '/map-config'), mock_context)

        body = response_body(response)
        assert body['enabled'] is True
        assert body['access_token'] == 'pk.test'
        assert body['center'] == [-76.9426, 38.9869]

    def test_http_api_event_shape(self, mock_env, mock_context):
        """Test the payload format 2.0 method and rawPath are understood."""
        event = {
            'rawPath': '/map-config/',
            'requestContext': {'http': {'method': 'GET'}},
        }

        assert lambda_handler(event, mock_context)['statusCode'] == 200

    def test_unknown_route(self, mock_env, mock_context, mock_store):
        response = lambda_handler(api_event('DELETE', '/events'), mock_context)

        assert response['statusCode'] == 404


class TestWriteRoutes:
    """Test cases for event submission routes."""

    def test_create_event(self, mock_env, mock_context, mock_store, mock_processor):
        mock_processor.create_event.return_value = SubmissionResult(
            event_id='new-id', created=True, warnings=['Could not extract coordinates from location URL']
        )
        image = {'filename': 'flyer.png', 'data': base64.b64encode(b'png-bytes').decode('ascii'),
                 'crop': {'x': 0, 'y': 0, 'width': 10, 'height': 10}}

        response = lambda_handler(
            api_event('POST', '/events', {}, {'title': 'Game Night', 'image': image}),
            mock_context
        )

        assert response['statusCode'] == 201
        body = response_body(response)
        assert body['event_id'] == 'new-id'
        assert body['warnings'] == ['Could not extract coordinates from location URL']
        form = mock_processor.create_event.call_args[0][0]
        upload = mock_processor.create_event.call_args[1]['image']
        assert form == {'title': 'Game Night'}
        assert upload.data == b'png-bytes'
        assert upload.crop.width == 10

    def test_create_event_validation_errors(self, mock_env, mock_context,
                                            mock_store, mock_processor):
        mock_processor.create_event.side_effect = ValidationError(
            {'email': 'Only .edu email addresses are allowed'}
        )

        response = lambda_handler(api_event('POST', '/events', body={}), mock_context)

        assert response['statusCode'] == 400
        assert response_body(response) == {
            'message': 'Validation failed',
            'errors': {'email': 'Only .edu email addresses are allowed'},
        }

    def test_invalid_json_body(self, mock_env, mock_context, mock_store, mock_processor):
        response = lambda_handler(api_event('POST', '/events', body='{not json'), mock_context)

        assert response['statusCode'] == 400
        mock_processor.create_event.assert_not_called()

    def test_invalid_image_data(self, mock_env, mock_context, mock_store, mock_processor):
        response = lambda_handler(
            api_event('POST', '/events', body={'image': {'data': '***'}}),
            mock_context
        )

        assert response['statusCode'] == 400
        assert list(response_body(response)['errors']) == ['image']

    @pytest.mark.parametrize('image', ['flyer.png', [1, 2], {'data': 42}])
    def test_malformed_image_field(self, mock_env, mock_context, mock_store, mock_processor, image):
        """Test a wrongly shaped image field is a field error, not a crash."""
        response = lambda_handler(
            api_event('POST', '/events', body={'title': 'x', 'image': image}),
            mock_context
        )

        assert response['statusCode'] == 400
        assert list(response_body(response)['errors']) == ['image']
        mock_processor.create_event.assert_not_called()

    def test_base64_encoded_body(self, mock_env, mock_context, mock_store, mock_processor):
        mock_processor.create_event.return_value = SubmissionResult(event_id='new-id', created=True)
        event = api_event('POST', '/events')
        event['body'] = base64.b64encode(json.dumps({'title': 'x'}).encode('utf-8')).decode('ascii')
        event['isBase64Encoded'] = True

        response = lambda_handler(event, mock_context)

        assert response['statusCode'] == 201
        assert mock_processor.create_event.call_args[0][0] == {'title': 'x'}

    def test_update_event(self, mock_env, mock_context, mock_store, mock_processor):
        mock_processor.update_event.return_value = SubmissionResult(event_id='evt-1', created=False)

        response = lambda_handler(
            api_event('PUT', '/events/evt-1',
                      body={'current_password': 'secret123', 'title': 'Renamed'}),
            mock_context
        )

        assert response['statusCode'] == 200
        assert response_body(response)['message'] == 'Event updated'
        mock_processor.update_event.assert_called_once_with(
            'evt-1', {'title': 'Renamed'}, password='secret123', image=None
        )

    def test_update_wrong_password(self, mock_env, mock_context, mock_store, mock_processor):
        mock_processor.update_event.side_effect = PermissionDeniedError('Incorrect password')

        response = lambda_handler(
            api_event('PUT', '/events/evt-1', body={'current_password': 'nope'}),
            mock_context
        )

        assert response['statusCode'] == 403
        assert response_body(response) == {'message': 'Incorrect password'}

    def test_verify_password(self, mock_env, mock_context, mock_store):
        mock_store.get_password.return_value = 'secret123'

        response = lambda_handler(
            api_event('POST', '/events/evt-1/verify', body={'password': 'secret123'}),
            mock_context
        )

        assert response_body(response) == {'verified': True}
        mock_store.get_password.assert_called_once_with('evt-1')

    def test_verify_password_unknown_event(self, mock_env, mock_context, mock_store):
        mock_store.get_password.side_effect = KeyError('ghost')

        response = lambda_handler(
            api_event('POST', '/events/ghost/verify', body={'password': 'x'}),
            mock_context
        )

        assert response['statusCode'] == 404


class TestErrorHandling:
    """Test cases for error to status code mapping."""

    def test_external_call_error(self, mock_env, mock_context, mock_store, mock_processor):
        mock_processor.create_event.side_effect = ExternalCallError(
            'You do not have permission to upload files.'
        )

        response = lambda_handler(api_event('POST', '/events', body={}), mock_context)

        assert response['statusCode'] == 502
        assert response_body(response)['message'] == 'You do not have permission to upload files.'

    def test_dynamodb_failure(self, mock_env, mock_context, mock_store):
        mock_store.list_events.side_effect = ClientError(
            {'Error': {'Code': 'AccessDeniedException', 'Message': 'AccessDenied'}}, 'Scan'
        )

        response = lambda_handler(api_event('GET', '/events'), mock_context)

        assert response['statusCode'] == 502
        assert response_body(response)['message'] == 'You do not have permission to upload files.'

    def test_unexpected_error(self, mock_env, mock_context, mock_store):
        mock_store.list_events.side_effect = Exception('Something broke')

        response = lambda_handler(api_event('GET', '/events'), mock_context)

        assert response['statusCode'] == 500
        body = response_body(response)
        assert body['message'] == 'Request failed'
        assert 'Something broke' in body['error']
        assert body['error_type'] == 'Exception'
        assert 'duration_seconds' in body

    @patch('lambda_function.setup_logging')
    def test_logging_output(self, mock_setup_logging, mock_env, mock_context, mock_store, caplog):
        """Test that request start and completion are logged."""
        mock_store.list_events.return_value = []

        with caplog.at_level(logging.INFO, logger='lambda_function'):
            response = lambda_handler(api_event('GET', '/events'), mock_context)

        assert response['statusCode'] == 200
        log_messages = [record.message for record in caplog.records]
        assert any('Handling GET /events' in msg for msg in log_messages)
        assert any('Handled GET /events -> 200' in msg for msg in log_messages)


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        """Test logging setup with default INFO level."""
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        """Test logging setup with DEBUG level."""
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord('events', logging.INFO, __file__, 1, 'Created event %s', ('e1',), None)
        record.event_id = 'e1'

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Created event e1'
        assert data['level'] == 'INFO'
        assert data['event_id'] == 'e1'
