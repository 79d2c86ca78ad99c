"""Shared fixtures for the events test suite."""
import os
from unittest.mock import patch

import pytest

from processor.models import EventRecord


@pytest.fixture(autouse=True)
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def make_event():
    """Factory for EventRecord objects with sensible defaults."""
    def _make_event(**overrides):
        fields = {
            'event_id': 'evt-1',
            'title': 'Calculus Study Group',
            'description': 'Working through problem set 4',
            'email': 'organizer@umd.edu',
            'organizer_name': 'Terp Organizer',
            'date': '2024-05-01',
            'start_time': '14:00',
            'end_time': '16:00',
            'location': 'https://www.google.com/maps/place/McKeldin/@38.9860,-76.9451,17z',
            'event_type': ('Study Group',),
            'max_participants': 20,
            'rsvp_link': 'https://forms.example.com/rsvp',
            'password': 'secret123',
        }
        fields.update(overrides)
        return EventRecord(**fields)

    return _make_event
