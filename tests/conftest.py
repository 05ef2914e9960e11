"""Shared fixtures for calendar feed sync tests."""
import os
from unittest.mock import patch

import pytest
from moto import mock_aws

from processor.models import EventRecord
from storage.event_store import EventStore

TABLE_NAME = 'test-calendar-events'

SONARR_FEED = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Sonarr//EN
BEGIN:VEVENT
UID:sonarr-1
SUMMARY:Show Name - 1x01 - Pilot
DTSTART:20240101T100000Z
DTEND:20240101T110000Z
STATUS:CONFIRMED
DESCRIPTION:The first episode
LOCATION:Network One
END:VEVENT
BEGIN:VEVENT
UID:sonarr-2
SUMMARY:Show Name - 1x02 - Second
DTSTART:20240108T100000Z
DTEND:20240108T110000Z
STATUS:TENTATIVE
END:VEVENT
END:VCALENDAR
"""

RADARR_FEED = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Radarr//EN
BEGIN:VEVENT
UID:radarr-1
SUMMARY:Movie Title (Physical Release)
DTSTART;VALUE=DATE:20240115
DTEND;VALUE=DATE:20240116
STATUS:CONFIRMED
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture(autouse=True)
def aws_credentials():
    """Point boto3 at fake credentials so nothing reaches real AWS."""
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
def event_store():
    """Create an EventStore backed by a mock DynamoDB table."""
    with mock_aws():
        store = EventStore(TABLE_NAME, region_name='us-east-1')
        store.create_table()
        yield store


@pytest.fixture
def sample_record():
    """Create a sample EventRecord."""
    return EventRecord(
        title='[Sonarr] Show Name - 1x01 - Pilot',
        start='2024-01-01T10:00:00Z',
        end='2024-01-01T11:00:00Z',
        color='red',
        description='The first episode',
        location='Network One'
    )


@pytest.fixture
def sonarr_feed():
    return SONARR_FEED


@pytest.fixture
def radarr_feed():
    return RADARR_FEED
