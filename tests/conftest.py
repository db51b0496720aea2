"""
Pytest Configuration and Fixtures

This module provides shared fixtures for all tests.
"""
import os
import sys
import threading
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from airsync import create_app
from airsync.config import TestingConfig
from airsync.models import snapshot_to_dict
from airsync.services import SyncService


class FakeTransport:
    """In-memory stand-in for AirtableTransport.

    Responses are queued per table and consumed in order. A response is
    either a page dict ({'records': [...], 'offset': ...}) or an exception
    instance to raise. Tables with nothing queued return an empty last page.
    """

    def __init__(self):
        self.responses = {}
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def queue(self, table_name, *responses):
        self.responses.setdefault(table_name, []).extend(responses)

    def fetch(self, table_name, query, api_key):
        with self._lock:
            self.calls.append({'table': table_name, 'query': dict(query), 'api_key': api_key})
            pending = self.responses.get(table_name) or []
            item = pending.pop(0) if pending else {'records': [], 'offset': None}
        if isinstance(item, BaseException):
            raise item
        return item

    def calls_for(self, table_name):
        return [call for call in self.calls if call['table'] == table_name]

    def close(self):
        self.closed = True


def make_record(record_id, last_modified=None, **fields):
    """Record payload shaped like the Airtable API returns it."""
    if last_modified is not None:
        fields['last_modified'] = last_modified
    return {'id': record_id, 'fields': fields, 'createdTime': '2024-01-01T00:00:00.000Z'}


def page(*records, offset=None):
    """One page of a list response."""
    return {'records': list(records), 'offset': offset}


@pytest.fixture
def transport():
    """Fresh fake transport."""
    return FakeTransport()


@pytest.fixture
def make_service(transport):
    """Factory for SyncService instances wired to the fake transport."""
    def factory(**overrides):
        settings = {
            'base_id': 'appTest',
            'api_key': 'keyTest',
            'table_settings': ['Widgets'],
            'transport': transport,
            'rate_limit_delay': 0.01,
            'settle_delay': 0.0,
        }
        settings.update(overrides)
        return SyncService(**settings)
    return factory


@pytest.fixture
def service(make_service):
    """SyncService with one table (Widgets)."""
    return make_service()


@pytest.fixture
def app(make_service):
    """Create application for testing."""
    sync_service = make_service(parse_tables=snapshot_to_dict)
    app = create_app(TestingConfig, sync_service=sync_service)
    yield app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def sample_widgets():
    """Three widget records on two pages."""
    return [
        page(
            make_record('rec1', '2024-03-01T08:00:00.000Z', Name='Sprocket'),
            make_record('rec2', '2024-03-01T08:15:00.000Z', Name='Gear'),
            offset='itr1/rec2',
        ),
        page(
            make_record('rec3', '2024-03-01T08:05:00.000Z', Name='Cog'),
        ),
    ]
