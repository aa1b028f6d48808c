"""
Shared fixtures for the newsletter platform test suite.

Provides:
- a controllable clock so stored timestamps are predictable
- a database adapter parametrized over both storage engines
  (in-memory SQLite through SQLAlchemy, and mongomock for MongoDB)
- a fake mail transport that records messages and fails on demand
- a Flask application, test client and admin/user session clients
"""

import asyncio
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

import mongomock
import pytest
from flask import Flask
from flask.testing import FlaskClient

from app import create_app
from core.database_adapter import DatabaseAdapter
from core.document_store import DocumentBackend
from core.mail_transport import DeliveryOutcome, MailTransport, OutboundEmail
from core.sql_store import SQLBackend


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: int = 60) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


class FakeTransport(MailTransport):
    """
    Records every delivered message.

    Addresses in `fail` are refused with a permanent SMTP error, addresses in
    `hang` never answer, and `verify_error` makes verification raise.
    """

    def __init__(self, fail: Iterable[str] = (), hang: Iterable[str] = (),
                 verify_error: Optional[Exception] = None, delay: float = 0):
        self.sent: List[OutboundEmail] = []
        self.fail = set(fail)
        self.hang = set(hang)
        self.verify_error = verify_error
        self.delay = delay
        self.verify_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def verify(self) -> None:
        self.verify_calls += 1
        if self.verify_error is not None:
            raise self.verify_error

    async def send(self, message: OutboundEmail) -> DeliveryOutcome:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if message.to in self.hang:
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
            if message.to in self.fail:
                return DeliveryOutcome(message.to, False, 'permanent 550: Mailbox unavailable', 550)
            self.sent.append(message)
            return DeliveryOutcome(message.to, True)
        finally:
            self.in_flight -= 1

    @property
    def recipients(self) -> List[str]:
        return [m.to for m in self.sent]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(params=['sqlite', 'mongodb'])
def database(request, clock) -> DatabaseAdapter:
    """Database adapter over each storage engine in turn"""
    if request.param == 'sqlite':
        backend = SQLBackend.from_url('sqlite://')
    else:
        backend = DocumentBackend(mongomock.MongoClient(), 'newsletter_test')
    adapter = DatabaseAdapter(backend, clock=clock)
    adapter.initialize()
    yield adapter
    adapter.close()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def app_database() -> DatabaseAdapter:
    adapter = DatabaseAdapter(SQLBackend.from_url('sqlite://'))
    adapter.initialize()
    yield adapter
    adapter.close()


@pytest.fixture
def app(app_database, transport) -> Flask:
    """Application wired to an in-memory database and the fake transport"""
    return create_app('testing', database=app_database, transport=transport)


@pytest.fixture
def client(app) -> FlaskClient:
    return app.test_client()


def _session_client(app: Flask, user_id: str, role: str) -> FlaskClient:
    test_client = app.test_client()
    with test_client.session_transaction() as sess:
        sess['user_id'] = user_id
        sess['role'] = role
    return test_client


@pytest.fixture
def admin_client(app) -> FlaskClient:
    return _session_client(app, 'admin-user-id', 'admin')


@pytest.fixture
def user_client(app) -> FlaskClient:
    return _session_client(app, 'regular-user-id', 'user')


@pytest.fixture
def newsletter_data():
    return {
        'title': 'Hello World!',
        'content': '<p>First issue</p>',
        'excerpt': 'The very first issue',
    }
