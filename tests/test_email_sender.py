"""
Broadcast dispatcher: fan-out, partial failure aggregation and the
preconditions checked before anything is sent.
"""

import pytest

from core.errors import (
    ConfigurationError, NoRecipientsError, NotFoundError, TransportError, ValidationError,
)
from core.mail_transport import DeliveryOutcome
from core.template_engine import WELCOME_SUBJECT, NewsletterEmailRenderer
from tasks.email_sender import BroadcastDispatcher, BroadcastResult, DeliveryFailure

from conftest import FakeTransport

FRONTEND_URL = 'https://news.example.com'


def _dispatcher(database, transport, **options):
    options.setdefault('renderer', NewsletterEmailRenderer(enable_css_inlining=False))
    return BroadcastDispatcher(database, transport, frontend_url=FRONTEND_URL, **options)


def _published(database, content='<p>Hello readers</p><script>alert(1)</script>'):
    return database.create_newsletter({
        'title': 'Weekly Issue',
        'content': content,
        'excerpt': 'This week',
        'published': True,
    })


def _subscribe(database, *emails):
    for email in emails:
        database.create_subscription({'email': email})


class TestBroadcast:

    async def test_partial_failures_are_aggregated(self, database):
        newsletter = _published(database)
        emails = [f"reader{i}@example.com" for i in range(5)]
        _subscribe(database, *emails)
        transport = FakeTransport(fail={'reader1@example.com', 'reader3@example.com'})

        result = await _dispatcher(database, transport).broadcast(newsletter.id)

        assert result.newsletter_id == newsletter.id
        assert result.total == 5
        assert result.succeeded == 3
        assert result.failed == 2
        assert sorted(f.email for f in result.failures) == ['reader1@example.com', 'reader3@example.com']
        assert all(f.reason.startswith('permanent 550') for f in result.failures)
        assert sorted(transport.recipients) == ['reader0@example.com', 'reader2@example.com',
                                                'reader4@example.com']

    async def test_each_recipient_gets_a_personal_unsubscribe_link(self, database):
        newsletter = _published(database)
        _subscribe(database, 'a@example.com', 'b@example.com')
        transport = FakeTransport()

        await _dispatcher(database, transport).broadcast(newsletter.id)

        by_recipient = {m.to: m for m in transport.sent}
        for email in ('a@example.com', 'b@example.com'):
            message = by_recipient[email]
            link = f"{FRONTEND_URL}/unsubscribe?email={email.replace('@', '%40')}"
            assert message.subject == 'Weekly Issue'
            assert link in message.html
            assert message.headers['List-Unsubscribe'] == f"<{link}>"
            assert message.headers['List-Unsubscribe-Post'] == 'List-Unsubscribe=One-Click'

    async def test_content_is_sanitized(self, database):
        newsletter = _published(database)
        _subscribe(database, 'a@example.com')
        transport = FakeTransport()

        await _dispatcher(database, transport).broadcast(newsletter.id)

        message = transport.sent[0]
        assert '<p>Hello readers</p>' in message.html
        assert '<script>' not in message.html
        assert message.text == 'Hello readers'

    async def test_inactive_subscribers_are_skipped(self, database):
        newsletter = _published(database)
        _subscribe(database, 'stay@example.com', 'leave@example.com')
        leaving = database.find_subscription_by_email('leave@example.com')
        database.update_subscription(leaving, {'is_active': False})
        transport = FakeTransport()

        result = await _dispatcher(database, transport).broadcast(newsletter.id)

        assert result.total == 1
        assert transport.recipients == ['stay@example.com']

    async def test_unknown_newsletter(self, database):
        transport = FakeTransport()
        with pytest.raises(NotFoundError):
            await _dispatcher(database, transport).broadcast('507f1f77bcf86cd799439011')
        assert transport.verify_calls == 0

    async def test_draft_is_not_sent(self, database):
        draft = database.create_newsletter({'title': 'Draft', 'content': 'x', 'excerpt': 'y'})
        _subscribe(database, 'a@example.com')
        transport = FakeTransport()

        with pytest.raises(NotFoundError):
            await _dispatcher(database, transport).broadcast(draft.id)
        assert transport.sent == []

    async def test_no_active_subscribers(self, database):
        newsletter = _published(database)
        transport = FakeTransport()

        with pytest.raises(NoRecipientsError):
            await _dispatcher(database, transport).broadcast(newsletter.id)
        assert transport.verify_calls == 0

    async def test_unusable_transport_sends_nothing(self, database):
        newsletter = _published(database)
        _subscribe(database, 'a@example.com')
        transport = FakeTransport(verify_error=ConfigurationError('Mail transport is unavailable'))

        with pytest.raises(ConfigurationError):
            await _dispatcher(database, transport).broadcast(newsletter.id)
        assert transport.sent == []

    async def test_slow_recipient_times_out(self, database):
        newsletter = _published(database)
        _subscribe(database, 'fast@example.com', 'slow@example.com')
        transport = FakeTransport(hang={'slow@example.com'})

        result = await _dispatcher(database, transport, send_timeout=0.05).broadcast(newsletter.id)

        assert result.succeeded == 1
        assert result.failures == [DeliveryFailure('slow@example.com', 'timeout: no response within 0.05s')]

    async def test_concurrency_is_bounded(self, database):
        newsletter = _published(database)
        _subscribe(database, *[f"reader{i}@example.com" for i in range(6)])
        transport = FakeTransport(delay=0.01)

        result = await _dispatcher(database, transport, max_concurrency=2).broadcast(newsletter.id)

        assert result.succeeded == 6
        assert transport.max_in_flight == 2

    async def test_raising_transport_settles_per_recipient(self, database):
        newsletter = _published(database)
        _subscribe(database, 'a@example.com', 'b@example.com', 'c@example.com')

        class FlakyTransport(FakeTransport):
            async def send(self, message):
                if message.to == 'a@example.com':
                    raise TransportError('temporary 451: Try again later', 451)
                if message.to == 'b@example.com':
                    raise RuntimeError('socket exploded')
                return await super().send(message)

        result = await _dispatcher(database, FlakyTransport()).broadcast(newsletter.id)

        reasons = {f.email: f.reason for f in result.failures}
        assert result.succeeded == 1
        assert reasons == {
            'a@example.com': 'temporary 451: Try again later',
            'b@example.com': 'unknown: socket exploded',
        }


class TestSendTest:

    async def test_sends_to_one_address(self, database):
        newsletter = _published(database)
        _subscribe(database, 'subscriber@example.com')
        transport = FakeTransport()

        outcome = await _dispatcher(database, transport).send_test(newsletter.id, ' Editor@Example.com ')

        assert outcome == DeliveryOutcome('editor@example.com', True)
        assert transport.recipients == ['editor@example.com']
        assert transport.verify_calls == 1

    async def test_failure_is_returned(self, database):
        newsletter = _published(database)
        transport = FakeTransport(fail={'editor@example.com'})

        outcome = await _dispatcher(database, transport).send_test(newsletter.id, 'editor@example.com')

        assert outcome.success is False
        assert outcome.smtp_code == 550

    async def test_requires_published_newsletter(self, database):
        draft = database.create_newsletter({'title': 'Draft', 'content': 'x', 'excerpt': 'y'})
        with pytest.raises(NotFoundError):
            await _dispatcher(database, FakeTransport()).send_test(draft.id, 'editor@example.com')

    async def test_invalid_address(self, database):
        newsletter = _published(database)
        with pytest.raises(ValidationError):
            await _dispatcher(database, FakeTransport()).send_test(newsletter.id, 'not-an-email')


async def test_send_welcome(database):
    transport = FakeTransport()
    outcome = await _dispatcher(database, transport).send_welcome('reader@example.com')

    assert outcome.success is True
    message = transport.sent[0]
    assert message.subject == WELCOME_SUBJECT
    assert 'unsubscribe?email=reader%40example.com' in message.text


def test_broadcast_result_to_dict():
    outcomes = [
        DeliveryOutcome('a@example.com', True),
        DeliveryOutcome('b@example.com', False, 'permanent 550: Mailbox unavailable', 550),
    ]
    result = BroadcastResult.from_outcomes('n1', outcomes)

    assert result.to_dict() == {
        'newsletterId': 'n1',
        'total': 2,
        'succeeded': 1,
        'failed': 1,
        'failures': [{'email': 'b@example.com', 'reason': 'permanent 550: Mailbox unavailable'}],
    }
