import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest

from core.errors import ConfigurationError
from core.mail_transport import OutboundEmail, SMTPSettings, SMTPTransport
from tasks.email_sender import BroadcastDispatcher


@pytest.fixture
def settings():
    return SMTPSettings(host='smtp.example.com', port=587, username='mailer', password='secret',
                        sender='newsletter@example.com', sender_name='Weekly News')


@pytest.fixture
def smtp_client():
    """Patched aiosmtplib.SMTP; yields (class mock, client mock)"""
    with patch('core.mail_transport.aiosmtplib.SMTP') as smtp_cls:
        client = MagicMock()
        client.connect = AsyncMock()
        client.login = AsyncMock()
        client.send_message = AsyncMock()
        client.quit = AsyncMock()
        smtp_cls.return_value = client
        yield smtp_cls, client


@pytest.fixture
def message():
    return OutboundEmail(
        to='reader@example.com',
        subject='Issue 1',
        text='Plain body',
        html='<p>Html body</p>',
        headers={'List-Unsubscribe': '<https://news.example.com/unsubscribe?email=reader%40example.com>'},
    )


class TestSMTPSettings:

    def test_from_config(self):
        settings = SMTPSettings.from_config({
            'SMTP_HOST': 'smtp.example.com',
            'SMTP_PORT': '465',
            'SMTP_USER': 'mailer',
            'SMTP_PASS': 'secret',
            'FROM_EMAIL': 'newsletter@example.com',
            'SMTP_TIMEOUT': '15',
        })

        assert settings.port == 465
        assert settings.timeout == 15.0
        assert settings.sender_name == 'Newsletter'
        assert settings.implicit_tls is True
        assert settings.configured is True

    def test_explicit_tls_flag_wins_over_port(self):
        assert SMTPSettings(host='h', port=465, use_tls=False).implicit_tls is False
        assert SMTPSettings(host='h', port=587).implicit_tls is False

    def test_not_configured_without_sender(self):
        assert SMTPSettings.from_config({'SMTP_HOST': 'smtp.example.com'}).configured is False


class TestBuildMessage:

    def test_multipart_alternative(self, settings, message):
        msg = SMTPTransport(settings).build_message(message)

        assert msg.get_content_type() == 'multipart/alternative'
        assert msg['Subject'] == 'Issue 1'
        assert msg['From'] == 'Weekly News <newsletter@example.com>'
        assert msg['To'] == 'reader@example.com'
        assert msg['Message-ID'].endswith('@example.com>')
        assert msg['List-Unsubscribe'] == message.headers['List-Unsubscribe']

        text_part, html_part = msg.get_payload()
        assert text_part.get_content_type() == 'text/plain'
        assert html_part.get_content_type() == 'text/html'
        assert html_part.get_payload(decode=True).decode('utf-8') == '<p>Html body</p>'


class TestVerify:

    async def test_unconfigured_transport(self, smtp_client):
        transport = SMTPTransport(SMTPSettings(host=None))
        with pytest.raises(ConfigurationError):
            await transport.verify()
        smtp_client[0].assert_not_called()

    async def test_connects_and_logs_in(self, settings, smtp_client):
        smtp_cls, client = smtp_client
        await SMTPTransport(settings).verify()

        assert smtp_cls.call_args.kwargs['hostname'] == 'smtp.example.com'
        client.connect.assert_awaited_once()
        client.login.assert_awaited_once_with('mailer', 'secret')
        client.quit.assert_awaited_once()

    async def test_skips_login_without_credentials(self, smtp_client):
        _, client = smtp_client
        await SMTPTransport(SMTPSettings(host='smtp.example.com', sender='newsletter@example.com')).verify()
        client.login.assert_not_awaited()

    async def test_unreachable_server(self, settings, smtp_client):
        _, client = smtp_client
        client.connect.side_effect = OSError('Connection refused')

        with pytest.raises(ConfigurationError):
            await SMTPTransport(settings).verify()
        client.close.assert_called_once()


class TestSend:

    async def test_success(self, settings, smtp_client, message):
        _, client = smtp_client
        outcome = await SMTPTransport(settings).send(message)

        assert outcome.success is True
        assert outcome.email == 'reader@example.com'
        sent = client.send_message.await_args.args[0]
        assert sent['To'] == 'reader@example.com'

    async def test_refused_recipient(self, settings, smtp_client, message):
        _, client = smtp_client
        client.send_message.side_effect = aiosmtplib.SMTPRecipientsRefused([
            aiosmtplib.SMTPRecipientRefused(550, '5.1.1 User unknown', 'reader@example.com')
        ])

        outcome = await SMTPTransport(settings).send(message)

        assert outcome.success is False
        assert outcome.smtp_code == 550
        assert outcome.reason == 'permanent 550 (5.1.1): 5.1.1 User unknown'
        client.close.assert_called_once()

    async def test_temporary_failure(self, settings, smtp_client, message):
        _, client = smtp_client
        client.send_message.side_effect = aiosmtplib.SMTPResponseException(451, 'Try again later')

        outcome = await SMTPTransport(settings).send(message)

        assert outcome.success is False
        assert outcome.smtp_code == 451
        assert outcome.reason.startswith('temporary 451')

    async def test_connection_failure(self, settings, smtp_client, message):
        _, client = smtp_client
        client.connect.side_effect = OSError('Connection reset')

        outcome = await SMTPTransport(settings).send(message)

        assert outcome.success is False
        assert outcome.smtp_code is None
        assert outcome.reason == 'unknown: Connection reset'

    async def test_quit_failure_after_delivery_is_still_a_success(self, settings, smtp_client, message):
        _, client = smtp_client
        client.quit.side_effect = aiosmtplib.SMTPServerDisconnected('Connection lost')

        outcome = await SMTPTransport(settings).send(message)

        assert outcome.success is True
        client.close.assert_called_once()


async def _never_answers(*args, **kwargs):
    await asyncio.sleep(3600)


class TestTimeouts:

    async def test_timed_out_send_closes_the_session(self, settings, smtp_client, message):
        _, client = smtp_client
        client.send_message.side_effect = _never_answers

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(SMTPTransport(settings).send(message), timeout=0.05)

        client.close.assert_called_once()
        client.quit.assert_not_awaited()

    async def test_timed_out_verify_closes_the_session(self, settings, smtp_client):
        _, client = smtp_client
        client.connect.side_effect = _never_answers

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(SMTPTransport(settings).verify(), timeout=0.05)

        client.close.assert_called_once()

    async def test_dispatcher_timeout_closes_the_session(self, settings, smtp_client, message):
        _, client = smtp_client
        client.send_message.side_effect = _never_answers
        dispatcher = BroadcastDispatcher(None, SMTPTransport(settings), send_timeout=0.05)

        outcome, = await dispatcher._deliver_all([message])

        assert outcome.success is False
        assert outcome.reason.startswith('timeout')
        client.close.assert_called_once()
