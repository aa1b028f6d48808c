# core/mail_transport.py
"""
Outbound mail transport.

`SMTPTransport` delivers one message per SMTP session through aiosmtplib.
Per-message failures are classified and returned as a `DeliveryOutcome`;
only `verify()` raises, and only when the server cannot be used at all.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from typing import Any, Dict, Mapping, Optional

import aiosmtplib

from core.errors import ConfigurationError, TransportError
from core.smtp_rfc_handler import FailureCategory, classify_failure

logger = logging.getLogger(__name__)


@dataclass
class SMTPSettings:
    """Process-wide SMTP configuration, read-only after startup"""
    host: Optional[str]
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    sender: Optional[str] = None
    sender_name: str = 'Newsletter'
    use_tls: Optional[bool] = None    # implicit TLS, defaults to port 465
    start_tls: Optional[bool] = None  # None lets aiosmtplib upgrade when offered
    timeout: float = 60
    validate_certs: bool = True

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender)

    @property
    def implicit_tls(self) -> bool:
        return self.use_tls if self.use_tls is not None else self.port == 465

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'SMTPSettings':
        return cls(
            host=config.get('SMTP_HOST'),
            port=int(config.get('SMTP_PORT') or 587),
            username=config.get('SMTP_USER'),
            password=config.get('SMTP_PASS'),
            sender=config.get('FROM_EMAIL'),
            sender_name=config.get('FROM_NAME') or 'Newsletter',
            use_tls=config.get('SMTP_USE_TLS'),
            start_tls=config.get('SMTP_START_TLS'),
            timeout=float(config.get('SMTP_TIMEOUT') or 60),
        )


@dataclass
class OutboundEmail:
    to: str
    subject: str
    text: str
    html: str
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class DeliveryOutcome:
    """Settled result of one delivery attempt"""
    email: str
    success: bool
    reason: Optional[str] = None
    smtp_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'email': self.email,
            'success': self.success,
            'reason': self.reason,
            'smtpCode': self.smtp_code,
        }


class MailTransport(ABC):
    """Delivers outbound email"""

    @abstractmethod
    async def verify(self) -> None:
        """Check the transport is usable; raises ConfigurationError otherwise"""

    @abstractmethod
    async def send(self, message: OutboundEmail) -> DeliveryOutcome:
        """Deliver one message; failures are returned, not raised"""


class SMTPTransport(MailTransport):
    """aiosmtplib transport opening one connection per message"""

    def __init__(self, settings: SMTPSettings):
        self.settings = settings

    def _client(self) -> aiosmtplib.SMTP:
        return aiosmtplib.SMTP(
            hostname=self.settings.host,
            port=self.settings.port,
            timeout=self.settings.timeout,
            use_tls=self.settings.implicit_tls,
            start_tls=self.settings.start_tls,
            validate_certs=self.settings.validate_certs
        )

    async def _connect(self, smtp: aiosmtplib.SMTP) -> None:
        await smtp.connect()
        if self.settings.username and self.settings.password:
            await smtp.login(self.settings.username, self.settings.password)

    async def verify(self) -> None:
        if not self.settings.configured:
            raise ConfigurationError('Mail transport is not configured (SMTP_HOST and FROM_EMAIL are required)')

        smtp = self._client()
        connected = False
        try:
            await self._connect(smtp)
            connected = True
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP verification against {self.settings.host}:{self.settings.port} failed: {str(e)}")
            raise ConfigurationError('Mail transport is unavailable') from e
        finally:
            # Runs on cancellation too
            if not connected:
                smtp.close()

        await self._quit(smtp)
        logger.debug(f"SMTP server {self.settings.host}:{self.settings.port} verified")

    def build_message(self, message: OutboundEmail) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = message.subject
        msg['From'] = formataddr((self.settings.sender_name, self.settings.sender))
        msg['To'] = message.to
        msg['Date'] = formatdate(localtime=True)
        msg['Message-ID'] = make_msgid(domain=(self.settings.sender or 'localhost').rpartition('@')[2])
        for name, value in message.headers.items():
            msg[name] = value

        # Text first, html last: clients pick the last part they can render
        msg.attach(MIMEText(message.text, 'plain', 'utf-8'))
        msg.attach(MIMEText(message.html, 'html', 'utf-8'))
        return msg

    async def send(self, message: OutboundEmail) -> DeliveryOutcome:
        try:
            await self._submit(self.build_message(message))
        except TransportError as e:
            return DeliveryOutcome(message.to, False, str(e), e.smtp_code)
        return DeliveryOutcome(message.to, True)

    async def _submit(self, msg: MIMEMultipart) -> None:
        """One SMTP session per message; failures raise a classified TransportError"""
        smtp = self._client()
        accepted = False
        try:
            await self._connect(smtp)
            await smtp.send_message(msg)
            accepted = True
        except aiosmtplib.SMTPRecipientsRefused as e:
            refused = e.recipients[0] if e.recipients else None
            failure = classify_failure(refused.code if refused else None,
                                       refused.message if refused else str(e))
            raise TransportError(failure.reason, failure.code) from e
        except aiosmtplib.SMTPResponseException as e:
            failure = classify_failure(e.code, e.message)
            raise TransportError(failure.reason, failure.code) from e
        except (aiosmtplib.SMTPException, OSError) as e:
            raise TransportError(f"{FailureCategory.UNKNOWN.value}: {str(e)}") from e
        finally:
            if not accepted:
                smtp.close()

        await self._quit(smtp)

    async def _quit(self, smtp: aiosmtplib.SMTP) -> None:
        """Best-effort QUIT; the outcome is already settled"""
        try:
            await smtp.quit()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.debug(f"SMTP QUIT failed: {str(e)}")
        finally:
            smtp.close()
