# tasks/email_sender.py
"""
Newsletter broadcast engine

Sends a published newsletter to every active subscriber:
- content is sanitized once per newsletter
- each recipient gets their own rendering with a personal unsubscribe link
- deliveries run concurrently with a concurrency bound and per-recipient timeout
- every attempt settles into an outcome; one failure never aborts the rest

The same coroutine backs the synchronous admin endpoint and the Celery task.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from celery import Celery, Task
from celery.signals import task_failure, task_postrun, task_prerun
from celery.utils.log import get_task_logger
from flask import current_app, has_app_context

from core.content_sanitizer import ContentSanitizer, SanitizedContent
from core.database_adapter import DatabaseAdapter
from core.entities import Newsletter, normalize_email
from core.errors import NoRecipientsError, NotFoundError, TransportError
from core.mail_transport import DeliveryOutcome, MailTransport, OutboundEmail
from core.template_engine import (
    WELCOME_SUBJECT, NewsletterEmailRenderer, build_unsubscribe_url,
)

logger = get_task_logger(__name__)

DEFAULT_SEND_TIMEOUT = 30.0
DEFAULT_MAX_CONCURRENCY = 10


@dataclass
class DeliveryFailure:
    email: str
    reason: str


@dataclass
class BroadcastResult:
    """Aggregate outcome of one broadcast"""
    newsletter_id: str
    total: int
    succeeded: int
    failed: int
    failures: List[DeliveryFailure] = field(default_factory=list)

    @classmethod
    def from_outcomes(cls, newsletter_id: str, outcomes: List[DeliveryOutcome]) -> 'BroadcastResult':
        failures = [DeliveryFailure(o.email, o.reason or 'unknown') for o in outcomes if not o.success]
        return cls(
            newsletter_id=newsletter_id,
            total=len(outcomes),
            succeeded=len(outcomes) - len(failures),
            failed=len(failures),
            failures=failures,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'newsletterId': self.newsletter_id,
            'total': self.total,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'failures': [{'email': f.email, 'reason': f.reason} for f in self.failures],
        }


class BroadcastDispatcher:
    """Resolves recipients, renders per-recipient email and fans out delivery"""

    def __init__(self,
                 database: DatabaseAdapter,
                 transport: MailTransport,
                 renderer: Optional[NewsletterEmailRenderer] = None,
                 sanitizer: Optional[ContentSanitizer] = None,
                 frontend_url: str = 'http://localhost:3000',
                 send_timeout: float = DEFAULT_SEND_TIMEOUT,
                 max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        self.database = database
        self.transport = transport
        self.renderer = renderer or NewsletterEmailRenderer()
        self.sanitizer = sanitizer or ContentSanitizer()
        self.frontend_url = frontend_url
        self.send_timeout = send_timeout
        self.max_concurrency = max(1, max_concurrency)

    async def broadcast(self, newsletter_id: str) -> BroadcastResult:
        """
        Send a published newsletter to every active subscriber

        Raises:
            NotFoundError: newsletter missing or unpublished
            NoRecipientsError: no active subscribers
            ConfigurationError: mail transport unusable
        """
        newsletter = self._published_newsletter(newsletter_id)

        # Recipients are resolved once; later unsubscribes do not affect this run
        recipients = [s.email for s in self.database.find_active_subscriptions()]
        if not recipients:
            raise NoRecipientsError('No active subscribers to send to')

        content = self.sanitizer.sanitize(newsletter.content)
        await self.transport.verify()

        logger.info(f"Broadcasting newsletter {newsletter.id} to {len(recipients)} subscribers")
        messages = [self._newsletter_email(newsletter, content, email) for email in recipients]
        outcomes = await self._deliver_all(messages)

        result = BroadcastResult.from_outcomes(newsletter.id, outcomes)
        logger.info(f"Broadcast of {newsletter.id} finished: {result.succeeded} sent, {result.failed} failed")
        for failure in result.failures:
            logger.warning(f"Delivery to {failure.email} failed: {failure.reason}")
        return result

    async def send_test(self, newsletter_id: str, email: str) -> DeliveryOutcome:
        """Run the broadcast pipeline for a single address"""
        address = normalize_email(email)
        newsletter = self._published_newsletter(newsletter_id)
        content = self.sanitizer.sanitize(newsletter.content)
        await self.transport.verify()

        outcomes = await self._deliver_all([self._newsletter_email(newsletter, content, address)])
        logger.info(f"Test send of {newsletter.id} to {address}: "
                    f"{'sent' if outcomes[0].success else outcomes[0].reason}")
        return outcomes[0]

    async def send_welcome(self, email: str) -> DeliveryOutcome:
        await self.transport.verify()
        unsubscribe_url = build_unsubscribe_url(self.frontend_url, email)
        message = OutboundEmail(
            to=email,
            subject=WELCOME_SUBJECT,
            text=self.renderer.render_welcome_text(unsubscribe_url),
            html=self.renderer.render_welcome(unsubscribe_url),
            headers=self._list_headers(unsubscribe_url),
        )
        outcomes = await self._deliver_all([message])
        return outcomes[0]

    def _published_newsletter(self, newsletter_id: str) -> Newsletter:
        newsletter = self.database.find_newsletter_by_id(newsletter_id)
        if newsletter is None:
            raise NotFoundError('Newsletter not found')
        return newsletter

    def _newsletter_email(self, newsletter: Newsletter, content: SanitizedContent, email: str) -> OutboundEmail:
        unsubscribe_url = build_unsubscribe_url(self.frontend_url, email)
        return OutboundEmail(
            to=email,
            subject=newsletter.title,
            text=content.text,
            html=self.renderer.render_newsletter(newsletter.title, content.html, unsubscribe_url),
            headers=self._list_headers(unsubscribe_url),
        )

    @staticmethod
    def _list_headers(unsubscribe_url: str) -> Dict[str, str]:
        # List management headers (RFC 2369, RFC 8058 one-click)
        return {
            'List-Unsubscribe': f"<{unsubscribe_url}>",
            'List-Unsubscribe-Post': 'List-Unsubscribe=One-Click',
        }

    async def _deliver_all(self, messages: List[OutboundEmail]) -> List[DeliveryOutcome]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        return list(await asyncio.gather(*(self._deliver(semaphore, m) for m in messages)))

    async def _deliver(self, semaphore: asyncio.Semaphore, message: OutboundEmail) -> DeliveryOutcome:
        async with semaphore:
            try:
                return await asyncio.wait_for(self.transport.send(message), timeout=self.send_timeout)
            except asyncio.TimeoutError:
                return DeliveryOutcome(message.to, False, f"timeout: no response within {self.send_timeout:g}s")
            except TransportError as e:
                return DeliveryOutcome(message.to, False, str(e), e.smtp_code)
            except Exception as e:
                # A faulty transport settles as a failure for this recipient only
                logger.error(f"Unexpected error delivering to {message.to}: {str(e)}", exc_info=True)
                return DeliveryOutcome(message.to, False, f"unknown: {str(e)}")


class ContextTask(Task):
    """Make celery tasks work with Flask app context"""

    def __call__(self, *args, **kwargs):
        if has_app_context():
            return self.run(*args, **kwargs)
        flask_app = getattr(self.app, 'flask_app', None)
        if flask_app is None:
            raise RuntimeError('Celery is not bound to a Flask app; call configure_celery first')
        with flask_app.app_context():
            return self.run(*args, **kwargs)


# Broker and backend come from Flask config in configure_celery
celery_app = Celery('newsletter', task_cls=ContextTask)
celery_app.conf.update({
    # Serialization
    'task_serializer': 'json',
    'result_serializer': 'json',
    'accept_content': ['json'],

    # Timezone
    'timezone': 'UTC',
    'enable_utc': True,

    # Task Execution
    'task_acks_late': True,
    'task_reject_on_worker_lost': True,
    'worker_prefetch_multiplier': 1,

    'result_expires': 3600,  # 1 hour
    'task_routes': {
        'tasks.email_sender.broadcast_newsletter': {'queue': 'broadcasts'},
    },
    'worker_hijack_root_logger': False,
})


@celery_app.task(bind=True, name='tasks.email_sender.broadcast_newsletter')
def broadcast_newsletter(self, newsletter_id: str) -> Dict[str, Any]:
    """
    Broadcast a newsletter from a worker

    Runs inside the Flask app context (see ContextTask) so it uses
    the same adapter and transport as the web process.
    """
    logger.info(f"Task {self.request.id}: broadcasting newsletter {newsletter_id}")
    result = asyncio.run(current_app.dispatcher.broadcast(newsletter_id))
    return result.to_dict()


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, **kwargs):
    logger.info(f"Task {task.name} [{task_id}] starting")


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, state=None, **kwargs):
    logger.info(f"Task {task.name} [{task_id}] completed with state: {state}")


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, **kwargs):
    logger.error(f"Task {sender.name} [{task_id}] failed: {exception}")
