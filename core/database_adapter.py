# core/database_adapter.py
"""
Database Adapter

Single facade over whichever storage backend the process was started with.
The engine is chosen once by `open_backend`; every operation below runs the
same code against either engine and returns plain entity dataclasses.

Timestamps, slug generation and the publish-once rule for `published_at`
live here rather than in the engines, so both backends behave identically.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from core.document_store import DocumentBackend
from core.entities import (
    Newsletter, Subscription, User,
    validate_newsletter, validate_subscription, validate_user,
)
from core.entity_store import (
    ALL_SCHEMAS, NEWSLETTER_SCHEMA, SUBSCRIPTION_SCHEMA, USER_SCHEMA,
    SortOrder, StorageBackend,
)
from core.errors import ConfigurationError, NotFoundError
from core.slug import slugify
from core.sql_store import SQLBackend

logger = logging.getLogger(__name__)

SUPPORTED_DATABASE_TYPES = ('mongodb', 'postgresql', 'sqlite')


def utcnow() -> datetime:
    """Naive UTC timestamp, the form both engines store and return"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_millis(stamp: Optional[datetime]) -> Optional[datetime]:
    """Truncate to milliseconds, the finest precision MongoDB keeps"""
    if stamp is None:
        return None
    return stamp.replace(microsecond=stamp.microsecond // 1000 * 1000)


def _lookup_email(email: Any) -> Optional[str]:
    if not isinstance(email, str) or not email.strip():
        return None
    return email.strip().lower()


class DatabaseAdapter:
    """Engine-agnostic data access for users, newsletters and subscriptions"""

    def __init__(self, backend: StorageBackend, clock: Callable[[], datetime] = utcnow):
        self.backend = backend
        self._clock = clock
        self.users = backend.store(USER_SCHEMA)
        self.newsletters = backend.store(NEWSLETTER_SCHEMA)
        self.subscriptions = backend.store(SUBSCRIPTION_SCHEMA)

    @property
    def database_type(self) -> str:
        return self.backend.database_type

    def now(self) -> datetime:
        return to_millis(self._clock())

    # Lifecycle

    def initialize(self) -> None:
        self.backend.initialize()
        logger.info(f"Database adapter ready ({self.database_type})")

    def ping(self) -> None:
        self.backend.ping()

    def close(self) -> None:
        self.backend.close()

    def purge(self) -> Dict[str, int]:
        """Remove every user, newsletter and subscription (seeding only)"""
        counts = {schema.name: self.backend.store(schema).purge() for schema in ALL_SCHEMAS}
        logger.warning(f"Purged all records: {counts}")
        return counts

    # Users

    def create_user(self, data: Dict[str, Any]) -> User:
        """
        Create a user. The password must already be hashed.

        Raises:
            ValidationError: on missing or malformed fields
            ConflictError: when the email is already registered
        """
        values = validate_user(data)
        now = self.now()
        values.update(created_at=now, updated_at=now)
        user = self.users.insert(values)
        logger.info(f"User created: {user.email} ({user.role})")
        return user

    def find_user_by_email(self, email: str, include_password: bool = False) -> Optional[User]:
        lookup = _lookup_email(email)
        if lookup is None:
            return None
        return self.users.find_one({'email': lookup}, include_hidden=include_password)

    def find_user_by_id(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    # Newsletters

    def find_published_newsletters(self) -> List[Newsletter]:
        return self.newsletters.find_many({'published': True}, SortOrder('published_at'))

    def find_newsletter_by_id(self, newsletter_id: str) -> Optional[Newsletter]:
        """Published newsletters only; drafts read as not found"""
        newsletter = self.newsletters.get(newsletter_id)
        if newsletter is None or not newsletter.published:
            return None
        return newsletter

    def find_all_newsletters(self) -> List[Newsletter]:
        return self.newsletters.find_many({}, SortOrder('created_at'))

    def find_newsletter_by_id_for_update(self, newsletter_id: str) -> Optional[Newsletter]:
        return self.newsletters.get(newsletter_id)

    def create_newsletter(self, data: Dict[str, Any]) -> Newsletter:
        values = validate_newsletter(data)
        now = self.now()

        # An explicit published_at only counts for newsletters created published
        requested_published_at = to_millis(values.pop('published_at', None))
        values['published_at'] = (requested_published_at or now) if values['published'] else None
        values['slug'] = slugify(values['title']) or None
        values.update(created_at=now, updated_at=now)

        newsletter = self.newsletters.insert(values)
        logger.info(f"Newsletter created: {newsletter.id} slug={newsletter.slug!r} "
                    f"published={newsletter.published}")
        return newsletter

    def update_newsletter(self, newsletter_id: str, patch: Dict[str, Any]) -> Optional[Newsletter]:
        """
        Apply a partial update.

        The slug is never regenerated. `published_at` is stamped the first
        time the newsletter becomes published and kept from then on.

        Returns:
            The full updated newsletter, or None if it does not exist
        """
        values = validate_newsletter(patch, partial=True)
        existing = self.newsletters.get(newsletter_id)
        if existing is None:
            return None

        now = self.now()
        if values.get('published') and existing.published_at is None:
            values['published_at'] = now
        values['updated_at'] = now
        return self.newsletters.update(newsletter_id, values)

    def delete_newsletter(self, newsletter_id: str) -> bool:
        deleted = self.newsletters.delete(newsletter_id)
        if deleted:
            logger.info(f"Newsletter deleted: {newsletter_id}")
        return deleted

    # Subscriptions

    def find_subscription_by_email(self, email: str) -> Optional[Subscription]:
        lookup = _lookup_email(email)
        if lookup is None:
            return None
        return self.subscriptions.find_one({'email': lookup})

    def create_subscription(self, data: Dict[str, Any]) -> Subscription:
        values = validate_subscription(data)
        now = self.now()
        values.update(
            subscribed_at=now,
            unsubscribed_at=None if values['is_active'] else now,
            created_at=now,
            updated_at=now,
        )
        return self.subscriptions.insert(values)

    def update_subscription(self, subscription: Subscription, patch: Dict[str, Any]) -> Subscription:
        """
        Apply a patch to an existing subscription.

        Activation changes stamp their timestamps unless the patch sets them:
        reactivating resets `subscribed_at` and clears `unsubscribed_at`,
        deactivating sets `unsubscribed_at`.

        Raises:
            NotFoundError: when the subscription no longer exists
        """
        values = validate_subscription(patch, partial=True)
        now = self.now()

        if 'is_active' in values and values['is_active'] != subscription.is_active:
            if values['is_active']:
                values.setdefault('subscribed_at', now)
                values.setdefault('unsubscribed_at', None)
            else:
                values.setdefault('unsubscribed_at', now)
        values['updated_at'] = now

        updated = self.subscriptions.update(subscription.id, values)
        if updated is None:
            raise NotFoundError('Subscription not found')
        return updated

    def find_active_subscriptions(self) -> List[Subscription]:
        return self.subscriptions.find_many({'is_active': True}, SortOrder('subscribed_at'))


def open_backend(config: Mapping[str, Any]) -> StorageBackend:
    """
    Build the storage backend named by DATABASE_TYPE

    Raises:
        ConfigurationError: unknown engine or missing connection settings
    """
    database_type = (config.get('DATABASE_TYPE') or 'mongodb').lower()

    if database_type == 'mongodb':
        uri = config.get('MONGODB_URI')
        if not uri:
            raise ConfigurationError('MONGODB_URI is required when DATABASE_TYPE is mongodb')
        return DocumentBackend.from_uri(
            uri, int(config.get('MONGODB_SERVER_SELECTION_TIMEOUT_MS') or 5000)
        )

    if database_type in ('postgresql', 'sqlite'):
        url = config.get('DATABASE_URL')
        if not url:
            raise ConfigurationError(f"DATABASE_URL is required when DATABASE_TYPE is {database_type}")
        return SQLBackend.from_url(url, config.get('SQLALCHEMY_ENGINE_OPTIONS'))

    raise ConfigurationError(
        f"Unsupported DATABASE_TYPE {database_type!r}; expected one of {', '.join(SUPPORTED_DATABASE_TYPES)}"
    )


def open_database(config: Mapping[str, Any], clock: Callable[[], datetime] = utcnow) -> DatabaseAdapter:
    """Open the configured backend, ensure its schema and wrap it in an adapter"""
    adapter = DatabaseAdapter(open_backend(config), clock=clock)
    adapter.initialize()
    return adapter
