# services/subscriptions.py
"""
Subscribe / unsubscribe flow

One subscription row per email. Subscribing again after an unsubscribe
reactivates that row instead of creating a new one.
"""

import logging
from typing import Any, Dict, Optional

from core.database_adapter import DatabaseAdapter
from core.entities import DEFAULT_SOURCE, Subscription, normalize_email
from core.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Subscription state transitions on top of the database adapter"""

    def __init__(self, database: DatabaseAdapter):
        self.database = database

    def subscribe(self, email: str, source: Optional[str] = None) -> Subscription:
        """
        Subscribe an email address

        Raises:
            ValidationError: invalid email
            ConflictError: the address is already actively subscribed
        """
        address = normalize_email(email)
        existing = self.database.find_subscription_by_email(address)

        if existing and existing.is_active:
            raise ConflictError('Email already subscribed', field='email')

        if existing:
            patch: Dict[str, Any] = {'is_active': True}
            if source:
                patch['source'] = source
            subscription = self.database.update_subscription(existing, patch)
            logger.info(f"Subscription reactivated: {address}")
            return subscription

        subscription = self.database.create_subscription({
            'email': address,
            'source': source or DEFAULT_SOURCE,
        })
        logger.info(f"New subscription: {address} (source: {subscription.source})")
        return subscription

    def unsubscribe(self, email: str) -> Subscription:
        """
        Deactivate a subscription

        Raises:
            NotFoundError: no active subscription for this address
        """
        address = normalize_email(email)
        existing = self.database.find_subscription_by_email(address)
        if existing is None or not existing.is_active:
            raise NotFoundError('Subscription not found')

        subscription = self.database.update_subscription(existing, {'is_active': False})
        logger.info(f"Unsubscribed: {address}")
        return subscription

    def status(self, email: str) -> Dict[str, Any]:
        subscription = self.database.find_subscription_by_email(email)
        if subscription is None:
            return {'isSubscribed': False}
        return {
            'isSubscribed': subscription.is_active,
            'subscribedAt': subscription.subscribed_at.isoformat() if subscription.subscribed_at else None,
        }
