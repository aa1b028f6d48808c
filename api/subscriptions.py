# api/subscriptions.py
"""
Subscription API: public subscribe/unsubscribe and admin listing
"""

import asyncio
import logging

from flask import Blueprint, current_app, jsonify

from api.common import json_body
from core.captcha import verify_captcha
from core.errors import NewsletterError, ValidationError
from middleware.security import limiter, public_form_limit, require_admin
from services.subscriptions import SubscriptionService

subscriptions_bp = Blueprint('subscriptions', __name__)
logger = logging.getLogger(__name__)


def _service() -> SubscriptionService:
    return SubscriptionService(current_app.database)


def _send_welcome(email: str) -> None:
    """Best effort; a failed welcome email never fails the subscription"""
    try:
        outcome = asyncio.run(current_app.dispatcher.send_welcome(email))
    except NewsletterError as e:
        logger.warning(f"Welcome email to {email} not sent: {e}")
        return
    if not outcome.success:
        logger.warning(f"Welcome email to {email} failed: {outcome.reason}")


@subscriptions_bp.route('/subscribe', methods=['POST'])
@limiter.limit(public_form_limit)
def subscribe():
    data = json_body()

    if current_app.config.get('CAPTCHA_ENABLED'):
        if not verify_captcha(data.get('captchaId'), data.get('captchaInput')):
            raise ValidationError({'captcha': 'Invalid CAPTCHA. Please try again.'})

    subscription = _service().subscribe(data.get('email'), data.get('source'))

    if current_app.config.get('SEND_WELCOME_EMAIL'):
        _send_welcome(subscription.email)

    return jsonify({
        'message': 'Successfully subscribed to newsletter!',
        'subscription': {
            'email': subscription.email,
            'subscribedAt': subscription.subscribed_at.isoformat(),
        }
    }), 201


@subscriptions_bp.route('/unsubscribe', methods=['POST'])
@limiter.limit(public_form_limit)
def unsubscribe():
    data = json_body()
    _service().unsubscribe(data.get('email'))
    return jsonify({'message': 'Successfully unsubscribed from newsletter'})


@subscriptions_bp.route('/status/<email>', methods=['GET'])
def status(email: str):
    return jsonify(_service().status(email))


@subscriptions_bp.route('/admin/all', methods=['GET'])
@require_admin
def list_active():
    subscriptions = current_app.database.find_active_subscriptions()
    return jsonify({
        'count': len(subscriptions),
        'subscriptions': [
            {
                'email': s.email,
                'subscribedAt': s.subscribed_at.isoformat() if s.subscribed_at else None,
            }
            for s in subscriptions
        ]
    })
