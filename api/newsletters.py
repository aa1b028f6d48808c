# api/newsletters.py
"""
Newsletter API: public reading, admin authoring and sending
"""

import asyncio
import logging

from flask import Blueprint, current_app, jsonify

from api.common import json_body, pick
from core.errors import NotFoundError
from middleware.security import require_admin
from tasks.email_sender import broadcast_newsletter

newsletters_bp = Blueprint('newsletters', __name__)
logger = logging.getLogger(__name__)

NEWSLETTER_FIELDS = {
    'title': 'title',
    'content': 'content',
    'excerpt': 'excerpt',
    'published': 'published',
}


@newsletters_bp.route('', methods=['GET'])
def list_published():
    newsletters = current_app.database.find_published_newsletters()
    return jsonify([n.to_dict() for n in newsletters])


@newsletters_bp.route('/<newsletter_id>', methods=['GET'])
def get_published(newsletter_id: str):
    newsletter = current_app.database.find_newsletter_by_id(newsletter_id)
    if newsletter is None:
        raise NotFoundError('Newsletter not found')
    return jsonify(newsletter.to_dict())


@newsletters_bp.route('/admin/all', methods=['GET'])
@require_admin
def list_all():
    newsletters = current_app.database.find_all_newsletters()
    return jsonify([n.to_dict() for n in newsletters])


@newsletters_bp.route('', methods=['POST'])
@require_admin
def create():
    data = pick(json_body(), NEWSLETTER_FIELDS)
    newsletter = current_app.database.create_newsletter(data)
    return jsonify(newsletter.to_dict()), 201


@newsletters_bp.route('/<newsletter_id>', methods=['PUT'])
@require_admin
def update(newsletter_id: str):
    patch = pick(json_body(), NEWSLETTER_FIELDS)
    newsletter = current_app.database.update_newsletter(newsletter_id, patch)
    if newsletter is None:
        raise NotFoundError('Newsletter not found')
    return jsonify(newsletter.to_dict())


@newsletters_bp.route('/<newsletter_id>', methods=['DELETE'])
@require_admin
def delete(newsletter_id: str):
    if not current_app.database.delete_newsletter(newsletter_id):
        raise NotFoundError('Newsletter not found')
    return jsonify({'message': 'Newsletter deleted successfully'})


@newsletters_bp.route('/<newsletter_id>/send', methods=['POST'])
@require_admin
def send(newsletter_id: str):
    """
    Broadcast to all active subscribers

    With {"background": true} the broadcast is queued on Celery and the task
    id is returned; otherwise the aggregate result is returned directly.
    """
    data = json_body()
    if data.get('background'):
        if current_app.database.find_newsletter_by_id(newsletter_id) is None:
            raise NotFoundError('Newsletter not found')
        task = broadcast_newsletter.delay(newsletter_id)
        logger.info(f"Broadcast of {newsletter_id} queued as task {task.id}")
        return jsonify({'message': 'Broadcast queued', 'taskId': task.id}), 202

    result = asyncio.run(current_app.dispatcher.broadcast(newsletter_id))
    return jsonify({
        'message': f"Newsletter sent to {result.succeeded} of {result.total} subscribers",
        'result': result.to_dict(),
    })


@newsletters_bp.route('/<newsletter_id>/send-test', methods=['POST'])
@require_admin
def send_test(newsletter_id: str):
    data = json_body()
    outcome = asyncio.run(current_app.dispatcher.send_test(newsletter_id, data.get('email')))
    status_code = 200 if outcome.success else 502
    return jsonify({
        'message': 'Test email sent' if outcome.success else 'Test email failed',
        'result': outcome.to_dict(),
    }), status_code
