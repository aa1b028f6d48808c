# api/auth.py
"""
Session Authentication API
"""

from flask import Blueprint, current_app, jsonify, session
from werkzeug.security import check_password_hash, generate_password_hash
import logging

from api.common import json_body, require_fields
from core.entities import PASSWORD_MIN_LENGTH, Role
from core.errors import NotFoundError, ValidationError
from middleware.security import current_user_id, limiter, public_form_limit, require_auth

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

# Upper bound on the raw password; the stored hash has its own limit
RAW_PASSWORD_MAX_LENGTH = 128


def _start_session(user) -> None:
    session.clear()
    session.update({
        'user_id': user.id,
        'role': user.role,
    })
    session.permanent = True


@auth_bp.route('/register', methods=['POST'])
@limiter.limit(public_form_limit)
def register():
    """Create a regular user account and log it in"""
    data = json_body()
    require_fields(data, ('name', 'email', 'password'))

    password = data['password']
    if not isinstance(password, str) or not (PASSWORD_MIN_LENGTH <= len(password) <= RAW_PASSWORD_MAX_LENGTH):
        raise ValidationError({
            'password': f"Password must be between {PASSWORD_MIN_LENGTH} and {RAW_PASSWORD_MAX_LENGTH} characters"
        })

    user = current_app.database.create_user({
        'name': data['name'],
        'email': data['email'],
        'password': generate_password_hash(password),
        'role': Role.USER.value,
    })
    _start_session(user)
    logger.info(f"User registered: {user.email}")
    return jsonify({'success': True, 'user': user.to_dict()}), 201


@auth_bp.route('/login', methods=['POST'])
@limiter.limit(public_form_limit)
def login():
    data = json_body()
    require_fields(data, ('email', 'password'))

    user = current_app.database.find_user_by_email(data['email'], include_password=True)
    if not user or not check_password_hash(user.password, str(data['password'])):
        logger.warning(f"Failed login for {data['email']}")
        return jsonify({
            'error': 'Unauthorized',
            'message': 'Invalid credentials',
            'status_code': 401
        }), 401

    if not user.is_active:
        return jsonify({
            'error': 'Forbidden',
            'message': 'Account is disabled',
            'status_code': 403
        }), 403

    _start_session(user)
    logger.info(f"User logged in: {user.email} ({user.role})")
    return jsonify({'success': True, 'user': user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    user_id = current_user_id()
    session.clear()
    if user_id:
        logger.info(f"User {user_id} logged out")
    return jsonify({'success': True, 'message': 'Logged out successfully'})


@auth_bp.route('/me', methods=['GET'])
@require_auth
def me():
    user = current_app.database.find_user_by_id(current_user_id())
    if user is None:
        session.clear()
        raise NotFoundError('User not found')
    return jsonify({'user': user.to_dict()})
