# middleware/security.py
"""
Security Middleware for Request Processing

The session carries the principal (`user_id`, `role`) set at login; the role
claim is trusted as issued.
"""

from flask import current_app, jsonify, request, session
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from functools import wraps
import logging
from typing import Optional

from core.entities import Role

logger = logging.getLogger(__name__)

# Bound to the app in create_app; storage and strategy come from RATELIMIT_* config
limiter = Limiter(key_func=get_remote_address)


def public_form_limit() -> str:
    return current_app.config.get('SUBSCRIBE_RATE_LIMIT', '10 per minute')


def security_headers(response):
    """Add security headers to all responses"""
    for name, value in current_app.config.get('SECURITY_HEADERS', {}).items():
        response.headers[name] = value
    return response


def current_user_id() -> Optional[str]:
    return session.get('user_id')


def current_role() -> Optional[str]:
    return session.get('role')


def _denied(status_code: int, error: str, message: str):
    return jsonify({'error': error, 'message': message, 'status_code': status_code}), status_code


def require_auth(f):
    """Decorator to require an authenticated principal"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user_id():
            logger.warning(f"Unauthenticated request to {request.endpoint} from {request.remote_addr}")
            return _denied(401, 'Unauthorized', 'Authentication required')
        return f(*args, **kwargs)
    return decorated_function


def require_admin(f):
    """Decorator to require an authenticated principal with the admin role"""
    @wraps(f)
    @require_auth
    def decorated_function(*args, **kwargs):
        if current_role() != Role.ADMIN.value:
            logger.warning(f"Non-admin user {current_user_id()} denied {request.endpoint}")
            return _denied(403, 'Forbidden', 'Admin access required')
        return f(*args, **kwargs)
    return decorated_function
