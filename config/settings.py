# config/settings.py
"""
Application configuration
"""

import os
import secrets
from datetime import timedelta
from typing import Optional, Type


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_optional_bool(name: str) -> Optional[bool]:
    if os.environ.get(name) is None:
        return None
    return _env_bool(name)


class BaseConfig:
    """Settings shared by every environment, overridable from the environment"""

    # Session settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_urlsafe(32)
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # 2MB request bodies

    # Database: mongodb | postgresql | sqlite
    DATABASE_TYPE = os.environ.get('DATABASE_TYPE', 'mongodb')
    MONGODB_URI = os.environ.get('MONGODB_URI', 'mongodb://localhost:27017/newsletter')
    MONGODB_SERVER_SELECTION_TIMEOUT_MS = int(os.environ.get('MONGODB_SERVER_SELECTION_TIMEOUT_MS', 5000))
    DATABASE_URL = os.environ.get('DATABASE_URL', 'postgresql+psycopg://localhost:5432/newsletter')
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}

    # Mail transport
    SMTP_HOST = os.environ.get('SMTP_HOST')
    SMTP_PORT = int(os.environ.get('SMTP_PORT', 587))
    SMTP_USER = os.environ.get('SMTP_USER')
    SMTP_PASS = os.environ.get('SMTP_PASS')
    SMTP_USE_TLS = _env_optional_bool('SMTP_USE_TLS')
    SMTP_START_TLS = _env_optional_bool('SMTP_START_TLS')
    SMTP_TIMEOUT = float(os.environ.get('SMTP_TIMEOUT', 60))
    FROM_EMAIL = os.environ.get('FROM_EMAIL')
    FROM_NAME = os.environ.get('FROM_NAME', 'Newsletter')

    # Broadcast
    SEND_TIMEOUT_SECONDS = float(os.environ.get('SEND_TIMEOUT_SECONDS', 30))
    MAX_CONCURRENT_SENDS = int(os.environ.get('MAX_CONCURRENT_SENDS', 10))
    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:3000')
    SEND_WELCOME_EMAIL = _env_bool('SEND_WELCOME_EMAIL')

    # Subscribe form
    CAPTCHA_ENABLED = _env_bool('CAPTCHA_ENABLED', True)

    # CORS
    CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', 'http://localhost:3000').split(',') if o.strip()]

    # Rate limiting
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'redis://localhost:6379/4')
    RATELIMIT_STRATEGY = 'fixed-window'
    RATELIMIT_HEADERS_ENABLED = True
    SUBSCRIBE_RATE_LIMIT = os.environ.get('SUBSCRIBE_RATE_LIMIT', '10 per minute')

    # Celery
    CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
    CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
    CELERY_TASK_ALWAYS_EAGER = _env_bool('CELERY_TASK_ALWAYS_EAGER')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')

    # Security headers
    SECURITY_HEADERS = {
        'X-Content-Type-Options': 'nosniff',
        'X-Frame-Options': 'DENY',
        'X-XSS-Protection': '1; mode=block',
        'Strict-Transport-Security': 'max-age=31536000; includeSubDomains',
        'Referrer-Policy': 'strict-origin-when-cross-origin',
        'Permissions-Policy': 'camera=(), microphone=(), geolocation=()'
    }


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')


class TestingConfig(BaseConfig):
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    SESSION_COOKIE_SECURE = False

    DATABASE_TYPE = 'sqlite'
    DATABASE_URL = 'sqlite://'

    SMTP_HOST = 'localhost'
    SMTP_PORT = 1025
    FROM_EMAIL = 'newsletter@example.com'
    FRONTEND_URL = 'http://localhost:3000'
    SEND_TIMEOUT_SECONDS = 5.0
    SEND_WELCOME_EMAIL = False

    CAPTCHA_ENABLED = False
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'

    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'
    CELERY_TASK_ALWAYS_EAGER = True

    LOG_LEVEL = 'WARNING'
    LOG_FILE = None


class ProductionConfig(BaseConfig):
    DEBUG = False


CONFIGS = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def load_config(name: Optional[str] = None) -> Type[BaseConfig]:
    """Configuration class by name; unknown names fall back to production"""
    name = name or os.environ.get('FLASK_ENV', 'production')
    return CONFIGS.get(name, ProductionConfig)
