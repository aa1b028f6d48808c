# app.py
"""
Flask Application Factory for the Newsletter Platform

Wires together:
- the database adapter (MongoDB or PostgreSQL/SQLite, chosen by DATABASE_TYPE)
- the broadcast dispatcher and its SMTP transport
- Celery for background broadcasts
- JSON error handling, logging, health checks and security headers

Run locally with `flask --app app run`; seed sample data with `flask --app app seed`.
"""

import atexit
import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import click
from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from api.auth import auth_bp
from api.newsletters import newsletters_bp
from api.subscriptions import subscriptions_bp
from config.settings import load_config
from core.content_sanitizer import ContentSanitizer
from core.database_adapter import DatabaseAdapter, open_database
from core.errors import (
    ConfigurationError, ConflictError, NewsletterError, NoRecipientsError,
    NotFoundError, StorageError, ValidationError,
)
from core.mail_transport import MailTransport, SMTPSettings, SMTPTransport
from core.template_engine import NewsletterEmailRenderer
from middleware.security import limiter, security_headers
from services.seed import ADMIN_EMAIL, ADMIN_PASSWORD, seed_database
from tasks.email_sender import BroadcastDispatcher, celery_app


def setup_logging(app: Flask) -> None:
    """
    Configure console (and optional rotating file) logging for the app and
    every module logger
    """
    # Remove default Flask handlers to avoid duplicate logs
    app.logger.handlers.clear()

    formatter = logging.Formatter(
        fmt='%(asctime)s %(name)-28s %(levelname)-8s %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, '_newsletter_handler', False)]:
        root.removeHandler(handler)
    root.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler._newsletter_handler = True
    root.addHandler(console_handler)

    if app.config.get('LOG_FILE'):
        file_handler = logging.handlers.RotatingFileHandler(
            app.config['LOG_FILE'],
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(formatter)
        file_handler._newsletter_handler = True
        root.addHandler(file_handler)

    # Suppress verbose third-party logs in production
    if not app.debug:
        for name in ('werkzeug', 'aiosmtplib', 'pymongo', 'sqlalchemy.engine'):
            logging.getLogger(name).setLevel(logging.WARNING)


def configure_database(app: Flask, database: Optional[DatabaseAdapter] = None) -> DatabaseAdapter:
    """Open the configured store unless an adapter was supplied"""
    if database is None:
        database = open_database(app.config)
        atexit.register(database.close)
    app.logger.info(f"Database configured: {database.database_type}")
    return database


def configure_mail(app: Flask, database: DatabaseAdapter,
                   transport: Optional[MailTransport] = None) -> BroadcastDispatcher:
    transport = transport or SMTPTransport(SMTPSettings.from_config(app.config))
    return BroadcastDispatcher(
        database=database,
        transport=transport,
        renderer=NewsletterEmailRenderer(),
        sanitizer=ContentSanitizer(),
        frontend_url=app.config['FRONTEND_URL'],
        send_timeout=float(app.config['SEND_TIMEOUT_SECONDS']),
        max_concurrency=int(app.config['MAX_CONCURRENT_SENDS']),
    )


def configure_celery(app: Flask):
    """
    Configure Celery from Flask config and bind it to this app so tasks run
    inside its application context
    """
    celery_app.conf.update({
        'broker_url': app.config['CELERY_BROKER_URL'],
        'result_backend': app.config['CELERY_RESULT_BACKEND'],
        'task_always_eager': bool(app.config.get('CELERY_TASK_ALWAYS_EAGER')),
    })
    celery_app.flask_app = app

    app.logger.info(f"Celery configured with broker {app.config['CELERY_BROKER_URL']}")
    return celery_app


def configure_security(app: Flask) -> None:
    limiter.init_app(app)

    # Configure CORS for API endpoints
    CORS(app,
         resources={r'/api/*': {'origins': app.config.get('CORS_ORIGINS', ['http://localhost:3000'])}},
         supports_credentials=True,
         allow_headers=['Content-Type', 'Authorization'])

    app.after_request(security_headers)


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(newsletters_bp, url_prefix='/api/newsletters')
    app.register_blueprint(subscriptions_bp, url_prefix='/api/subscriptions')


def _error_response(status_code: int, error: str, message: str, **extra: Any):
    body: Dict[str, Any] = {'error': error, 'message': message, 'status_code': status_code}
    body.update(extra)
    return jsonify(body), status_code


def configure_error_handlers(app: Flask) -> None:
    """
    Translate the error taxonomy and HTTP errors into JSON responses
    """
    @app.errorhandler(ValidationError)
    def validation_failed(error):
        return _error_response(400, 'Bad Request', 'Validation failed', errors=error.errors)

    @app.errorhandler(NoRecipientsError)
    def no_recipients(error):
        return _error_response(400, 'Bad Request', str(error))

    @app.errorhandler(NotFoundError)
    def entity_not_found(error):
        return _error_response(404, 'Not Found', str(error))

    @app.errorhandler(ConflictError)
    def conflict(error):
        extra = {'field': error.field} if error.field else {}
        return _error_response(409, 'Conflict', str(error), **extra)

    @app.errorhandler(ConfigurationError)
    def unavailable(error):
        app.logger.error(f"Configuration error on {request.method} {request.path}: {error}", exc_info=True)
        return _error_response(503, 'Service Unavailable', 'Service temporarily unavailable')

    @app.errorhandler(StorageError)
    def storage_failed(error):
        app.logger.error(f"Storage error on {request.method} {request.path}: {error}", exc_info=True)
        return _error_response(500, 'Internal Server Error', 'An unexpected error occurred')

    @app.errorhandler(NewsletterError)
    def newsletter_error(error):
        app.logger.error(f"Unhandled platform error: {error}", exc_info=True)
        return _error_response(500, 'Internal Server Error', 'An unexpected error occurred')

    @app.errorhandler(404)
    def not_found(error):
        return _error_response(404, 'Not Found', 'The requested resource was not found')

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _error_response(405, 'Method Not Allowed', 'Method not allowed for this resource')

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        app.logger.warning(f"Rate limit exceeded for {request.remote_addr}")
        return _error_response(429, 'Rate Limit Exceeded', 'Too many requests. Please try again later.')

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle unexpected exceptions"""
        if isinstance(e, HTTPException):
            return _error_response(e.code or 500, e.name, e.description or '')

        app.logger.error(f"Unhandled exception: {e}", exc_info=True)
        return _error_response(500, 'Internal Server Error', 'An unexpected error occurred')


def configure_health_checks(app: Flask) -> None:
    @app.route('/health')
    def health_check():
        """Basic health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'version': app.config.get('VERSION', '1.0.0')
        })

    @app.route('/health/detailed')
    def detailed_health_check():
        """Detailed health check with component status"""
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'components': {}
        }

        try:
            app.database.ping()
            health_status['components']['database'] = f'healthy ({app.database.database_type})'
        except ConfigurationError as e:
            app.logger.error(f"Database health check failed: {e.__cause__ or e}")
            health_status['components']['database'] = 'unhealthy'
            health_status['status'] = 'unhealthy'

        smtp = SMTPSettings.from_config(app.config)
        health_status['components']['mail'] = 'configured' if smtp.configured else 'not configured'

        status_code = 200 if health_status['status'] == 'healthy' else 503
        return jsonify(health_status), status_code


def register_commands(app: Flask) -> None:
    @app.cli.command('seed')
    def seed_command():
        """Replace all data with sample newsletters, subscribers and an admin"""
        created = seed_database(app.database)
        click.echo(f"Seeded {app.database.database_type} database: {created}")
        click.echo(f"Admin login: {ADMIN_EMAIL} / {ADMIN_PASSWORD}")


def create_app(config_name: Optional[str] = None,
               database: Optional[DatabaseAdapter] = None,
               transport: Optional[MailTransport] = None,
               config_overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Flask application factory

    Args:
        config_name: Configuration environment ('development', 'testing', 'production')
        database: Pre-built adapter; by default one is opened from config
        transport: Mail transport; by default SMTP from config
        config_overrides: Values applied on top of the configuration class

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)
    app.config.from_object(load_config(config_name))
    app.config.update(config_overrides or {})

    if not app.testing and not app.debug:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    setup_logging(app)
    app.logger.info(f"Starting newsletter application ({config_name or 'default'} configuration)")

    app.database = configure_database(app, database)
    app.dispatcher = configure_mail(app, app.database, transport)
    app.celery = configure_celery(app)

    configure_security(app)
    register_blueprints(app)
    configure_error_handlers(app)
    configure_health_checks(app)
    register_commands(app)

    app.logger.info("Flask application factory completed successfully")
    return app


if __name__ == '__main__':
    create_app('development').run(host='0.0.0.0', port=5000, debug=True)
