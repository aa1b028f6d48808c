"""
Application factory: configuration, health checks, error responses and
security headers.
"""

from app import create_app
from config.settings import ProductionConfig, TestingConfig, load_config
from core.errors import ConfigurationError


def test_load_config():
    assert load_config('testing') is TestingConfig
    assert load_config('staging') is ProductionConfig


def test_factory_opens_configured_database(transport):
    app = create_app('testing', transport=transport)

    assert app.database.database_type == 'sqlite'
    assert app.config['TESTING'] is True
    response = app.test_client().get('/health/detailed')
    assert response.status_code == 200


class TestHealth:

    def test_basic(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'

    def test_detailed(self, client):
        body = client.get('/health/detailed').get_json()

        assert body['status'] == 'healthy'
        assert body['components'] == {'database': 'healthy (sqlite)', 'mail': 'configured'}

    def test_database_down(self, app, client, monkeypatch):
        def unreachable():
            raise ConfigurationError('Database is unavailable')

        monkeypatch.setattr(app.database, 'ping', unreachable)
        response = client.get('/health/detailed')

        assert response.status_code == 503
        assert response.get_json()['components']['database'] == 'unhealthy'

    def test_mail_not_configured(self, app_database, transport):
        app = create_app('testing', database=app_database, transport=transport,
                         config_overrides={'SMTP_HOST': None})
        body = app.test_client().get('/health/detailed').get_json()
        assert body['components']['mail'] == 'not configured'


class TestErrorResponses:

    def test_unknown_route(self, client):
        response = client.get('/api/does-not-exist')

        assert response.status_code == 404
        assert response.get_json() == {
            'error': 'Not Found',
            'message': 'The requested resource was not found',
            'status_code': 404,
        }

    def test_method_not_allowed(self, client):
        response = client.patch('/api/newsletters')
        assert response.status_code == 405

    def test_unexpected_error_is_generic(self, app, client, monkeypatch):
        def broken():
            raise RuntimeError('connection string with secrets')

        monkeypatch.setattr(app.database, 'find_published_newsletters', broken)
        response = client.get('/api/newsletters')

        assert response.status_code == 500
        assert 'secrets' not in response.get_data(as_text=True)


def test_security_headers(client):
    response = client.get('/health')

    assert response.headers['X-Content-Type-Options'] == 'nosniff'
    assert response.headers['X-Frame-Options'] == 'DENY'
