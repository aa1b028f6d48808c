from werkzeug.security import generate_password_hash


def _register(client, **overrides):
    payload = {'name': 'Ada Lovelace', 'email': 'ada@example.com', 'password': 'secret123'}
    payload.update(overrides)
    return client.post('/api/auth/register', json=payload)


class TestRegister:

    def test_register_creates_user_and_session(self, app, client):
        response = _register(client)

        assert response.status_code == 201
        user = response.get_json()['user']
        assert user['email'] == 'ada@example.com'
        assert user['role'] == 'user'
        assert 'password' not in user

        stored = app.database.find_user_by_email('ada@example.com', include_password=True)
        assert stored.password != 'secret123'

        me = client.get('/api/auth/me')
        assert me.status_code == 200
        assert me.get_json()['user']['id'] == user['id']

    def test_missing_fields(self, client):
        response = client.post('/api/auth/register', json={'email': 'ada@example.com'})

        assert response.status_code == 400
        assert set(response.get_json()['errors']) == {'name', 'password'}

    def test_short_password(self, client):
        response = _register(client, password='12345')

        assert response.status_code == 400
        assert 'password' in response.get_json()['errors']

    def test_duplicate_email(self, client):
        _register(client)
        response = _register(client, email='ADA@example.com')

        assert response.status_code == 409
        assert response.get_json()['field'] == 'email'

    def test_registered_users_are_not_admins(self, client):
        _register(client)
        assert client.get('/api/newsletters/admin/all').status_code == 403


class TestLogin:

    def _user(self, app, **extra):
        data = {
            'name': 'Grace Hopper',
            'email': 'grace@example.com',
            'password': generate_password_hash('cobol1959'),
            'role': 'admin',
        }
        data.update(extra)
        return app.database.create_user(data)

    def test_login(self, app, client):
        self._user(app)

        response = client.post('/api/auth/login', json={'email': 'Grace@Example.com', 'password': 'cobol1959'})

        assert response.status_code == 200
        assert response.get_json()['user']['role'] == 'admin'
        assert client.get('/api/newsletters/admin/all').status_code == 200

    def test_wrong_password(self, app, client):
        self._user(app)

        response = client.post('/api/auth/login', json={'email': 'grace@example.com', 'password': 'fortran'})

        assert response.status_code == 401
        assert response.get_json()['message'] == 'Invalid credentials'

    def test_unknown_user(self, client):
        response = client.post('/api/auth/login', json={'email': 'nobody@example.com', 'password': 'whatever'})
        assert response.status_code == 401

    def test_disabled_account(self, app, client):
        self._user(app, is_active=False)

        response = client.post('/api/auth/login', json={'email': 'grace@example.com', 'password': 'cobol1959'})

        assert response.status_code == 403
        assert client.get('/api/auth/me').status_code == 401

    def test_logout(self, app, client):
        self._user(app)
        client.post('/api/auth/login', json={'email': 'grace@example.com', 'password': 'cobol1959'})

        assert client.post('/api/auth/logout').status_code == 200
        assert client.get('/api/auth/me').status_code == 401
