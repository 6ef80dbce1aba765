"""
Authentication Tests

Covers local registration and login, bearer-token verification on protected
routes (every rejection reason code) and Google account linking.
"""

from types import SimpleNamespace

import pytest

from models import db, User, AuthProvider
from routes.google_auth import upsert_google_user


class TestRegistration:
    """POST /api/auth/register"""

    def _register(self, client, **overrides):
        body = {'username': 'alice', 'email': 'alice@example.com', 'password': 'secret123'}
        body.update(overrides)
        return client.post('/api/auth/register', json=body)

    def test_register_returns_token_and_user(self, client):
        response = self._register(client)

        assert response.status_code == 201
        data = response.get_json()
        assert data['success'] is True
        assert data['token']
        assert data['user']['username'] == 'alice'
        assert data['user']['auth_provider'] == 'local'
        assert 'password_hash' not in data['user']

    def test_register_token_authenticates(self, client):
        token = self._register(client).get_json()['token']

        response = client.get('/api/auth/me', headers={'Authorization': f'Bearer {token}'})

        assert response.status_code == 200
        assert response.get_json()['user']['email'] == 'alice@example.com'

    def test_missing_fields_are_listed(self, client):
        response = client.post('/api/auth/register', json={'username': 'alice'})

        assert response.status_code == 400
        data = response.get_json()
        assert data['code'] == 'MISSING_FIELDS'
        assert data['missing'] == ['email', 'password']

    @pytest.mark.parametrize('overrides, code', [
        ({'username': 'al'}, 'INVALID_USERNAME_LENGTH'),
        ({'username': 'a' * 31}, 'INVALID_USERNAME_LENGTH'),
        ({'password': '12345'}, 'INVALID_PASSWORD_LENGTH'),
        ({'email': 'not-an-email'}, 'INVALID_EMAIL_FORMAT'),
    ])
    def test_invalid_fields_rejected(self, client, overrides, code):
        response = self._register(client, **overrides)

        assert response.status_code == 400
        assert response.get_json()['code'] == code

    def test_duplicate_username(self, client):
        self._register(client)

        response = self._register(client, email='other@example.com')

        assert response.status_code == 409
        assert response.get_json()['code'] == 'DUPLICATE_USERNAME'

    def test_duplicate_email(self, client):
        self._register(client)

        response = self._register(client, username='alice2', email='ALICE@example.com')

        assert response.status_code == 409
        assert response.get_json()['code'] == 'DUPLICATE_EMAIL'


class TestLogin:
    """POST /api/auth/login"""

    def test_login_with_username(self, client, test_user):
        response = client.post('/api/auth/login', json={
            'username': test_user.username,
            'password': 'testpassword123',
        })

        assert response.status_code == 200
        assert response.get_json()['token']

    def test_login_with_email(self, client, test_user):
        response = client.post('/api/auth/login', json={
            'email': test_user.email,
            'password': 'testpassword123',
        })

        assert response.status_code == 200

    def test_wrong_password(self, client, test_user):
        response = client.post('/api/auth/login', json={
            'username': test_user.username,
            'password': 'wrong-password',
        })

        assert response.status_code == 401
        assert response.get_json()['code'] == 'INVALID_CREDENTIALS'

    def test_unknown_account(self, client):
        response = client.post('/api/auth/login', json={'username': 'nobody', 'password': 'whatever'})

        assert response.status_code == 401
        assert response.get_json()['code'] == 'INVALID_CREDENTIALS'

    def test_missing_credentials(self, client):
        response = client.post('/api/auth/login', json={'username': 'alice'})

        assert response.status_code == 400
        assert response.get_json()['code'] == 'MISSING_CREDENTIALS'

    def test_google_account_cannot_use_password(self, client, db_session):
        user = User(email='g@example.com', google_id='g-1', auth_provider=AuthProvider.GOOGLE.value)
        db_session.add(user)
        db_session.commit()

        response = client.post('/api/auth/login', json={'email': 'g@example.com', 'password': 'anything'})

        assert response.status_code == 401
        assert response.get_json()['code'] == 'WRONG_AUTH_PROVIDER'


class TestBearerAuthentication:
    """Rejection reason codes on protected routes."""

    def test_no_header(self, client):
        response = client.get('/api/tasks')

        assert response.status_code == 401
        assert response.get_json()['code'] == 'NO_TOKEN'

    def test_malformed_header(self, client):
        response = client.get('/api/tasks', headers={'Authorization': 'Token abc'})

        assert response.status_code == 401
        assert response.get_json()['code'] == 'INVALID_AUTH_FORMAT'

    def test_tampered_token(self, client, auth_headers):
        headers = {'Authorization': auth_headers['Authorization'] + 'x'}

        response = client.get('/api/tasks', headers=headers)

        assert response.status_code == 401
        assert response.get_json()['code'] == 'INVALID_TOKEN'

    def test_expired_token(self, app, client, auth_headers):
        app.config['BEARER_TOKEN_TTL_SECONDS'] = -1

        response = client.get('/api/tasks', headers=auth_headers)

        assert response.status_code == 401
        assert response.get_json()['code'] == 'TOKEN_EXPIRED'

    def test_token_for_missing_user(self, client, make_token):
        ghost = SimpleNamespace(id=999999, email='ghost@example.com', auth_provider='local')

        response = client.get('/api/tasks', headers={'Authorization': f'Bearer {make_token(ghost)}'})

        assert response.status_code == 401
        assert response.get_json()['code'] == 'USER_NOT_FOUND'

    def test_reason_does_not_leak_between_requests(self, client, auth_headers):
        client.get('/api/tasks', headers={'Authorization': 'Bearer garbage'})

        response = client.get('/api/tasks', headers=auth_headers)

        assert response.status_code == 200


class TestGoogleAccounts:
    """Account matching for Google sign-in."""

    def test_new_google_user_has_no_username(self, app):
        user = upsert_google_user({'sub': 'google-123', 'email': 'New@Example.com', 'name': 'New Person'})

        assert user.id is not None
        assert user.username is None
        assert user.email == 'new@example.com'
        assert user.auth_provider == 'google'

    def test_existing_google_id_is_reused(self, app):
        first = upsert_google_user({'sub': 'google-123', 'email': 'a@example.com', 'name': 'A'})
        second = upsert_google_user({'sub': 'google-123', 'email': 'a@example.com', 'name': 'A Renamed'})

        assert first.id == second.id
        assert second.display_name == 'A Renamed'

    def test_local_account_is_linked_by_email(self, app, test_user):
        user = upsert_google_user({'sub': 'google-999', 'email': test_user.email, 'name': 'Linked'})

        assert user.id == test_user.id
        assert user.google_id == 'google-999'
        assert user.auth_provider == 'google'
        assert user.password_hash is None

    def test_profile_without_email_rejected(self, app):
        with pytest.raises(ValueError):
            upsert_google_user({'sub': 'google-1'})

    def test_login_redirects_when_not_configured(self, client):
        response = client.get('/api/auth/google')

        assert response.status_code == 302
        assert response.headers['Location'] == 'http://client.test/login?error=oauth_not_configured'

    def test_callback_without_code(self, app, client):
        app.config['GOOGLE_OAUTH_CLIENT_ID'] = 'client-id'
        app.config['GOOGLE_OAUTH_CLIENT_SECRET'] = 'client-secret'

        response = client.get('/api/auth/google/callback')

        assert response.status_code == 302
        assert response.headers['Location'].endswith('/login?error=oauth_failed')

    def test_callback_issues_token(self, app, client, mocker):
        app.config['GOOGLE_OAUTH_CLIENT_ID'] = 'client-id'
        app.config['GOOGLE_OAUTH_CLIENT_SECRET'] = 'client-secret'

        discovery = {
            'authorization_endpoint': 'https://accounts.example/auth',
            'token_endpoint': 'https://accounts.example/token',
            'userinfo_endpoint': 'https://accounts.example/userinfo',
        }
        userinfo = {'sub': 'google-42', 'email': 'oauth@example.com', 'email_verified': True, 'name': 'OAuth'}

        def fake_get(url, **kwargs):
            body = discovery if url == app.config['GOOGLE_DISCOVERY_URL'] else userinfo
            return mocker.Mock(json=mocker.Mock(return_value=body))

        mocker.patch('routes.google_auth.requests.get', side_effect=fake_get)
        mocker.patch('routes.google_auth.requests.post', return_value=mocker.Mock(
            json=mocker.Mock(return_value={'access_token': 'at', 'token_type': 'Bearer'})
        ))

        response = client.get('/api/auth/google/callback?code=abc')

        assert response.status_code == 302
        assert response.headers['Location'].startswith('http://client.test/auth/callback?token=')
        assert db.session.scalar(db.select(User).where(User.google_id == 'google-42')) is not None

    def test_callback_rejects_unverified_email(self, app, client, mocker):
        app.config['GOOGLE_OAUTH_CLIENT_ID'] = 'client-id'
        app.config['GOOGLE_OAUTH_CLIENT_SECRET'] = 'client-secret'

        discovery = {
            'authorization_endpoint': 'https://accounts.example/auth',
            'token_endpoint': 'https://accounts.example/token',
            'userinfo_endpoint': 'https://accounts.example/userinfo',
        }

        def fake_get(url, **kwargs):
            body = discovery if url == app.config['GOOGLE_DISCOVERY_URL'] else {'sub': 'x', 'email': 'x@example.com'}
            return mocker.Mock(json=mocker.Mock(return_value=body))

        mocker.patch('routes.google_auth.requests.get', side_effect=fake_get)
        mocker.patch('routes.google_auth.requests.post', return_value=mocker.Mock(
            json=mocker.Mock(return_value={'access_token': 'at', 'token_type': 'Bearer'})
        ))

        response = client.get('/api/auth/google/callback?code=abc')

        assert response.headers['Location'].endswith('/login?error=email_not_verified')
