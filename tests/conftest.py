"""
Root pytest configuration and fixtures.
"""
import os
import sys
import uuid
from pathlib import Path

import pytest
from flask import g

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Test configuration
os.environ['FLASK_ENV'] = 'testing'
os.environ['SESSION_SECRET'] = 'test-secret-key-for-testing-only'


@pytest.fixture(scope='function')
def app():
    """Create and configure a test Flask application with a fresh in-memory database."""
    from app import create_app
    from config import TestingConfig
    from models import db

    test_app = create_app(TestingConfig)

    # Requests reuse the pushed app context below, so flask.g outlives a request
    @test_app.before_request
    def _reset_request_globals():
        g.pop('_login_user', None)
        g.pop('auth_error', None)

    with test_app.app_context():
        yield test_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture(scope='function')
def socketio(app):
    return app.extensions['socketio']


@pytest.fixture(scope='function')
def db_session(app):
    from models import db
    yield db.session
    db.session.rollback()


def _make_user(db_session, password='testpassword123'):
    from models import User

    unique_id = uuid.uuid4().hex[:8]
    user = User(
        username=f'testuser_{unique_id}',
        email=f'test_{unique_id}@example.com',
        display_name=f'Test {unique_id}',
    )
    user.set_password(password)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def test_user(db_session):
    """Create a test user."""
    return _make_user(db_session)


@pytest.fixture(scope='function')
def other_user(db_session):
    """A second account, for ownership checks."""
    return _make_user(db_session)


@pytest.fixture(scope='function')
def make_token(app):
    from services.token_service import issue_token
    return issue_token


@pytest.fixture(scope='function')
def auth_headers(test_user, make_token):
    return {'Authorization': f'Bearer {make_token(test_user)}'}


@pytest.fixture(scope='function')
def other_headers(other_user, make_token):
    return {'Authorization': f'Bearer {make_token(other_user)}'}
