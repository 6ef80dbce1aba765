"""
Authentication Routes
Local account registration and login. Both return a bearer token that the
client presents on every API call and on the real-time channel handshake.
"""

import logging
import re

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy import select

from models import db, User, AuthProvider
from services.token_service import issue_token

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 6


def is_valid_email(email):
    """Validate email format."""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def _error(message, code, status):
    return jsonify({'success': False, 'message': message, 'code': code}), status


def _auth_response(user, message, status=200):
    return jsonify({
        'success': True,
        'message': message,
        'token': issue_token(user),
        'user': user.to_dict(),
    }), status


@auth_bp.route('/register', methods=['POST'])
def register():
    """Register a local account with username, email and password."""
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not username or not email or not password:
        missing = [name for name, value in (('username', username), ('email', email), ('password', password)) if not value]
        return jsonify({
            'success': False,
            'message': 'Please provide username, email, and password',
            'code': 'MISSING_FIELDS',
            'missing': missing,
        }), 400

    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        return _error(
            f'Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters',
            'INVALID_USERNAME_LENGTH', 400,
        )

    if len(password) < PASSWORD_MIN_LENGTH:
        return _error(
            f'Password must be at least {PASSWORD_MIN_LENGTH} characters long',
            'INVALID_PASSWORD_LENGTH', 400,
        )

    if not is_valid_email(email):
        return _error('Please provide a valid email address', 'INVALID_EMAIL_FORMAT', 400)

    if db.session.scalar(select(User).where(User.username == username)):
        return _error('Username already exists', 'DUPLICATE_USERNAME', 409)

    if db.session.scalar(select(User).where(User.email == email)):
        return _error('Email already exists', 'DUPLICATE_EMAIL', 409)

    try:
        user = User(
            username=username,
            email=email,
            display_name=username,
            auth_provider=AuthProvider.LOCAL.value,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        logger.info(f"Registered user {user.id} ({email})")
        return _auth_response(user, 'User registered successfully', 201)

    except Exception as e:
        db.session.rollback()
        logger.error(f"Registration failed for {username} ({email}): {e}", exc_info=True)
        return _error('An error occurred during registration', 'REGISTRATION_ERROR', 500)


@auth_bp.route('/login', methods=['POST'])
def login():
    """Authenticate with username or email plus password."""
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if (not username and not email) or not password:
        return _error('Please provide username or email, and password', 'MISSING_CREDENTIALS', 400)

    if username:
        user = db.session.scalar(select(User).where(User.username == username))
    else:
        user = db.session.scalar(select(User).where(User.email == email))

    if not user:
        logger.info(f"Login failed, unknown account: {username or email}")
        return _error('Invalid credentials', 'INVALID_CREDENTIALS', 401)

    if not user.is_local:
        return _error(
            f'This account uses {user.auth_provider} authentication. Please login with {user.auth_provider}.',
            'WRONG_AUTH_PROVIDER', 401,
        )

    if not user.check_password(password):
        logger.info(f"Login failed, bad password for user {user.id}")
        return _error('Invalid credentials', 'INVALID_CREDENTIALS', 401)

    logger.info(f"Login successful for user {user.id}")
    return _auth_response(user, 'Login successful')


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    """Current authenticated user."""
    return jsonify({'success': True, 'user': current_user.to_dict()})
