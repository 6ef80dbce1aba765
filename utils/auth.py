"""
Authentication utilities.

Bearer-token authentication for the JSON API and the real-time channel,
wired into Flask-Login so route handlers keep using login_required and
current_user.
"""

import logging
from typing import Optional, Tuple

from flask import g, jsonify, request
from flask_login import LoginManager

from models import db, User
from services.token_service import verify_token, TokenError

logger = logging.getLogger(__name__)


class AuthenticationFailed(Exception):
    """Credential rejected. `code` is reported to the client verbatim."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self):
        return {'success': False, 'message': self.message, 'code': self.code}


def extract_bearer_token(header_value: Optional[str]) -> str:
    """
    Pull the token out of an Authorization header.

    Raises:
        AuthenticationFailed: NO_TOKEN or INVALID_AUTH_FORMAT
    """
    if not header_value:
        raise AuthenticationFailed('NO_TOKEN', 'Access token required')

    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer' or not parts[1]:
        raise AuthenticationFailed('INVALID_AUTH_FORMAT', 'Authorization header must be: Bearer <token>')
    return parts[1]


def authenticate_token(token: Optional[str]) -> User:
    """
    Resolve a bearer token to its user.

    Raises:
        AuthenticationFailed: NO_TOKEN, INVALID_TOKEN, TOKEN_EXPIRED or USER_NOT_FOUND
    """
    if not token:
        raise AuthenticationFailed('NO_TOKEN', 'Access token required')

    try:
        payload = verify_token(token)
    except TokenError as e:
        raise AuthenticationFailed(e.code, e.message)

    user = db.session.get(User, payload['id'])
    if user is None:
        raise AuthenticationFailed('USER_NOT_FOUND', 'User not found')
    return user


def authenticate_request() -> Tuple[Optional[User], Optional[AuthenticationFailed]]:
    """Authenticate the current request's Authorization header."""
    try:
        token = extract_bearer_token(request.headers.get('Authorization'))
        return authenticate_token(token), None
    except AuthenticationFailed as e:
        return None, e


def init_login_manager(login_manager: LoginManager):
    """
    Register the bearer-token loaders on a LoginManager.

    Failures are remembered on flask.g so the unauthorized handler can return
    the precise reason code.
    """

    @login_manager.request_loader
    def load_user_from_request(req):
        user, error = authenticate_request()
        if error is not None:
            g.auth_error = error
            logger.debug(f"Bearer authentication failed for {req.path}: {error.code}")
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        error = g.get('auth_error') or AuthenticationFailed('NO_TOKEN', 'Access token required')
        return jsonify(error.to_dict()), 401
