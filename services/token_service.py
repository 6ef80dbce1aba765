"""
Bearer Token Service
Issues and verifies the opaque bearer credential presented on every API call
and on the real-time channel handshake.

Tokens are signed and timestamped with the application's SECRET_KEY, carry
the user's identity and expire after BEARER_TOKEN_TTL_SECONDS (24h by default).
"""

import logging
from typing import Dict, Any, Optional

from flask import current_app
from itsdangerous import URLSafeTimedSerializer, SignatureExpired, BadSignature, BadData

logger = logging.getLogger(__name__)

TOKEN_SALT = "bearer-token"


class TokenError(Exception):
    """Base class for credential failures. `code` is the machine-readable reason."""
    code = "INVALID_TOKEN"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TokenExpiredError(TokenError):
    code = "TOKEN_EXPIRED"


class InvalidTokenError(TokenError):
    code = "INVALID_TOKEN"


def _serializer(secret_key: Optional[str] = None) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key or current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_token(user) -> str:
    """
    Generate a bearer token for a user.

    Args:
        user: User instance (needs id, email, auth_provider)

    Returns:
        Signed token string
    """
    payload = {
        'id': user.id,
        'email': user.email,
        'auth_provider': user.auth_provider,
    }
    return _serializer().dumps(payload)


def verify_token(token: str, max_age: Optional[int] = None) -> Dict[str, Any]:
    """
    Verify and decode a bearer token.

    Args:
        token: Token string as presented by the client
        max_age: Override for the configured lifetime in seconds

    Returns:
        Decoded payload with at least an 'id' key

    Raises:
        TokenExpiredError: signature valid but older than the lifetime
        InvalidTokenError: malformed or tampered token
    """
    if not token:
        raise InvalidTokenError("Token is empty")

    if max_age is None:
        max_age = current_app.config['BEARER_TOKEN_TTL_SECONDS']

    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise TokenExpiredError("Token has expired")
    except (BadSignature, BadData):
        raise InvalidTokenError("Invalid token")

    if not isinstance(payload, dict) or 'id' not in payload:
        raise InvalidTokenError("Invalid token")
    return payload
