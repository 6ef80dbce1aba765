"""
Google OAuth Authentication Blueprint
Sign in with a Google account. On success the browser is redirected back to
the client application with a bearer token in the query string.
"""

import json
import logging
from typing import Dict, Any
from urllib.parse import urlencode

import requests
from flask import Blueprint, redirect, request, url_for, current_app
from oauthlib.oauth2 import WebApplicationClient
from sqlalchemy import select

from models import db, User, AuthProvider
from services.token_service import issue_token

logger = logging.getLogger(__name__)

google_auth_bp = Blueprint("google_auth", __name__, url_prefix="/api/auth")


def is_google_oauth_configured():
    """Check if Google OAuth credentials are configured."""
    config = current_app.config
    return bool(config.get("GOOGLE_OAUTH_CLIENT_ID") and config.get("GOOGLE_OAUTH_CLIENT_SECRET"))


def _client() -> WebApplicationClient:
    return WebApplicationClient(current_app.config["GOOGLE_OAUTH_CLIENT_ID"])


def _provider_config() -> Dict[str, Any]:
    return requests.get(current_app.config["GOOGLE_DISCOVERY_URL"], timeout=10).json()


def _callback_url() -> str:
    # Served behind a TLS-terminating proxy
    return url_for("google_auth.google_callback", _external=True).replace("http://", "https://", 1)


def _client_redirect(path: str, **params):
    return redirect(f"{current_app.config['CLIENT_URL'].rstrip('/')}{path}?{urlencode(params)}")


def upsert_google_user(profile: Dict[str, Any]) -> User:
    """
    Find or create the account for a Google profile.

    Matching order: existing google_id, then an existing account with the same
    email (linked and switched to Google sign-in), otherwise a new account with
    no username.

    Args:
        profile: OpenID userinfo dict (sub, email, name, picture)

    Returns:
        The committed User
    """
    google_id = profile.get("sub")
    email = (profile.get("email") or "").lower()
    if not google_id or not email:
        raise ValueError("No email found in Google profile")

    display_name = profile.get("name") or email.split("@")[0]
    avatar = profile.get("picture")

    user = db.session.scalar(select(User).where(User.google_id == google_id))
    if user:
        user.display_name = display_name
        user.avatar_url = avatar
        db.session.commit()
        return user

    user = db.session.scalar(select(User).where(User.email == email))
    if user:
        # Link the existing local account; it signs in with Google from now on
        user.google_id = google_id
        user.auth_provider = AuthProvider.GOOGLE.value
        user.display_name = display_name or user.display_name
        user.avatar_url = avatar or user.avatar_url
        user.password_hash = None
        db.session.commit()
        logger.info(f"Linked Google account to existing user {user.id}")
        return user

    user = User(
        username=None,
        email=email,
        google_id=google_id,
        display_name=display_name,
        avatar_url=avatar,
        auth_provider=AuthProvider.GOOGLE.value,
    )
    db.session.add(user)
    db.session.commit()
    logger.info(f"New user created via Google OAuth: {email}")
    return user


@google_auth_bp.route("/google")
def google_login():
    """Initiate Google OAuth login flow."""
    if not is_google_oauth_configured():
        logger.warning("Google OAuth requested but not configured")
        return _client_redirect("/login", error="oauth_not_configured")

    try:
        authorization_endpoint = _provider_config()["authorization_endpoint"]
        request_uri = _client().prepare_request_uri(
            authorization_endpoint,
            redirect_uri=_callback_url(),
            scope=["openid", "email", "profile"],
        )
        return redirect(request_uri)
    except Exception as e:
        logger.error(f"Google OAuth initialization failed: {e}", exc_info=True)
        return _client_redirect("/login", error="oauth_failed")


@google_auth_bp.route("/google/callback")
def google_callback():
    """Handle Google OAuth callback."""
    if not is_google_oauth_configured():
        return _client_redirect("/login", error="oauth_not_configured")

    code = request.args.get("code")
    if not code:
        return _client_redirect("/login", error="oauth_failed")

    try:
        google_provider_cfg = _provider_config()
        client = _client()

        token_url, headers, body = client.prepare_token_request(
            google_provider_cfg["token_endpoint"],
            authorization_response=request.url.replace("http://", "https://", 1),
            redirect_url=_callback_url(),
            code=code,
        )
        token_response = requests.post(
            token_url,
            headers=headers,
            data=body,
            auth=(current_app.config["GOOGLE_OAUTH_CLIENT_ID"], current_app.config["GOOGLE_OAUTH_CLIENT_SECRET"]),
            timeout=10,
        )
        client.parse_request_body_response(json.dumps(token_response.json()))

        uri, headers, body = client.add_token(google_provider_cfg["userinfo_endpoint"])
        userinfo = requests.get(uri, headers=headers, data=body, timeout=10).json()

        if not userinfo.get("email_verified"):
            return _client_redirect("/login", error="email_not_verified")

        user = upsert_google_user(userinfo)

    except Exception as e:
        db.session.rollback()
        logger.error(f"Google OAuth callback failed: {e}", exc_info=True)
        return _client_redirect("/login", error="callback_failed")

    return _client_redirect("/auth/callback", token=issue_token(user))
