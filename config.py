"""
Application configuration.

Values come from the environment (a local .env file is loaded by the app
factory) and are mapped onto Flask config keys here.
"""

import os


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return int(value)


class Config:
    """Base configuration shared by every environment."""

    SECRET_KEY = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///tasks.db")
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Bearer credentials expire after 24 hours
    BEARER_TOKEN_TTL_SECONDS = _int_env("BEARER_TOKEN_TTL_SECONDS", 24 * 60 * 60)

    CLIENT_URL = os.environ.get("CLIENT_URL", "http://localhost:5173")

    GOOGLE_OAUTH_CLIENT_ID = os.environ.get("GOOGLE_OAUTH_CLIENT_ID", "")
    GOOGLE_OAUTH_CLIENT_SECRET = os.environ.get("GOOGLE_OAUTH_CLIENT_SECRET", "")
    GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"

    # Redis message queue lets several workers fan out Socket.IO events
    SOCKETIO_MESSAGE_QUEUE = os.environ.get("REDIS_URL") or None
    SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE") or None

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key-for-testing-only"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SOCKETIO_MESSAGE_QUEUE = None
    SOCKETIO_ASYNC_MODE = "threading"
    GOOGLE_OAUTH_CLIENT_ID = ""
    GOOGLE_OAUTH_CLIENT_SECRET = ""
    CLIENT_URL = "http://client.test"
    ENVIRONMENT = "testing"
