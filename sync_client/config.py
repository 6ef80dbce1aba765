"""
Sync client settings, loaded from environment variables (+ optional .env).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class SyncClientConfig:
    server_url: str = "http://localhost:5000"
    db_path: Optional[str] = "sync_client.db"
    request_timeout: float = 10.0

    # Drain: a retryable failure is attempted at most this many times
    max_retries: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 5.0

    # Real-time channel reconnect policy
    max_reconnect_attempts: int = 5
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "SyncClientConfig":
        if load_env_file:
            load_dotenv(override=False)
        return cls(
            server_url=os.getenv("SYNC_SERVER_URL", cls.server_url),
            db_path=os.getenv("SYNC_CLIENT_DB_PATH") or cls.db_path,
            request_timeout=_env_float("SYNC_REQUEST_TIMEOUT", cls.request_timeout),
            max_retries=_env_int("SYNC_MAX_RETRIES", cls.max_retries),
            retry_base_delay=_env_float("SYNC_RETRY_BASE_DELAY", cls.retry_base_delay),
            retry_max_delay=_env_float("SYNC_RETRY_MAX_DELAY", cls.retry_max_delay),
            max_reconnect_attempts=_env_int("SYNC_MAX_RECONNECT_ATTEMPTS", cls.max_reconnect_attempts),
            reconnect_base_delay=_env_float("SYNC_RECONNECT_BASE_DELAY", cls.reconnect_base_delay),
            reconnect_max_delay=_env_float("SYNC_RECONNECT_MAX_DELAY", cls.reconnect_max_delay),
        )
