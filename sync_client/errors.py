"""
Sync client error taxonomy.

Every failure the presentation layer can see is a SyncClientError with a
human-readable message and a machine-checkable category. Raw transport
exceptions never escape the gateway.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List


class ErrorCategory(str, Enum):
    """Error categories for classification."""
    NETWORK = "network"
    SERVER = "server"
    AUTHENTICATION = "authentication"
    OWNERSHIP = "ownership"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    DEPENDENCY = "dependency"
    NO_CACHED_DATA = "no_cached_data"
    SYNC_FAILED = "sync_failed"


class SyncClientError(Exception):
    """Base exception for sync client errors."""
    category = ErrorCategory.SERVER
    retryable = False

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'category': self.category.value,
            'retryable': self.retryable,
            'status': self.status,
            'code': self.code,
            'timestamp': self.timestamp.isoformat(),
        }

    def __repr__(self):
        return f"{type(self).__name__}({self.message!r}, status={self.status}, code={self.code})"


class NetworkError(SyncClientError):
    """No connectivity or timeout. Mutations are queued, reads fall back to cache."""
    category = ErrorCategory.NETWORK
    retryable = True


class ServerError(SyncClientError):
    """5xx or an unreadable response."""
    category = ErrorCategory.SERVER
    retryable = True


class AuthenticationError(SyncClientError):
    """Missing, invalid or expired credential. Requires re-login."""
    category = ErrorCategory.AUTHENTICATION


class OwnershipError(SyncClientError):
    """The task exists but belongs to another account."""
    category = ErrorCategory.OWNERSHIP


class TaskNotFoundError(SyncClientError):
    category = ErrorCategory.NOT_FOUND


class ValidationError(SyncClientError):
    """Rejected input (empty title, malformed id). Never queued or retried."""
    category = ErrorCategory.VALIDATION


class DependencyError(SyncClientError):
    """A queued operation targets a pending task whose create failed permanently."""
    category = ErrorCategory.DEPENDENCY


class NoCachedDataError(SyncClientError):
    """Offline (or fetch failed) and nothing cached for this account."""
    category = ErrorCategory.NO_CACHED_DATA

    def __init__(self, message: str = "No cached data available"):
        super().__init__(message)


class SyncFailedError(SyncClientError):
    """Aggregate error for a drain pass in which some operations failed permanently."""
    category = ErrorCategory.SYNC_FAILED

    def __init__(self, failures: List[Dict[str, Any]]):
        count = len(failures)
        noun = "change" if count == 1 else "changes"
        super().__init__(f"{count} {noun} could not be synced")
        self.failures = failures

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['failures'] = self.failures
        return data
