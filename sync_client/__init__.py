from .config import SyncClientConfig
from .errors import (
    ErrorCategory,
    SyncClientError,
    NetworkError,
    ServerError,
    AuthenticationError,
    OwnershipError,
    TaskNotFoundError,
    ValidationError,
    DependencyError,
    NoCachedDataError,
    SyncFailedError,
)
from .models import Pending, Persisted, TaskRecord, QueuedOperation, OperationKind, CacheSnapshot
from .storage import LocalStore
from .cache_store import LocalCacheStore
from .offline_queue import OfflineMutationQueue
from .gateway import RemoteTaskGateway
from .realtime import RealtimeChannel, ConnectionState
from .state import SyncState, Banners, FetchResult, SyncReport
from .reconciliation import SyncContext, ReconciliationEngine

__all__ = [
    "SyncClientConfig",
    "ErrorCategory",
    "SyncClientError",
    "NetworkError",
    "ServerError",
    "AuthenticationError",
    "OwnershipError",
    "TaskNotFoundError",
    "ValidationError",
    "DependencyError",
    "NoCachedDataError",
    "SyncFailedError",
    "Pending",
    "Persisted",
    "TaskRecord",
    "QueuedOperation",
    "OperationKind",
    "CacheSnapshot",
    "LocalStore",
    "LocalCacheStore",
    "OfflineMutationQueue",
    "RemoteTaskGateway",
    "RealtimeChannel",
    "ConnectionState",
    "SyncState",
    "Banners",
    "FetchResult",
    "SyncReport",
    "SyncContext",
    "ReconciliationEngine",
]
