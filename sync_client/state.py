"""
Published engine state.

SyncState is immutable; the engine replaces it wholesale on every
transition, so a reader always sees one consistent version.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple, List, Dict, Any

from sync_client.errors import SyncClientError
from sync_client.models import TaskRecord
from sync_client.realtime import ConnectionState


@dataclass(frozen=True)
class Banners:
    """Independent user-facing notices; any combination may be shown at once."""
    offline: bool = False
    sync_failed: bool = False
    pending_changes: int = 0

    @property
    def using_cached_data(self) -> bool:
        return self.offline or self.sync_failed


@dataclass(frozen=True)
class SyncState:
    tasks: Tuple[TaskRecord, ...] = ()
    is_online: bool = True
    is_loading: bool = False
    is_syncing: bool = False
    using_cached_data: bool = False
    pending_count: int = 0
    last_sync_error: Optional[SyncClientError] = None
    error: Optional[SyncClientError] = None
    auth_required: bool = False
    connection: ConnectionState = ConnectionState.DISCONNECTED
    cache_captured_at: Optional[datetime] = None

    def evolve(self, **changes) -> "SyncState":
        return dataclasses.replace(self, **changes)

    @property
    def banners(self) -> Banners:
        return Banners(
            offline=not self.is_online,
            sync_failed=self.is_online and self.last_sync_error is not None,
            pending_changes=self.pending_count,
        )

    def task(self, task_id: str) -> Optional[TaskRecord]:
        return next((t for t in self.tasks if t.id == task_id), None)


@dataclass(frozen=True)
class FetchResult:
    """Outcome of fetch(): the list shown plus where it came from."""
    tasks: Tuple[TaskRecord, ...]
    from_cache: bool = False
    error: Optional[SyncClientError] = None


@dataclass
class SyncReport:
    """Outcome of one drain pass."""
    succeeded: List[str] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    retried: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    halted: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'succeeded': list(self.succeeded),
            'failed': list(self.failed),
            'retried': list(self.retried),
            'deferred': list(self.deferred),
            'halted': self.halted,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
