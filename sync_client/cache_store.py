"""
Local Cache Store - last known full task list per account.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from sync_client.models import CacheSnapshot, TaskRecord
from sync_client.storage import LocalStore, CacheSnapshotRow, utcnow

logger = logging.getLogger(__name__)


class LocalCacheStore:
    """
    Durable snapshot store.

    Each save replaces the account's snapshot wholesale; there is no partial
    patching at this layer.
    """

    def __init__(self, store: LocalStore):
        self.store = store

    def load(self, account_id) -> Optional[CacheSnapshot]:
        account_key = str(account_id)
        with self.store.transaction() as session:
            row = session.get(CacheSnapshotRow, account_key)
            if row is None:
                return None
            tasks = tuple(TaskRecord.from_dict(item) for item in row.tasks)
            captured_at = row.captured_at.replace(tzinfo=timezone.utc)
        return CacheSnapshot(account_id=account_key, tasks=tasks, captured_at=captured_at)

    def save(self, account_id, tasks: Iterable[TaskRecord], captured_at: Optional[datetime] = None) -> CacheSnapshot:
        """
        Overwrite the account's snapshot.

        Returns:
            The snapshot as stored
        """
        account_key = str(account_id)
        tasks = tuple(tasks)
        captured = captured_at.astimezone(timezone.utc).replace(tzinfo=None) if captured_at else utcnow()

        with self.store.transaction() as session:
            session.merge(CacheSnapshotRow(
                account_id=account_key,
                tasks=[task.to_dict() for task in tasks],
                captured_at=captured,
            ))

        logger.debug(f"Cached {len(tasks)} tasks for account {account_key}")
        return CacheSnapshot(account_id=account_key, tasks=tasks, captured_at=captured.replace(tzinfo=timezone.utc))

    def clear(self, account_id) -> bool:
        with self.store.transaction() as session:
            row = session.get(CacheSnapshotRow, str(account_id))
            if row is None:
                return False
            session.delete(row)
        return True
