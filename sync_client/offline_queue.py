"""
Offline Mutation Queue - durable FIFO of mutations made while offline.

Operations are totally ordered by enqueue sequence and removed only on a
terminal outcome (success, or permanent failure).

Dependency handling: an update or delete recorded against a task that only
exists as a pending create targets Pending(placeholder_id). When that create
succeeds, complete_create() removes it and rebinds every later operation on
the placeholder to the server id in the same transaction, so the mapping is
never lost to a crash mid-drain.
"""

import logging
import uuid
from typing import Dict, Any, List, Optional

from sqlalchemy import select, update, func

from sync_client.models import QueuedOperation, OperationKind, TaskRef, Pending, Persisted
from sync_client.storage import LocalStore, QueuedOperationRow, utcnow

logger = logging.getLogger(__name__)


def _row_to_operation(row: QueuedOperationRow) -> QueuedOperation:
    target: Optional[TaskRef] = None
    if row.target_kind == 'pending':
        target = Pending(row.target_id)
    elif row.target_kind == 'persisted':
        target = Persisted(row.target_id)

    return QueuedOperation(
        id=row.id,
        sequence=row.sequence,
        account_id=row.account_id,
        kind=OperationKind(row.kind),
        payload=dict(row.payload or {}),
        target=target,
        placeholder_id=row.placeholder_id,
        retry_count=row.retry_count,
        last_error=row.last_error,
        enqueued_at=row.enqueued_at,
    )


class OfflineMutationQueue:
    """
    Account-scoped view of the durable queue.

    Args:
        store: LocalStore holding the offline_queue table
        account_id: Owning account; other accounts' operations are invisible
    """

    def __init__(self, store: LocalStore, account_id):
        self.store = store
        self.account_id = str(account_id)

    def _scoped(self):
        return select(QueuedOperationRow).where(QueuedOperationRow.account_id == self.account_id)

    def append(
        self,
        kind: OperationKind,
        payload: Optional[Dict[str, Any]] = None,
        target: Optional[TaskRef] = None,
        placeholder_id: Optional[str] = None,
    ) -> QueuedOperation:
        """
        Durably record an operation at the tail of the queue.

        Returns:
            The stored operation with its id and sequence assigned
        """
        kind = OperationKind(kind)
        if kind == OperationKind.CREATE:
            if target is not None or not placeholder_id:
                raise ValueError("A create needs a placeholder id and no target")
        elif target is None:
            raise ValueError(f"A {kind.value} needs a target")

        row = QueuedOperationRow(
            id=uuid.uuid4().hex,
            account_id=self.account_id,
            kind=kind.value,
            target_kind=None if target is None else ('pending' if isinstance(target, Pending) else 'persisted'),
            target_id=None if target is None else target.id,
            placeholder_id=placeholder_id,
            payload=dict(payload or {}),
            retry_count=0,
            enqueued_at=utcnow(),
        )
        with self.store.transaction() as session:
            session.add(row)
            session.flush()
            operation = _row_to_operation(row)

        logger.info(f"Queued {kind.value} #{operation.sequence} ({operation.id}) for account {self.account_id}")
        return operation

    def list(self) -> List[QueuedOperation]:
        """All pending operations in enqueue order."""
        with self.store.transaction() as session:
            rows = session.scalars(self._scoped().order_by(QueuedOperationRow.sequence)).all()
            return [_row_to_operation(row) for row in rows]

    def get(self, op_id: str) -> Optional[QueuedOperation]:
        with self.store.transaction() as session:
            row = session.scalar(self._scoped().where(QueuedOperationRow.id == op_id))
            return _row_to_operation(row) if row else None

    def remove(self, op_id: str) -> bool:
        with self.store.transaction() as session:
            row = session.scalar(self._scoped().where(QueuedOperationRow.id == op_id))
            if row is None:
                return False
            session.delete(row)
        logger.debug(f"Removed queued operation {op_id}")
        return True

    def update_retry(self, op_id: str, retry_count: int, error: Optional[str]) -> bool:
        with self.store.transaction() as session:
            result = session.execute(
                update(QueuedOperationRow)
                .where(QueuedOperationRow.account_id == self.account_id, QueuedOperationRow.id == op_id)
                .values(retry_count=retry_count, last_error=error)
            )
            return result.rowcount > 0

    def has_pending(self) -> bool:
        return self.count() > 0

    def count(self) -> int:
        with self.store.transaction() as session:
            return session.scalar(
                select(func.count()).select_from(QueuedOperationRow)
                .where(QueuedOperationRow.account_id == self.account_id)
            )

    def pending_create_for(self, placeholder_id: str) -> Optional[QueuedOperation]:
        """The queued create that will materialise a placeholder, if still queued."""
        with self.store.transaction() as session:
            row = session.scalar(self._scoped().where(
                QueuedOperationRow.kind == OperationKind.CREATE.value,
                QueuedOperationRow.placeholder_id == placeholder_id,
            ))
            return _row_to_operation(row) if row else None

    def complete_create(self, op_id: str, placeholder_id: str, server_id: str) -> int:
        """
        Remove a succeeded create and point dependent operations at the server id.

        Returns:
            Number of operations rebound
        """
        with self.store.transaction() as session:
            row = session.scalar(self._scoped().where(QueuedOperationRow.id == op_id))
            if row is not None:
                session.delete(row)
            result = session.execute(
                update(QueuedOperationRow)
                .where(
                    QueuedOperationRow.account_id == self.account_id,
                    QueuedOperationRow.target_kind == 'pending',
                    QueuedOperationRow.target_id == placeholder_id,
                )
                .values(target_kind='persisted', target_id=server_id)
            )
            rebound = result.rowcount

        logger.info(f"Create {op_id} synced: {placeholder_id} -> {server_id} ({rebound} dependent operations rebound)")
        return rebound

    def clear(self) -> int:
        with self.store.transaction() as session:
            rows = session.scalars(self._scoped()).all()
            for row in rows:
                session.delete(row)
            return len(rows)
