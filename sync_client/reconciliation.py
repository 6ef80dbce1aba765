"""
Reconciliation Engine - one consistent task view across connectivity changes.

Mutation path:
- online: call the gateway, then patch and persist the snapshot
- offline (or a retryable failure): append to the offline queue and apply the
  same patch optimistically
- drain: replay the queue serially in enqueue order, then refetch

Event-fold path: real-time events are folded into the same state through the
same atomic read-modify-write (_commit), so an event arriving mid-drain never
sees or produces a torn state.

All state transitions are pure previous -> next functions applied under one
re-entrant lock. Network calls never run under that lock.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from sync_client import folds
from sync_client.cache_store import LocalCacheStore
from sync_client.config import SyncClientConfig
from sync_client.errors import (
    SyncClientError,
    AuthenticationError,
    TaskNotFoundError,
    ValidationError,
    DependencyError,
    NoCachedDataError,
    SyncFailedError,
)
from sync_client.gateway import RemoteTaskGateway
from sync_client.models import (
    TaskRecord,
    TaskRef,
    Pending,
    Persisted,
    QueuedOperation,
    OperationKind,
    TASK_FIELDS,
    STATUS_VALUES,
    PRIORITY_VALUES,
    generate_placeholder_id,
    is_placeholder_id,
)
from sync_client.offline_queue import OfflineMutationQueue
from sync_client.realtime import RealtimeChannel, ConnectionState, TASK_EVENTS
from sync_client.state import SyncState, FetchResult, SyncReport
from sync_client.storage import LocalStore

logger = logging.getLogger(__name__)

SERVER_ID_PATTERN = re.compile(r'^[0-9a-f]{32}$')

# Outcomes of replaying one queued operation
REPLAY_DONE = 'done'
REPLAY_RETRY = 'retry'
REPLAY_HALT = 'halt'


@dataclass
class SyncContext:
    """
    Everything one engine instance needs, passed in explicitly.

    The engine owns the cache and the queue; nothing else should write to them.
    """
    account_id: Any
    token: Optional[str]
    gateway: RemoteTaskGateway
    cache: LocalCacheStore
    queue: OfflineMutationQueue
    config: SyncClientConfig = field(default_factory=SyncClientConfig)
    channel: Optional[RealtimeChannel] = None

    @classmethod
    def build(
        cls,
        account_id,
        token: Optional[str],
        config: Optional[SyncClientConfig] = None,
        store: Optional[LocalStore] = None,
        session=None,
        socket_client=None,
        with_channel: bool = True,
    ) -> "SyncContext":
        """
        Wire the default collaborators for an account.

        Args:
            account_id: Authenticated account
            token: Bearer token
            config: SyncClientConfig (from the environment by default)
            store: LocalStore (opened at config.db_path by default)
            session: requests-compatible session for the gateway
            socket_client: python-socketio Client for the channel
            with_channel: False to run without real-time updates
        """
        config = config or SyncClientConfig.from_env()
        store = store or LocalStore(config.db_path)
        channel = None
        if with_channel:
            channel = RealtimeChannel(
                config.server_url,
                token,
                max_reconnect_attempts=config.max_reconnect_attempts,
                base_delay=config.reconnect_base_delay,
                max_delay=config.reconnect_max_delay,
                client=socket_client,
            )
        return cls(
            account_id=account_id,
            token=token,
            gateway=RemoteTaskGateway(config.server_url, token, session=session, timeout=config.request_timeout),
            cache=LocalCacheStore(store),
            queue=OfflineMutationQueue(store, account_id),
            config=config,
            channel=channel,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _failure_entry(operation: QueuedOperation, error: SyncClientError) -> Dict[str, Any]:
    return {
        'operation_id': operation.id,
        'kind': operation.kind.value,
        'task_id': operation.target.id if operation.target else operation.placeholder_id,
        'category': error.category.value,
        'message': error.message,
    }


def _note(ids: List[str], operation_id: str):
    if operation_id not in ids:
        ids.append(operation_id)


class ReconciliationEngine:
    """
    Single source of the client's task view.

    Usage:
        engine = ReconciliationEngine(SyncContext.build(user_id, token))
        engine.start()
        engine.create_task({'title': 'Buy cleats'})
        engine.set_online(False)
    """

    def __init__(self, context: SyncContext, sleep: Callable[[float], None] = time.sleep):
        self.context = context
        self._sleep = sleep
        self._state_lock = threading.RLock()
        self._drain_lock = threading.Lock()
        self._listeners: List[Callable[[SyncState], None]] = []
        self._channel_disposers: List[Callable[[], None]] = []
        # Placeholders already replaced by server ids, for callers holding a stale id
        self._resolved_placeholders: Dict[str, str] = {}

        snapshot = context.cache.load(context.account_id)
        self._state = SyncState(
            tasks=snapshot.tasks if snapshot else (),
            using_cached_data=snapshot is not None,
            pending_count=context.queue.count(),
            cache_captured_at=snapshot.captured_at if snapshot else None,
        )

    # ---- state ----

    @property
    def state(self) -> SyncState:
        return self._state

    def subscribe(self, listener: Callable[[SyncState], None]) -> Callable[[], None]:
        """
        Observe every published state.

        Returns:
            Disposer that removes the listener
        """
        with self._state_lock:
            self._listeners.append(listener)

        def dispose():
            with self._state_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return dispose

    def _commit(
        self,
        transform: Callable[[SyncState], SyncState],
        persist: bool = False,
        force_save: bool = False,
    ) -> SyncState:
        """
        Atomically replace the state with transform(current).

        With persist=True a changed task list is written to the cache store in
        the same critical section. force_save writes the snapshot even when the
        list is unchanged (a full fetch always refreshes it).
        """
        with self._state_lock:
            previous = self._state
            state = transform(previous)
            if force_save or (persist and state.tasks is not previous.tasks):
                snapshot = self.context.cache.save(self.context.account_id, state.tasks)
                state = state.evolve(cache_captured_at=snapshot.captured_at)
            self._state = state
            for listener in list(self._listeners):
                try:
                    listener(state)
                except Exception as e:
                    logger.error(f"State listener failed: {e}", exc_info=True)
            return state

    def _pending_count(self) -> int:
        return self.context.queue.count()

    def _surface(self, error: SyncClientError):
        auth = isinstance(error, AuthenticationError)
        self._commit(lambda s: s.evolve(error=error, auth_required=s.auth_required or auth))

    # ---- lifecycle ----

    def start(self) -> Optional[FetchResult]:
        """
        Attach and open the real-time channel, then load tasks.

        Operations left in the queue by an earlier run are replayed first when
        online; the drain ends with a fresh fetch.
        """
        if self.context.channel is not None:
            self.attach_channel()
            self.context.channel.connect()

        if self._state.is_online and self.context.queue.has_pending():
            logger.info(f"Replaying {self._pending_count()} queued operation(s) from a previous run")
            self.drain()
            state = self._state
            return FetchResult(
                tasks=state.tasks,
                from_cache=state.using_cached_data,
                error=state.last_sync_error,
            )

        try:
            return self.fetch()
        except SyncClientError as e:
            logger.warning(f"Initial fetch failed: {e.message}")
            return None

    def close(self):
        for dispose in self._channel_disposers:
            dispose()
        self._channel_disposers = []
        if self.context.channel is not None:
            self.context.channel.disconnect()

    # ---- read path ----

    def fetch(self) -> FetchResult:
        """
        Load the task list.

        Online: the server list (with still-queued operations replayed on top)
        replaces the snapshot. On failure the cached list is returned with the
        error; without a cache the error is raised.
        Offline: the cached list is served, or NoCachedDataError is raised.
        """
        if not self._state.is_online:
            return self._serve_cache()

        self._commit(lambda s: s.evolve(is_loading=True))
        try:
            server_tasks = self.context.gateway.list_tasks()
        except SyncClientError as e:
            logger.warning(f"Fetch failed ({e.category.value}): {e.message}")
            return self._fall_back_to_cache(e)

        records = [TaskRecord.from_server(data) for data in server_tasks]
        account_id = self.context.account_id

        def apply(s: SyncState) -> SyncState:
            operations = self.context.queue.list()
            return s.evolve(
                tasks=folds.rebase(records, operations, account_id),
                is_loading=False,
                using_cached_data=False,
                error=None,
                last_sync_error=None,
                pending_count=len(operations),
            )

        state = self._commit(apply, force_save=True)
        logger.info(f"Fetched {len(records)} tasks for account {account_id}")
        return FetchResult(tasks=state.tasks)

    def _serve_cache(self) -> FetchResult:
        snapshot = self.context.cache.load(self.context.account_id)
        if snapshot is None:
            error = NoCachedDataError()
            self._commit(lambda s: s.evolve(error=error, using_cached_data=False))
            raise error

        self._commit(lambda s: s.evolve(
            tasks=snapshot.tasks,
            using_cached_data=True,
            cache_captured_at=snapshot.captured_at,
        ))
        return FetchResult(tasks=snapshot.tasks, from_cache=True)

    def _fall_back_to_cache(self, error: SyncClientError) -> FetchResult:
        auth = isinstance(error, AuthenticationError)
        snapshot = self.context.cache.load(self.context.account_id)
        if snapshot is None:
            self._commit(lambda s: s.evolve(
                is_loading=False,
                error=error,
                last_sync_error=error,
                auth_required=s.auth_required or auth,
            ))
            raise error

        self._commit(lambda s: s.evolve(
            tasks=snapshot.tasks,
            is_loading=False,
            using_cached_data=True,
            error=error,
            last_sync_error=error,
            auth_required=s.auth_required or auth,
            cache_captured_at=snapshot.captured_at,
        ))
        return FetchResult(tasks=snapshot.tasks, from_cache=True, error=error)

    # ---- mutation path ----

    def create_task(self, payload: Dict[str, Any]) -> TaskRecord:
        """
        Create a task.

        Returns:
            The persisted record when online, otherwise the pending record

        Raises:
            ValidationError: invalid payload (never queued)
            SyncClientError: terminal server failure (snapshot unchanged)
        """
        payload = self._validate_payload(payload, partial_update=False)

        if self._state.is_online:
            try:
                data = self.context.gateway.create_task(payload)
            except SyncClientError as e:
                if not e.retryable:
                    self._surface(e)
                    raise
                logger.warning(f"Create failed ({e.message}), queueing for later")
            else:
                record = TaskRecord.from_server(data)
                self._commit(lambda s: s.evolve(tasks=folds.upsert(s.tasks, record), error=None), persist=True)
                return record

        placeholder_id = generate_placeholder_id(self.context.account_id)
        with self._state_lock:
            operation = self.context.queue.append(OperationKind.CREATE, payload, placeholder_id=placeholder_id)
            state = self._apply_queued(operation)
        return state.task(placeholder_id)

    def update_task(self, task_id: str, changes: Dict[str, Any]) -> Optional[TaskRecord]:
        """
        Apply field changes to a task (last write wins).

        Returns:
            The updated record (optimistic when queued)
        """
        ref = self._resolve_ref(task_id)
        changes = self._validate_payload(changes, partial_update=True)

        if self._should_call_server(ref):
            try:
                data = self.context.gateway.update_task(ref.id, changes)
            except SyncClientError as e:
                if not e.retryable:
                    self._surface(e)
                    raise
                logger.warning(f"Update of {ref.id} failed ({e.message}), queueing for later")
            else:
                record = TaskRecord.from_server(data)
                self._commit(lambda s: s.evolve(tasks=folds.upsert(s.tasks, record), error=None), persist=True)
                return record

        with self._state_lock:
            operation = self.context.queue.append(OperationKind.UPDATE, changes, target=ref)
            state = self._apply_queued(operation)
        return state.task(ref.id)

    def delete_task(self, task_id: str) -> str:
        """
        Delete a task.

        Returns:
            The id that was deleted
        """
        ref = self._resolve_ref(task_id)

        if self._should_call_server(ref):
            try:
                self.context.gateway.delete_task(ref.id)
            except SyncClientError as e:
                if not e.retryable:
                    self._surface(e)
                    raise
                logger.warning(f"Delete of {ref.id} failed ({e.message}), queueing for later")
            else:
                self._commit(lambda s: s.evolve(tasks=folds.fold_deleted(s.tasks, ref), error=None), persist=True)
                return ref.id

        with self._state_lock:
            operation = self.context.queue.append(OperationKind.DELETE, target=ref)
            self._apply_queued(operation)
        return ref.id

    def _apply_queued(self, operation: QueuedOperation) -> SyncState:
        account_id = self.context.account_id
        pending = self._pending_count()
        return self._commit(
            lambda s: s.evolve(
                tasks=folds.apply_operation(s.tasks, operation, account_id),
                pending_count=pending,
                error=None,
            ),
            persist=True,
        )

    def _should_call_server(self, ref: TaskRef) -> bool:
        """
        Online and nothing queued that this call must wait behind.

        Pending tasks, and tasks with queued operations, always go through the
        queue so per-task order is preserved.
        """
        if not self._state.is_online or isinstance(ref, Pending):
            return False
        return not any(op.target == ref for op in self.context.queue.list())

    def _resolve_ref(self, task_id: str) -> TaskRef:
        if not isinstance(task_id, str) or not task_id:
            raise ValidationError("Invalid task id")

        if is_placeholder_id(task_id):
            server_id = self._resolved_placeholders.get(task_id)
            if server_id:
                return Persisted(server_id)
            if self.context.queue.pending_create_for(task_id) is None:
                raise TaskNotFoundError(f"Task {task_id} was never synced")
            return Pending(task_id)

        if not SERVER_ID_PATTERN.match(task_id):
            raise ValidationError("Invalid task id")
        return Persisted(task_id)

    @staticmethod
    def _validate_payload(payload: Dict[str, Any], partial_update: bool) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValidationError("Task payload must be an object")

        cleaned = {k: v for k, v in payload.items() if k in TASK_FIELDS}
        if 'title' in cleaned or not partial_update:
            title = cleaned.get('title')
            if not isinstance(title, str) or not title.strip():
                raise ValidationError("Title is required")
            cleaned['title'] = title.strip()
        if 'status' in cleaned and cleaned['status'] not in STATUS_VALUES:
            raise ValidationError(f"Invalid status: {cleaned['status']}")
        if 'priority' in cleaned and cleaned['priority'] not in PRIORITY_VALUES:
            raise ValidationError(f"Invalid priority: {cleaned['priority']}")
        if partial_update and not cleaned:
            raise ValidationError("No updatable fields provided")
        return cleaned

    # ---- drain ----

    def drain(self) -> Optional[SyncReport]:
        """
        Replay the offline queue in enqueue order, one call at a time.

        The pass runs until every operation has an outcome. A retryable
        failure keeps the operation queued and it is attempted again after a
        backoff, until it succeeds or reaches the retry cap. Other failures
        drop the operation immediately. An authentication failure halts the
        pass and keeps the queue. A fresh fetch follows the pass.

        Returns:
            SyncReport, or None when a drain is already running or the client is offline
        """
        if not self._state.is_online:
            logger.info("Drain skipped: offline")
            return None
        if not self._drain_lock.acquire(blocking=False):
            logger.info("Drain skipped: already in progress")
            return None

        report = SyncReport(started_at=_now())
        try:
            self._commit(lambda s: s.evolve(is_syncing=True))
            self._drain_pass(report)

            if not report.halted:
                try:
                    self.fetch()
                except SyncClientError as e:
                    logger.warning(f"Post-drain fetch failed: {e.message}")
        finally:
            report.finished_at = _now()
            aggregate = SyncFailedError(report.failed) if report.has_failures else None
            pending = self._pending_count()
            self._commit(lambda s: s.evolve(
                is_syncing=False,
                pending_count=pending,
                last_sync_error=aggregate or s.last_sync_error,
            ))
            self._drain_lock.release()

        logger.info(
            f"Drain finished: {len(report.succeeded)} synced, {len(report.failed)} failed, "
            f"{len(report.retried)} retried, {len(report.deferred)} deferred"
        )
        return report

    def _drain_pass(self, report: SyncReport):
        config = self.context.config
        round_number = 0
        while True:
            retried = self._drain_round(report)
            if report.halted or not retried:
                return
            if not self._state.is_online:
                logger.info("Drain stopped: offline")
                return
            delay = min(config.retry_base_delay * (2 ** round_number), config.retry_max_delay)
            round_number += 1
            logger.info(f"Retrying {retried} operation(s) in {delay:.1f}s")
            self._sleep(delay)

    def _drain_round(self, report: SyncReport) -> int:
        """
        Walk the queue once in enqueue order.

        Later operations on a task whose operation is awaiting a retry are
        deferred to the next round, so per-task order holds.

        Returns:
            Number of operations left queued for a retry
        """
        attempted = set()
        waiting = set()
        retried = 0
        while True:
            # Re-read every step: a synced create rebinds later operations
            operation = next((op for op in self.context.queue.list() if op.id not in attempted), None)
            if operation is None:
                return retried
            attempted.add(operation.id)

            if operation.target is not None and operation.target in waiting:
                _note(report.deferred, operation.id)
                continue

            outcome = self._replay(operation, report)
            if outcome == REPLAY_HALT:
                report.halted = True
                return retried
            if outcome == REPLAY_RETRY:
                retried += 1
                if operation.target is not None:
                    waiting.add(operation.target)

    def _replay(self, operation: QueuedOperation, report: SyncReport) -> str:
        """
        Replay one operation.

        Returns:
            REPLAY_DONE, REPLAY_RETRY (still queued) or REPLAY_HALT (authentication failure)
        """
        placeholder = operation.depends_on_placeholder
        if placeholder is not None:
            if self.context.queue.pending_create_for(placeholder) is not None:
                _note(report.deferred, operation.id)
                return REPLAY_DONE
            self._drop(operation, DependencyError(f"Task {placeholder} could not be created"), report)
            return REPLAY_DONE

        gateway = self.context.gateway
        try:
            if operation.kind == OperationKind.CREATE:
                result = gateway.create_task(operation.payload)
            elif operation.kind == OperationKind.UPDATE:
                result = gateway.update_task(operation.target.id, operation.payload)
            else:
                result = gateway.delete_task(operation.target.id)

        except AuthenticationError as e:
            self.context.queue.update_retry(operation.id, operation.retry_count, e.message)
            self._commit(lambda s: s.evolve(error=e, auth_required=True, last_sync_error=e))
            logger.warning(f"Drain halted, credential rejected ({e.code})")
            return REPLAY_HALT

        except TaskNotFoundError as e:
            if operation.kind == OperationKind.DELETE:
                # Already gone on the server
                self._complete(operation, None)
                report.succeeded.append(operation.id)
            else:
                self._drop(operation, e, report)
            return REPLAY_DONE

        except SyncClientError as e:
            if not e.retryable:
                self._drop(operation, e, report)
                return REPLAY_DONE
            retry_count = operation.retry_count + 1
            if retry_count >= self.context.config.max_retries:
                logger.warning(f"Operation {operation.id} failed {retry_count} times, giving up")
                self._drop(operation, e, report)
                return REPLAY_DONE
            self.context.queue.update_retry(operation.id, retry_count, e.message)
            _note(report.retried, operation.id)
            return REPLAY_RETRY

        self._complete(operation, result)
        report.succeeded.append(operation.id)
        return REPLAY_DONE

    def _complete(self, operation: QueuedOperation, result):
        """Remove a synced operation and fold its result, in one critical section."""
        queue = self.context.queue
        with self._state_lock:
            if operation.kind == OperationKind.CREATE:
                record = TaskRecord.from_server(result)
                queue.complete_create(operation.id, operation.placeholder_id, record.id)
                self._resolved_placeholders[operation.placeholder_id] = record.id
                transform = partial(folds.replace_pending, placeholder_id=operation.placeholder_id, record=record)
            elif operation.kind == OperationKind.UPDATE:
                queue.remove(operation.id)
                record = TaskRecord.from_server(result)
                transform = partial(folds.fold_updated, record=record)
            else:
                queue.remove(operation.id)
                transform = partial(folds.fold_deleted, ref=operation.target)

            pending = self._pending_count()
            self._commit(lambda s: s.evolve(tasks=transform(s.tasks), pending_count=pending), persist=True)

    def _drop(self, operation: QueuedOperation, error: SyncClientError, report: SyncReport):
        self.context.queue.remove(operation.id)
        report.failed.append(_failure_entry(operation, error))
        pending = self._pending_count()
        self._commit(lambda s: s.evolve(pending_count=pending))
        logger.warning(f"Dropped {operation.kind.value} {operation.id}: {error.message}")

    # ---- connectivity and credentials ----

    def set_online(self, online: bool) -> Optional[SyncReport]:
        """
        Host connectivity signal.

        Going online drains the queue (or refreshes when nothing is pending).
        """
        with self._state_lock:
            was_online = self._state.is_online
            self._commit(lambda s: s.evolve(
                is_online=online,
                using_cached_data=s.using_cached_data or not online,
            ))

        if online == was_online:
            return None
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        if not online:
            return None

        if self.context.queue.has_pending():
            return self.drain()
        try:
            self.fetch()
        except SyncClientError as e:
            logger.warning(f"Refresh after reconnect failed: {e.message}")
        return None

    def update_credentials(self, token: str):
        """Re-login: use the fresh token everywhere and resume."""
        self.context.token = token
        self.context.gateway.set_token(token)
        self._commit(lambda s: s.evolve(auth_required=False, error=None))
        if self.context.channel is not None:
            self.context.channel.reconnect(token)

    # ---- event-fold path ----

    def attach_channel(self):
        """Subscribe to task events and connection state on the context's channel."""
        channel = self.context.channel
        if channel is None or self._channel_disposers:
            return
        for event in TASK_EVENTS:
            self._channel_disposers.append(channel.subscribe(event, partial(self.handle_event, event)))
        self._channel_disposers.append(channel.on_state_change(self._on_connection_state))
        self._commit(lambda s: s.evolve(connection=channel.state))

    def handle_event(self, event: str, data: Dict[str, Any]) -> SyncState:
        """Fold one real-time event into the task list and persist it."""
        account_id = self.context.account_id
        return self._commit(
            lambda s: s.evolve(tasks=folds.apply_event(s.tasks, event, data, account_id)),
            persist=True,
        )

    def _on_connection_state(self, connection: ConnectionState):
        if connection == ConnectionState.AUTH_FAILED:
            error = AuthenticationError("Real-time connection rejected, please log in again")
            self._commit(lambda s: s.evolve(connection=connection, auth_required=True, error=error))
        else:
            self._commit(lambda s: s.evolve(connection=connection))
