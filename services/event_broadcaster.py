"""
Task Event Broadcaster - real-time fan-out of task changes.

Delivers task:created / task:updated / task:deleted to every Socket.IO
connection bound to the task's owning account, including the connection that
originated the change, so every open session of the account stays in sync.

The broadcaster is a side effect of a committed write, never a source of
truth: callers invoke it only after db.session.commit() succeeds, and an
emission failure is logged without failing the request.
"""

import enum
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Set

from flask import current_app

from services.event_sequencer import EventSequencer

logger = logging.getLogger(__name__)

TASKS_NAMESPACE = "/tasks"


class TaskEvent(str, enum.Enum):
    CREATED = "task:created"
    UPDATED = "task:updated"
    DELETED = "task:deleted"


def account_room(account_id: int) -> str:
    """Room that holds every connection bound to an account."""
    return f"user:{account_id}"


class TaskEventBroadcaster:
    """
    Server half of the real-time event channel.

    Responsibilities:
    - Track which connection (sid) is bound to which account
    - Sequence events per account
    - Emit events to the account's room
    """

    def __init__(self, socketio, sequencer: Optional[EventSequencer] = None):
        """
        Args:
            socketio: Flask-SocketIO instance used for emission
            sequencer: EventSequencer (a fresh one by default)
        """
        self.socketio = socketio
        self.sequencer = sequencer or EventSequencer()

        # account_id -> set of sids; sid -> account_id
        self._connections: Dict[int, Set[str]] = {}
        self._bindings: Dict[str, int] = {}
        self._registry_lock = threading.Lock()

        self.metrics = {
            'events_emitted': 0,
            'emit_failures': 0,
        }

    # ---- session binding ----

    def bind(self, sid: str, account_id: int):
        """Bind a connection to an account for the connection's lifetime."""
        with self._registry_lock:
            previous = self._bindings.get(sid)
            if previous is not None and previous != account_id:
                raise ValueError(f"Connection {sid} is already bound to account {previous}")
            self._bindings[sid] = account_id
            self._connections.setdefault(account_id, set()).add(sid)
            total = len(self._connections[account_id])
        logger.info(f"Connection bound: sid={sid}, account={account_id}, connections={total}")

    def unbind(self, sid: str) -> Optional[int]:
        """Drop a connection's binding. Returns the account it was bound to."""
        with self._registry_lock:
            account_id = self._bindings.pop(sid, None)
            if account_id is None:
                return None
            sids = self._connections.get(account_id)
            if sids is not None:
                sids.discard(sid)
                if not sids:
                    del self._connections[account_id]
        logger.info(f"Connection unbound: sid={sid}, account={account_id}")
        return account_id

    def connection_count(self, account_id: int) -> int:
        with self._registry_lock:
            return len(self._connections.get(account_id, ()))

    # ---- emission ----

    def task_created(self, task_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.emit(TaskEvent.CREATED, task_data['user_id'], {'task': task_data})

    def task_updated(self, task_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.emit(TaskEvent.UPDATED, task_data['user_id'], {'task': task_data})

    def task_deleted(self, task_id: str, account_id: int) -> Optional[Dict[str, Any]]:
        return self.emit(TaskEvent.DELETED, account_id, {'task_id': task_id})

    def emit(self, event: TaskEvent, account_id: int, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Sequence and emit one event to every connection of an account.

        Args:
            event: TaskEvent kind
            account_id: Owning account
            payload: Event body ({'task': ...} or {'task_id': ...})

        Returns:
            The emitted message, or None if emission failed
        """
        with self.sequencer.lock:
            event_id, sequence = self.sequencer.next_event(account_id)
            message = dict(payload)
            message['event_id'] = event_id
            message['sequence'] = sequence
            message['emitted_at'] = datetime.now(timezone.utc).isoformat()

            try:
                self.socketio.emit(
                    event.value,
                    message,
                    to=account_room(account_id),
                    namespace=TASKS_NAMESPACE,
                )
            except Exception as e:
                self.metrics['emit_failures'] += 1
                logger.error(f"Failed to emit {event.value} to account {account_id}: {e}", exc_info=True)
                return None

            self.metrics['events_emitted'] += 1

        logger.debug(f"Emitted {event.value} ({event_id}) to account {account_id}")
        return message


def get_broadcaster() -> Optional[TaskEventBroadcaster]:
    """Broadcaster registered on the current app, if real-time delivery is enabled."""
    return current_app.extensions.get('task_event_broadcaster')
