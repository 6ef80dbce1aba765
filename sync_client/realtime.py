"""
Real-Time Event Channel (client half).

Wraps a python-socketio Client connected to the /tasks namespace.

State machine:
    disconnected -> connecting -> connected
    connected -> disconnected            (transport drop, then bounded auto-reconnect)
    connecting -> auth_failed            (credential rejected, no retry)

Automatic reconnection is done here rather than by python-socketio so that the
attempt cap, the backoff and the auth_failed short-circuit are explicit.
Handlers and state listeners are registered through subscribe() /
on_state_change(), each returning a disposer.
"""

import enum
import logging
import threading
import time
from collections import deque
from typing import Callable, Dict, Any, List, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

logger = logging.getLogger(__name__)

TASKS_NAMESPACE = "/tasks"
TASK_EVENTS = ("task:created", "task:updated", "task:deleted")

# Server rejection codes that mean "log in again", never "try again"
AUTH_FAILURE_CODES = frozenset({"NO_TOKEN", "INVALID_TOKEN", "TOKEN_EXPIRED", "USER_NOT_FOUND"})


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    AUTH_FAILED = "auth_failed"


def _rejection_code(data) -> Optional[str]:
    """Server rejections arrive as {'message': ..., 'data': {'code': ...}}."""
    if not isinstance(data, dict):
        return None
    details = data.get('data')
    if isinstance(details, dict) and details.get('code'):
        return details['code']
    return data.get('code')


class RealtimeChannel:
    """
    Authenticated task event subscription for one account.

    Args:
        url: Server root URL
        token: Bearer token presented in the Socket.IO auth payload
        max_reconnect_attempts: Cap on consecutive automatic reconnects
        base_delay: First reconnect delay in seconds (doubles per attempt)
        max_delay: Upper bound on the reconnect delay
        client: python-socketio Client (a fresh one with reconnection disabled by default)
        sleep: Delay function used between reconnect attempts
        spawn: Runs a reconnect attempt in the background (defaults to client.start_background_task)
        dedup_window: How many recent event ids are remembered for duplicate suppression
    """

    def __init__(
        self,
        url: str,
        token: Optional[str],
        namespace: str = TASKS_NAMESPACE,
        max_reconnect_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        client=None,
        sleep: Callable[[float], None] = time.sleep,
        spawn: Optional[Callable[..., Any]] = None,
        dedup_window: int = 500,
    ):
        self.url = url
        self.token = token
        self.namespace = namespace
        self.max_reconnect_attempts = max_reconnect_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sio = client if client is not None else socketio.Client(reconnection=False)
        self._sleep = sleep
        self._spawn = spawn or self.sio.start_background_task

        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._closing = False
        self._last_rejection: Optional[Dict[str, Any]] = None
        self.last_error: Optional[str] = None

        self._handlers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = {}
        self._state_listeners: List[Callable[[ConnectionState], None]] = []

        self._seen_order: deque = deque(maxlen=dedup_window)
        self._seen_ids = set()

        self.sio.on('connect', self._on_connect, namespace=self.namespace)
        self.sio.on('disconnect', self._on_disconnect, namespace=self.namespace)
        self.sio.on('connect_error', self._on_connect_error, namespace=self.namespace)
        for event in TASK_EVENTS:
            self.sio.on(event, self._make_dispatcher(event), namespace=self.namespace)

    # ---- public state ----

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        """Consecutive automatic reconnect attempts since the last success or manual reconnect."""
        return self._attempts

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    # ---- subscriptions ----

    def subscribe(self, event: str, handler: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        """
        Register a handler for a task event.

        Returns:
            Disposer that removes the handler
        """
        if event not in TASK_EVENTS:
            raise ValueError(f"Unknown task event: {event}")
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)

        def dispose():
            with self._lock:
                handlers = self._handlers.get(event, [])
                if handler in handlers:
                    handlers.remove(handler)

        return dispose

    def on_state_change(self, listener: Callable[[ConnectionState], None]) -> Callable[[], None]:
        with self._lock:
            self._state_listeners.append(listener)

        def dispose():
            with self._lock:
                if listener in self._state_listeners:
                    self._state_listeners.remove(listener)

        return dispose

    # ---- lifecycle ----

    def connect(self):
        """Open the connection (no-op when already connected or connecting)."""
        with self._lock:
            if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
                return
            self._closing = False
        self._attempt_connect()

    def reconnect(self, token: Optional[str] = None):
        """
        Manual reconnect, allowed in any state. Resets the attempt counter.

        Args:
            token: Fresh bearer token (e.g. after re-login)
        """
        with self._lock:
            if token is not None:
                self.token = token
            self._attempts = 0
            self._closing = True
        if self.sio.connected:
            self.sio.disconnect()
        with self._lock:
            self._closing = False
        self._set_state(ConnectionState.DISCONNECTED)
        self._attempt_connect()

    def disconnect(self):
        """Close the connection and stop reconnecting."""
        with self._lock:
            self._closing = True
        if self.sio.connected:
            self.sio.disconnect()
        self._set_state(ConnectionState.DISCONNECTED)

    # ---- internals ----

    def _set_state(self, state: ConnectionState):
        with self._lock:
            if state == self._state:
                return
            previous, self._state = self._state, state
            listeners = list(self._state_listeners)
        logger.info(f"Realtime channel {previous.value} -> {state.value}")
        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

    def _attempt_connect(self):
        with self._lock:
            self._last_rejection = None
        self._set_state(ConnectionState.CONNECTING)
        try:
            self.sio.connect(
                self.url,
                auth={'token': self.token},
                namespaces=[self.namespace],
            )
        except SocketConnectionError as e:
            self.last_error = str(e)
            code = _rejection_code(self._last_rejection)
            if code in AUTH_FAILURE_CODES:
                self.last_error = self._last_rejection.get('message') or code
                logger.warning(f"Realtime channel rejected: {code}")
                self._set_state(ConnectionState.AUTH_FAILED)
                return
            logger.warning(f"Realtime connect failed: {e}")
            self._set_state(ConnectionState.DISCONNECTED)
            self._schedule_reconnect()

    def _schedule_reconnect(self):
        with self._lock:
            if self._closing or self._state == ConnectionState.AUTH_FAILED:
                return
            if self._attempts >= self.max_reconnect_attempts:
                logger.warning(f"Realtime channel giving up after {self._attempts} reconnect attempts")
                return
            self._attempts += 1
            attempt = self._attempts
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        logger.info(f"Realtime reconnect attempt {attempt}/{self.max_reconnect_attempts} in {delay:.1f}s")
        self._spawn(self._reconnect_after, delay)

    def _reconnect_after(self, delay: float):
        self._sleep(delay)
        with self._lock:
            if self._closing or self._state in (ConnectionState.CONNECTED, ConnectionState.AUTH_FAILED):
                return
        self._attempt_connect()

    def _on_connect(self):
        with self._lock:
            self._attempts = 0
            self.last_error = None
        self._set_state(ConnectionState.CONNECTED)

    def _on_disconnect(self, reason=None):
        with self._lock:
            closing = self._closing
        logger.info(f"Realtime channel disconnected (reason={reason})")
        self._set_state(ConnectionState.DISCONNECTED)
        if not closing:
            self._schedule_reconnect()

    def _on_connect_error(self, data=None):
        with self._lock:
            self._last_rejection = data if isinstance(data, dict) else {'message': str(data)}
        logger.debug(f"Realtime connect_error: {data}")

    def _make_dispatcher(self, event: str):
        def dispatch(data=None):
            self._dispatch(event, data or {})
        return dispatch

    def _dispatch(self, event: str, data: Dict[str, Any]):
        event_id = data.get('event_id')
        with self._lock:
            if event_id is not None:
                if event_id in self._seen_ids:
                    logger.debug(f"Dropping duplicate {event} ({event_id})")
                    return
                if len(self._seen_order) == self._seen_order.maxlen:
                    self._seen_ids.discard(self._seen_order[0])
                self._seen_order.append(event_id)
                self._seen_ids.add(event_id)
            handlers = list(self._handlers.get(event, []))

        for handler in handlers:
            try:
                handler(data)
            except Exception as e:
                logger.error(f"Handler for {event} failed: {e}", exc_info=True)
