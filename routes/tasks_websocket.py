"""
Tasks WebSocket Namespace - real-time task change delivery.

Connections authenticate with the bearer token in the Socket.IO auth payload
({'token': ...}). Admitted connections are bound to their account for their
whole lifetime and join the account room, where TaskEventBroadcaster emits
task:created / task:updated / task:deleted.

Events emitted to the client:
- connected: admission greeting
- task:created {task, event_id, sequence, emitted_at}
- task:updated {task, event_id, sequence, emitted_at}
- task:deleted {task_id, event_id, sequence, emitted_at}

Payload keys are snake_case like the REST envelope, so a delete carries
`task_id` (not `taskId`).
"""

import logging

from flask import current_app, request
from flask_socketio import emit, join_room, ConnectionRefusedError

from services.event_broadcaster import TASKS_NAMESPACE, account_room
from utils.auth import authenticate_token, AuthenticationFailed

logger = logging.getLogger(__name__)


# Flask-SocketIO enhances Flask's request object with 'sid' attribute at runtime
def get_socket_sid() -> str:
    """Get Socket.IO session ID from request context."""
    return request.sid  # type: ignore[attr-defined]


def register_tasks_namespace(socketio):
    """
    Register Tasks WebSocket namespace handlers.

    Namespace: /tasks
    Events:
    - connect: Authenticate and bind the connection to its account
    - disconnect: Release the binding
    """

    @socketio.on('connect', namespace=TASKS_NAMESPACE)
    def handle_tasks_connect(auth=None):
        """Admit a connection only with a valid bearer token."""
        sid = get_socket_sid()
        token = auth.get('token') if isinstance(auth, dict) else None

        try:
            user = authenticate_token(token)
        except AuthenticationFailed as e:
            logger.warning(f"Tasks connection {sid} rejected: {e.code}")
            raise ConnectionRefusedError(e.message, {'code': e.code})

        join_room(account_room(user.id))
        broadcaster = current_app.extensions['task_event_broadcaster']
        broadcaster.bind(sid, user.id)

        logger.info(f"Tasks client connected: sid={sid}, user={user.id}")
        emit('connected', {
            'message': 'Connected to tasks namespace',
            'client_id': sid,
            'user_id': user.id,
        })

    @socketio.on('disconnect', namespace=TASKS_NAMESPACE)
    def handle_tasks_disconnect(reason=None):
        """Release the connection's account binding."""
        sid = get_socket_sid()
        broadcaster = current_app.extensions['task_event_broadcaster']
        account_id = broadcaster.unbind(sid)
        logger.info(f"Tasks client disconnected: sid={sid}, user={account_id}, reason={reason}")

    logger.info("Tasks WebSocket namespace registered")
