"""
Task Service
Authoritative task store operations, scoped to the owning account.

Every mutation commits first and only then fans the change out through the
TaskEventBroadcaster, so a crash between commit and emit loses an event
(corrected by the client's next fetch) instead of announcing an uncommitted
write.
"""

import logging
import re
from datetime import date
from typing import Dict, Any, List, Optional

from sqlalchemy import select

from models import db, Task, TaskStatus, TaskPriority
from services.event_broadcaster import get_broadcaster

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 255
TASK_ID_PATTERN = re.compile(r'^[0-9a-f]{32}$')

STATUS_VALUES = {s.value for s in TaskStatus}
PRIORITY_VALUES = {p.value for p in TaskPriority}


class TaskServiceError(Exception):
    """Base error carrying the HTTP status and machine-readable code for the JSON envelope."""
    status_code = 400
    code = "TASK_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {'success': False, 'message': self.message, 'code': self.code}


class TaskValidationError(TaskServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidTaskIdError(TaskServiceError):
    status_code = 400
    code = "INVALID_ID"


class TaskNotFoundError(TaskServiceError):
    status_code = 404
    code = "TASK_NOT_FOUND"


class TaskAccessDeniedError(TaskServiceError):
    status_code = 403
    code = "FORBIDDEN"


# ---- validation ----

def validate_task_id(task_id: str) -> str:
    if not isinstance(task_id, str) or not TASK_ID_PATTERN.match(task_id):
        raise InvalidTaskIdError("Invalid task id")
    return task_id


def _parse_due_date(value) -> Optional[date]:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise TaskValidationError("due_date must be an ISO date string")
    try:
        # Accept full timestamps too; only the date part is stored
        return date.fromisoformat(value[:10])
    except ValueError:
        raise TaskValidationError("Invalid due date format")


def validate_task_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate and normalise a create or update payload.

    Args:
        data: Request body
        partial: True for updates (only the provided fields are checked)

    Returns:
        Dict of cleaned field values ready for Task.apply_changes()

    Raises:
        TaskValidationError: on any invalid field
    """
    if not isinstance(data, dict):
        raise TaskValidationError("Request body must be a JSON object")

    cleaned: Dict[str, Any] = {}

    if 'title' in data or not partial:
        title = data.get('title')
        if not isinstance(title, str) or not title.strip():
            raise TaskValidationError("Title is required")
        title = title.strip()
        if len(title) > TITLE_MAX_LENGTH:
            raise TaskValidationError(f"Title must be at most {TITLE_MAX_LENGTH} characters")
        cleaned['title'] = title

    if 'description' in data:
        description = data['description']
        if description is None:
            description = ""
        if not isinstance(description, str):
            raise TaskValidationError("Description must be a string")
        cleaned['description'] = description.strip()

    if 'status' in data:
        if data['status'] not in STATUS_VALUES:
            raise TaskValidationError(f"Invalid status. Must be one of: {', '.join(sorted(STATUS_VALUES))}")
        cleaned['status'] = data['status']

    if 'priority' in data:
        if data['priority'] not in PRIORITY_VALUES:
            raise TaskValidationError(f"Invalid priority. Must be one of: {', '.join(sorted(PRIORITY_VALUES))}")
        cleaned['priority'] = data['priority']

    if 'due_date' in data:
        cleaned['due_date'] = _parse_due_date(data['due_date'])

    if partial and not cleaned:
        raise TaskValidationError("No updatable fields provided")

    return cleaned


# ---- queries ----

def _load_owned_task(task_id: str, user_id: int) -> Task:
    """
    Load a task and enforce ownership.

    A task that exists but belongs to another account raises
    TaskAccessDeniedError, never TaskNotFoundError.
    """
    validate_task_id(task_id)
    task = db.session.get(Task, task_id)
    if task is None:
        raise TaskNotFoundError("Task not found")
    if not task.is_owned_by(user_id):
        logger.warning(f"User {user_id} attempted to access task {task_id} owned by {task.user_id}")
        raise TaskAccessDeniedError("You do not have access to this task")
    return task


def list_tasks(user_id: int) -> List[Task]:
    """All tasks owned by the user, newest first."""
    stmt = (
        select(Task)
        .where(Task.user_id == user_id)
        .order_by(Task.created_at.desc(), Task.id)
    )
    return list(db.session.scalars(stmt))


def get_task(task_id: str, user_id: int) -> Task:
    return _load_owned_task(task_id, user_id)


# ---- mutations ----

def create_task(user_id: int, data: Dict[str, Any]) -> Task:
    """
    Create a task for the user and announce it.

    Returns:
        The committed Task
    """
    fields = validate_task_fields(data)
    task = Task(
        user_id=user_id,
        title=fields['title'],
        description=fields.get('description', ""),
        status=fields.get('status', TaskStatus.TODO.value),
        priority=fields.get('priority', TaskPriority.MEDIUM.value),
        due_date=fields.get('due_date'),
    )
    db.session.add(task)
    db.session.commit()
    logger.info(f"Task {task.id} created by user {user_id}")

    _announce('task_created', task.to_dict())
    return task


def update_task(task_id: str, user_id: int, data: Dict[str, Any]) -> Task:
    """
    Apply a partial update (last write wins per field).

    Returns:
        The committed Task
    """
    task = _load_owned_task(task_id, user_id)
    changes = validate_task_fields(data, partial=True)

    task.apply_changes(changes)
    db.session.commit()
    logger.info(f"Task {task.id} updated by user {user_id}: {sorted(changes)}")

    _announce('task_updated', task.to_dict())
    return task


def delete_task(task_id: str, user_id: int) -> str:
    """
    Delete a task.

    Returns:
        The deleted task id
    """
    task = _load_owned_task(task_id, user_id)
    db.session.delete(task)
    db.session.commit()
    logger.info(f"Task {task_id} deleted by user {user_id}")

    _announce('task_deleted', task_id, user_id)
    return task_id


def _announce(method: str, *args):
    """Fan a committed change out to the owner's connections. Never raises."""
    broadcaster = get_broadcaster()
    if broadcaster is None:
        return
    try:
        getattr(broadcaster, method)(*args)
    except Exception as e:
        logger.error(f"Failed to broadcast {method}: {e}", exc_info=True)
