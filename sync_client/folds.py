"""
Pure task-list transforms.

Every function takes the current list and returns a new tuple; nothing is
mutated in place. The event folds are idempotent so duplicate or reordered
deliveries are harmless:

- created: append if the id is absent
- updated: replace the matching id, no-op if absent
- deleted: remove the matching id, no-op if absent
"""

from typing import Iterable, Tuple, Dict, Any, Optional

from sync_client.models import TaskRecord, TaskRef, Persisted, Pending, QueuedOperation, OperationKind

Tasks = Tuple[TaskRecord, ...]


def _index_of(tasks: Tasks, ref: TaskRef) -> Optional[int]:
    for index, task in enumerate(tasks):
        if task.ref == ref:
            return index
    return None


def fold_created(tasks: Tasks, record: TaskRecord) -> Tasks:
    if _index_of(tasks, record.ref) is not None:
        return tasks
    return tasks + (record,)


def fold_updated(tasks: Tasks, record: TaskRecord) -> Tasks:
    index = _index_of(tasks, record.ref)
    if index is None:
        return tasks
    return tasks[:index] + (record,) + tasks[index + 1:]


def fold_deleted(tasks: Tasks, ref: TaskRef) -> Tasks:
    index = _index_of(tasks, ref)
    if index is None:
        return tasks
    return tasks[:index] + tasks[index + 1:]


def upsert(tasks: Tasks, record: TaskRecord) -> Tasks:
    """Replace by id, or append when absent."""
    if _index_of(tasks, record.ref) is None:
        return tasks + (record,)
    return fold_updated(tasks, record)


def patch(tasks: Tasks, ref: TaskRef, changes: Dict[str, Any]) -> Tasks:
    """Apply field changes to one task, no-op if absent."""
    index = _index_of(tasks, ref)
    if index is None:
        return tasks
    return tasks[:index] + (tasks[index].with_changes(changes),) + tasks[index + 1:]


def replace_pending(tasks: Tasks, placeholder_id: str, record: TaskRecord) -> Tasks:
    """
    Swap a pending placeholder for its persisted record.

    If the persisted record is already present (its task:created event was
    folded first) the placeholder is simply dropped, so the task never appears
    twice.
    """
    placeholder = Pending(placeholder_id)
    pending_index = _index_of(tasks, placeholder)
    if _index_of(tasks, record.ref) is not None:
        tasks = fold_deleted(tasks, placeholder)
        return fold_updated(tasks, record)
    if pending_index is None:
        return tasks + (record,)
    return tasks[:pending_index] + (record,) + tasks[pending_index + 1:]


def apply_event(tasks: Tasks, event: str, data: Dict[str, Any], account_id=None) -> Tasks:
    """
    Fold one real-time event.

    Events that carry an owner other than `account_id` are ignored.
    """
    if event == 'task:deleted':
        task_id = data.get('task_id')
        if not task_id:
            return tasks
        return fold_deleted(tasks, Persisted(task_id))

    task_data = data.get('task')
    if not isinstance(task_data, dict) or 'id' not in task_data:
        return tasks
    owner = task_data.get('user_id')
    if account_id is not None and owner is not None and str(owner) != str(account_id):
        return tasks

    record = TaskRecord.from_server(task_data)
    if event == 'task:created':
        return fold_created(tasks, record)
    if event == 'task:updated':
        return fold_updated(tasks, record)
    return tasks


def apply_operation(tasks: Tasks, operation: QueuedOperation, user_id: Optional[int] = None) -> Tasks:
    """Optimistic effect of a queued operation."""
    if operation.kind == OperationKind.CREATE:
        return fold_created(tasks, TaskRecord.pending(operation.placeholder_id, operation.payload, user_id))
    if operation.kind == OperationKind.UPDATE:
        return patch(tasks, operation.target, operation.payload)
    if operation.kind == OperationKind.DELETE:
        return fold_deleted(tasks, operation.target)
    return tasks


def rebase(server_tasks: Iterable[TaskRecord], operations: Iterable[QueuedOperation], user_id: Optional[int] = None) -> Tasks:
    """Server truth with still-queued operations replayed on top, in enqueue order."""
    tasks: Tasks = tuple(server_tasks)
    for operation in operations:
        tasks = apply_operation(tasks, operation, user_id)
    return tasks
