"""
Task list fold tests.

Event folds must be idempotent so duplicate and reordered deliveries leave
the list unchanged.
"""

from sync_client import folds
from sync_client.models import (
    OperationKind,
    Pending,
    Persisted,
    QueuedOperation,
    TaskRecord,
    generate_placeholder_id,
    is_placeholder_id,
)

A = 'a' * 32
B = 'b' * 32


def server_task(task_id, title='task', user_id=1, **extra):
    data = {'id': task_id, 'title': title, 'user_id': user_id, 'status': 'todo', 'priority': 'medium'}
    data.update(extra)
    return data


def record(task_id, title='task', user_id=1):
    return TaskRecord.from_server(server_task(task_id, title, user_id))


class TestEventFolds:

    def test_created_appends_once(self):
        tasks = folds.apply_event((), 'task:created', {'task': server_task(A)}, 1)
        again = folds.apply_event(tasks, 'task:created', {'task': server_task(A)}, 1)

        assert [t.id for t in again] == [A]
        assert again is tasks

    def test_updated_replaces_in_place(self):
        tasks = (record(A), record(B))

        tasks = folds.apply_event(tasks, 'task:updated', {'task': server_task(A, 'renamed')}, 1)

        assert [t.title for t in tasks] == ['renamed', 'task']

    def test_update_for_unknown_task_is_ignored(self):
        tasks = (record(A),)

        assert folds.apply_event(tasks, 'task:updated', {'task': server_task(B)}, 1) is tasks

    def test_delete_is_idempotent(self):
        tasks = (record(A), record(B))

        once = folds.apply_event(tasks, 'task:deleted', {'task_id': A}, 1)
        twice = folds.apply_event(once, 'task:deleted', {'task_id': A}, 1)

        assert [t.id for t in once] == [B]
        assert twice is once

    def test_foreign_owner_ignored(self):
        tasks = (record(A),)

        assert folds.apply_event(tasks, 'task:created', {'task': server_task(B, user_id=2)}, 1) is tasks

    def test_malformed_event_ignored(self):
        tasks = (record(A),)

        assert folds.apply_event(tasks, 'task:created', {'nothing': True}, 1) is tasks
        assert folds.apply_event(tasks, 'task:deleted', {}, 1) is tasks


class TestReplacePending:

    def test_swaps_placeholder_in_position(self):
        tasks = (record(A), TaskRecord.pending('temp_1_x_1', {'title': 'draft'}), record(B))

        tasks = folds.replace_pending(tasks, 'temp_1_x_1', record('c' * 32, 'draft'))

        assert [t.id for t in tasks] == [A, 'c' * 32, B]
        assert not any(t.is_pending for t in tasks)

    def test_event_folded_first_leaves_one_copy(self):
        created = record('c' * 32, 'draft')
        tasks = (TaskRecord.pending('temp_1_x_1', {'title': 'draft'}), created)

        tasks = folds.replace_pending(tasks, 'temp_1_x_1', created)

        assert [t.id for t in tasks] == ['c' * 32]

    def test_repeated_replace_is_harmless(self):
        created = record('c' * 32, 'draft')
        tasks = (TaskRecord.pending('temp_1_x_1', {'title': 'draft'}),)

        once = folds.replace_pending(tasks, 'temp_1_x_1', created)
        twice = folds.replace_pending(once, 'temp_1_x_1', created)

        assert [t.id for t in twice] == ['c' * 32]


class TestRebase:

    def _op(self, sequence, kind, **kwargs):
        return QueuedOperation(id=f'op{sequence}', sequence=sequence, account_id='1', kind=kind, **kwargs)

    def test_queued_operations_replayed_in_order(self):
        placeholder = 'temp_1_x_1'
        operations = [
            self._op(1, OperationKind.CREATE, payload={'title': 'offline'}, placeholder_id=placeholder),
            self._op(2, OperationKind.UPDATE, payload={'status': 'completed'}, target=Pending(placeholder)),
            self._op(3, OperationKind.DELETE, target=Persisted(A)),
            self._op(4, OperationKind.UPDATE, payload={'title': 'x'}, target=Persisted('d' * 32)),
        ]

        tasks = folds.rebase([record(A), record(B)], operations, 1)

        assert [t.id for t in tasks] == [B, placeholder]
        assert tasks[1].is_pending
        assert tasks[1].status == 'completed'
        assert tasks[1].user_id == 1


class TestTaskRecord:

    def test_server_and_pending_ids_never_mix(self):
        placeholder = generate_placeholder_id(1)

        assert is_placeholder_id(placeholder)
        assert not is_placeholder_id(A)
        assert TaskRecord.pending(placeholder, {'title': 'x'}).ref == Pending(placeholder)
        assert record(A).ref == Persisted(A)

    def test_dict_round_trip_keeps_ref_kind(self):
        pending = TaskRecord.pending('temp_1_x_1', {'title': 'x', 'due_date': '2030-01-01'}, 1)

        restored = TaskRecord.from_dict(pending.to_dict())

        assert restored == pending
        assert pending.to_dict()['pending'] is True
