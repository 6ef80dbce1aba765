"""
Tasks WebSocket Tests

Handshake authentication on the /tasks namespace and fan-out of committed
task changes to every connection of the owning account.
"""

import pytest

from services.event_broadcaster import TaskEventBroadcaster, TaskEvent, account_room
from services.event_sequencer import EventSequencer

NAMESPACE = '/tasks'


def _events(sio_client, name):
    return [msg['args'][0] for msg in sio_client.get_received(NAMESPACE) if msg['name'] == name]


class TestHandshake:

    def test_rejected_without_token(self, app, socketio, client):
        sio_client = socketio.test_client(app, namespace=NAMESPACE, flask_test_client=client)

        assert not sio_client.is_connected(NAMESPACE)

    def test_rejected_with_invalid_token(self, app, socketio, client):
        sio_client = socketio.test_client(
            app, namespace=NAMESPACE, auth={'token': 'garbage'}, flask_test_client=client
        )

        assert not sio_client.is_connected(NAMESPACE)

    def test_admitted_with_valid_token(self, app, socketio, client, test_user, make_token):
        sio_client = socketio.test_client(
            app, namespace=NAMESPACE, auth={'token': make_token(test_user)}, flask_test_client=client
        )

        assert sio_client.is_connected(NAMESPACE)
        greeting = _events(sio_client, 'connected')
        assert greeting and greeting[0]['user_id'] == test_user.id
        assert app.extensions['task_event_broadcaster'].connection_count(test_user.id) == 1

    def test_disconnect_releases_binding(self, app, socketio, client, test_user, make_token):
        sio_client = socketio.test_client(
            app, namespace=NAMESPACE, auth={'token': make_token(test_user)}, flask_test_client=client
        )

        sio_client.disconnect(namespace=NAMESPACE)

        assert app.extensions['task_event_broadcaster'].connection_count(test_user.id) == 0


class TestTaskFanOut:
    """Committed changes reach every connection of the owner, and only the owner."""

    @pytest.fixture(autouse=True)
    def setup(self, app, socketio, client, test_user, other_user, make_token, auth_headers):
        self.client = client
        self.headers = auth_headers
        token = make_token(test_user)
        self.first = socketio.test_client(app, namespace=NAMESPACE, auth={'token': token}, flask_test_client=client)
        self.second = socketio.test_client(app, namespace=NAMESPACE, auth={'token': token}, flask_test_client=client)
        self.stranger = socketio.test_client(
            app, namespace=NAMESPACE, auth={'token': make_token(other_user)}, flask_test_client=client
        )
        for sio_client in (self.first, self.second, self.stranger):
            sio_client.get_received(NAMESPACE)

    def test_update_reaches_both_connections(self):
        task_id = self.client.post('/api/tasks', json={'title': 'shared'}, headers=self.headers).get_json()['task']['id']
        for sio_client in (self.first, self.second):
            sio_client.get_received(NAMESPACE)

        self.client.put(f'/api/tasks/{task_id}', json={'status': 'completed'}, headers=self.headers)

        for sio_client in (self.first, self.second):
            updates = _events(sio_client, 'task:updated')
            assert len(updates) == 1
            assert updates[0]['task']['id'] == task_id
            assert updates[0]['task']['status'] == 'completed'

    def test_other_account_receives_nothing(self):
        task_id = self.client.post('/api/tasks', json={'title': 'mine'}, headers=self.headers).get_json()['task']['id']
        self.client.delete(f'/api/tasks/{task_id}', headers=self.headers)

        assert self.stranger.get_received(NAMESPACE) == []

    def test_events_carry_unique_ids_and_ordered_sequence(self):
        task_id = self.client.post('/api/tasks', json={'title': 'seq'}, headers=self.headers).get_json()['task']['id']
        self.client.put(f'/api/tasks/{task_id}', json={'title': 'seq 2'}, headers=self.headers)
        self.client.delete(f'/api/tasks/{task_id}', headers=self.headers)

        received = [msg for msg in self.first.get_received(NAMESPACE) if msg['name'].startswith('task:')]

        assert [msg['name'] for msg in received] == ['task:created', 'task:updated', 'task:deleted']
        payloads = [msg['args'][0] for msg in received]
        assert len({p['event_id'] for p in payloads}) == 3
        assert [p['sequence'] for p in payloads] == sorted(p['sequence'] for p in payloads)
        assert payloads[2]['task_id'] == task_id


class TestBroadcaster:
    """Registry and emission without a live server."""

    def test_sid_cannot_switch_accounts(self, mocker):
        broadcaster = TaskEventBroadcaster(mocker.Mock())
        broadcaster.bind('sid-1', 1)

        with pytest.raises(ValueError):
            broadcaster.bind('sid-1', 2)

    def test_emit_targets_account_room(self, mocker):
        socketio = mocker.Mock()
        broadcaster = TaskEventBroadcaster(socketio, EventSequencer(epoch='e1'))

        message = broadcaster.task_deleted('a' * 32, 7)

        socketio.emit.assert_called_once_with(
            TaskEvent.DELETED.value, message, to=account_room(7), namespace=NAMESPACE
        )
        assert message['event_id'] == 'e1-7-1'
        assert message['sequence'] == 1

    def test_sequences_are_per_account(self, mocker):
        broadcaster = TaskEventBroadcaster(mocker.Mock())

        broadcaster.task_created({'id': 'a' * 32, 'user_id': 1})
        broadcaster.task_created({'id': 'b' * 32, 'user_id': 1})
        third = broadcaster.task_created({'id': 'c' * 32, 'user_id': 2})

        assert broadcaster.sequencer.last_sequence(1) == 2
        assert third['sequence'] == 1

    def test_emit_failure_is_counted_not_raised(self, mocker):
        socketio = mocker.Mock()
        socketio.emit.side_effect = RuntimeError('transport closed')
        broadcaster = TaskEventBroadcaster(socketio)

        assert broadcaster.task_updated({'id': 'a' * 32, 'user_id': 1}) is None
        assert broadcaster.metrics['emit_failures'] == 1
