"""
Realtime Channel Tests

Connection state machine, bounded reconnect with backoff, the auth_failed
short-circuit, duplicate suppression and subscription disposers.
"""

import pytest

from sync_client.realtime import ConnectionState, RealtimeChannel
from fakes import FakeSocketClient

REJECTED = {'message': 'Token has expired', 'data': {'code': 'TOKEN_EXPIRED'}}


class TestRealtimeChannel:

    @pytest.fixture(autouse=True)
    def setup(self):
        self.delays = []
        self.states = []

    def _channel(self, outcomes=None, **kwargs):
        self.sio = FakeSocketClient(outcomes)
        channel = RealtimeChannel(
            'http://server.test',
            'tok',
            client=self.sio,
            sleep=self.delays.append,
            spawn=lambda fn, *args: fn(*args),
            **kwargs,
        )
        channel.on_state_change(self.states.append)
        return channel

    def test_connect_presents_token(self):
        channel = self._channel(['ok'])

        channel.connect()

        assert channel.state == ConnectionState.CONNECTED
        assert self.sio.connect_calls[0]['auth'] == {'token': 'tok'}
        assert self.sio.connect_calls[0]['namespaces'] == ['/tasks']
        assert self.states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

    def test_reconnect_attempts_are_capped(self):
        channel = self._channel(['fail'] * 20)

        channel.connect()

        # initial attempt plus five automatic reconnects
        assert len(self.sio.connect_calls) == 6
        assert channel.attempts == 5
        assert self.delays == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert channel.state == ConnectionState.DISCONNECTED

    def test_backoff_is_bounded(self):
        channel = self._channel(['fail'] * 20, max_reconnect_attempts=8, max_delay=10.0)

        channel.connect()

        assert max(self.delays) == 10.0

    def test_auth_rejection_is_terminal(self):
        channel = self._channel([REJECTED, 'ok'])

        channel.connect()

        assert channel.state == ConnectionState.AUTH_FAILED
        assert len(self.sio.connect_calls) == 1
        assert self.delays == []
        assert channel.last_error == 'Token has expired'

    def test_manual_reconnect_after_auth_failure(self):
        channel = self._channel([REJECTED, 'ok'])
        channel.connect()

        channel.reconnect('fresh-token')

        assert channel.state == ConnectionState.CONNECTED
        assert self.sio.connect_calls[-1]['auth'] == {'token': 'fresh-token'}

    def test_manual_reconnect_resets_attempts(self):
        channel = self._channel(['fail'] * 6 + ['ok'])
        channel.connect()
        assert channel.attempts == 5

        channel.reconnect()

        assert channel.state == ConnectionState.CONNECTED
        assert channel.attempts == 0

    def test_transport_drop_reconnects(self):
        channel = self._channel(['ok', 'ok'])
        channel.connect()

        self.sio.drop()

        assert channel.state == ConnectionState.CONNECTED
        assert len(self.sio.connect_calls) == 2
        assert channel.attempts == 0

    def test_disconnect_stops_reconnecting(self):
        channel = self._channel(['ok'])
        channel.connect()

        channel.disconnect()

        assert channel.state == ConnectionState.DISCONNECTED
        assert len(self.sio.connect_calls) == 1

    def test_duplicate_events_delivered_once(self):
        channel = self._channel(['ok'])
        received = []
        channel.subscribe('task:updated', received.append)
        channel.connect()
        event = {'task': {'id': 'a' * 32, 'title': 'x'}, 'event_id': 'e1-1-1', 'sequence': 1}

        self.sio.server_emit('task:updated', event)
        self.sio.server_emit('task:updated', event)

        assert received == [event]

    def test_dedup_window_is_bounded(self):
        channel = self._channel(['ok'], dedup_window=2)
        received = []
        channel.subscribe('task:deleted', received.append)
        channel.connect()

        for event_id in ('e-1', 'e-2', 'e-3', 'e-1'):
            self.sio.server_emit('task:deleted', {'task_id': 'a' * 32, 'event_id': event_id})

        # e-1 fell out of the window and is delivered again
        assert [e['event_id'] for e in received] == ['e-1', 'e-2', 'e-3', 'e-1']

    def test_disposer_removes_handler(self):
        channel = self._channel(['ok'])
        received = []
        dispose = channel.subscribe('task:created', received.append)
        channel.connect()

        dispose()
        self.sio.server_emit('task:created', {'task': {'id': 'a' * 32}, 'event_id': 'x'})

        assert received == []

    def test_failing_handler_does_not_block_others(self):
        channel = self._channel(['ok'])
        received = []

        def broken(data):
            raise RuntimeError('boom')

        channel.subscribe('task:created', broken)
        channel.subscribe('task:created', received.append)
        channel.connect()

        self.sio.server_emit('task:created', {'task': {'id': 'a' * 32}, 'event_id': 'x'})

        assert len(received) == 1

    def test_unknown_event_rejected(self):
        channel = self._channel()

        with pytest.raises(ValueError):
            channel.subscribe('task:archived', print)
