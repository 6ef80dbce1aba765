"""
Startup validation and configuration tests.
"""

import pytest
from sqlalchemy import create_engine

from sync_client.config import SyncClientConfig
from utils.startup_validation import StartupValidator, run_startup_validation

STRONG_SECRET = 's' * 40


def _config(**overrides):
    config = {
        'SECRET_KEY': STRONG_SECRET,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'ENVIRONMENT': 'development',
        'SOCKETIO_MESSAGE_QUEUE': None,
    }
    config.update(overrides)
    return config


class TestStartupValidator:

    def test_ready_with_database(self):
        report = run_startup_validation(_config(), create_engine('sqlite://'))

        assert report.ready
        assert report.get('db:connection').passed
        assert 'google_oauth' in report.features_degraded[-1]

    def test_missing_secret_is_critical(self):
        report = StartupValidator(_config(SECRET_KEY='')).run_all_validations()

        assert not report.ready
        assert report.get('config:SECRET_KEY').remediation.startswith('Set SESSION_SECRET')

    def test_short_secret_only_fails_in_production(self):
        dev = StartupValidator(_config(SECRET_KEY='short')).run_all_validations()
        prod = StartupValidator(_config(SECRET_KEY='short', ENVIRONMENT='production')).run_all_validations()

        assert dev.ready
        assert dev.get('security:secret_key').severity == 'warning'
        assert not prod.ready

    def test_production_exits_when_not_ready(self):
        with pytest.raises(SystemExit):
            run_startup_validation(_config(SQLALCHEMY_DATABASE_URI='', ENVIRONMENT='production'))

    def test_unreachable_database(self, mocker):
        engine = mocker.Mock()
        engine.connect.side_effect = RuntimeError('connection refused')

        report = StartupValidator(_config(), engine).run_all_validations()

        assert not report.ready
        assert 'connection refused' in report.get('db:connection').message

    def test_redis_message_queue(self, mocker):
        client = mocker.Mock()
        from_url = mocker.patch('utils.startup_validation.redis.from_url', return_value=client)

        report = StartupValidator(_config(SOCKETIO_MESSAGE_QUEUE='redis://cache:6379/0')).run_all_validations()

        from_url.assert_called_once_with('redis://cache:6379/0', socket_connect_timeout=5)
        client.ping.assert_called_once()
        assert 'realtime_multi_worker' in report.features_loaded

    def test_unreachable_redis_degrades(self, mocker):
        mocker.patch('utils.startup_validation.redis.from_url', side_effect=ConnectionError('no route'))

        report = StartupValidator(_config(SOCKETIO_MESSAGE_QUEUE='redis://cache:6379/0')).run_all_validations()

        assert report.ready
        assert report.features_degraded[0].startswith('realtime_multi_worker')

    def test_report_stored_on_app(self, app):
        report = app.extensions['startup_report']

        assert report.environment == 'testing'
        assert report.to_dict()['summary']['failed'] == 0


class TestSyncClientConfig:

    def test_defaults(self, monkeypatch):
        for name in ('SYNC_SERVER_URL', 'SYNC_MAX_RETRIES', 'SYNC_MAX_RECONNECT_ATTEMPTS'):
            monkeypatch.delenv(name, raising=False)

        config = SyncClientConfig.from_env(load_env_file=False)

        assert config.max_retries == 3
        assert config.max_reconnect_attempts == 5
        assert config.server_url == 'http://localhost:5000'

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv('SYNC_SERVER_URL', 'https://tasks.example')
        monkeypatch.setenv('SYNC_MAX_RETRIES', '5')
        monkeypatch.setenv('SYNC_RECONNECT_MAX_DELAY', '12.5')

        config = SyncClientConfig.from_env(load_env_file=False)

        assert config.server_url == 'https://tasks.example'
        assert config.max_retries == 5
        assert config.reconnect_max_delay == 12.5
