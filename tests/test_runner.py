import json
import threading

import pytest

from backup_lifecycle import runner
from backup_lifecycle.api.settings import Settings
from backup_lifecycle.backend.services.lifecycle.storage.remote_sync import RemoteSyncClient


@pytest.fixture
def env(tmp_path, monkeypatch, source_db):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SOURCE_DB_PATH", str(source_db))
    monkeypatch.setenv("BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "data" / "backup-config.json"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "")
    monkeypatch.setattr(runner, "setup_logging", lambda settings: None)
    return tmp_path


def test_once_prints_result(env, capsys):
    assert runner.main(["--once"]) == 0

    result = json.loads(capsys.readouterr().out)
    assert result["local"]["name"].startswith("backup-")
    assert result["remote"] is None
    assert (env / "backups" / result["local"]["name"]).exists()


def test_once_with_missing_source_exits_nonzero(env, source_db):
    source_db.unlink()

    assert runner.main(["--once"]) == 1
    assert list((env / "backups").iterdir()) == []


def test_status_prints_json(env, capsys):
    assert runner.main(["--status"]) == 0

    status = json.loads(capsys.readouterr().out)
    assert status["schedule"] == "0 0 * * 6"
    assert status["total_local_backups"] == 0
    assert status["remote_status"]["configured"] is False


def test_exchange_code_without_oauth_client_fails(env):
    assert runner.main(["--exchange-code", "abc"]) == 1


def test_build_manager_wires_settings(env, trigger):
    manager = runner.build_manager(Settings(), trigger=trigger)

    assert manager.trigger is trigger
    assert isinstance(manager.remote_client, RemoteSyncClient)
    assert manager.local_store.base_path == env / "backups"
    assert manager.local_store.base_path.is_dir()


def test_serve_starts_and_stops(env, trigger):
    manager = runner.build_manager(Settings(), trigger=trigger)
    stop_event = threading.Event()
    stop_event.set()

    runner.serve(manager, stop_event, schedule="0 4 * * *")

    assert trigger.registrations == ["0 4 * * *"]
    assert trigger.unregister_calls == 1
    assert not manager.is_running()


def test_invalid_schedule_override_exits_nonzero(env, monkeypatch, caplog):
    monkeypatch.setattr(runner.signal, "signal", lambda signum, handler: None)

    assert runner.main(["--schedule", "not a cron"]) == 1
    assert "Invalid backup schedule" in caplog.text


def test_main_closes_remote_client(env, monkeypatch):
    closed = []
    monkeypatch.setattr(RemoteSyncClient, "close", lambda self: closed.append(self))

    assert runner.main(["--status"]) == 0
    assert len(closed) == 1


def test_remote_client_close_releases_token_client(remote_client, token_client):
    remote_client.close()

    assert token_client.closed is True
