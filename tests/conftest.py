"""Test fixtures for the backup lifecycle.

Provides in-memory fakes for the remote wire boundary, the token endpoint,
and the scheduler, plus a controllable clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import itertools
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from backup_lifecycle.api.schemas.backup_config import BackupConfig
from backup_lifecycle.backend.services.lifecycle.config_provider import InMemoryConfigProvider
from backup_lifecycle.backend.services.lifecycle.credentials import RemoteCredential
from backup_lifecycle.backend.services.lifecycle.errors import AuthFailureError
from backup_lifecycle.backend.services.lifecycle.manager import BackupManager
from backup_lifecycle.backend.services.lifecycle.schedule_trigger import SchedulerTrigger
from backup_lifecycle.backend.services.lifecycle.storage.base import DriveApi
from backup_lifecycle.backend.services.lifecycle.storage.local import LocalConfig, LocalStore
from backup_lifecycle.backend.services.lifecycle.storage.remote_sync import RemoteConfig, RemoteSyncClient


class FakeClock:
    """Clock that advances one minute per call unless told otherwise."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(minutes=1)):
        self.now = start or datetime(2024, 1, 6, 0, 0, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class FakeDriveApi(DriveApi):
    """In-memory Drive. Failures can be scripted per operation."""

    def __init__(self):
        self.folders: List[Dict[str, Any]] = []
        self.files: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.tokens_seen: List[str] = []
        self._failures: Dict[str, List[Exception]] = {}
        self._ids = itertools.count(1)
        self._created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.before_upload: Optional[Callable[[], None]] = None

    def fail_next(self, operation: str, *errors: Exception) -> None:
        self._failures.setdefault(operation, []).extend(errors)

    def _enter(self, operation: str, credential: RemoteCredential) -> None:
        self.calls.append(operation)
        self.tokens_seen.append(credential.access_token)
        queue = self._failures.get(operation)
        if queue:
            raise queue.pop(0)

    def _next_time(self) -> str:
        self._created = self._created + timedelta(minutes=1)
        return self._created.isoformat().replace("+00:00", "Z")

    def find_folders(self, credential, *, name):
        self._enter("find_folders", credential)
        return [f for f in self.folders if f["name"] == name]

    def create_folder(self, credential, *, name):
        self._enter("create_folder", credential)
        folder = {"id": f"folder-{next(self._ids)}", "name": name}
        self.folders.append(folder)
        return folder

    def upload_file(self, credential, *, local_path, name, folder_id, mime_type):
        self._enter("upload_file", credential)
        if self.before_upload is not None:
            self.before_upload()
        file_id = f"file-{next(self._ids)}"
        item = {
            "id": file_id,
            "name": name,
            "parents": [folder_id],
            "mimeType": mime_type,
            "createdTime": self._next_time(),
            "size": str(Path(local_path).stat().st_size),
            "webViewLink": f"https://drive.example/{file_id}",
        }
        self.files[file_id] = item
        return item

    def add_file(self, name: str, folder_id: str) -> Dict[str, Any]:
        file_id = f"file-{next(self._ids)}"
        item = {"id": file_id, "name": name, "parents": [folder_id], "createdTime": self._next_time(), "size": "1"}
        self.files[file_id] = item
        return item

    def list_files(self, credential, *, folder_id, page_size, page_token=None):
        self._enter("list_files", credential)
        items = [f for f in self.files.values() if folder_id in f["parents"]]
        items.sort(key=lambda f: f["createdTime"], reverse=True)
        response: Dict[str, Any] = {"files": items[:page_size]}
        if len(items) > page_size:
            response["nextPageToken"] = "next"
        return response

    def delete_file(self, credential, *, file_id):
        self._enter("delete_file", credential)
        del self.files[file_id]


class FakeTokenClient:
    """Token client returning numbered access tokens."""

    def __init__(self):
        self.refresh_calls = 0
        self.fail_with: Optional[Exception] = None
        self.closed = False

    def refresh(self, credential: RemoteCredential) -> RemoteCredential:
        self.refresh_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return credential.refreshed(
            access_token=f"access-{self.refresh_calls + 1}",
            expiry=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )

    def exchange_code(self, code: str) -> RemoteCredential:
        if self.fail_with is not None:
            raise self.fail_with
        return RemoteCredential(access_token=f"access-from-{code}", refresh_token="refresh-from-code")

    def close(self) -> None:
        self.closed = True


class FakeTrigger(SchedulerTrigger):
    """Records registrations instead of scheduling."""

    def __init__(self):
        self.registrations: List[str] = []
        self.unregister_calls = 0
        self.handler: Optional[Callable[[], None]] = None

    def register(self, cron_expr, handler):
        self.registrations.append(cron_expr)
        self.handler = handler

    def unregister(self):
        self.unregister_calls += 1
        self.handler = None

    def next_fire_time(self):
        if self.handler is None:
            return None
        return datetime(2030, 1, 5, tzinfo=timezone.utc)

    def fire(self) -> None:
        assert self.handler is not None, "nothing registered"
        self.handler()


CREDENTIAL = {"access_token": "access-1", "refresh_token": "refresh-1", "expiry": "2024-01-01T00:00:00+00:00"}


@pytest.fixture
def tokens() -> Dict[str, Any]:
    return dict(CREDENTIAL)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source_db(tmp_path: Path) -> Path:
    path = tmp_path / "data" / "database.db"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"SQLite format 3\x00" + b"x" * 2048)
    return path


@pytest.fixture
def local_store(tmp_path: Path) -> LocalStore:
    return LocalStore(LocalConfig(base_path=str(tmp_path / "backups")))


@pytest.fixture
def drive_api() -> FakeDriveApi:
    return FakeDriveApi()


@pytest.fixture
def token_client() -> FakeTokenClient:
    return FakeTokenClient()


@pytest.fixture
def remote_client(drive_api: FakeDriveApi, token_client: FakeTokenClient) -> RemoteSyncClient:
    return RemoteSyncClient(drive_api, token_client, RemoteConfig(folder_name="Backups Test"))


@pytest.fixture
def trigger() -> FakeTrigger:
    return FakeTrigger()


@pytest.fixture
def make_manager(source_db, local_store, remote_client, trigger, clock):
    """Factory building a manager with a given initial config."""

    def _make(**config_fields: Any) -> BackupManager:
        provider = InMemoryConfigProvider(BackupConfig(**config_fields))
        return BackupManager(
            source_path=source_db,
            local_store=local_store,
            trigger=trigger,
            config_provider=provider,
            remote_client=remote_client,
            clock=clock,
        )

    return _make


@pytest.fixture
def refresh_failure() -> AuthFailureError:
    return AuthFailureError("Token exchange rejected", details={"error": "invalid_grant"})
