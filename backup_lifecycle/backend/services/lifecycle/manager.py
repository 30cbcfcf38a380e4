"""Backup lifecycle orchestration.

One run:
- Copy the primary data file into the local store under a timestamp name
- Rotate the local store
- Mirror the snapshot to the remote store when enabled and configured
- Rotate the remote store

Everything after the local snapshot is committed is isolated: remote
failures are logged and reported in the run result, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
import threading
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from backup_lifecycle.api.schemas.backup_config import BackupConfig, RemoteCredentialSchema
from backup_lifecycle.backend.services.lifecycle.config_provider import ConfigProvider
from backup_lifecycle.backend.services.lifecycle.credentials import RemoteCredential
from backup_lifecycle.backend.services.lifecycle.errors import (
    BackupError,
    BackupIOError,
    ConfigInvalidError,
    SourceMissingError,
)
from backup_lifecycle.backend.services.lifecycle.retention import SnapshotArtifact
from backup_lifecycle.backend.services.lifecycle.schedule_trigger import SchedulerTrigger, build_cron_trigger, describe_cron
from backup_lifecycle.backend.services.lifecycle.storage.local import LocalStore, snapshot_name
from backup_lifecycle.backend.services.lifecycle.storage.remote_sync import RemoteSyncClient, RemoteUploadResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupRunResult:
    """Outcome of one backup run.

    Attributes:
        local: The committed local snapshot.
        remote: Upload result when the remote mirror succeeded.
        remote_error: Error raised by the remote leg, if any.
    """

    local: SnapshotArtifact
    remote: Optional[RemoteUploadResult] = None
    remote_error: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "local": self.local.to_dict(),
            "remote": self.remote.to_dict() if self.remote else None,
            "remote_error": str(self.remote_error) if self.remote_error else None,
        }


def _config_field_names() -> Dict[str, str]:
    """Map both field names and camelCase aliases to field names."""

    names: Dict[str, str] = {}
    for name, field in BackupConfig.model_fields.items():
        names[name] = name
        if field.alias:
            names[field.alias] = name
    return names


class BackupManager:
    """Schedules and runs backups of one data file across two stores."""

    def __init__(
        self,
        *,
        source_path: Path | str,
        local_store: LocalStore,
        trigger: SchedulerTrigger,
        config_provider: ConfigProvider,
        remote_client: Optional[RemoteSyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the manager.

        Args:
            source_path: Primary data file to snapshot.
            local_store: Local retention store.
            trigger: Scheduler port.
            config_provider: Persisted configuration.
            remote_client: Remote mirror. When None the remote leg never runs.
            clock: Source of "now" (UTC).
        """

        self.source_path = Path(source_path)
        self.local_store = local_store
        self.trigger = trigger
        self.config_provider = config_provider
        self.remote_client = remote_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._state_lock = threading.RLock()
        self._run_lock = threading.Lock()
        self._running = False
        self._active_schedule: Optional[str] = None
        self._last_run: Optional[Dict[str, Any]] = None

        self._config = config_provider.get()
        self.local_store.ensure_directory()

        if self.remote_client is not None:
            self.remote_client.set_refresh_listener(self._on_credential_refreshed)
            credential = self._config.credential()
            if credential is not None:
                self.remote_client.set_credentials(credential)

    @property
    def config(self) -> BackupConfig:
        return self._config

    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    def start(self, schedule: Optional[str] = None) -> None:
        """Register the scheduled run.

        Calling it while already running, or while backups are disabled, is a
        logged no-op.

        Args:
            schedule: Crontab expression overriding the configured schedule for
                this registration.

        Raises:
            ConfigInvalidError: If the schedule is not a valid crontab expression.
        """

        with self._state_lock:
            if self._running:
                logger.warning("Backup service is already running")
                return

            if not self._config.enabled:
                logger.warning("Automatic backups are disabled")
                return

            expr = " ".join((schedule or self._config.schedule).split())
            try:
                build_cron_trigger(expr)
            except ValueError as exc:
                raise ConfigInvalidError(f"Invalid backup schedule: {expr!r}", details={"error": str(exc)}) from exc

            self.trigger.register(expr, self.run_scheduled)
            self._running = True
            self._active_schedule = expr
            logger.info("Backup service started (%s)", describe_cron(expr))

    def stop(self) -> None:
        """Deregister the scheduled run. Idempotent.

        An in-flight run is not interrupted; use `wait_for_idle()` to await it.
        """

        with self._state_lock:
            if not self._running:
                return
            self.trigger.unregister()
            self._running = False
            self._active_schedule = None
            logger.info("Backup service stopped")

    def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no run is in progress.

        Args:
            timeout: Maximum seconds to wait; None waits forever.

        Returns:
            bool: True if idle, False if the timeout expired first.
        """

        acquired = self._run_lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._run_lock.release()
        return acquired

    def run_scheduled(self) -> None:
        """Scheduler entry point.

        A tick that arrives while a run is in progress is skipped, not queued.
        Errors are logged and never propagate into the scheduler.
        """

        if not self._run_lock.acquire(blocking=False):
            logger.warning("Backup run already in progress; skipping scheduled tick")
            return

        try:
            logger.info("Running scheduled backup...")
            self._execute_run()
        except BackupError as exc:
            logger.error("Scheduled backup failed: %s", exc)
        except Exception:
            logger.exception("Scheduled backup failed unexpectedly")
        finally:
            self._run_lock.release()

    def run_backup(self) -> BackupRunResult:
        """Run one backup now.

        Waits for an in-progress run to finish first.

        Returns:
            BackupRunResult: Local snapshot and the remote outcome.

        Raises:
            SourceMissingError: If the source file does not exist.
            BackupIOError: If the local copy fails.
        """

        with self._run_lock:
            return self._execute_run()

    def _execute_run(self) -> BackupRunResult:
        config = self._config
        started_at = self._clock()

        try:
            artifact = self._create_local_snapshot(started_at)
        except BackupError as exc:
            self._last_run = {
                "status": "failed",
                "started_at": started_at.isoformat(),
                "error": str(exc),
            }
            raise

        self.local_store.rotate(config.keep_last)

        remote: Optional[RemoteUploadResult] = None
        remote_error: Optional[Exception] = None

        if config.remote_enabled and self.remote_client is not None and self.remote_client.is_configured():
            try:
                remote = self.remote_client.upload(Path(artifact.location), artifact.name)
                artifact = artifact.with_remote(remote_id=remote.remote_id, link=remote.link)
            except Exception as exc:
                logger.error("Remote upload failed (local backup OK): %s", exc)
                remote_error = exc

            try:
                self.remote_client.rotate(config.keep_last)
            except Exception as exc:
                logger.error("Remote rotation failed: %s", exc)
        elif config.remote_enabled:
            logger.debug("Remote mirror enabled but no credential configured; skipping")

        result = BackupRunResult(local=artifact, remote=remote, remote_error=remote_error)
        self._last_run = {
            "status": "success" if remote_error is None else "partial",
            "started_at": started_at.isoformat(),
            "finished_at": self._clock().isoformat(),
            **result.to_dict(),
        }
        return result

    def _create_local_snapshot(self, timestamp: datetime) -> SnapshotArtifact:
        """Copy the source file into the local store.

        Args:
            timestamp: Creation time used for the name.

        Returns:
            SnapshotArtifact: Committed snapshot.

        Raises:
            SourceMissingError: If the source file does not exist.
            BackupIOError: If the copy fails.
        """

        if not self.source_path.is_file():
            logger.error("Source data file not found: %s", self.source_path)
            raise SourceMissingError(f"Source data file not found: {self.source_path}")

        name = snapshot_name(timestamp)
        artifact = self.local_store.write(name, self.source_path)
        logger.info(
            "Local backup created: %s (%.2f MB)",
            artifact.name,
            (artifact.size_bytes or 0) / (1024 * 1024),
        )
        return artifact

    def list_backups(self) -> List[SnapshotArtifact]:
        return self.local_store.list()

    def list_remote_backups(self) -> List[SnapshotArtifact]:
        """List remote snapshots, or an empty list when the mirror is not configured.

        Raises:
            BackupError: If the remote listing fails.
        """

        if self.remote_client is None or not self.remote_client.is_configured():
            return []
        return self.remote_client.list()

    def get_status(self) -> Dict[str, Any]:
        """Return a read-only status snapshot for the admin surface."""

        config = self._config
        backups = self.local_store.list()
        last_backup = backups[0] if backups else None
        next_run = self.trigger.next_fire_time() if self.is_running() else None
        schedule = self._active_schedule or config.schedule

        if self.remote_client is not None:
            remote_status = {"enabled": config.remote_enabled, **self.remote_client.status()}
        else:
            remote_status = {
                "enabled": config.remote_enabled,
                "configured": False,
                "state": "unconfigured",
                "has_access_token": False,
                "has_refresh_token": False,
                "token_expiry": None,
            }

        return {
            "enabled": config.enabled,
            "running": self.is_running(),
            "run_in_progress": self._run_lock.locked(),
            "schedule": schedule,
            "schedule_description": describe_cron(schedule),
            "next_run_at": next_run.isoformat() if next_run else None,
            "keep_last": config.keep_last,
            "total_local_backups": len(backups),
            "last_backup": last_backup.to_dict() if last_backup else None,
            "last_run": self._last_run,
            "backups": [b.to_dict() for b in backups],
            "remote_status": remote_status,
        }

    def update_config(self, patch: Dict[str, Any]) -> BackupConfig:
        """Merge a patch into the configuration and persist it.

        When the service is running it is restarted, so a new schedule or
        retention count applies from the next tick.

        Args:
            patch: Fields to change (snake_case or camelCase keys).

        Returns:
            BackupConfig: The new configuration.

        Raises:
            ConfigInvalidError: If the patch has unknown keys or invalid values.
                Nothing is changed in that case.
            BackupIOError: If the configuration cannot be persisted.
        """

        field_names = _config_field_names()
        normalized: Dict[str, Any] = {}
        for key, value in (patch or {}).items():
            if key not in field_names:
                raise ConfigInvalidError(f"Unknown backup config field: {key}")
            normalized[field_names[key]] = value

        with self._state_lock:
            merged = self._config.model_dump()
            merged.update(normalized)
            try:
                new_config = BackupConfig.model_validate(merged)
            except ValidationError as exc:
                raise ConfigInvalidError("Invalid backup config", details={"errors": exc.errors()}) from exc

            self._persist(new_config)
            self._config = new_config

            if "remote_credential" in normalized and self.remote_client is not None:
                self.remote_client.set_credentials(new_config.credential())

            if self._running:
                self.stop()
                self.start()

        logger.info("Backup configuration updated")
        return new_config

    def set_remote_credentials(self, tokens: Optional[Dict[str, Any]]) -> BackupConfig:
        """Store a remote token pair (or clear it with None)."""

        return self.update_config({"remote_credential": tokens})

    def connect_remote(self, code: str) -> BackupConfig:
        """Exchange an authorization code and store the resulting credential.

        Raises:
            AuthFailureError: If the exchange fails.
        """

        if self.remote_client is None:
            raise ConfigInvalidError("Remote mirror is not available")
        credential = self.remote_client.exchange_code(code)
        return self.set_remote_credentials(credential.to_dict())

    def _persist(self, config: BackupConfig) -> None:
        try:
            self.config_provider.set(config)
        except OSError as exc:
            raise BackupIOError("Failed to persist backup config", details={"error": str(exc)}) from exc

    def _on_credential_refreshed(self, credential: RemoteCredential) -> None:
        """Persist a refreshed credential so restarts pick it up."""

        with self._state_lock:
            new_config = self._config.model_copy(
                update={"remote_credential": RemoteCredentialSchema.from_credential(credential)}
            )
            self._config = new_config
            try:
                self.config_provider.set(new_config)
            except OSError as exc:
                logger.warning("Failed to persist refreshed credential: %s", exc)
