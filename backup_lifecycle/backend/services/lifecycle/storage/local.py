"""Local filesystem snapshot store.

Snapshots live as single files in one backup directory, named
`backup-YYYY-MM-DD_HH-MM-SS.db` (UTC). The name is derived from the creation
timestamp, so sorting names sorts snapshots chronologically.

Writes go to a hidden temporary file in the same directory first and are
renamed to the final name only after the copy has been flushed to disk.
Temporary files never match the naming convention, so `list()` never reports
a partially written snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import os
from pathlib import Path
import re
import shutil
from typing import List, Optional

from backup_lifecycle.backend.services.lifecycle.errors import BackupIOError
from backup_lifecycle.backend.services.lifecycle.retention import SnapshotArtifact
from backup_lifecycle.backend.services.lifecycle.storage.base import SnapshotStore

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "backup-"
SNAPSHOT_EXTENSION = ".db"
SNAPSHOT_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"
SNAPSHOT_NAME_RE = re.compile(r"^backup-(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})\.db$")
TEMP_SUFFIX = ".partial"


def snapshot_name(timestamp: datetime) -> str:
    """Derive the snapshot name for a creation timestamp.

    Args:
        timestamp: Creation time. Naive values are treated as UTC.

    Returns:
        str: Snapshot file name.
    """

    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    utc = timestamp.astimezone(timezone.utc)
    return f"{SNAPSHOT_PREFIX}{utc.strftime(SNAPSHOT_TIME_FORMAT)}{SNAPSHOT_EXTENSION}"


def parse_snapshot_name(name: str) -> Optional[datetime]:
    """Return the creation time encoded in a snapshot name.

    Args:
        name: File name.

    Returns:
        Optional[datetime]: UTC creation time, or None when the name does not
        follow the snapshot naming convention.
    """

    match = SNAPSHOT_NAME_RE.match(name)
    if not match:
        return None
    try:
        parsed = datetime.strptime(match.group(1), SNAPSHOT_TIME_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


@dataclass
class LocalConfig:
    """Configuration for local storage.

    Attributes:
        base_path: Directory where snapshots are stored.
    """

    base_path: str = "backups"


class LocalStore(SnapshotStore):
    """Snapshot store backed by a local directory."""

    label = "local"

    def __init__(self, config: LocalConfig):
        """Initialize local storage.

        Args:
            config: Local storage configuration.
        """

        self.config = config
        self.base_path = Path(config.base_path)

    def ensure_directory(self) -> None:
        """Create the backup directory (and parents) if absent."""

        if not self.base_path.exists():
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info("Created backup directory: %s", self.base_path)

    def path_for(self, name: str) -> Path:
        return self.base_path / name

    def write(self, name: str, source_path: Path, *, created_at: Optional[datetime] = None) -> SnapshotArtifact:
        """Copy the source file into the store under `name`.

        Args:
            name: Final snapshot name.
            source_path: File to copy.
            created_at: Creation time to record. Defaults to the time encoded in
                `name`, or now.

        Returns:
            SnapshotArtifact: The committed snapshot.

        Raises:
            BackupIOError: If the copy fails. Nothing is left under `name`.
        """

        self.ensure_directory()
        dest_path = self.path_for(name)
        temp_path = self.base_path / f".{name}{TEMP_SUFFIX}"

        try:
            with open(source_path, "rb") as src, open(temp_path, "wb") as dst:
                shutil.copyfileobj(src, dst)
                dst.flush()
                os.fsync(dst.fileno())
            os.replace(temp_path, dest_path)
        except OSError as exc:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as cleanup_exc:
                logger.warning("Failed to remove temporary file %s: %s", temp_path, cleanup_exc)
            raise BackupIOError(
                f"Failed to write snapshot {name}",
                details={"source": str(source_path), "error": str(exc)},
            ) from exc

        size = dest_path.stat().st_size
        created = created_at or parse_snapshot_name(name) or datetime.now(timezone.utc)
        return SnapshotArtifact(name=name, location=str(dest_path), created_at=created, size_bytes=size)

    def list(self) -> List[SnapshotArtifact]:
        """List snapshots in the backup directory, newest first.

        Files that do not follow the naming convention are ignored.

        Returns:
            List[SnapshotArtifact]: Snapshots.
        """

        if not self.base_path.is_dir():
            return []

        artifacts: List[SnapshotArtifact] = []
        for entry in self.base_path.iterdir():
            created = parse_snapshot_name(entry.name)
            if created is None or not entry.is_file():
                continue
            try:
                size = entry.stat().st_size
            except OSError:
                # Removed between iterdir() and stat().
                continue
            artifacts.append(
                SnapshotArtifact(name=entry.name, location=str(entry), created_at=created, size_bytes=size)
            )

        artifacts.sort(key=lambda a: a.name, reverse=True)
        return artifacts

    def _delete(self, artifact: SnapshotArtifact) -> None:
        self.path_for(artifact.name).unlink()
