"""Base interfaces for snapshot stores and the remote Drive wire boundary."""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from backup_lifecycle.backend.services.lifecycle.credentials import RemoteCredential
from backup_lifecycle.backend.services.lifecycle.errors import BackupError
from backup_lifecycle.backend.services.lifecycle.retention import RetentionPolicy, SnapshotArtifact

logger = logging.getLogger(__name__)


class SnapshotStore(ABC):
    """A retention store holding snapshot artifacts."""

    label = "store"

    @abstractmethod
    def list(self) -> List[SnapshotArtifact]:
        """List managed snapshots, newest first.

        Returns:
            List[SnapshotArtifact]: Snapshots in this store.
        """

    @abstractmethod
    def _delete(self, artifact: SnapshotArtifact) -> None:
        """Delete one snapshot.

        Args:
            artifact: Snapshot to delete.
        """

    def rotate(self, keep_last: int) -> List[SnapshotArtifact]:
        """Delete every snapshot except the `keep_last` newest.

        Deletion is best effort: a failure on one snapshot is logged and the
        remaining deletions still run. Whatever is left over is picked up by
        the next rotation.

        Args:
            keep_last: Number of snapshots to keep.

        Returns:
            List[SnapshotArtifact]: Snapshots actually deleted.
        """

        policy = RetentionPolicy(keep_last=keep_last)

        try:
            existing = self.list()
        except BackupError as exc:
            logger.warning("Skipping %s rotation, listing failed: %s", self.label, exc)
            return []

        if len(existing) <= policy.keep_last:
            logger.debug("No %s rotation needed: %s snapshot(s) <= %s", self.label, len(existing), policy.keep_last)
            return []

        _, delete = policy.plan(existing)
        deleted: List[SnapshotArtifact] = []
        for artifact in delete:
            try:
                self._delete(artifact)
            except (OSError, BackupError) as exc:
                logger.warning("Failed to delete %s snapshot %s: %s", self.label, artifact.name, exc)
                continue
            deleted.append(artifact)
            logger.info("Deleted old %s snapshot: %s", self.label, artifact.name)

        if deleted:
            logger.info("%s rotation complete: %s snapshot(s) deleted", self.label.capitalize(), len(deleted))
        return deleted


class DriveApi(ABC):
    """Remote wire boundary.

    Every operation receives the credential to authenticate with; the API
    object itself holds no token state. Implementations raise
    `AuthExpiredError` when the token is rejected and `RemoteUnavailableError`
    for any other failure.
    """

    @abstractmethod
    def find_folders(self, credential: RemoteCredential, *, name: str) -> List[Dict[str, Any]]:
        """Return folders with the given name (raw dicts with at least `id`)."""

    @abstractmethod
    def create_folder(self, credential: RemoteCredential, *, name: str) -> Dict[str, Any]:
        """Create a folder and return its raw dict."""

    @abstractmethod
    def upload_file(
        self,
        credential: RemoteCredential,
        *,
        local_path: Path,
        name: str,
        folder_id: str,
        mime_type: str,
    ) -> Dict[str, Any]:
        """Upload a file into a folder.

        Returns:
            Dict[str, Any]: Raw file dict with `id`, `name`, `webViewLink`, `size`.
        """

    @abstractmethod
    def list_files(
        self,
        credential: RemoteCredential,
        *,
        folder_id: str,
        page_size: int,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """List files in a folder, newest first.

        Returns:
            Dict[str, Any]: `{"files": [...], "nextPageToken": ...}`.
        """

    @abstractmethod
    def delete_file(self, credential: RemoteCredential, *, file_id: str) -> None:
        """Delete a file by id."""
