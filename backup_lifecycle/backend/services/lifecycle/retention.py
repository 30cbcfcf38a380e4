"""Retention policy planning for stored snapshots.

Both stores (the local backup directory and the remote folder) use the same
"keep the newest N" policy, applied independently. The planner operates on a
list of `SnapshotArtifact` metadata and returns (keep, delete) decisions; the
owning store performs the deletes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple


DEFAULT_KEEP_LAST = 4


@dataclass(frozen=True)
class SnapshotArtifact:
    """Metadata about a stored snapshot.

    Attributes:
        name: Snapshot file name. Identity of the artifact.
        location: Local path or remote file id.
        size_bytes: Size in bytes, when known.
        created_at: Creation time (timezone-aware UTC).
        remote_id: Remote file id after a successful mirror.
        link: Remote web link after a successful mirror.
    """

    name: str
    location: str
    created_at: datetime
    size_bytes: Optional[int] = None
    remote_id: Optional[str] = None
    link: Optional[str] = None

    def with_remote(self, *, remote_id: str, link: Optional[str]) -> "SnapshotArtifact":
        """Return a copy with remote metadata attached.

        Args:
            remote_id: Remote file id.
            link: Remote web link.

        Returns:
            SnapshotArtifact: Copy carrying the remote metadata.
        """

        return replace(self, remote_id=remote_id, link=link)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for status output and logging."""

        return {
            "name": self.name,
            "location": self.location,
            "size_bytes": self.size_bytes,
            "size_mb": round(self.size_bytes / (1024 * 1024), 2) if self.size_bytes is not None else None,
            "created_at": self.created_at.isoformat(),
            "remote_id": self.remote_id,
            "link": self.link,
        }


@dataclass(frozen=True)
class RetentionPolicy:
    """Keep the newest `keep_last` snapshots of a store.

    Attributes:
        keep_last: Number of snapshots to keep. Must be >= 1.
    """

    keep_last: int = DEFAULT_KEEP_LAST

    def __post_init__(self) -> None:
        if int(self.keep_last) < 1:
            raise ValueError(f"keep_last must be >= 1, got {self.keep_last!r}")

    def plan(self, artifacts: Sequence[SnapshotArtifact]) -> Tuple[List[SnapshotArtifact], List[SnapshotArtifact]]:
        """Shortcut for `plan_retention(artifacts, self)`."""

        return plan_retention(artifacts, self)


def plan_retention(
    artifacts: Sequence[SnapshotArtifact],
    policy: RetentionPolicy,
) -> Tuple[List[SnapshotArtifact], List[SnapshotArtifact]]:
    """Return (keep, delete) lists according to the retention policy.

    Ordering is by `created_at`, ties broken by name, so that the result is
    stable for snapshots created within the same second.

    Args:
        artifacts: Existing snapshots, in any order.
        policy: Retention policy.

    Returns:
        Tuple[List[SnapshotArtifact], List[SnapshotArtifact]]: Keep and delete
        lists, both newest first.
    """

    if not artifacts:
        return [], []

    newest_first = sorted(artifacts, key=lambda a: (a.created_at, a.name), reverse=True)
    keep = newest_first[: policy.keep_last]
    delete = newest_first[policy.keep_last :]
    return keep, delete
