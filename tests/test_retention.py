from datetime import datetime, timedelta, timezone

import pytest

from backup_lifecycle.backend.services.lifecycle.retention import (
    RetentionPolicy,
    SnapshotArtifact,
    plan_retention,
)


def _artifact(name: str, created_at: datetime) -> SnapshotArtifact:
    return SnapshotArtifact(name=name, location=f"/backups/{name}", created_at=created_at, size_bytes=1024)


def _weekly(count: int):
    start = datetime(2024, 1, 6, tzinfo=timezone.utc)
    return [_artifact(f"B{i + 1}", start + timedelta(days=7 * i)) for i in range(count)]


def test_keeps_newest_and_deletes_rest():
    artifacts = _weekly(6)

    keep, delete = plan_retention(artifacts, RetentionPolicy(keep_last=4))

    assert [a.name for a in keep] == ["B6", "B5", "B4", "B3"]
    assert [a.name for a in delete] == ["B2", "B1"]


def test_input_order_does_not_matter():
    artifacts = _weekly(5)
    shuffled = [artifacts[2], artifacts[0], artifacts[4], artifacts[1], artifacts[3]]

    keep, delete = RetentionPolicy(keep_last=2).plan(shuffled)

    assert [a.name for a in keep] == ["B5", "B4"]
    assert [a.name for a in delete] == ["B3", "B2", "B1"]


def test_fewer_than_keep_last_deletes_nothing():
    keep, delete = plan_retention(_weekly(3), RetentionPolicy(keep_last=4))

    assert len(keep) == 3
    assert delete == []


def test_empty_input():
    assert plan_retention([], RetentionPolicy()) == ([], [])


def test_same_timestamp_ties_broken_by_name():
    ts = datetime(2024, 1, 6, tzinfo=timezone.utc)
    artifacts = [_artifact("b", ts), _artifact("c", ts), _artifact("a", ts)]

    keep, delete = plan_retention(artifacts, RetentionPolicy(keep_last=1))

    assert [a.name for a in keep] == ["c"]
    assert [a.name for a in delete] == ["b", "a"]


@pytest.mark.parametrize("count", range(0, 9))
def test_keeps_min_of_count_and_limit(count):
    keep, delete = plan_retention(_weekly(count), RetentionPolicy(keep_last=4))

    assert len(keep) == min(count, 4)
    assert len(keep) + len(delete) == count


@pytest.mark.parametrize("keep_last", [0, -1])
def test_policy_rejects_non_positive_keep_last(keep_last):
    with pytest.raises(ValueError):
        RetentionPolicy(keep_last=keep_last)


def test_with_remote_returns_copy():
    artifact = _weekly(1)[0]

    mirrored = artifact.with_remote(remote_id="file-1", link="https://drive.example/file-1")

    assert mirrored.remote_id == "file-1"
    assert mirrored.link == "https://drive.example/file-1"
    assert artifact.remote_id is None
    assert mirrored.name == artifact.name


def test_to_dict_reports_size_in_mb():
    artifact = SnapshotArtifact(
        name="backup-2024-01-06_00-00-00.db",
        location="/backups/backup-2024-01-06_00-00-00.db",
        created_at=datetime(2024, 1, 6, tzinfo=timezone.utc),
        size_bytes=3 * 1024 * 1024,
    )

    data = artifact.to_dict()

    assert data["size_mb"] == 3.0
    assert data["created_at"] == "2024-01-06T00:00:00+00:00"
    assert data["remote_id"] is None
