"""
Unit tests for restore point storage and the registry.

Tests capacity and retention rules, stale detection and the
file-backed ledger embedded in the project-state document.
"""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from project_snapshot.backup.registry import RestorePointRegistry, delete_artifacts
from project_snapshot.backup.storage import (
    FileRestorePointStore,
    InMemoryRestorePointStore,
    RetentionPolicy,
)
from project_snapshot.core.exceptions import RegistryError, RestoreNotFoundError
from project_snapshot.models.snapshot import RestorePoint, RestorePointStatus

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_point(backups: Path, point_id: str, timestamp: datetime, create: bool = True) -> RestorePoint:
    """A restore point whose code and database directories and archive exist on disk."""
    code_dir = backups / "code" / point_id
    database_dir = backups / "database" / point_id
    archive = backups / "full" / f"{point_id}.tar.gz"
    if create:
        code_dir.mkdir(parents=True)
        (code_dir / "git-info.json").write_text("{}")
        database_dir.mkdir(parents=True)
        archive.parent.mkdir(parents=True, exist_ok=True)
        archive.write_bytes(b"archive")
    return RestorePoint(
        id=point_id,
        label=point_id.split("-")[0],
        timestamp=timestamp,
        phase=1,
        week=1,
        repository_dir=str(code_dir),
        database_dir=str(database_dir),
        archive_path=str(archive),
    )


class TestRetentionPolicy:
    """Test cases for RetentionPolicy."""

    def test_over_capacity_drops_oldest(self, tmp_path):
        points = [make_point(tmp_path, f"p{i}", NOW - timedelta(hours=i), create=False) for i in range(5)]
        policy = RetentionPolicy(max_backups=3)

        assert [p.id for p in policy.over_capacity(points)] == ["p4", "p3"]

    def test_protected_points_are_never_dropped(self, tmp_path):
        points = [make_point(tmp_path, f"p{i}", NOW - timedelta(hours=i), create=False) for i in range(4)]
        policy = RetentionPolicy(max_backups=3)

        assert [p.id for p in policy.over_capacity(points, protected=["p3"])] == ["p2"]

    def test_expired_uses_strict_cutoff(self, tmp_path):
        points = [
            make_point(tmp_path, "older", NOW - timedelta(days=30, seconds=1), create=False),
            make_point(tmp_path, "boundary", NOW - timedelta(days=30), create=False),
            make_point(tmp_path, "newer", NOW - timedelta(days=29), create=False),
        ]
        policy = RetentionPolicy(max_age_days=30)

        assert [p.id for p in policy.expired(points, NOW)] == ["older"]

    def test_naive_timestamps_are_treated_as_utc(self, tmp_path):
        point = make_point(tmp_path, "naive", datetime(2026, 1, 1, 0, 0, 0), create=False)

        assert RetentionPolicy().expired([point], NOW, max_age_days=10) == [point]


class TestRestorePointRegistry:
    """Test cases for RestorePointRegistry over the in-memory store."""

    @pytest.fixture
    def backups(self, tmp_path):
        return tmp_path / "backups"

    @pytest.fixture
    def registry(self):
        return RestorePointRegistry(InMemoryRestorePointStore(), RetentionPolicy(max_backups=10), clock=lambda: NOW)

    def test_capacity_keeps_ten_newest_first(self, registry, backups):
        points = [make_point(backups, f"cp-{i:02d}", NOW - timedelta(hours=12 - i)) for i in range(12)]

        dropped = []
        for point in points:
            dropped.extend(registry.append(point))

        listed = [listing.restore_point.id for listing in registry.list()]
        assert listed == [f"cp-{i:02d}" for i in range(11, 1, -1)]
        assert [p.id for p in dropped] == ["cp-00", "cp-01"]
        for old in dropped:
            assert not (backups / "code" / old.id).exists()
            assert not (backups / "full" / f"{old.id}.tar.gz").exists()
        assert (backups / "code" / "cp-11").is_dir()

    def test_protected_restore_target_survives_append(self, backups):
        registry = RestorePointRegistry(InMemoryRestorePointStore(), RetentionPolicy(max_backups=3))
        for i in range(3):
            registry.append(make_point(backups, f"cp-{i}", NOW - timedelta(hours=3 - i)))

        dropped = registry.append(make_point(backups, "pre-restore", NOW), protected=["cp-0"])

        assert [p.id for p in dropped] == ["cp-1"]
        assert registry.contains("cp-0")
        assert (backups / "code" / "cp-0").is_dir()

    def test_duplicate_id_is_rejected(self, registry, backups):
        registry.append(make_point(backups, "same", NOW))

        with pytest.raises(RegistryError, match="already registered"):
            registry.append(make_point(backups / "other", "same", NOW))

    def test_get_unknown_id(self, registry):
        with pytest.raises(RestoreNotFoundError) as exc_info:
            registry.get("does-not-exist")

        assert exc_info.value.backup_id == "does-not-exist"
        assert str(exc_info.value) == "Backup does-not-exist not found"

    def test_list_marks_stale_points(self, registry, backups):
        registry.append(make_point(backups, "intact", NOW - timedelta(hours=2)))
        stale = make_point(backups, "stale", NOW - timedelta(hours=1))
        registry.append(stale)
        Path(stale.archive_path).unlink()

        listings = {listing.restore_point.id: listing for listing in registry.list()}

        assert listings["intact"].status == RestorePointStatus.COMPLETE
        assert listings["stale"].status == RestorePointStatus.STALE
        assert listings["stale"].missing == ["archive"]
        assert listings["stale"].artifacts["git"] is True

    def test_cleanup_zero_days_empties_registry(self, registry, backups):
        for i in range(3):
            registry.append(make_point(backups, f"old-{i}", NOW - timedelta(minutes=10 * (i + 1))))

        removed = registry.purge(0, now=NOW)

        assert sorted(p.id for p in removed) == ["old-0", "old-1", "old-2"]
        assert registry.list() == []
        assert list((backups / "code").iterdir()) == []
        assert list((backups / "database").iterdir()) == []
        assert list((backups / "full").iterdir()) == []

    def test_purge_keeps_points_inside_window(self, registry, backups):
        registry.append(make_point(backups, "month-old", NOW - timedelta(days=31)))
        registry.append(make_point(backups, "week-old", NOW - timedelta(days=7)))

        removed = registry.purge(30)

        assert [p.id for p in removed] == ["month-old"]
        assert [listing.restore_point.id for listing in registry.list()] == ["week-old"]

    def test_negative_retention_is_rejected(self, registry):
        with pytest.raises(RegistryError):
            registry.purge(-1)

    def test_delete_artifacts_tolerates_missing_paths(self, backups):
        point = make_point(backups, "ghost", NOW, create=False)

        assert delete_artifacts(point) == []


class TestFileRestorePointStore:
    """Test cases for the ledger embedded in the project-state document."""

    @pytest.fixture
    def state_file(self, tmp_path):
        path = tmp_path / "project-state.json"
        path.write_text(json.dumps({
            "projectName": "demo",
            "sessionInfo": {"currentPhase": 2},
            "phases": {"phase2": {"currentWeek": 5}},
            "backupStrategy": {"restorePoints": [], "backupTypes": {"code": {"frequency": "daily"}}},
        }))
        return path

    def test_append_preserves_other_fields(self, state_file, tmp_path):
        store = FileRestorePointStore(state_file)

        store.append(make_point(tmp_path / "backups", "cp-1", NOW))

        document = json.loads(state_file.read_text())
        assert document["projectName"] == "demo"
        assert document["phases"] == {"phase2": {"currentWeek": 5}}
        record = document["backupStrategy"]["restorePoints"][0]
        assert record["id"] == "cp-1"
        assert record["git"] == str(tmp_path / "backups" / "code" / "cp-1")
        assert record["archive"] == str(tmp_path / "backups" / "full" / "cp-1.tar.gz")
        assert record["config"] is None
        backup_types = document["backupStrategy"]["backupTypes"]
        assert backup_types["code"]["frequency"] == "daily"
        for backup_type in ("code", "database", "configuration", "fullSystem"):
            assert backup_types[backup_type]["lastBackup"]

    def test_newest_first_and_remove(self, state_file, tmp_path):
        store = FileRestorePointStore(state_file)
        store.append(make_point(tmp_path / "b", "first", NOW - timedelta(hours=1)))
        store.append(make_point(tmp_path / "b", "second", NOW))

        assert [p.id for p in store.list()] == ["second", "first"]
        assert store.remove("first").id == "first"
        assert store.remove("first") is None
        assert [p.id for p in store.list()] == ["second"]

    def test_missing_document_is_created(self, tmp_path):
        state_file = tmp_path / "nested" / "project-state.json"
        store = FileRestorePointStore(state_file)

        assert store.list() == []
        store.append(make_point(tmp_path / "b", "cp-1", NOW))

        assert json.loads(state_file.read_text())["backupStrategy"]["restorePoints"][0]["id"] == "cp-1"

    def test_corrupt_document_raises(self, tmp_path):
        state_file = tmp_path / "project-state.json"
        state_file.write_text("{not json")

        with pytest.raises(RegistryError, match="corrupt"):
            FileRestorePointStore(state_file).list()

    def test_restore_points_must_be_a_list(self, tmp_path):
        state_file = tmp_path / "project-state.json"
        state_file.write_text(json.dumps({"backupStrategy": {"restorePoints": {"id": "x"}}}))

        with pytest.raises(RegistryError, match="must be a list"):
            FileRestorePointStore(state_file).list()

    def test_unknown_record_fields_survive_rewrites(self, tmp_path):
        state_file = tmp_path / "project-state.json"
        state_file.write_text(json.dumps({"backupStrategy": {"restorePoints": [
            {"id": "legacy", "timestamp": "2026-01-07T19:00:00.000Z", "phase": 1, "week": 2,
             "git": "/backups/code/legacy", "notes": "before refactor"},
        ]}}))
        store = FileRestorePointStore(state_file)

        store.append(make_point(tmp_path / "b", "fresh", NOW))

        records = json.loads(state_file.read_text())["backupStrategy"]["restorePoints"]
        assert [r["id"] for r in records] == ["fresh", "legacy"]
        assert records[1]["notes"] == "before refactor"

    def test_milestone_is_read_from_state(self, state_file):
        assert FileRestorePointStore(state_file).milestone() == (2, 5)

    def test_milestone_absent(self, tmp_path):
        assert FileRestorePointStore(tmp_path / "missing.json").milestone() == (None, None)

    def test_nested_locking_is_reentrant(self, state_file, tmp_path):
        store = FileRestorePointStore(state_file)

        with store.lock():
            with store.lock():
                store.append(make_point(tmp_path / "b", "locked", NOW))
            assert store.lock_path.exists()

        assert store.get("locked") is not None

    def test_replace_rewrites_ledger(self, state_file, tmp_path):
        store = FileRestorePointStore(state_file)
        store.append(make_point(tmp_path / "b", "one", NOW))

        store.replace([make_point(tmp_path / "c", "two", NOW, create=False)])

        assert [p.id for p in store.list()] == ["two"]
        assert json.loads(state_file.read_text())["projectName"] == "demo"

    def test_registry_over_file_store(self, state_file, tmp_path):
        registry = RestorePointRegistry(FileRestorePointStore(state_file), RetentionPolicy(max_backups=2))
        for i in range(3):
            registry.append(make_point(tmp_path / "b", f"cp-{i}", NOW - timedelta(hours=3 - i)))

        assert [listing.restore_point.id for listing in registry.list()] == ["cp-2", "cp-1"]
        assert not (tmp_path / "b" / "code" / "cp-0").exists()
