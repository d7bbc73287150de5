"""Test snapshot ids and destination allocation"""

from datetime import datetime
from pathlib import Path

import pytest

from sitesnap.snapshot.errors import ArchiveRootCreateFailed, DestinationCollision
from sitesnap.snapshot.models import CollisionPolicy
from sitesnap.snapshot.naming import SnapshotNamer

NOW = datetime(2024, 3, 9, 7, 5, 1)


class TestSnapshotNamer:
    def test_next_id_format(self):
        assert SnapshotNamer.next_id(NOW) == "2024-03-09_07-05-01"

    def test_ids_sort_chronologically(self):
        earlier = SnapshotNamer.next_id(datetime(2024, 3, 9, 23, 59, 59))
        later = SnapshotNamer.next_id(datetime(2024, 3, 10, 0, 0, 0))

        assert earlier < later

    def test_parse_id_roundtrip_with_suffix(self):
        assert SnapshotNamer.parse_id("2024-03-09_07-05-01") == NOW
        assert SnapshotNamer.parse_id("2024-03-09_07-05-01-02") == NOW
        assert SnapshotNamer.parse_id("not-an-id") is None

    def test_destination_path(self, tmp_path: Path):
        path = SnapshotNamer.destination_path(tmp_path, "backup", "2024-03-09_07-05-01")

        assert path == tmp_path / "backup_2024-03-09_07-05-01"

    def test_allocate_creates_folder(self, tmp_path: Path):
        job_id, path = SnapshotNamer.allocate(tmp_path, "backup", NOW)

        assert job_id == "2024-03-09_07-05-01"
        assert path.is_dir()

    def test_same_second_gets_suffix(self, tmp_path: Path):
        first_id, first = SnapshotNamer.allocate(tmp_path, "backup", NOW)
        second_id, second = SnapshotNamer.allocate(tmp_path, "backup", NOW)
        third_id, _ = SnapshotNamer.allocate(tmp_path, "backup", NOW)

        assert first != second
        assert second_id == f"{first_id}-02"
        assert third_id == f"{first_id}-03"

    def test_other_prefix_does_not_collide(self, tmp_path: Path):
        SnapshotNamer.allocate(tmp_path, "backup", NOW)
        job_id, _ = SnapshotNamer.allocate(tmp_path, "cpanel-backup", NOW)

        assert job_id == "2024-03-09_07-05-01"

    def test_fail_policy_raises_on_collision(self, tmp_path: Path):
        SnapshotNamer.allocate(tmp_path, "backup", NOW, CollisionPolicy.FAIL)

        with pytest.raises(DestinationCollision):
            SnapshotNamer.allocate(tmp_path, "backup", NOW, CollisionPolicy.FAIL)

    def test_missing_backup_root_is_a_create_failure(self, tmp_path: Path):
        with pytest.raises(ArchiveRootCreateFailed):
            SnapshotNamer.allocate(tmp_path / "missing" / "root", "backup", NOW)
