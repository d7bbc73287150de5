"""Test snapshot listing and retention"""

from datetime import datetime
from pathlib import Path

import pytest

from sitesnap.snapshot.catalog import describe_age, list_snapshots, prune_snapshots


def _snapshot(root: Path, name: str, report: bool = True) -> Path:
    folder = root / name
    folder.mkdir(parents=True)
    (folder / "data.bin").write_bytes(b"x" * 10)
    if report:
        (folder / "changelog.txt").write_text("report")
    return folder


class TestListSnapshots:
    def test_newest_first_and_filtered_by_prefix(self, backup_root):
        _snapshot(backup_root, "backup_2024-01-01_10-00-00")
        _snapshot(backup_root, "backup_2024-01-02_10-00-00", report=False)
        _snapshot(backup_root, "cpanel-backup_2024-01-03_10-00-00")
        (backup_root / "notes").mkdir()

        snapshots = list_snapshots(backup_root, "backup")

        assert [s["name"] for s in snapshots] == [
            "backup_2024-01-02_10-00-00",
            "backup_2024-01-01_10-00-00",
        ]
        assert snapshots[0]["has_report"] is False
        assert snapshots[1]["has_report"] is True
        assert snapshots[1]["size"] == 16
        assert snapshots[1]["created"] == datetime(2024, 1, 1, 10, 0, 0)

    def test_all_prefixes(self, backup_root):
        _snapshot(backup_root, "backup_2024-01-01_10-00-00")
        _snapshot(backup_root, "my_site_2024-01-01_10-00-00")

        prefixes = sorted(s["prefix"] for s in list_snapshots(backup_root))

        assert prefixes == ["backup", "my_site"]

    def test_collision_suffix_sorts_after_base(self, backup_root):
        _snapshot(backup_root, "backup_2024-01-01_10-00-00")
        _snapshot(backup_root, "backup_2024-01-01_10-00-00-02")

        names = [s["name"] for s in list_snapshots(backup_root, "backup")]

        assert names[0] == "backup_2024-01-01_10-00-00-02"

    def test_missing_root_is_empty(self, tmp_path):
        assert list_snapshots(tmp_path / "missing") == []


class TestPruneSnapshots:
    def test_removes_oldest_beyond_keep(self, backup_root):
        for day in (1, 2, 3):
            _snapshot(backup_root, f"backup_2024-01-0{day}_10-00-00")
        other = _snapshot(backup_root, "deploy_2024-01-01_10-00-00")

        removed = prune_snapshots(backup_root, "backup", keep=1)

        assert removed == ["backup_2024-01-02_10-00-00", "backup_2024-01-01_10-00-00"]
        assert (backup_root / "backup_2024-01-03_10-00-00").is_dir()
        assert other.is_dir()

    def test_keep_must_be_positive(self, backup_root):
        with pytest.raises(ValueError):
            prune_snapshots(backup_root, "backup", keep=0)


def test_describe_age():
    now = datetime(2024, 1, 2, 12, 0, 0)

    assert describe_age(datetime(2024, 1, 2, 11, 59, 30), now) == "30s ago"
    assert describe_age(datetime(2024, 1, 2, 11, 15, 0), now) == "45m ago"
    assert describe_age(datetime(2024, 1, 2, 9, 0, 0), now) == "3h ago"
    assert describe_age(datetime(2023, 12, 30, 12, 0, 0), now) == "3d ago"
