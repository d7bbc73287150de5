"""Listing and retention of existing snapshots."""

import shutil
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from sitesnap.config import get_settings
from sitesnap.snapshot.naming import SnapshotNamer
from sitesnap.utils.error_handler import safe_with_default
from sitesnap.utils.paths import secure_delete_check

logger = structlog.get_logger(__name__)


def _folder_size(path: Path) -> int:
    total = 0
    for item in path.rglob("*"):
        try:
            if item.is_file() and not item.is_symlink():
                total += item.stat().st_size
        except OSError:
            continue
    return total


@safe_with_default("list snapshots", default_value=[])
def list_snapshots(backup_root: Path, prefix: str | None = None) -> list[dict[str, Any]]:
    """Snapshot folders under ``backup_root``, newest first.

    A folder counts as a snapshot when its name is ``<prefix>_<id>`` with a
    parseable id. With ``prefix=None`` every prefix is listed.
    """
    backup_root = Path(backup_root)
    if not backup_root.is_dir():
        return []

    report_name = get_settings().report_filename
    snapshots = []
    for folder in backup_root.iterdir():
        if not folder.is_dir() or folder.is_symlink():
            continue
        folder_prefix, sep, job_id = folder.name.rpartition("_")
        # ids contain one "_" themselves: <date>_<time>
        folder_prefix, sep, date_part = folder_prefix.rpartition("_")
        job_id = f"{date_part}_{job_id}"
        if not sep or (prefix is not None and folder_prefix != prefix):
            continue
        created = SnapshotNamer.parse_id(job_id)
        if created is None:
            continue
        snapshots.append(
            {
                "name": folder.name,
                "prefix": folder_prefix,
                "job_id": job_id,
                "path": str(folder),
                "created": created,
                "size": _folder_size(folder),
                "has_report": (folder / report_name).is_file(),
            }
        )

    # ids sort chronologically, collision suffixes after their base id
    snapshots.sort(key=lambda x: (x["created"], x["job_id"]), reverse=True)
    return snapshots


def prune_snapshots(backup_root: Path, prefix: str, keep: int) -> list[str]:
    """Delete the oldest ``<prefix>_*`` snapshots beyond ``keep``.

    Returns the names of the removed folders.
    """
    if keep < 1:
        raise ValueError("keep must be at least 1")

    removed: list[str] = []
    for snapshot in list_snapshots(backup_root, prefix)[keep:]:
        path = Path(snapshot["path"])
        if not secure_delete_check(path, backup_root):
            continue
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("Failed to remove old snapshot", path=str(path), error=str(e))
            continue
        removed.append(snapshot["name"])
        logger.info("Old snapshot removed", name=snapshot["name"])

    return removed



def describe_age(created: datetime, now: datetime | None = None) -> str:
    """``3m ago`` style age for listings"""
    seconds = int(((now or datetime.now()) - created).total_seconds())
    if seconds < 60:
        return f"{max(seconds, 0)}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"
