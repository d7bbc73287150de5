"""Snapshot pipeline: filter a tree, archive it, report what was captured."""

from sitesnap.snapshot.errors import (
    ArchiveRootCreateFailed,
    BuildFailed,
    ConfigInvalid,
    DestinationCollision,
    ReportWriteFailed,
    SnapshotCancelled,
    SnapshotError,
)
from sitesnap.snapshot.job import SnapshotJob, run_snapshot
from sitesnap.snapshot.models import (
    ArchiveFormat,
    BuildPolicy,
    BuildResult,
    CollisionPolicy,
    JobStatus,
    SnapshotConfig,
    SnapshotResult,
)

__all__ = [
    "ArchiveFormat",
    "ArchiveRootCreateFailed",
    "BuildFailed",
    "BuildPolicy",
    "BuildResult",
    "CollisionPolicy",
    "ConfigInvalid",
    "DestinationCollision",
    "JobStatus",
    "ReportWriteFailed",
    "SnapshotCancelled",
    "SnapshotConfig",
    "SnapshotError",
    "SnapshotJob",
    "SnapshotResult",
    "run_snapshot",
]
