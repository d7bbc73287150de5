"""Errors raised by the snapshot pipeline."""


class SnapshotError(Exception):
    """Base class for fatal snapshot errors"""

    kind = "snapshot_error"


class ConfigInvalid(SnapshotError):
    """Source directory missing or backup root unusable; the job never starts"""

    kind = "config_invalid"


class BuildFailed(SnapshotError):
    """Build step failed under the ``required`` build policy"""

    kind = "build_failed"


class ArchiveRootCreateFailed(SnapshotError):
    """Destination folder or archive file could not be created"""

    kind = "archive_root_create_failed"


class DestinationCollision(SnapshotError):
    """Another snapshot already owns the destination folder"""

    kind = "destination_collision"


class SnapshotCancelled(SnapshotError):
    """The job was cancelled by its caller"""

    kind = "cancelled"


class ReportWriteFailed(SnapshotError):
    """The report file could not be written"""

    kind = "report_write_failed"
