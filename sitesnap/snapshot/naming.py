"""Snapshot ids and destination folders."""

from datetime import datetime
from pathlib import Path

import structlog

from sitesnap.snapshot.errors import ArchiveRootCreateFailed, DestinationCollision
from sitesnap.snapshot.models import CollisionPolicy

logger = structlog.get_logger(__name__)

ID_FORMAT = "%Y-%m-%d_%H-%M-%S"
MAX_SUFFIX = 99


class SnapshotNamer:
    """Timestamp ids (``YYYY-MM-DD_HH-MM-SS``) and ``<prefix>_<id>`` folders.

    ``next_id`` and ``destination_path`` are pure. ``allocate`` is the only
    method touching the filesystem: it creates the folder exactly once.
    """

    @staticmethod
    def next_id(now: datetime | None = None) -> str:
        """Format ``now`` (local time) as a sortable snapshot id."""
        now = now or datetime.now()
        if now.tzinfo is not None:
            now = now.astimezone()
        return now.strftime(ID_FORMAT)

    @staticmethod
    def parse_id(job_id: str) -> datetime | None:
        """Inverse of ``next_id``; tolerates a ``-NN`` collision suffix."""
        stamp = job_id[:19]
        try:
            return datetime.strptime(stamp, ID_FORMAT)
        except ValueError:
            return None

    @staticmethod
    def folder_name(prefix: str, job_id: str) -> str:
        return f"{prefix}_{job_id}"

    @classmethod
    def destination_path(cls, backup_root: Path, prefix: str, job_id: str) -> Path:
        return Path(backup_root) / cls.folder_name(prefix, job_id)

    @classmethod
    def allocate(
        cls,
        backup_root: Path,
        prefix: str,
        now: datetime,
        policy: CollisionPolicy = CollisionPolicy.SUFFIX,
    ) -> tuple[str, Path]:
        """Create a fresh destination folder and return ``(job_id, path)``.

        Two jobs started in the same second for the same prefix resolve to
        the same folder. Under ``SUFFIX`` the later one gets ``-02``,
        ``-03`` ... appended to its id; under ``FAIL`` it raises
        ``DestinationCollision``.
        """
        base_id = cls.next_id(now)
        candidates = [base_id]
        if policy is CollisionPolicy.SUFFIX:
            candidates += [f"{base_id}-{n:02d}" for n in range(2, MAX_SUFFIX + 1)]

        for job_id in candidates:
            path = cls.destination_path(backup_root, prefix, job_id)
            try:
                path.mkdir(parents=False, exist_ok=False)
            except FileExistsError:
                logger.debug("Destination already taken", path=str(path))
                continue
            except OSError as e:
                raise ArchiveRootCreateFailed(
                    f"Cannot create destination {path}: {e}"
                ) from e
            return job_id, path

        raise DestinationCollision(
            f"Destination for {cls.folder_name(prefix, base_id)} already exists "
            f"in {backup_root}"
        )
