"""Data models for the snapshot pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sitesnap.utils.paths import to_posix


class ArchiveFormat(str, Enum):
    """Output format of a snapshot"""

    ZIP = "zip"
    TAR_GZ = "tar.gz"
    DIRECTORY = "directory"


class BuildPolicy(str, Enum):
    """What a failed build step means for the job"""

    REQUIRED = "required"  # abort the snapshot
    BEST_EFFORT = "best_effort"  # record the failure and keep going


class CollisionPolicy(str, Enum):
    """What to do when the destination folder already exists"""

    SUFFIX = "suffix"
    FAIL = "fail"


class JobStatus(str, Enum):
    """Snapshot job state"""

    PENDING = "pending"
    BUILDING = "building"
    COLLECTING = "collecting"
    ARCHIVING = "archiving"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class SnapshotConfig(BaseModel):
    """Everything one snapshot run needs. Frozen once built."""

    model_config = ConfigDict(frozen=True)

    source_dir: Path = Field(description="Tree to capture")
    backup_root: Path = Field(description="Parent folder of all snapshots")
    exclude_patterns: tuple[str, ...] = Field(default=())
    prefix: str = Field(default="backup", min_length=1)

    build_command: str | None = None
    build_policy: BuildPolicy = BuildPolicy.BEST_EFFORT
    build_timeout: float | None = Field(default=None, gt=0)

    archive_format: ArchiveFormat = ArchiveFormat.ZIP
    collect_subdir: str | None = Field(
        default=None, description="Folder under source_dir collected after the build"
    )
    archive_root: str | None = Field(
        default=None, description="Top-level folder name inside the snapshot"
    )
    collision_policy: CollisionPolicy = CollisionPolicy.SUFFIX
    compression_level: int = Field(default=9, ge=0, le=9)
    max_snapshots: int | None = Field(default=None, ge=1)

    @field_validator("exclude_patterns", mode="before")
    @classmethod
    def _dedupe_patterns(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        # Order carries no meaning; keep first occurrence for stable reports
        return tuple(dict.fromkeys(str(p) for p in value if str(p).strip()))

    @field_validator("prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        if "/" in value or "\\" in value or value in (".", ".."):
            raise ValueError(f"prefix must be a plain folder name: {value!r}")
        return value

    @field_validator("build_command", "collect_subdir", "archive_root")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def collect_dir(self) -> Path:
        """Directory the collector walks (source_dir or its build output)"""
        if self.collect_subdir:
            return self.source_dir / self.collect_subdir
        return self.source_dir

    def effective_excludes(self, root: Path | None = None) -> tuple[str, ...]:
        """Exclusion patterns plus the backup root when it sits inside ``root``

        ``root`` defaults to the collected directory.
        """
        root = root or self.collect_dir
        try:
            relative = self.backup_root.resolve().relative_to(root.resolve())
        except ValueError:
            return self.exclude_patterns
        rel = to_posix(relative)
        # snapshots stored directly in the collected folder
        extra = f"/{rel}/**" if rel else f"/{self.prefix}_*/**"
        return tuple(dict.fromkeys([*self.exclude_patterns, extra]))


@dataclass(frozen=True)
class IncludedEntry:
    """One path selected for the snapshot"""

    relative_path: str  # forward slashes, relative to the collect dir
    kind: EntryKind
    size: int
    source_path: Path
    mtime: float = 0.0

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY


@dataclass
class EntryWarning:
    """A path that was skipped without failing the job"""

    path: str
    reason: str
    phase: str  # "collect" or "archive"

    def __str__(self) -> str:
        return f"{self.path}: {self.reason} ({self.phase})"


@dataclass
class BuildResult:
    """Outcome of the build step"""

    success: bool
    output: str = ""
    exit_code: int | None = None
    timed_out: bool = False
    duration: float = 0.0  # in seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "duration": self.duration,
            "output": self.output,
        }


@dataclass
class WriteResult:
    """What the archive writer produced"""

    file_count: int = 0
    total_bytes: int = 0
    archive_path: Path | None = None
    entries: list[str] = field(default_factory=list)
    warnings: list[EntryWarning] = field(default_factory=list)
    fingerprint: str | None = None


@dataclass
class SnapshotResult:
    """Final record of a snapshot job"""

    job_id: str | None
    status: JobStatus
    source_dir: Path
    destination_dir: Path | None
    archive_path: Path | None
    report_path: Path | None
    file_count: int
    total_bytes: int
    started_at: datetime
    finished_at: datetime
    build_result: BuildResult | None = None
    warnings: list[EntryWarning] = field(default_factory=list)
    entries: list[str] = field(default_factory=list)
    fingerprint: str | None = None
    excluded_count: int = 0
    changes: list[str] | None = None  # set when started by the watcher
    error: str | None = None
    error_kind: str | None = None

    @property
    def success(self) -> bool:
        return self.status is JobStatus.DONE

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "source_dir": str(self.source_dir),
            "destination_dir": str(self.destination_dir)
            if self.destination_dir
            else None,
            "archive_path": str(self.archive_path) if self.archive_path else None,
            "report_path": str(self.report_path) if self.report_path else None,
            "file_count": self.file_count,
            "total_bytes": self.total_bytes,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration": self.duration,
            "build_result": self.build_result.to_dict() if self.build_result else None,
            "warnings": [str(w) for w in self.warnings],
            "fingerprint": self.fingerprint,
            "excluded_count": self.excluded_count,
            "changes": self.changes,
            "error": self.error,
            "error_kind": self.error_kind,
        }
