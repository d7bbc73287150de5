"""Named snapshot profiles.

The built-in profiles cover the three usual flavours: a source backup of
the site folder, a backup of the whole project, and a deploy snapshot that
builds first and captures only the build output. A YAML file can add
profiles or override the built-ins by name::

    profiles:
      docs:
        source_dir: docs
        backup_root: backup/docs
        prefix: docs-backup
        extra_excludes: ["*.tmp"]
"""

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from sitesnap.config.settings import Settings
from sitesnap.snapshot.errors import ConfigInvalid
from sitesnap.snapshot.models import (
    ArchiveFormat,
    BuildPolicy,
    CollisionPolicy,
    SnapshotConfig,
)
from sitesnap.utils.error_handler import critical_operation

logger = structlog.get_logger(__name__)

DEFAULT_EXCLUDES: tuple[str, ...] = (
    "node_modules/**",
    ".git/**",
    "dist/**",
    "build/**",
    "*.log",
    ".DS_Store",
    "Thumbs.db",
    "bun.lockb",
    "backup/**",
)

ENV_FILE_EXCLUDES: tuple[str, ...] = (".env", ".env.local", ".env.production")


class SnapshotProfile(BaseModel):
    """Reusable snapshot settings; paths may be relative to ``base_dir``"""

    name: str
    description: str = ""
    source_dir: Path = Path(".")
    backup_root: Path | None = None
    prefix: str | None = None
    exclude_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDES))
    extra_excludes: list[str] = Field(default_factory=list)
    build_command: str | None = None
    build_policy: BuildPolicy = BuildPolicy.BEST_EFFORT
    build_timeout: float | None = None
    archive_format: ArchiveFormat = ArchiveFormat.ZIP
    collect_subdir: str | None = None
    archive_root: str | None = None
    max_snapshots: int | None = None
    base_dir: Path | None = None

    def _resolve(self, path: Path) -> Path:
        path = Path(path).expanduser()
        if path.is_absolute():
            return path
        return (self.base_dir or Path.cwd()) / path

    def to_config(self, settings: Settings, **overrides: Any) -> SnapshotConfig:
        """Build a ``SnapshotConfig``; ``None`` overrides are ignored."""
        data: dict[str, Any] = {
            "source_dir": self._resolve(self.source_dir),
            "backup_root": self._resolve(self.backup_root)
            if self.backup_root
            else Path(settings.backup_root),
            "prefix": self.prefix or settings.default_prefix,
            "exclude_patterns": [*self.exclude_patterns, *self.extra_excludes],
            "build_command": self.build_command,
            "build_policy": self.build_policy,
            "build_timeout": self.build_timeout,
            "archive_format": self.archive_format,
            "collect_subdir": self.collect_subdir,
            "archive_root": self.archive_root,
            "collision_policy": CollisionPolicy(settings.collision_policy),
            "compression_level": settings.compression_level,
            "max_snapshots": self.max_snapshots,
        }
        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return SnapshotConfig(**data)
        except ValidationError as e:
            raise ConfigInvalid(f"Invalid snapshot settings for '{self.name}': {e}") from e


BUILTIN_PROFILES: dict[str, SnapshotProfile] = {
    "site": SnapshotProfile(
        name="site",
        description="Source backup of the site folder",
        source_dir=Path("home"),
        backup_root=Path("backup/backup-cursor"),
        prefix="backup",
        archive_root="home",
    ),
    "project": SnapshotProfile(
        name="project",
        description="Whole project without secrets",
        source_dir=Path("."),
        backup_root=Path("backup/backup-lovable"),
        prefix="lovable-backup",
        extra_excludes=list(ENV_FILE_EXCLUDES),
    ),
    "deploy": SnapshotProfile(
        name="deploy",
        description="Build, then capture the build output ready for upload",
        source_dir=Path("home"),
        backup_root=Path("backup/backup-cursor"),
        prefix="cpanel-backup",
        build_command="npm run build",
        build_policy=BuildPolicy.REQUIRED,
        collect_subdir="dist",
        archive_root="dist",
        exclude_patterns=[".DS_Store", "Thumbs.db"],
    ),
}


@critical_operation("load snapshot profiles")
def load_profiles(path: Path) -> dict[str, SnapshotProfile]:
    """Read profiles from a YAML file; relative paths resolve against it."""
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"Invalid YAML in {path}: {e}") from e

    section = raw.get("profiles", {}) if isinstance(raw, dict) else None
    if not isinstance(section, dict):
        raise ConfigInvalid(f"{path}: expected a 'profiles' mapping")

    profiles: dict[str, SnapshotProfile] = {}
    for name, values in section.items():
        if values is not None and not isinstance(values, dict):
            raise ConfigInvalid(f"{path}: profile '{name}' must be a mapping")
        values = dict(values or {})
        values.pop("name", None)
        values.setdefault("base_dir", path.parent.resolve())
        try:
            profiles[str(name)] = SnapshotProfile(name=str(name), **values)
        except ValidationError as e:
            raise ConfigInvalid(f"{path}: invalid profile '{name}': {e}") from e

    logger.debug("Profiles loaded", path=str(path), count=len(profiles))
    return profiles


def available_profiles(settings: Settings) -> dict[str, SnapshotProfile]:
    """Built-in profiles overlaid with the ones from ``settings.profiles_file``"""
    profiles = dict(BUILTIN_PROFILES)
    if Path(settings.profiles_file).is_file():
        profiles.update(load_profiles(settings.profiles_file))
    return profiles


def resolve_profile(
    name: str, settings: Settings, **overrides: Any
) -> SnapshotConfig:
    profiles = available_profiles(settings)
    if name not in profiles:
        known = ", ".join(sorted(profiles))
        raise ConfigInvalid(f"Unknown profile '{name}' (available: {known})")
    return profiles[name].to_config(settings, **overrides)
