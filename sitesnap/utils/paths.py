"""Path helpers shared by the snapshot pipeline."""

import os
from pathlib import Path, PurePosixPath

import structlog

logger = structlog.get_logger("file_security")


def to_posix(relative: str | os.PathLike[str]) -> str:
    """Normalise a relative path to forward slashes without ``./`` noise."""
    text = os.fspath(relative).replace(os.sep, "/")
    if os.altsep:
        text = text.replace(os.altsep, "/")
    parts = [part for part in PurePosixPath(text).parts if part not in ("", ".")]
    return "/".join(parts)


def validate_safe_path(path: str | Path, base_path: str | Path) -> Path:
    """Resolve ``path`` and make sure it lives strictly inside ``base_path``."""
    try:
        normalized_path = Path(path).resolve()
        normalized_base = Path(base_path).resolve()
    except OSError as e:
        raise ValueError(f"Invalid path: {e}") from e

    if normalized_path == normalized_base:
        raise ValueError(f"Path '{path}' is the base directory itself")

    try:
        normalized_path.relative_to(normalized_base)
    except ValueError as e:
        raise ValueError(
            f"Path '{path}' is outside base directory '{base_path}'"
        ) from e

    return normalized_path


def secure_delete_check(target_path: str | Path, base_path: str | Path) -> bool:
    """Pre-flight check before removing a snapshot folder."""
    try:
        validate_safe_path(target_path, base_path)
    except ValueError as e:
        logger.warning(
            "Unsafe file operation blocked",
            operation="delete",
            target=str(target_path),
            base=str(base_path),
            error=str(e),
        )
        return False

    if Path(target_path).is_symlink():
        logger.warning("Refusing to delete through a symlink", target=str(target_path))
        return False

    return True


def format_size(num_bytes: int) -> str:
    """Human readable byte count, e.g. ``1.50 MB``."""
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} GB"
