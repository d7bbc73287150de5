"""Content fingerprint of a source tree, used to detect changes."""

import hashlib
from collections.abc import Iterable, Mapping
from pathlib import Path

from sitesnap.snapshot.collector import TreeCollector

_CHUNK = 1024 * 1024


def _file_digest(path: Path) -> str:
    digest = hashlib.md5(usedforsecurity=False)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def compute_manifest(
    source_dir: Path, exclude_patterns: Iterable[str] = (), *, content: bool = True
) -> dict[str, str]:
    """Map every included file to a marker of its content and mtime.

    With ``content=False`` only sizes and mtimes are used, which is much
    cheaper on large trees but misses same-size edits that keep the mtime.
    Directories map to an empty marker. Files that cannot be read are left
    out, the same way a snapshot would leave them out.
    """
    collector = TreeCollector(source_dir, exclude_patterns)
    manifest: dict[str, str] = {}
    for entry in collector.collect():
        if entry.is_dir:
            manifest[f"{entry.relative_path}/"] = ""
            continue
        mtime_ns = int(entry.mtime * 1_000_000_000)
        if content:
            try:
                marker = _file_digest(entry.source_path)
            except OSError:
                continue
        else:
            marker = str(entry.size)
        manifest[entry.relative_path] = f"{marker}:{mtime_ns}"
    return manifest


def manifest_digest(manifest: Mapping[str, str]) -> str:
    lines = sorted(
        path if path.endswith("/") else f"{path}:{marker}"
        for path, marker in manifest.items()
    )
    return hashlib.md5("|".join(lines).encode("utf-8"), usedforsecurity=False).hexdigest()


def compute_fingerprint(
    source_dir: Path, exclude_patterns: Iterable[str] = (), *, content: bool = True
) -> str:
    """Single digest over the tree's manifest"""
    return manifest_digest(
        compute_manifest(source_dir, exclude_patterns, content=content)
    )


def diff_manifests(old: Mapping[str, str], new: Mapping[str, str]) -> list[str]:
    """Per-file changes between two manifests, sorted by path.

    Lines read ``added: <path>``, ``modified: <path>`` or ``removed: <path>``.
    Directories are left out.
    """
    changes: list[tuple[str, str]] = []
    for path in old.keys() | new.keys():
        if path.endswith("/"):
            continue
        if path not in old:
            changes.append((path, "added"))
        elif path not in new:
            changes.append((path, "removed"))
        elif old[path] != new[path]:
            changes.append((path, "modified"))
    return [f"{kind}: {path}" for path, kind in sorted(changes)]
