"""Directory traversal with exclusion pruning."""

import os
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path

from sitesnap.snapshot.errors import SnapshotCancelled
from sitesnap.snapshot.models import EntryKind, EntryWarning, IncludedEntry
from sitesnap.snapshot.patterns import PatternMatcher
from sitesnap.utils.mixins import LoggerMixin


def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class TreeCollector(LoggerMixin):
    """Walks a source tree and yields the entries to include.

    Traversal is depth-first and lazy. For every directory the collector
    yields the directory itself, then its files sorted by name, then each
    sub-directory (sorted by name) with its own contents. Excluded
    directories are pruned before they are listed.

    Non-fatal problems (unreadable files, unlistable directories, broken or
    cyclic symlinks) are appended to ``warnings`` and the walk continues.
    """

    def __init__(
        self,
        source_dir: Path,
        exclude_patterns: Iterable[str] = (),
        cancel_event: threading.Event | None = None,
    ):
        self.source_dir = Path(source_dir)
        self.matcher = PatternMatcher(exclude_patterns)
        self.cancel_event = cancel_event
        self.warnings: list[EntryWarning] = []
        self.excluded_count = 0
        self._visited: set[str] = set()

    def _warn(self, path: str, reason: str) -> None:
        self.warnings.append(EntryWarning(path=path, reason=reason, phase="collect"))
        self.logger.warning("Entry skipped", path=path, reason=reason)

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SnapshotCancelled("Traversal cancelled")

    def collect(self) -> Iterator[IncludedEntry]:
        """Yield included entries in deterministic order."""
        root_real = os.path.realpath(self.source_dir)
        self._visited = {root_real}
        self.excluded_count = 0

        # (path, relative path, real paths of ancestors, reached through a link)
        stack: list[tuple[Path, str, frozenset[str], bool]] = [
            (self.source_dir, "", frozenset({root_real}), False)
        ]

        while stack:
            self._check_cancelled()
            dir_path, rel, ancestors, via_link = stack.pop()

            if rel:
                real = os.path.realpath(dir_path)
                if via_link and real in ancestors:
                    self._warn(rel, "symlink cycle, target already being captured")
                    continue
                if via_link and _is_within(real, root_real):
                    # reached under its own path as well
                    self._warn(rel, "symlink target inside the source tree")
                    continue
                if via_link and real in self._visited:
                    self._warn(rel, "symlink target already captured")
                    continue
                self._visited.add(real)
                ancestors = ancestors | {real}
                try:
                    mtime = dir_path.stat().st_mtime
                except OSError as e:
                    self._warn(rel, f"cannot stat directory: {e.strerror or e}")
                    continue
                yield IncludedEntry(
                    relative_path=rel,
                    kind=EntryKind.DIRECTORY,
                    size=0,
                    source_path=dir_path,
                    mtime=mtime,
                )

            files, subdirs = self._list_directory(dir_path, rel)
            for entry in files:
                self._check_cancelled()
                yield entry

            for child_path, child_rel, is_link in reversed(subdirs):
                stack.append((child_path, child_rel, ancestors, is_link))

    def _list_directory(
        self, dir_path: Path, rel: str
    ) -> tuple[list[IncludedEntry], list[tuple[Path, str, bool]]]:
        files: list[IncludedEntry] = []
        subdirs: list[tuple[Path, str, bool]] = []

        try:
            with os.scandir(dir_path) as it:
                children = sorted(it, key=lambda e: e.name)
        except OSError as e:
            self._warn(rel or ".", f"cannot list directory: {e.strerror or e}")
            return files, subdirs

        for child in children:
            child_rel = f"{rel}/{child.name}" if rel else child.name
            pattern = self.matcher.matching_pattern(child_rel)
            if pattern is not None:
                self.excluded_count += 1
                self.logger.debug("Path excluded", path=child_rel, pattern=pattern)
                continue

            try:
                is_link = child.is_symlink()
                if child.is_dir(follow_symlinks=True):
                    subdirs.append((Path(child.path), child_rel, is_link))
                    continue
                if not child.is_file(follow_symlinks=True):
                    reason = "broken symlink" if is_link else "not a regular file"
                    self._warn(child_rel, reason)
                    continue
                stat = child.stat(follow_symlinks=True)
            except OSError as e:
                self._warn(child_rel, f"cannot stat: {e.strerror or e}")
                continue

            if not os.access(child.path, os.R_OK):
                self._warn(child_rel, "permission denied")
                continue

            files.append(
                IncludedEntry(
                    relative_path=child_rel,
                    kind=EntryKind.FILE,
                    size=stat.st_size,
                    source_path=Path(child.path),
                    mtime=stat.st_mtime,
                )
            )

        return files, subdirs
