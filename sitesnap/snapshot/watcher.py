"""Periodic snapshots that only run when the source tree changed."""

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

from sitesnap.snapshot.fingerprint import compute_manifest, diff_manifests, manifest_digest
from sitesnap.snapshot.job import SnapshotJob
from sitesnap.snapshot.models import SnapshotConfig, SnapshotResult
from sitesnap.utils.mixins import LoggerMixin
from sitesnap.utils.paths import to_posix

# rewritten by typical build commands, never a reason to snapshot
BUILD_NOISE = ("node_modules/**", ".git/**")


class SnapshotWatcher(LoggerMixin):
    """Checks the source tree every ``interval`` seconds.

    The first check only records a baseline manifest unless
    ``snapshot_on_start`` is set. Later checks start a snapshot when the
    tree differs from the last successful snapshot (or the baseline); the
    per-file differences are handed to the job for its report.

    With a build command the watched tree is ``source_dir`` minus the build
    output, since the collected folder only changes when a build runs.
    """

    def __init__(
        self,
        config: SnapshotConfig,
        interval: float,
        *,
        snapshot_on_start: bool = False,
        job_factory: Callable[..., SnapshotJob] = SnapshotJob,
        manifest: Callable[..., dict[str, str]] = compute_manifest,
    ):
        self.config = config
        self.interval = interval
        self.snapshot_on_start = snapshot_on_start
        self.job_factory = job_factory
        self.manifest = manifest
        self.last_manifest: dict[str, str] | None = None
        self.last_fingerprint: str | None = None
        self.results: list[SnapshotResult] = []
        self._stop = asyncio.Event()
        self._current: SnapshotJob | None = None

    def log_context(self) -> dict[str, Any]:
        return {"source": str(self.config.source_dir)}

    def watch_target(self) -> tuple[Path, tuple[str, ...]]:
        """Directory whose changes trigger a snapshot, and the patterns to skip"""
        if not self.config.build_command:
            return self.config.collect_dir, self.config.effective_excludes()

        source = self.config.source_dir
        patterns = list(self.config.effective_excludes(source))
        if self.config.collect_subdir:
            patterns.append(f"/{to_posix(self.config.collect_subdir)}/**")
        patterns.extend(BUILD_NOISE)
        return source, tuple(dict.fromkeys(patterns))

    async def _scan(self) -> dict[str, str]:
        target, patterns = self.watch_target()
        return await asyncio.to_thread(self.manifest, target, patterns)

    def _remember(self, manifest: dict[str, str]) -> None:
        self.last_manifest = manifest
        self.last_fingerprint = manifest_digest(manifest)

    async def check_once(self) -> SnapshotResult | None:
        """Run one check; returns the snapshot result when one was taken."""
        current = await self._scan()

        if self.last_manifest is None and not self.snapshot_on_start:
            self._remember(current)
            self.logger.info("Baseline recorded", fingerprint=self.last_fingerprint)
            return None

        changes = None
        if self.last_manifest is not None:
            if manifest_digest(current) == self.last_fingerprint:
                self.logger.info("No changes detected")
                return None
            changes = diff_manifests(self.last_manifest, current)

        self.logger.info(
            "Changes detected, taking snapshot",
            changes=len(changes) if changes is not None else None,
        )
        self._current = self.job_factory(self.config, changes=changes)
        try:
            result = await self._current.run()
        finally:
            self._current = None
        self.results.append(result)

        # a failed snapshot keeps the old manifest so its changes are reported again
        if result.success:
            if self.config.build_command and not self.config.collect_subdir:
                # the build wrote into the watched tree
                current = await self._scan()
            self._remember(current)
        return result

    async def run(self, max_checks: int | None = None) -> list[SnapshotResult]:
        """Loop until ``stop()`` is called or ``max_checks`` checks ran."""
        checks = 0
        while not self._stop.is_set():
            await self.check_once()
            checks += 1
            if max_checks is not None and checks >= max_checks:
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        return self.results

    def stop(self) -> None:
        self._stop.set()
        if self._current is not None:
            self._current.cancel()
