"""Snapshot job: resolve config, build, collect, archive, report."""

import asyncio
import os
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from sitesnap.config import get_settings
from sitesnap.config.settings import Settings
from sitesnap.snapshot.archive import ArchiveWriter, Trailer
from sitesnap.snapshot.builder import BuildOrchestrator
from sitesnap.snapshot.catalog import prune_snapshots
from sitesnap.snapshot.collector import TreeCollector
from sitesnap.snapshot.errors import (
    BuildFailed,
    ConfigInvalid,
    ReportWriteFailed,
    SnapshotCancelled,
    SnapshotError,
)
from sitesnap.snapshot.models import (
    BuildPolicy,
    BuildResult,
    EntryWarning,
    JobStatus,
    SnapshotConfig,
    SnapshotResult,
    WriteResult,
)
from sitesnap.snapshot.naming import SnapshotNamer
from sitesnap.snapshot.report import ReportGenerator
from sitesnap.utils.mixins import LoggerMixin


class SnapshotJob(LoggerMixin):
    """One snapshot run.

    State flows ``pending -> (building) -> collecting -> archiving ->
    reporting -> done``; any phase may end in ``failed``. Collection is
    lazy and streams straight into the archive writer, so the collecting
    and archiving phases overlap on disk.

    A failed job keeps whatever it already wrote. Once the destination
    folder exists a best-effort report is written even on failure.

    ``changes`` lists the file changes that triggered the run (set by the
    watcher) and ends up in the report.
    """

    def __init__(
        self,
        config: SnapshotConfig,
        *,
        settings: Settings | None = None,
        orchestrator: BuildOrchestrator | None = None,
        clock: Callable[[], datetime] = datetime.now,
        changes: list[str] | None = None,
    ):
        self.config = config
        self.changes = changes
        self.settings = settings or get_settings()
        self.orchestrator = orchestrator or BuildOrchestrator()
        self.clock = clock
        self.reporter = ReportGenerator(self.settings.report_output_limit)

        self.job_id: str | None = None
        self.destination_dir: Path | None = None
        self.archive_path: Path | None = None
        self.report_path: Path | None = None
        self.status = JobStatus.PENDING
        self.history: list[JobStatus] = [JobStatus.PENDING]
        self.build_result: BuildResult | None = None
        self.file_count = 0
        self.total_bytes = 0
        self.entries: list[str] = []
        self.warnings: list[EntryWarning] = []
        self.fingerprint: str | None = None
        self.excluded_count = 0
        self.error: str | None = None
        self.error_kind: str | None = None
        self.started_at = clock()
        self.finished_at: datetime | None = None

        self._cancel_event = threading.Event()
        self._build_task: asyncio.Task[BuildResult] | None = None
        self._started = False

    def log_context(self) -> dict[str, Any]:
        context: dict[str, Any] = {"prefix": self.config.prefix}
        if self.job_id:
            context["job_id"] = self.job_id
        return context

    # -- control ----------------------------------------------------------

    def cancel(self) -> None:
        """Stop the job at the next entry and kill a running build."""
        self._cancel_event.set()
        if self._build_task is not None and not self._build_task.done():
            self._build_task.cancel()
        self.logger.info("Snapshot cancellation requested")

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise SnapshotCancelled("Snapshot cancelled")

    def _transition(self, status: JobStatus) -> None:
        self.status = status
        self.history.append(status)
        self.logger.debug("Snapshot phase", status=status.value)

    # -- pipeline ---------------------------------------------------------

    async def run(self) -> SnapshotResult:
        """Run the job to completion and return its result record."""
        if self._started:
            raise RuntimeError("A SnapshotJob can only run once")
        self._started = True
        self.started_at = self.clock()

        try:
            self._validate_config()
            self.job_id, self.destination_dir = SnapshotNamer.allocate(
                self.config.backup_root,
                self.config.prefix,
                self.started_at,
                self.config.collision_policy,
            )
            self.logger.info(
                "Snapshot started",
                source=str(self.config.source_dir),
                destination=str(self.destination_dir),
            )

            if self.config.build_command:
                await self._run_build()

            await self._collect_and_archive()

            self._transition(JobStatus.REPORTING)
            await self._write_report()
            self._transition(JobStatus.DONE)
        except SnapshotError as e:
            await self._fail(e.kind, str(e))
        except asyncio.CancelledError:
            requested = self._cancel_event.is_set()
            self._cancel_event.set()
            await self._fail(SnapshotCancelled.kind, "Snapshot cancelled")
            if not requested:
                raise
        except Exception as e:
            self.logger.error("Unexpected snapshot failure", error=str(e), exc_info=True)
            await self._fail("unexpected", str(e))

        self.finished_at = self.clock()
        if self.status is JobStatus.DONE:
            self.logger.info(
                "Snapshot completed",
                file_count=self.file_count,
                total_bytes=self.total_bytes,
                warnings=len(self.warnings),
                report=str(self.report_path),
            )
            if self.config.max_snapshots:
                prune_snapshots(
                    self.config.backup_root, self.config.prefix, self.config.max_snapshots
                )
        return self.result()

    def _validate_config(self) -> None:
        source = self.config.source_dir
        if not source.exists():
            raise ConfigInvalid(f"Source directory does not exist: {source}")
        if not source.is_dir():
            raise ConfigInvalid(f"Source path is not a directory: {source}")

        if self.config.collect_subdir:
            subdir = Path(self.config.collect_subdir)
            if subdir.is_absolute() or ".." in subdir.parts:
                raise ConfigInvalid(
                    f"Collect directory must stay inside the source: {subdir}"
                )

        root = self.config.backup_root
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigInvalid(f"Cannot create backup root {root}: {e}") from e
        if not root.is_dir() or not os.access(root, os.W_OK | os.X_OK):
            raise ConfigInvalid(f"Backup root is not writable: {root}")

    async def _run_build(self) -> None:
        self._check_cancelled()
        self._transition(JobStatus.BUILDING)
        timeout = self.config.build_timeout or self.settings.build_timeout_seconds
        assert self.config.build_command is not None

        self._build_task = asyncio.create_task(
            self.orchestrator.run_build(
                self.config.build_command, self.config.source_dir, timeout
            )
        )
        try:
            self.build_result = await self._build_task
        finally:
            self._build_task = None

        if not self.build_result.success:
            if self.config.build_policy is BuildPolicy.REQUIRED:
                raise BuildFailed(self._describe_build_failure(self.build_result))
            self.logger.warning(
                "Build failed, continuing with snapshot",
                policy=self.config.build_policy.value,
            )

    @staticmethod
    def _describe_build_failure(result: BuildResult) -> str:
        if result.timed_out:
            return "Build command timed out"
        if result.exit_code is None:
            return "Build command could not be started"
        return f"Build command exited with code {result.exit_code}"

    async def _collect_and_archive(self) -> None:
        self._check_cancelled()
        collect_dir = self.config.collect_dir
        if not collect_dir.is_dir():
            raise ConfigInvalid(f"Collect directory does not exist: {collect_dir}")

        self._transition(JobStatus.COLLECTING)
        collector = TreeCollector(
            collect_dir, self.config.effective_excludes(), self._cancel_event
        )
        writer = ArchiveWriter(
            compression_level=self.config.compression_level,
            chunk_size=self.settings.copy_chunk_size,
            archive_root=self.config.archive_root,
            cancel_event=self._cancel_event,
        )
        assert self.destination_dir is not None
        destination = self.destination_dir
        earlier_warnings = list(self.warnings)

        def take(written: WriteResult) -> None:
            self.warnings = [*earlier_warnings, *collector.warnings, *written.warnings]
            self.excluded_count = collector.excluded_count
            self.archive_path = written.archive_path
            self.file_count = written.file_count
            self.total_bytes = written.total_bytes
            self.entries = written.entries
            self.fingerprint = written.fingerprint

        def embedded_report(written: WriteResult) -> tuple[str, bytes]:
            take(written)
            text = self.reporter.render(self, status=JobStatus.DONE)
            return self.settings.report_filename, text.encode("utf-8")

        trailer: Trailer | None = None
        if self.settings.embed_report_in_archive:
            trailer = embedded_report

        def archive() -> WriteResult:
            self._transition(JobStatus.ARCHIVING)
            try:
                return writer.write(
                    collector.collect(),
                    destination,
                    self.config.archive_format,
                    trailer=trailer,
                )
            finally:
                self.warnings = [*earlier_warnings, *collector.warnings]
                self.excluded_count = collector.excluded_count

        take(await asyncio.to_thread(archive))

    async def _write_report(self) -> None:
        assert self.destination_dir is not None
        path = self.destination_dir / self.settings.report_filename
        try:
            self.report_path = await self.reporter.write(self, path)
        except OSError as e:
            raise ReportWriteFailed(f"Cannot write report {path}: {e}") from e

    async def _fail(self, kind: str, message: str) -> None:
        self.error_kind = kind
        self.error = message
        self._transition(JobStatus.FAILED)
        self.logger.error("Snapshot failed", error_kind=kind, error=message)

        if self.destination_dir is None or not self.destination_dir.is_dir():
            return
        self.finished_at = self.clock()
        try:
            self.report_path = await self.reporter.write(
                self, self.destination_dir / self.settings.report_filename
            )
        except OSError as e:
            self.logger.error("Could not write failure report", error=str(e))

    def result(self) -> SnapshotResult:
        return SnapshotResult(
            job_id=self.job_id,
            status=self.status,
            source_dir=self.config.source_dir,
            destination_dir=self.destination_dir,
            archive_path=self.archive_path,
            report_path=self.report_path,
            file_count=self.file_count,
            total_bytes=self.total_bytes,
            started_at=self.started_at,
            finished_at=self.finished_at or self.clock(),
            build_result=self.build_result,
            warnings=list(self.warnings),
            entries=list(self.entries),
            fingerprint=self.fingerprint,
            excluded_count=self.excluded_count,
            changes=list(self.changes) if self.changes is not None else None,
            error=self.error,
            error_kind=self.error_kind,
        )


async def run_snapshot(config: SnapshotConfig, **kwargs: Any) -> SnapshotResult:
    """Convenience wrapper: ``await SnapshotJob(config, **kwargs).run()``"""
    return await SnapshotJob(config, **kwargs).run()
