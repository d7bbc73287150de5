"""Plain-text report written into every snapshot folder."""

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

from sitesnap.snapshot.models import JobStatus
from sitesnap.utils.paths import format_size

if TYPE_CHECKING:
    from sitesnap.snapshot.job import SnapshotJob

RULE = "=" * 40


class ReportGenerator:
    """Renders the ``changelog.txt`` style report of a snapshot job"""

    def __init__(self, output_limit: int = 4000):
        self.output_limit = output_limit

    def _truncate(self, text: str) -> str:
        text = text.strip()
        if self.output_limit <= 0:
            return ""
        if len(text) <= self.output_limit:
            return text
        omitted = len(text) - self.output_limit
        # the end of a build log is where the error usually is
        return f"[... {omitted} characters omitted ...]\n" + text[-self.output_limit :]

    @staticmethod
    def _timestamp(moment: datetime) -> str:
        return moment.strftime("%A, %d %B %Y %H:%M:%S")

    def render(self, job: "SnapshotJob", status: JobStatus | None = None) -> str:
        """Report text; ``status`` overrides the job's current state"""
        config = job.config
        status = status or job.status
        lines = [
            f"Snapshot Report - {config.prefix}",
            f"Date and time of snapshot: {self._timestamp(job.started_at)}",
            RULE,
            "",
            f"Snapshot id: {job.job_id or '-'}",
            f"Status: {status.value}",
            f"Source directory: {config.source_dir}",
        ]
        if config.collect_subdir:
            lines.append(f"Collected directory: {config.collect_dir}")
        lines += [
            f"Destination: {job.destination_dir or '-'}",
            f"Format: {config.archive_format.value}",
        ]
        if job.archive_path is not None:
            lines.append(f"Archive: {job.archive_path.name}")

        patterns = ", ".join(config.exclude_patterns) or "none"
        lines += [
            f"Exclusion patterns: {patterns}",
            "",
            "Contents:",
            f"- Files captured: {job.file_count}",
            f"- Total size: {job.total_bytes} bytes ({format_size(job.total_bytes)})",
        ]
        if job.excluded_count:
            lines.append(f"- Paths excluded: {job.excluded_count}")
        if job.fingerprint:
            lines.append(f"- Fingerprint: {job.fingerprint}")

        lines += ["", "Build step:"]
        if config.build_command is None:
            lines.append("- not configured")
        elif job.build_result is None:
            lines.append(f"- command: {config.build_command}")
            lines.append("- did not run")
        else:
            build = job.build_result
            outcome = "succeeded" if build.success else "FAILED"
            if build.timed_out:
                outcome = "FAILED (timed out)"
            lines += [
                f"- command: {config.build_command}",
                f"- policy: {config.build_policy.value}",
                f"- outcome: {outcome}",
                f"- exit code: {build.exit_code if build.exit_code is not None else '-'}",
                f"- duration: {build.duration:.1f}s",
            ]
            output = self._truncate(build.output)
            if output:
                lines += ["- output:", *(f"    {line}" for line in output.splitlines())]

        if job.changes is not None:
            lines += ["", f"Changes since last snapshot ({len(job.changes)}):"]
            if job.changes:
                lines += [f"{i}. {change}" for i, change in enumerate(job.changes, 1)]
            else:
                lines.append("none recorded")

        lines += ["", f"Warnings ({len(job.warnings)}):"]
        if job.warnings:
            lines += [f"{i}. {warning}" for i, warning in enumerate(job.warnings, 1)]
        else:
            lines.append("none")

        if job.error:
            lines += ["", f"Error ({job.error_kind}): {job.error}"]

        lines += ["", RULE, ""]
        return "\n".join(lines)

    async def write(self, job: "SnapshotJob", path: Path) -> Path:
        path = Path(path)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(self.render(job))
        return path
