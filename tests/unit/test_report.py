"""Test report rendering"""

from datetime import datetime
from pathlib import Path

import pytest

from sitesnap.snapshot.job import SnapshotJob
from sitesnap.snapshot.models import (
    BuildPolicy,
    BuildResult,
    EntryWarning,
    JobStatus,
    SnapshotConfig,
)
from sitesnap.snapshot.report import ReportGenerator

STARTED = datetime(2024, 5, 17, 14, 30, 5)


def _job(tmp_path: Path, **config) -> SnapshotJob:
    config.setdefault("exclude_patterns", ["node_modules/**", "*.log"])
    snapshot_config = SnapshotConfig(
        source_dir=tmp_path / "site", backup_root=tmp_path / "backup", **config
    )
    job = SnapshotJob(snapshot_config, clock=lambda: STARTED)
    job.job_id = "2024-05-17_14-30-05"
    job.destination_dir = tmp_path / "backup" / "backup_2024-05-17_14-30-05"
    job.status = JobStatus.DONE
    job.file_count = 2
    job.total_bytes = 2048
    return job


class TestRender:
    def test_header_and_counts(self, tmp_path):
        text = ReportGenerator().render(_job(tmp_path))

        assert text.startswith("Snapshot Report - backup\n")
        assert "Date and time of snapshot: Friday, 17 May 2024 14:30:05" in text
        assert "Status: done" in text
        assert "- Files captured: 2" in text
        assert "- Total size: 2048 bytes (2.00 KB)" in text
        assert "Exclusion patterns: node_modules/**, *.log" in text
        assert "- not configured" in text
        assert "Warnings (0):\nnone" in text
        assert "Error" not in text

    def test_build_outcome_and_warnings(self, tmp_path):
        job = _job(
            tmp_path, build_command="npm run build", build_policy=BuildPolicy.REQUIRED
        )
        job.build_result = BuildResult(
            success=False, output="error TS2304", exit_code=2, duration=1.25
        )
        job.warnings = [
            EntryWarning(path="secret.key", reason="permission denied", phase="collect")
        ]

        text = ReportGenerator().render(job)

        assert "- command: npm run build" in text
        assert "- policy: required" in text
        assert "- outcome: FAILED" in text
        assert "- exit code: 2" in text
        assert "    error TS2304" in text
        assert "Warnings (1):\n1. secret.key: permission denied (collect)" in text

    def test_timed_out_build(self, tmp_path):
        job = _job(tmp_path, build_command="npm run build")
        job.build_result = BuildResult(success=False, timed_out=True, exit_code=-9)

        assert "- outcome: FAILED (timed out)" in ReportGenerator().render(job)

    def test_failed_job_shows_error(self, tmp_path):
        job = _job(tmp_path)
        job.status = JobStatus.FAILED
        job.error_kind = "build_failed"
        job.error = "Build command exited with code 1"

        text = ReportGenerator().render(job)

        assert "Status: failed" in text
        assert "Error (build_failed): Build command exited with code 1" in text

    def test_long_output_keeps_the_tail(self, tmp_path):
        job = _job(tmp_path, build_command="make")
        job.build_result = BuildResult(
            success=True, output="x" * 50 + "THE END", exit_code=0
        )

        text = ReportGenerator(output_limit=10).render(job)

        assert "[... 47 characters omitted ...]" in text
        assert "xxxTHE END" in text

    def test_change_list_only_for_watched_runs(self, tmp_path):
        job = _job(tmp_path)
        assert "Changes since last snapshot" not in ReportGenerator().render(job)

        job.changes = []
        assert "Changes since last snapshot (0):\nnone recorded" in (
            ReportGenerator().render(job)
        )

        job.changes = ["modified: index.html", "added: about.html"]
        text = ReportGenerator().render(job)
        assert "1. modified: index.html\n2. added: about.html" in text

    def test_excluded_count_and_status_override(self, tmp_path):
        job = _job(tmp_path)
        job.status = JobStatus.ARCHIVING
        job.excluded_count = 3

        text = ReportGenerator().render(job, status=JobStatus.DONE)

        assert "Status: done" in text
        assert "- Paths excluded: 3" in text


@pytest.mark.asyncio
async def test_write_creates_file(tmp_path):
    job = _job(tmp_path)
    path = tmp_path / "changelog.txt"

    written = await ReportGenerator().write(job, path)

    assert written == path
    assert path.read_text(encoding="utf-8") == ReportGenerator().render(job)
