"""Test build step execution"""

import asyncio
import time
from pathlib import Path

import pytest

from sitesnap.snapshot.builder import BuildOrchestrator, Builder, CommandBuilder
from sitesnap.snapshot.models import BuildResult


class FakeBuilder:
    """Records calls instead of spawning a process"""

    calls: list[tuple[str, Path, float | None]] = []

    def __init__(self, command: str):
        self.command = command

    async def run(self, cwd: Path, timeout: float | None = None) -> BuildResult:
        FakeBuilder.calls.append((self.command, cwd, timeout))
        return BuildResult(success=self.command == "ok", output="fake", exit_code=0)


class BrokenBuilder:
    def __init__(self, command: str):
        self.command = command

    async def run(self, cwd: Path, timeout: float | None = None) -> BuildResult:
        raise OSError("no shell")


@pytest.mark.asyncio
class TestCommandBuilder:
    async def test_success_captures_combined_output(self, tmp_path: Path):
        builder = CommandBuilder("echo out; echo err 1>&2")

        result = await builder.run(tmp_path, timeout=10)

        assert result.success is True
        assert result.exit_code == 0
        assert "out" in result.output
        assert "err" in result.output
        assert result.timed_out is False

    async def test_runs_in_working_directory(self, tmp_path: Path):
        (tmp_path / "marker.txt").write_text("here")

        result = await CommandBuilder("cat marker.txt").run(tmp_path, timeout=10)

        assert result.output.strip() == "here"

    async def test_non_zero_exit_keeps_output(self, tmp_path: Path):
        result = await CommandBuilder("echo compiling; exit 3").run(tmp_path, timeout=10)

        assert result.success is False
        assert result.exit_code == 3
        assert "compiling" in result.output

    async def test_timeout_kills_process(self, tmp_path: Path):
        start = time.monotonic()

        result = await CommandBuilder("echo started; sleep 30").run(
            tmp_path, timeout=0.5
        )

        assert time.monotonic() - start < 10
        assert result.success is False
        assert result.timed_out is True
        assert "started" in result.output
        assert "[build terminated after 0.5 seconds]" in result.output

    async def test_missing_working_directory_is_a_failed_result(self, tmp_path: Path):
        result = await CommandBuilder("true").run(tmp_path / "missing", timeout=10)

        assert result.success is False
        assert result.exit_code is None
        assert result.output.startswith("Failed to start build command")

    async def test_cancellation_stops_the_child(self, tmp_path: Path):
        task = asyncio.create_task(CommandBuilder("sleep 30").run(tmp_path, timeout=60))
        await asyncio.sleep(0.3)
        start = time.monotonic()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert time.monotonic() - start < 10


def test_command_builder_satisfies_protocol():
    assert isinstance(CommandBuilder("true"), Builder)
    assert isinstance(FakeBuilder("ok"), Builder)


@pytest.mark.asyncio
class TestBuildOrchestrator:
    async def test_delegates_to_builder(self, tmp_path: Path):
        FakeBuilder.calls = []
        orchestrator = BuildOrchestrator(builder_factory=FakeBuilder)

        result = await orchestrator.run_build("ok", tmp_path, 12.0)

        assert result.success is True
        assert FakeBuilder.calls == [("ok", tmp_path, 12.0)]

    async def test_failure_is_reported_not_raised(self, tmp_path: Path):
        orchestrator = BuildOrchestrator(builder_factory=FakeBuilder)

        result = await orchestrator.run_build("broken", tmp_path)

        assert result.success is False

    async def test_builder_os_error_becomes_failed_result(self, tmp_path: Path):
        orchestrator = BuildOrchestrator(builder_factory=BrokenBuilder)

        result = await orchestrator.run_build("npm run build", tmp_path)

        assert result.success is False
        assert result.output == "no shell"
