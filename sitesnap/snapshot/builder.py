"""
Build step execution.

The job only needs an exit status and the combined stdout/stderr of the
build; anything that implements ``Builder`` can stand in for a real
process (tests use fakes).
"""

import asyncio
import contextlib
import os
import signal
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

from sitesnap.snapshot.models import BuildResult
from sitesnap.utils.mixins import LoggerMixin

_READ_CHUNK = 64 * 1024
_DRAIN_GRACE = 5.0


@runtime_checkable
class Builder(Protocol):
    """Runs a build in ``cwd`` and reports the outcome"""

    async def run(self, cwd: Path, timeout: float | None = None) -> BuildResult: ...


class CommandBuilder(LoggerMixin):
    """Runs a shell command as a child process.

    stdout and stderr are merged and read incrementally so that the output
    produced before a timeout is still available for the report. The child
    is killed on timeout and when the awaiting task is cancelled.
    """

    def __init__(self, command: str):
        self.command = command

    async def run(self, cwd: Path, timeout: float | None = None) -> BuildResult:
        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_shell(
                self.command,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            return BuildResult(
                success=False,
                output=f"Failed to start build command: {e}",
                duration=time.monotonic() - start,
            )

        chunks: list[bytes] = []
        reader = asyncio.create_task(self._drain(process, chunks))
        timed_out = False

        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            self.logger.warning(
                "Build timed out, terminating", command=self.command, timeout=timeout
            )
            await self._terminate(process)
        except asyncio.CancelledError:
            await self._terminate(process)
            reader.cancel()
            raise

        try:
            await asyncio.wait_for(reader, timeout=_DRAIN_GRACE)
        except asyncio.TimeoutError:
            # a detached grandchild still holds the pipe open
            self.logger.warning("Build output stream left open", command=self.command)

        output = b"".join(chunks).decode("utf-8", errors="replace")
        if timed_out:
            output += f"\n[build terminated after {timeout} seconds]"

        exit_code = process.returncode
        return BuildResult(
            success=not timed_out and exit_code == 0,
            output=output,
            exit_code=exit_code,
            timed_out=timed_out,
            duration=time.monotonic() - start,
        )

    @staticmethod
    async def _drain(process: asyncio.subprocess.Process, chunks: list[bytes]) -> None:
        assert process.stdout is not None
        while True:
            chunk = await process.stdout.read(_READ_CHUNK)
            if not chunk:
                return
            chunks.append(chunk)

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                if os.name == "posix":
                    # the shell's children (npm, node ...) share its session
                    os.killpg(process.pid, signal.SIGKILL)
                else:
                    process.kill()
        # shield so a second cancellation cannot leave a zombie behind
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.shield(process.wait())


class BuildOrchestrator(LoggerMixin):
    """Runs the configured build and logs its outcome.

    Whether a failed build aborts the snapshot is the job's decision; the
    orchestrator only reports.
    """

    def __init__(self, builder_factory: Callable[[str], Builder] = CommandBuilder):
        self.builder_factory = builder_factory

    async def run_build(
        self, command: str, working_dir: Path, timeout: float | None = None
    ) -> BuildResult:
        builder = self.builder_factory(command)
        self.logger.info("Running build", command=command, cwd=str(working_dir))

        try:
            result = await builder.run(Path(working_dir), timeout)
        except OSError as e:
            self.logger.error("Build could not run", command=command, error=str(e))
            return BuildResult(success=False, output=str(e))

        if result.success:
            self.logger.info(
                "Build succeeded", command=command, duration=round(result.duration, 2)
            )
        else:
            self.logger.warning(
                "Build failed",
                command=command,
                exit_code=result.exit_code,
                timed_out=result.timed_out,
            )
        return result
