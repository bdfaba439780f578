"""
Pipeline step runner.

Runs one external command (dependency install, schema tooling, seed,
build, platform CLI) with a bounded timeout and captures stdout/stderr
for diagnostics. A timeout kills the whole process tree and is reported
as a failed result; callers decide whether that is fatal.
"""
import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Result of one command execution."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """stderr when present, otherwise stdout."""
        return self.stderr.strip() or self.stdout.strip()


@dataclass
class StepCommand:
    """One command to execute in a working directory."""
    args: list[str]
    cwd: str | Path | None = None
    timeout_seconds: float = 60.0
    env: dict[str, str] = field(default_factory=dict)
    label: str | None = None

    @property
    def display_name(self) -> str:
        return self.label or " ".join(self.args)


class StepRunner:
    """
    Executes step commands as subprocesses.

    Handles:
    - Command execution in a working directory
    - stdout/stderr capture
    - Timeout enforcement (process group kill)
    - Environment variable overlay
    """

    async def run(self, command: StepCommand) -> StepResult:
        """
        Execute the command and return its result.

        Never raises for command failures: a missing executable is reported
        as exit code 127 and a timeout as ``timed_out=True``.
        """
        start_time = time.monotonic()

        env = os.environ.copy()
        env.update(command.env)

        try:
            process = await asyncio.create_subprocess_exec(
                *command.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(command.cwd) if command.cwd else None,
                env=env,
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError) as e:
            return StepResult(
                exit_code=127,
                stderr=str(e),
                duration_seconds=time.monotonic() - start_time,
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=command.timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self._kill(process)
            logger.warning(f"{command.display_name} timed out after {command.timeout_seconds}s")
            return StepResult(
                exit_code=-1,
                stderr=f"Command timed out after {command.timeout_seconds}s",
                duration_seconds=time.monotonic() - start_time,
                timed_out=True,
            )

        return StepResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_seconds=time.monotonic() - start_time,
        )

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Kill the process group, falling back to the direct child."""
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        except (ProcessLookupError, PermissionError, OSError):
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()


# Global step runner instance
step_runner = StepRunner()
