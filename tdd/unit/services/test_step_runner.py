"""
Unit tests for step_runner.py - bounded external command execution.

These run real (tiny) shell commands: the runner is the one place where
subprocess handling must be exercised for real.
"""
import sys
from pathlib import Path

import pytest

# Add backend to path for imports
backend_path = Path(__file__).parent.parent.parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from app.services.step_runner import StepCommand, StepResult, StepRunner


@pytest.fixture
def runner():
    return StepRunner()


class TestStepResult:
    """Tests for StepResult helpers."""

    def test_success_requires_zero_exit(self):
        assert StepResult(exit_code=0).success is True
        assert StepResult(exit_code=1).success is False

    def test_timed_out_is_never_success(self):
        assert StepResult(exit_code=0, timed_out=True).success is False

    def test_output_prefers_stderr(self):
        result = StepResult(exit_code=1, stdout="progress", stderr="  ERR!  ")
        assert result.output == "ERR!"

    def test_output_falls_back_to_stdout(self):
        result = StepResult(exit_code=1, stdout="npm error\n", stderr="")
        assert result.output == "npm error"


class TestStepCommand:

    def test_display_name_defaults_to_args(self):
        command = StepCommand(args=["npm", "install"])
        assert command.display_name == "npm install"

    def test_display_name_uses_label(self):
        command = StepCommand(args=["npx", "prisma", "format"], label="prisma format")
        assert command.display_name == "prisma format"


class TestStepRunner:
    """Tests for StepRunner.run."""

    async def test_captures_stdout_stderr_and_exit_code(self, runner):
        """Both streams and the exit code are captured."""
        result = await runner.run(StepCommand(
            args=["sh", "-c", "echo out; echo err >&2; exit 3"],
        ))

        assert result.exit_code == 3
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.success is False
        assert result.timed_out is False

    async def test_runs_in_working_directory(self, runner, tmp_path):
        (tmp_path / "marker.txt").write_text("here")

        result = await runner.run(StepCommand(args=["cat", "marker.txt"], cwd=tmp_path))

        assert result.success
        assert result.stdout == "here"

    async def test_env_is_overlaid_on_process_environment(self, runner, monkeypatch):
        monkeypatch.setenv("LAUNCHPAD_INHERITED", "inherited")

        result = await runner.run(StepCommand(
            args=["sh", "-c", "echo $DATABASE_URL $LAUNCHPAD_INHERITED"],
            env={"DATABASE_URL": "file:./dev.db"},
        ))

        assert result.stdout.strip() == "file:./dev.db inherited"

    async def test_timeout_kills_and_reports(self, runner):
        """A command exceeding its timeout is killed and flagged."""
        result = await runner.run(StepCommand(args=["sleep", "10"], timeout_seconds=0.2))

        assert result.timed_out is True
        assert result.success is False
        assert result.duration_seconds < 5
        assert "timed out" in result.stderr

    async def test_missing_executable_reports_127(self, runner):
        """A missing binary is a failed result, not an exception."""
        result = await runner.run(StepCommand(args=["definitely-not-a-real-binary-xyz"]))

        assert result.exit_code == 127
        assert result.success is False
