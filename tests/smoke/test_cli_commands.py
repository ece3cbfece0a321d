"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import json
import subprocess
import sys
from pathlib import Path

import pytest
from loguru import logger
from typer.testing import CliRunner

from src.cli.review_cli import app

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent

runner = CliRunner()


def run_cli_command(command: str, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m src.cli.review_cli')
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    full_command = f"{sys.executable} -m src.cli.review_cli {command}"

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
    )

    return result.returncode, result.stdout, result.stderr


@pytest.fixture(autouse=True)
def restore_logger():
    """The CLI callback rebinds loguru to the runner's captured stderr."""
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def db(tmp_path):
    return tmp_path / "state.db"


def invoke(db, *args):
    return runner.invoke(app, ["--db", str(db), *args])


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "review" in stdout.lower()
        assert "Commands" in stdout

    @pytest.mark.parametrize("command", ["review", "session", "forecast", "batch"])
    def test_command_help(self, command):
        code, stdout, stderr = run_cli_command(f"{command} --help")
        assert code == 0, f"{command} help failed: {stderr}"


class TestGrade:
    def test_perfect_answer(self):
        result = runner.invoke(app, ["grade", "--correct", "-c", "0.9", "-s", "95", "-t", "2"])
        assert result.exit_code == 0, result.output
        assert "perfect" in result.output

    def test_wrong_answer(self):
        result = runner.invoke(app, ["grade", "--incorrect", "-c", "0.2", "-s", "30"])
        assert result.exit_code == 0, result.output
        assert "failed" in result.output
        assert "Recommendations" in result.output


class TestReviewFlow:
    def test_review_then_session(self, db):
        first = invoke(db, "review", "alice", "s1", "-c", "0.9", "-s", "95", "-t", "2000")
        second = invoke(db, "review", "alice", "s2", "-c", "0.9", "-s", "40", "-m", "grammar")

        assert first.exit_code == 0, first.output
        assert "LEARNING" in first.output
        assert second.exit_code == 0, second.output
        assert "Mistake weight" in second.output

        session = invoke(db, "session", "alice", "-n", "5")
        assert session.exit_code == 0, session.output
        assert "s2" in session.output
        assert "mistake" in session.output

    def test_queries_after_review(self, db):
        invoke(db, "review", "alice", "s1")

        for args in (
            ["forecast", "alice", "s1"],
            ["history", "alice", "s1"],
            ["stats", "alice"],
            ["due", "alice"],
        ):
            result = invoke(db, *args)
            assert result.exit_code == 0, f"{args}: {result.output}"

    def test_suspend_and_resume(self, db):
        invoke(db, "review", "alice", "s1")

        suspended = invoke(db, "suspend", "alice", "s1")
        resumed = invoke(db, "suspend", "alice", "s1", "--resume")

        assert suspended.exit_code == 0
        assert "suspended" in suspended.output
        assert "resumed" in resumed.output


class TestBatch:
    def test_partial_failure(self, db, tmp_path):
        events = tmp_path / "events.json"
        events.write_text(
            json.dumps(
                [
                    {"userId": "alice", "itemId": "s1", "recognizerConfidence": 0.9, "similarityScore": 95},
                    {"userId": "alice", "similarityScore": 95},
                ]
            )
        )

        result = invoke(db, "batch", str(events))

        assert result.exit_code == 0, result.output
        assert "1 processed" in result.output
        assert "1 failed" in result.output

    def test_non_object_entry(self, db, tmp_path):
        events = tmp_path / "events.json"
        events.write_text(json.dumps([{"userId": "alice", "itemId": "s1"}, 42]))

        result = invoke(db, "batch", str(events))

        assert result.exit_code == 0, result.output
        assert "1 processed" in result.output
        assert "1 failed" in result.output

    def test_not_a_list(self, db, tmp_path):
        events = tmp_path / "events.json"
        events.write_text(json.dumps({"userId": "alice"}))
        assert invoke(db, "batch", str(events)).exit_code == 1

    def test_empty_batch(self, db, tmp_path):
        events = tmp_path / "events.json"
        events.write_text("[]")
        assert invoke(db, "batch", str(events)).exit_code == 1


class TestInvalidInput:
    def test_unknown_card_forecast(self, db):
        result = invoke(db, "forecast", "alice", "missing")
        assert result.exit_code == 1
        assert "Invalid input" in result.output

    def test_unknown_card_suspend(self, db):
        assert invoke(db, "suspend", "alice", "missing").exit_code == 1

    def test_session_size_out_of_range(self, db):
        assert invoke(db, "session", "alice", "-n", "0").exit_code == 1

    def test_empty_learner_session(self, db):
        result = invoke(db, "session", "nobody")
        assert result.exit_code == 0
        assert "Only 0 of 20" in result.output


def test_config_shows_scheduler(db):
    result = invoke(db, "config")
    assert result.exit_code == 0
    assert "max_interval" in result.output


def test_forecast_suggests_study_time(db):
    invoke(db, "review", "alice", "s1")
    result = invoke(db, "forecast", "alice", "s1")
    assert result.exit_code == 0, result.output
    assert "Suggested study time" in result.output
