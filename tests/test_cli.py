"""Tests for CLI commands"""

import json
import re

import pytest
from typer.testing import CliRunner

from cli.main import app

UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
)


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture
def cli(runner, tmp_path):
    """Invoke the CLI against a freshly initialised SQLite database."""
    base = ["--database-url", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"]

    def invoke(*args):
        return runner.invoke(app, [*base, *args])

    result = invoke("init-db")
    assert result.exit_code == 0, result.output
    return invoke


def _uuid(output: str) -> str:
    match = UUID_PATTERN.search(output)
    assert match, output
    return match.group(0)


class TestMainCommands:
    def test_version(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "LMS Jobs CLI" in result.output

    def test_init_db(self, cli):
        result = cli("init-db")
        assert result.exit_code == 0
        assert "Job queue tables created" in result.output

    def test_help_lists_command_groups(self, runner):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("jobs", "worker", "dlq"):
            assert group in result.output


class TestJobsCommands:
    def test_enqueue_and_show(self, cli):
        payload = json.dumps({"email": "student@example.com", "course_name": "Python 101"})
        result = cli(
            "jobs", "enqueue", "EMAIL_ENROLLMENT_CONFIRMATION", "--payload", payload,
            "--priority", "8",
        )
        assert result.exit_code == 0, result.output
        assert "Enqueued EMAIL_ENROLLMENT_CONFIRMATION job" in result.output
        job_id = _uuid(result.output)

        shown = cli("jobs", "show", job_id)
        assert shown.exit_code == 0, shown.output
        assert "PENDING" in shown.output
        assert "student@example.com" in shown.output

    def test_enqueue_rejects_bad_json(self, cli):
        result = cli("jobs", "enqueue", "EMAIL_NOTIFICATION", "--payload", "{nope")
        assert result.exit_code == 1
        assert "not valid JSON" in result.output

    def test_enqueue_rejects_invalid_payload(self, cli):
        result = cli(
            "jobs", "enqueue", "PAYMENT_VERIFY", "--payload", json.dumps({"order_id": "o-1"})
        )
        assert result.exit_code == 1
        assert "Invalid payload for PAYMENT_VERIFY" in result.output

    def test_enqueue_rejects_unknown_type(self, cli):
        result = cli("jobs", "enqueue", "EMAIL_CARRIER_PIGEON")
        assert result.exit_code != 0

    def test_enqueue_disabled_type(self, cli, monkeypatch):
        monkeypatch.setenv("JOB_DISABLED_TYPES", '["EMAIL_NOTIFICATION"]')

        result = cli(
            "jobs", "enqueue", "EMAIL_NOTIFICATION",
            "--payload", json.dumps({"email": "student@example.com"}),
        )
        assert result.exit_code == 1
        assert "disabled" in result.output

    def test_show_missing_job(self, cli):
        result = cli("jobs", "show", "00000000-0000-0000-0000-000000000000")
        assert result.exit_code == 1
        assert "Job not found" in result.output

    def test_list_and_stats(self, cli):
        empty = cli("jobs", "list")
        assert empty.exit_code == 0
        assert "No jobs found" in empty.output

        cli("jobs", "enqueue", "MOODLE_SYNC_COURSES")
        listed = cli("jobs", "list")
        assert listed.exit_code == 0
        assert "Showing 1 jobs" in listed.output

        stats = cli("jobs", "stats")
        assert stats.exit_code == 0
        assert "Pending" in stats.output

    def test_abandon_then_retry_is_refused(self, cli):
        job_id = _uuid(cli("jobs", "enqueue", "MOODLE_SYNC_USERS").output)

        abandoned = cli("jobs", "abandon", job_id)
        assert abandoned.exit_code == 0
        assert "abandoned" in abandoned.output

        again = cli("jobs", "abandon", job_id)
        assert again.exit_code == 1

        retried = cli("jobs", "retry", job_id)
        assert retried.exit_code == 1
        assert "cannot be retried" in retried.output

    def test_cleanup_with_nothing_to_delete(self, cli):
        result = cli("jobs", "cleanup")
        assert result.exit_code == 0
        assert "No completed jobs to delete" in result.output


class TestWorkerCommands:
    def test_run_once_processes_queue(self, cli):
        job_id = _uuid(cli(
            "jobs", "enqueue", "PAYMENT_VERIFY",
            "--payload", json.dumps({"order_id": "o-1", "transaction_id": "t-1"}),
        ).output)
        cli("jobs", "enqueue", "MOODLE_SYNC_COURSES")

        result = cli("worker", "run", "--once")
        assert result.exit_code == 0, result.output
        assert "Processed 2 jobs" in result.output

        shown = cli("jobs", "show", job_id)
        assert "COMPLETED" in shown.output

    def test_status(self, cli):
        result = cli("worker", "status")
        assert result.exit_code == 0
        assert "processing_concurrency" in result.output


class TestDeadLetterCommands:
    def test_add_list_show_remove(self, cli):
        added = cli(
            "dlq", "add", "EMAIL_SEND",
            "--error", "smtp down",
            "--payload", json.dumps({"email": "student@example.com"}),
        )
        assert added.exit_code == 0, added.output
        entry_id = _uuid(added.output)

        listed = cli("dlq", "list", "--type", "EMAIL_SEND")
        assert listed.exit_code == 0
        assert "Dead letter queue is empty" not in listed.output
        assert "Dead letter queue is empty" in cli("dlq", "list", "--type", "WEBHOOK").output

        shown = cli("dlq", "show", entry_id)
        assert shown.exit_code == 0
        assert "smtp down" in shown.output

        removed = cli("dlq", "remove", entry_id)
        assert removed.exit_code == 0
        assert cli("dlq", "remove", entry_id).exit_code == 1

    def test_retry_and_sweep(self, cli):
        entry_id = _uuid(cli(
            "dlq", "add", "NOTIFICATION",
            "--error", "push failed",
            "--payload", json.dumps({"user_id": "u-1"}),
        ).output)

        retried = cli("dlq", "retry", entry_id)
        assert retried.exit_code == 0
        assert "marked for retry" in retried.output

        swept = cli("dlq", "sweep")
        assert swept.exit_code == 0, swept.output
        assert "Processed 1 entries: 1 succeeded" in swept.output
        assert "Dead letter queue is empty" in cli("dlq", "list").output

    def test_stats_on_empty_queue(self, cli):
        result = cli("dlq", "stats")
        assert result.exit_code == 0
        assert "Healthy" in result.output

    def test_list_rejects_unknown_status(self, cli):
        result = cli("dlq", "list", "--status", "stuck")
        assert result.exit_code != 0
