"""E2E tests for the ``outreach`` command line."""

import json
import os
from unittest.mock import patch

import pytest

from outreach.main import create_parser, main


pytestmark = pytest.mark.e2e


@pytest.fixture
def cli_env(test_env, tmp_path):
    """Simulated environment backed by a SQLite file the commands share."""
    env = dict(test_env, DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    with patch.dict(os.environ, env, clear=True), patch("outreach.main.setup_logging"):
        yield env


# ============================================================================
# Argument parsing
# ============================================================================

class TestCLIParser:
    """Test CLI argument parsing and validation."""

    def test_worker_queues(self):
        args = create_parser().parse_args(["worker", "--queues", "email", "call"])

        assert args.command == "worker"
        assert args.queues == ["email", "call"]

    def test_unknown_queue_rejected(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["worker", "--queues", "fax"])

    def test_create_campaign_defaults(self):
        args = create_parser().parse_args(["create-campaign", "--niche", "roofers", "--city", "Denver"])

        assert args.limit == 10
        assert args.drain is False

    def test_command_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])


# ============================================================================
# Commands
# ============================================================================

class TestCLICommands:
    def test_check_env(self, cli_env, capsys):
        assert main(["check-env", "--verbose"]) == 0

        out = capsys.readouterr().out
        assert "APP_ENV: test (simulated providers)" in out
        assert "Configuration OK" in out

    def test_check_env_production_without_credentials(self, cli_env, capsys):
        with patch.dict(os.environ, {"APP_ENV": "production"}):
            assert main(["check-env"]) == 1

        assert "SENDGRID_API_KEY is required" in capsys.readouterr().out

    def test_campaign_runs_to_idle(self, cli_env, capsys, tmp_path):
        """Test init-db followed by a drained campaign runs every stage."""
        assert main(["init-db"]) == 0
        assert main(["create-campaign", "--niche", "roofers", "--city", "Dallas", "--limit", "2", "--drain"]) == 0

        out = capsys.readouterr().out
        assert "Campaign ID: " in out
        # scrape + 2 leads x (enrich, site, image, deploy, email 1, call 1, email 2, call 2)
        assert "Processed 17 jobs: 17 completed, 0 retrying, 0 failed" in out
        assert len(list((tmp_path / "demo").iterdir())) == 2

    def test_failed_jobs_empty(self, cli_env, capsys):
        assert main(["failed-jobs", "--queue", "email"]) == 0

        assert json.loads(capsys.readouterr().out) == []

    def test_drain_idle_broker(self, cli_env, capsys):
        assert main(["drain"]) == 0

        assert json.loads(capsys.readouterr().out) == {"processed": 0, "perQueue": {}}

    def test_resume_unknown_lead(self, cli_env, capsys):
        assert main(["init-db"]) == 0

        assert main(["resume-lead", "missing"]) == 1
        assert "Lead not found: missing" in capsys.readouterr().err

    def test_retry_unknown_job(self, cli_env, capsys):
        assert main(["retry-job", "email", "job-123"]) == 1

        assert "No failed job job-123 on email" in capsys.readouterr().err
