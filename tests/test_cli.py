"""
Tests for the CLI interface.
"""
import os
import shutil
import tempfile
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from llm_tracker.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from llm_tracker.storage.repository import TrackerRepository, initialize_schema

runner = CliRunner()


@pytest.fixture
def db_env():
    """Point the CLI at a temporary database."""
    temp_dir = tempfile.mkdtemp()
    db_path = os.path.join(temp_dir, "cli.db")
    yield {"LLM_TRACKER_DB_PATH": db_path}
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def project(db_env):
    """Create a project in the temporary database."""
    db_path = db_env["LLM_TRACKER_DB_PATH"]
    initialize_schema(db_path)
    repo = TrackerRepository(db_path)
    org = repo.create_organization(name="Acme", owner_id="user_1")
    return repo.create_project(org.id, "Bot", created_by="user_1")


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self, db_env):
        result = runner.invoke(app, [], env=db_env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "LLM Tracker" in result.output

    def test_init_creates_database(self, db_env):
        result = runner.invoke(app, ["init"], env=db_env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(db_env["LLM_TRACKER_DB_PATH"])

    def test_status(self, db_env):
        result = runner.invoke(app, ["status"], env=db_env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "built-in (20 models)" in result.output

    def test_rates_filtered_by_provider(self, db_env):
        result = runner.invoke(app, ["rates", "--provider", "deepseek"], env=db_env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "deepseek-r1" in result.output
        assert "gpt-4o" not in result.output

    def test_rates_unknown_provider(self, db_env):
        result = runner.invoke(app, ["rates", "--provider", "mistral"], env=db_env)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown provider" in result.output

    def test_invalid_configuration(self, db_env):
        env = dict(db_env, LLM_TRACKER_CURRENCY="DOLLARS")
        result = runner.invoke(app, ["status"], env=env)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_track_records_usage(self, db_env, project):
        result = runner.invoke(app, [
            "track", "gpt-4o",
            "--api-key", project.project_key,
            "--prompt-tokens", "1000",
            "--completion-tokens", "500",
        ], env=db_env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Tracked openai/gpt-4o" in result.output
        assert "$0.002500 in + $0.005000 out = $0.007500 USD" in result.output

        records = TrackerRepository(db_env["LLM_TRACKER_DB_PATH"]).fetch_usage_records(project.id)
        assert len(records) == 1

    def test_track_unknown_model(self, db_env, project):
        result = runner.invoke(app, [
            "track", "not-a-real-model",
            "--api-key", project.project_key,
            "--prompt-tokens", "1",
            "--completion-tokens", "1",
        ], env=db_env)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown model: not-a-real-model" in result.output

    def test_track_wrong_provider(self, db_env, project):
        result = runner.invoke(app, [
            "track", "gpt-4o",
            "--provider", "anthropic",
            "--api-key", project.project_key,
            "--prompt-tokens", "1",
            "--completion-tokens", "1",
        ], env=db_env)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid model gpt-4o for provider anthropic" in result.output

    def test_usage_empty(self, db_env, project):
        result = runner.invoke(app, ["usage", "--project", project.id], env=db_env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage recorded" in result.output

    def test_summary_contains_financial_info(self, db_env, project):
        for _ in range(2):
            runner.invoke(app, [
                "track", "gpt-4.5",
                "--api-key", project.project_key,
                "--prompt-tokens", "10000",
                "--completion-tokens", "10000",
            ], env=db_env)

        result = runner.invoke(app, ["summary", "--project", project.id, "--days", "7"], env=db_env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage over the last 7 days" in result.output
        assert "Requests: 2" in result.output
        # 2 * (10 * 0.075 + 10 * 0.15)
        assert "Total cost: $4.50" in result.output
        assert "Error rate: 0.0%" in result.output

    def test_summary_window_out_of_range(self, db_env, project):
        result = runner.invoke(app, ["summary", "--project", project.id, "--days", "400000"], env=db_env)
        assert result.exit_code == 2

        result = runner.invoke(app, ["usage", "--project", project.id, "--days", "400000"], env=db_env)
        assert result.exit_code == 2

    def test_org_and_project_commands(self, db_env):
        runner.invoke(app, ["init"], env=db_env)
        result = runner.invoke(app, ["org", "create", "Acme", "--owner", "user_1"], env=db_env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "Created organization Acme" in result.output

        repo = TrackerRepository(db_env["LLM_TRACKER_DB_PATH"])
        org = repo.list_organizations("user_1")[0]

        result = runner.invoke(app, ["project", "create", "Bot", "--org", org.id, "--user", "user_1"], env=db_env)
        assert result.exit_code == EXIT_CODE_PASS
        project = repo.list_projects(org.id)[0]
        assert f"Project key: {project.project_key}" in result.output

    def test_project_create_unknown_org(self, db_env):
        runner.invoke(app, ["init"], env=db_env)
        result = runner.invoke(app, ["project", "create", "Bot", "--org", "missing", "--user", "u"], env=db_env)
        assert result.exit_code == EXIT_CODE_FAIL

    def test_seed(self, db_env):
        result = runner.invoke(app, ["seed", "--records", "5"], env=db_env)
        assert result.exit_code == EXIT_CODE_PASS

        repo = TrackerRepository(db_env["LLM_TRACKER_DB_PATH"])
        orgs = repo.list_organizations("demo-user")
        assert len(orgs) == 2
        projects = repo.list_projects(orgs[0].id)
        assert len(repo.fetch_usage_records(projects[0].id)) == 5

    def test_serve_runs_uvicorn(self, db_env):
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(app, ["serve", "--port", "9000"], env=db_env)
        assert result.exit_code == EXIT_CODE_PASS
        args, kwargs = mock_run.call_args
        assert kwargs["port"] == 9000
        assert kwargs["host"] == "127.0.0.1"
