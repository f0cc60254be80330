"""
Tests for CLI module.

Tests command-line interface commands and output.
"""

from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from site_explorer.cli import app
from site_explorer.session import SessionState
from site_explorer.storage import SessionStorage


class TestCLI:
    """Tests for CLI commands."""

    @pytest.fixture
    def runner(self) -> CliRunner:
        """Provide a CLI test runner."""
        return CliRunner()

    def test_cli_help(self, runner: CliRunner):
        """CLI should show help."""
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "Usage" in result.output
        assert "explore" in result.output

    def test_version(self, runner: CliRunner):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "v0.1.0" in result.output

    def test_explore_help(self, runner: CliRunner):
        """Explore command should show help."""
        result = runner.invoke(app, ["explore", "--help"])

        assert result.exit_code == 0
        assert "--objective" in result.output

    def test_explore_requires_url(self, runner: CliRunner):
        result = runner.invoke(app, ["explore", "--objective", "find the contact page"])

        assert result.exit_code == 1
        assert "--url is required" in result.output

    def test_explore_rejects_invalid_url(self, runner: CliRunner):
        result = runner.invoke(app, ["explore", "--url", "ftp://example.com", "--objective", "x"])

        assert result.exit_code == 1
        assert "Invalid URL" in result.output

    def test_explore_requires_objective(self, runner: CliRunner):
        """A blank objective is rejected."""
        result = runner.invoke(app, ["explore", "--url", "https://example.com", "--objective", "  "])

        assert result.exit_code == 1
        assert "--objective is required" in result.output

    def test_explore_rejects_unknown_strategy(self, runner: CliRunner):
        result = runner.invoke(app, [
            "explore", "--url", "https://example.com", "--objective", "x", "--strategy", "parallel",
        ])

        assert result.exit_code == 1
        assert "Invalid strategy" in result.output

    def test_explore_rejects_zero_pages(self, runner: CliRunner):
        result = runner.invoke(app, [
            "explore", "--url", "https://example.com", "--objective", "x", "--max-pages", "0",
        ])

        assert result.exit_code == 1

    def test_explore_missing_replay_file(self, runner: CliRunner, temp_dir: Path):
        result = runner.invoke(app, [
            "explore", "--url", "https://example.com", "--objective", "x",
            "--replay", str(temp_dir / "absent.yaml"),
        ])

        assert result.exit_code == 1
        assert "Replay file not found" in result.output

    def test_explore_without_api_key(self, runner: CliRunner, monkeypatch, temp_dir: Path):
        """Missing credentials fail before any browser starts."""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        config_path = temp_dir / "config.yaml"
        config_path.write_text("decision:\n  provider: anthropic\n")

        result = runner.invoke(app, [
            "explore", "--url", "https://example.com", "--objective", "find the contact page",
            "--config", str(config_path),
        ])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_config_show(self, runner: CliRunner, temp_dir: Path):
        """Config show command should display settings."""
        config_path = temp_dir / "config.yaml"
        config_path.write_text("explorer:\n  max_pages: 9\n")

        result = runner.invoke(app, ["config", "--show", "--config", str(config_path)])

        assert result.exit_code == 0
        assert "explorer" in result.output
        assert "max_pages: 9" in result.output

    def test_config_init(self, runner: CliRunner, temp_dir: Path):
        """Config init writes a loadable YAML file."""
        output = temp_dir / "generated.yaml"

        result = runner.invoke(app, ["config", "--init", "--output", str(output)])

        assert result.exit_code == 0
        data = yaml.safe_load(output.read_text())
        assert data["explorer"]["max_pages"] == 6
        assert data["input"]["mask_sensitive"] is True

    def test_config_without_flags(self, runner: CliRunner):
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "--show" in result.output

    def test_sessions_empty(self, runner: CliRunner, temp_dir: Path):
        result = runner.invoke(app, ["sessions", "--dir", str(temp_dir)])

        assert result.exit_code == 0
        assert "No sessions found" in result.output

    @pytest.mark.asyncio
    async def test_sessions_list_and_detail(self, runner: CliRunner, temp_dir: Path):
        """Stored sessions are listed and one can be inspected."""
        state = SessionState.start("find the contact page", "https://example.com")
        await state.register_discovery("https://example.com", priority=1)
        SessionStorage(temp_dir).save_session(state.snapshot())

        listed = runner.invoke(app, ["sessions", "--dir", str(temp_dir)])
        detail = runner.invoke(app, ["sessions", state.session_id, "--dir", str(temp_dir)])

        assert listed.exit_code == 0
        assert "Sessions (1)" in listed.output
        assert detail.exit_code == 0
        assert "find the contact page" in detail.output

    def test_sessions_unknown_id(self, runner: CliRunner, temp_dir: Path):
        result = runner.invoke(app, ["sessions", "nothing-here", "--dir", str(temp_dir)])

        assert result.exit_code == 1
