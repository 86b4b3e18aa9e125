"""
Tests for dloopgov/cli.py

Only the offline paths are exercised; rounds need a live RPC endpoint.
"""

from click.testing import CliRunner

from dloopgov import __version__
from dloopgov.cli import main


class TestCli:
    """Tests for the click command group."""

    def test_help_lists_commands(self):
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "serve", "providers"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_policy_choices(self):
        result = CliRunner().invoke(main, ["run", "--help"])
        assert "conservative" in result.output
        assert "aggressive" in result.output

    def test_unknown_policy_rejected(self):
        result = CliRunner().invoke(main, ["run", "--policy", "reckless"])
        assert result.exit_code == 2

    def test_missing_key_reported(self):
        env = {"NODE_COUNT": "1", "AI_NODE_1_PRIVATE_KEY": None}
        result = CliRunner().invoke(main, ["run", "--skip-validation"], env=env)
        assert result.exit_code == 1
        assert "AI_NODE_1_PRIVATE_KEY" in result.output

    def test_bad_config_reported(self):
        result = CliRunner().invoke(main, ["serve"], env={"NODE_COUNT": "zero"})
        assert result.exit_code == 1
        assert "NODE_COUNT" in result.output
