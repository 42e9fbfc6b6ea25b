"""Tests for locating and building the tool-provider server."""

import subprocess
from unittest.mock import patch

import pytest

from autoship.mcp.setup import resolve_server_command, setup_server
from autoship.mcp.supervisor import StartupError
from autoship.validation.config import Config


class TestResolveServerCommand:
    def test_explicit_command(self, tmp_path):
        config = Config(overrides={"server": {"command": ["uvx", "task-server"]}})
        assert resolve_server_command(config, tmp_path) == ["uvx", "task-server"]

    def test_local_build(self, tmp_path):
        entry = tmp_path / "mcp-servers" / "autoship-mcp" / "dist" / "index.js"
        entry.parent.mkdir(parents=True)
        entry.write_text("")
        assert resolve_server_command(Config(), tmp_path) == ["node", str(entry)]

    def test_no_server_and_no_setup(self, tmp_path):
        config = Config(overrides={"server": {"auto_setup": False}})
        with pytest.raises(StartupError):
            resolve_server_command(config, tmp_path)

    def test_auto_setup(self, tmp_path):
        built = tmp_path / "clone" / "dist" / "index.js"
        with patch("autoship.mcp.setup.setup_server", return_value=built) as setup:
            assert resolve_server_command(Config(), tmp_path) == ["node", str(built)]
        setup.assert_called_once()


class TestSetupServer:
    def test_runs_clone_and_build(self, tmp_path):
        def fake_run(command, cwd=None, **kwargs):
            if command[:2] == ["npm", "run"]:
                entry = tmp_path / "mcp-servers" / "autoship-mcp" / "dist" / "index.js"
                entry.parent.mkdir(parents=True)
                entry.write_text("")
            return subprocess.CompletedProcess(command, 0, "", "")

        with patch("autoship.mcp.setup.subprocess.run", side_effect=fake_run) as run:
            entry = setup_server("https://example.com/repo.git", "mcp-servers/autoship-mcp", target=tmp_path)

        commands = [c.args[0][:2] for c in run.call_args_list]
        assert commands == [["git", "clone"], ["git", "-C"], ["npm", "ci"], ["npm", "run"]]
        assert entry.name == "index.js"

    def test_failed_step(self, tmp_path):
        error = subprocess.CalledProcessError(1, ["npm", "ci"], stderr="npm ERR! missing lockfile")
        with patch("autoship.mcp.setup.subprocess.run", side_effect=error):
            with pytest.raises(StartupError) as exc_info:
                setup_server("https://example.com/repo.git", "srv", target=tmp_path)
        assert "missing lockfile" in str(exc_info.value)

    def test_missing_program(self, tmp_path):
        with patch("autoship.mcp.setup.subprocess.run", side_effect=FileNotFoundError("git")):
            with pytest.raises(StartupError):
                setup_server("https://example.com/repo.git", "srv", target=tmp_path)
