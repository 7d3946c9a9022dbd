"""Tests for Claude agent dispatch."""

import subprocess
from unittest.mock import MagicMock, patch

from forgeloop.agents.claude import ClaudeAgent


def completed(returncode=0, stdout="", stderr=""):
    proc = MagicMock()
    proc.returncode = returncode
    proc.stdout = stdout
    proc.stderr = stderr
    return proc


class TestClaudeAgent:
    """Non-interactive claude invocation."""

    @patch("forgeloop.agents.claude.subprocess.run")
    def test_prompt_on_stdin(self, mock_run, tmp_path, monkeypatch):
        """The prompt goes over stdin with permissions skipped and CLAUDECODE removed."""
        monkeypatch.setenv("CLAUDECODE", "1")
        mock_run.return_value = completed(0, "done")
        result = ClaudeAgent(timeout=60).dispatch("Build it", tmp_path)

        assert result.success is True
        assert result.stdout == "done"
        args, kwargs = mock_run.call_args
        assert args[0] == ["claude", "-p", "-", "--dangerously-skip-permissions"]
        assert kwargs["input"] == "Build it"
        assert kwargs["cwd"] == str(tmp_path)
        assert kwargs["timeout"] == 60
        assert "CLAUDECODE" not in kwargs["env"]

    @patch("forgeloop.agents.claude.subprocess.run")
    def test_nonzero_exit(self, mock_run, tmp_path):
        """A non-zero exit is reported as an unsuccessful dispatch."""
        mock_run.return_value = completed(2, "", "rate limited")
        result = ClaudeAgent().dispatch("Build it", tmp_path)
        assert result.success is False
        assert result.exit_code == 2

    @patch("forgeloop.agents.claude.subprocess.run")
    def test_timeout(self, mock_run, tmp_path):
        """A timeout is an unsuccessful dispatch with exit code -1."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="claude", timeout=1)
        result = ClaudeAgent(timeout=1).dispatch("Build it", tmp_path)
        assert result.success is False
        assert result.exit_code == -1

    @patch("forgeloop.agents.claude.subprocess.run")
    def test_missing_binary(self, mock_run, tmp_path):
        """A missing claude binary is an unsuccessful dispatch, not a crash."""
        mock_run.side_effect = FileNotFoundError("claude")
        result = ClaudeAgent().dispatch("Build it", tmp_path)
        assert result.success is False

    @patch("forgeloop.agents.claude.subprocess.run")
    def test_logs_each_dispatch(self, mock_run, tmp_path):
        """Each dispatch writes its own numbered log with stdout."""
        mock_run.return_value = completed(0, "out", "err")
        agent = ClaudeAgent(log_dir=tmp_path / "logs")
        agent.dispatch("one", tmp_path)
        agent.dispatch("two", tmp_path)

        logs = sorted(p.name for p in (tmp_path / "logs").iterdir())
        assert logs == ["dispatch-001.log", "dispatch-002.log"]
        text = (tmp_path / "logs" / "dispatch-001.log").read_text()
        assert "=== STDOUT ===\nout" in text
