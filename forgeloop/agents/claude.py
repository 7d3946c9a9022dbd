"""
Coding agent dispatch.

The convergence loop only needs "dispatch this prompt and wait". Whether
the agent's work is any good is decided by the gates afterwards.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_AGENT_TIMEOUT = 1800  # seconds


@dataclass
class AgentResult:
    success: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class Agent:
    """Something that can work on the project tree given a prompt."""

    def dispatch(self, prompt: str, cwd: Path) -> AgentResult:
        raise NotImplementedError


class ClaudeAgent(Agent):
    def __init__(self, timeout: int = DEFAULT_AGENT_TIMEOUT, log_dir: Path | None = None):
        self.timeout = timeout
        self.log_dir = log_dir
        self.dispatch_count = 0

    def dispatch(self, prompt: str, cwd: Path) -> AgentResult:
        """
        Run Claude non-interactively on the prompt.

        Uses: echo "<prompt>" | claude -p - --dangerously-skip-permissions
        Passes prompt via stdin to avoid CLI argument length limits.
        """
        self.dispatch_count += 1
        cmd = ["claude", "-p", "-", "--dangerously-skip-permissions"]

        # A nested session refuses to start while CLAUDECODE is set
        env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}

        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd),
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Agent timed out after {self.timeout}s")
            return AgentResult(success=False, exit_code=-1, stderr="Timeout expired")
        except OSError as e:
            logger.warning(f"Agent could not start: {e}")
            return AgentResult(success=False, exit_code=-1, stderr=str(e))

        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            (self.log_dir / f"dispatch-{self.dispatch_count:03d}.log").write_text(
                f"=== COMMAND ===\n{' '.join(cmd)}\n\n"
                f"=== EXIT CODE ===\n{result.returncode}\n\n"
                f"=== STDOUT ===\n{result.stdout}\n\n"
                f"=== STDERR ===\n{result.stderr}\n"
            )

        return AgentResult(
            success=result.returncode == 0,
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
