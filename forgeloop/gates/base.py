"""
Checker interface and the shared subprocess runner.

A checker turns a project tree into a GateResult. Expected failures are
data (passed=False with diagnostics); a checker never raises for a failing
tool, a missing tool or a timeout.
"""

import logging
import subprocess
import time
from dataclasses import dataclass, replace
from pathlib import Path

from forgeloop.lib.remediation import build_remediation
from forgeloop.lib.types import GateError, GateResult
from .parsers import truncate

logger = logging.getLogger(__name__)


class Checker:
    """A named pass/fail producer of structured diagnostics."""

    name: str = ""
    default_timeout: float = 60.0  # seconds

    def invoke(self, project_dir: Path, timeout: float) -> GateResult:
        raise NotImplementedError


@dataclass
class CommandOutput:
    returncode: int
    stdout: str
    stderr: str


def timeout_error(gate: str, timeout: float) -> GateError:
    return GateError(
        message=f"{gate} timed out after {timeout:g}s",
        remediation=f"The {gate} gate did not finish within {timeout:g}s. Look for hanging code "
                    f"or raise gateTimeouts.{gate} in .forge.json.",
    )


def crash_error(gate: str, detail: str) -> GateError:
    return GateError(
        message=f"{gate} checker crashed: {detail}",
        remediation=f"The {gate} tool could not run. Check that it is installed and runs from the project root.",
    )


def with_remediation(gate: str, errors: list[GateError]) -> tuple[GateError, ...]:
    """Attach a remediation hint to every error that lacks one."""
    return tuple(
        e if e.remediation else replace(e, remediation=build_remediation(gate, e))
        for e in errors
    )


class CommandChecker(Checker):
    """
    Checker that runs an external tool and parses its output.

    Subclasses set `command` and implement `parse`. The gate passes iff the
    tool exits 0. A failing exit with no parseable output still yields one
    diagnostic, so a failed gate never has zero errors.
    """

    command: tuple[str, ...] = ()

    @property
    def tool(self) -> str:
        return self.command[0] if self.command else self.name

    def parse(self, output: CommandOutput, project_dir: Path) -> list[GateError]:
        raise NotImplementedError

    def invoke(self, project_dir: Path, timeout: float) -> GateResult:
        start = time.monotonic()
        logger.debug(f"Running {' '.join(self.command)} in {project_dir} (timeout {timeout:g}s)")

        try:
            proc = subprocess.run(
                list(self.command),
                cwd=str(project_dir),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Gate {self.name} timed out after {timeout:g}s")
            return self._result(False, [timeout_error(self.name, timeout)], start)
        except OSError as e:
            logger.warning(f"Gate {self.name} could not start {self.tool}: {e}")
            return self._result(False, [crash_error(self.name, str(e))], start)

        output = CommandOutput(proc.returncode, proc.stdout or "", proc.stderr or "")
        if output.returncode == 0:
            return self._result(True, [], start)

        errors = self.parse(output, project_dir)
        if not errors:
            tail = truncate(f"{output.stdout}\n{output.stderr}", 300)
            message = f"{self.tool} exited with status {output.returncode} but no errors were parsed"
            errors = [GateError(message=f"{message}: {tail}" if tail else message)]
        return self._result(False, errors, start)

    def _result(self, passed: bool, errors: list[GateError], start: float) -> GateResult:
        return GateResult(
            gate=self.name,
            passed=passed,
            errors=with_remediation(self.name, errors),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
