"""Concrete checkers for the Python toolchain."""

from pathlib import Path

from forgeloop.lib.types import GateError
from .base import Checker, CommandChecker, CommandOutput
from .parsers import parse_mypy_output, parse_pytest_output, parse_ruff_json

PYTEST_NO_TESTS_COLLECTED = 5


class TypesChecker(CommandChecker):
    name = "types"
    command = ("mypy", ".")
    default_timeout = 120.0

    def parse(self, output: CommandOutput, project_dir: Path) -> list[GateError]:
        return parse_mypy_output(f"{output.stdout}\n{output.stderr}")


class LintChecker(CommandChecker):
    name = "lint"
    command = ("ruff", "check", "--output-format", "json", ".")
    default_timeout = 60.0

    def parse(self, output: CommandOutput, project_dir: Path) -> list[GateError]:
        return parse_ruff_json(output.stdout, project_dir)


class TestsChecker(CommandChecker):
    name = "tests"
    command = ("pytest", "-q")
    default_timeout = 300.0

    __test__ = False  # not a pytest test class

    def parse(self, output: CommandOutput, project_dir: Path) -> list[GateError]:
        if output.returncode == PYTEST_NO_TESTS_COLLECTED:
            return [GateError(
                message="pytest collected no tests (exit status 5)",
                remediation="Add tests covering the acceptance criteria; an empty test suite does not pass.",
            )]
        return parse_pytest_output(output.stdout, output.stderr)


def default_registry() -> dict[str, Checker]:
    """Registered gate name -> checker for the built-in gates."""
    checkers = [TypesChecker(), LintChecker(), TestsChecker()]
    return {c.name: c for c in checkers}
