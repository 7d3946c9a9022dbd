"""
Parse checker output into structured gate errors.

Supports:
- mypy text output (file:line[:col]: error: message  [code])
- ruff JSON output (ruff check --output-format json)
- pytest output (FAILED summary lines, tracebacks, collection errors)

Parsers return GateError lists without remediation; the checker attaches
hints after parsing.
"""

import json
import re
from pathlib import Path

from forgeloop.lib.types import GateError


_MYPY_ERROR = re.compile(
    r"^(?P<file>[^\s:][^:]*):(?P<line>\d+):(?:(?P<col>\d+):)?\s*error:\s*"
    r"(?P<message>.+?)(?:\s+\[(?P<code>[a-z0-9-]+)\])?\s*$",
    re.MULTILINE,
)


def parse_mypy_output(output: str) -> list[GateError]:
    """Parse mypy's default text output. Notes and summaries are ignored."""
    errors = []
    for match in _MYPY_ERROR.finditer(output):
        col = match.group("col")
        errors.append(GateError(
            file=match.group("file"),
            line=int(match.group("line")),
            column=int(col) if col else None,
            message=match.group("message").strip(),
            rule=match.group("code"),
        ))
    return errors


def parse_ruff_json(output: str, project_dir: Path | None = None) -> list[GateError]:
    """
    Parse `ruff check --output-format json` output.

    Filenames are made relative to project_dir when possible. Returns an
    empty list if the output is not a JSON array.
    """
    try:
        diagnostics = json.loads(output) if output.strip() else []
    except json.JSONDecodeError:
        return []
    if not isinstance(diagnostics, list):
        return []

    errors = []
    for diag in diagnostics:
        if not isinstance(diag, dict):
            continue
        location = diag.get("location") or {}
        errors.append(GateError(
            file=_relative(diag.get("filename"), project_dir),
            line=location.get("row"),
            column=location.get("column"),
            message=diag.get("message", "").strip() or "lint violation",
            rule=diag.get("code"),
        ))
    return errors


def _relative(filename: str | None, project_dir: Path | None) -> str | None:
    if not filename or project_dir is None:
        return filename
    try:
        return str(Path(filename).resolve().relative_to(project_dir.resolve()))
    except ValueError:
        return filename


def parse_pytest_output(stdout: str, stderr: str = "") -> list[GateError]:
    """Parse pytest output into one error per failed or errored test."""
    errors = []
    combined = f"{stdout}\n{stderr}"

    # Pattern: FAILED tests/test_x.py::TestY::test_z - message
    failed_pattern = re.compile(
        r'^(?:FAILED|ERROR)\s+([^:\s]+)::(\S+)(?:\s+-\s+(.+))?$',
        re.MULTILINE
    )

    # Map file -> line from traceback (last occurrence wins, which is
    # typically the assertion line rather than the test setup)
    location_pattern = re.compile(r'^([^\s:]+\.py):(\d+):', re.MULTILINE)
    file_to_line: dict[str, int] = {}
    for match in location_pattern.finditer(combined):
        file_to_line[match.group(1)] = int(match.group(2))

    # Pattern: E   AssertionError: message  /  E   assert x == y
    assertion_pattern = re.compile(r'^E\s+(.+)$', re.MULTILINE)
    assertion_messages = [m.group(1).strip() for m in assertion_pattern.finditer(combined)]

    for match in failed_pattern.finditer(combined):
        filepath, test_name, message = match.groups()

        if not message and assertion_messages:
            message = assertion_messages.pop(0)

        errors.append(GateError(
            file=filepath,
            line=file_to_line.get(filepath),
            message=f"{test_name}: {message}" if message else f"{test_name} failed",
            rule=test_name,
        ))

    if not errors and ("ERROR collecting" in combined or "ModuleNotFoundError" in combined):
        import_error = re.search(
            r"ModuleNotFoundError: No module named ['\"]([^'\"]+)['\"]",
            combined
        )
        collecting = re.search(r"ERROR collecting (\S+)", combined)
        msg = (
            f"ModuleNotFoundError: missing module {import_error.group(1)}"
            if import_error else "ImportError during test collection"
        )
        errors.append(GateError(
            file=collecting.group(1) if collecting else None,
            message=msg,
        ))

    return errors


def truncate(s: str, max_len: int) -> str:
    """Truncate string, keeping the end (most relevant for errors)."""
    if len(s) <= max_len:
        return s.strip()
    return "...(truncated)\n" + s[-max_len:].strip()
