"""
Rendering and caching of pipeline results.

- format_failures: actionable failure text fed into the next agent prompt
- render_report: markdown verification report for humans
- verify cache: .forge/last-verify.json, read by the pre-commit check
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .atomic import atomic_write_text
from .types import GateError, GateResult, PipelineResult

logger = logging.getLogger(__name__)

VERIFY_CACHE_PATH = Path(".forge") / "last-verify.json"


def format_error(error: GateError) -> str:
    """One diagnostic as `file:line[:col] — message [rule]`."""
    location = error.location()
    text = f"{location} — {error.message}" if location else error.message
    if error.rule:
        text += f" [{error.rule}]"
    return text


def format_failures(result: PipelineResult) -> str:
    """
    Actionable failure text, grouped by failing gate in pipeline order.

    Passing gates are omitted. Remediation hints follow their error.
    """
    lines = [f"forge verify: {result.result}"]
    for gate in result.failed_gates():
        lines.append(f'\nGate "{gate.gate}" FAILED:')
        for error in gate.errors:
            lines.append(f"  {format_error(error)}")
            if error.remediation:
                lines.append(f"    Fix: {error.remediation}")
    return "\n".join(lines)


def _format_duration(ms: int) -> str:
    return f"{ms / 1000:.1f}s"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _gate_line(gate: GateResult) -> str:
    checkbox = "[x]" if gate.passed else "[ ]"
    status = "PASS" if gate.passed else "FAIL"
    suffix = ""
    if not gate.passed and gate.errors:
        suffix = f" — {_plural(len(gate.errors), 'error')}"
    elif gate.passed and gate.warnings:
        suffix = f" — {_plural(len(gate.warnings), 'warning')}"
    return f"- {checkbox} {gate.gate}: {status} ({_format_duration(gate.duration_ms)}){suffix}"


def render_report(result: PipelineResult, iteration: int | None = None,
                  max_iterations: int | None = None) -> str:
    """Markdown verification report."""
    lines = ["## Verification Report", f"**Status:** {result.result}"]
    if iteration is not None and max_iterations is not None:
        lines.append(f"**Iterations:** {iteration}/{max_iterations}")
    total_ms = sum(g.duration_ms for g in result.gates)
    lines.append(f"**Total Duration:** {_format_duration(total_ms)}")
    lines.append("")

    lines.append("### Gate Results")
    lines.extend(_gate_line(g) for g in result.gates)
    lines.append("")

    with_errors = [g for g in result.gates if g.errors]
    if with_errors:
        lines.append("### Errors")
        for gate in with_errors:
            lines.append(f"#### {gate.gate}")
            lines.extend(f"- {format_error(e)}" for e in gate.errors)
            lines.append("")

    with_warnings = [g for g in result.gates if g.warnings]
    if with_warnings:
        lines.append("### Warnings")
        for gate in with_warnings:
            lines.append(f"#### {gate.gate}")
            lines.extend(f"- {w}" for w in gate.warnings)
            lines.append("")

    return "\n".join(lines)


def write_verify_cache(project_dir: Path, result: PipelineResult, branch: str | None = None,
                       now: datetime | None = None) -> Path:
    """Write the verify cache atomically and return its path."""
    now = now or datetime.now(timezone.utc)
    cache = {
        "timestamp": now.isoformat(),
        "result": result.result,
        "passed": result.passed,
        "gates": {},
    }
    if branch:
        cache["branch"] = branch
    for gate in result.gates:
        entry = {
            "passed": gate.passed,
            "summary": "passed" if gate.passed else _plural(len(gate.errors), "error"),
        }
        if gate.errors:
            entry["errors"] = [e.to_dict() for e in gate.errors]
        cache["gates"][gate.gate] = entry

    path = project_dir / VERIFY_CACHE_PATH
    atomic_write_text(path, json.dumps(cache, indent=2) + "\n")
    logger.debug(f"Wrote verify cache {path}")
    return path


@dataclass
class FreshnessCheck:
    allowed: bool
    reason: str = ""


def check_verify_cache(project_dir: Path, freshness_ms: int, now: datetime | None = None) -> FreshnessCheck:
    """Decide whether the last verification passed within the freshness window."""
    path = project_dir / VERIFY_CACHE_PATH
    if not path.exists():
        return FreshnessCheck(False, "No verification found. Run `forge verify` before committing.")

    try:
        cache = json.loads(path.read_text())
        passed = cache["passed"]
        timestamp = datetime.fromisoformat(cache["timestamp"])
    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
        return FreshnessCheck(False, "Verification cache is malformed. Run `forge verify`.")

    if passed is not True:
        return FreshnessCheck(False, "Last verification FAILED. Fix errors and run `forge verify` again.")

    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    age_ms = (now - timestamp).total_seconds() * 1000
    if age_ms < 0:
        return FreshnessCheck(False, "Verification cache has an invalid timestamp. Run `forge verify`.")
    if age_ms > freshness_ms:
        return FreshnessCheck(
            False, f"Verification is stale ({round(age_ms / 60_000)}min old). Run `forge verify` again."
        )
    return FreshnessCheck(True)
