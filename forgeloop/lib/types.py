"""
Shared data types for gate verification.

This module contains the dataclasses exchanged between checkers, the gate
pipeline, the convergence loop and the reporters. They live here to avoid
circular imports.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


PASSED = "PASSED"
FAILED = "FAILED"


@dataclass(frozen=True)
class GateError:
    """A single diagnostic produced by a gate."""
    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None
    rule: str | None = None  # Tool-specific code, e.g. "F401" or "arg-type"
    remediation: str | None = None  # Human-readable fix hint

    def location(self) -> str:
        """Return file:line[:column], or an empty string if no file is known."""
        if not self.file:
            return ""
        if self.line is None:
            return self.file
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"

    def to_dict(self) -> dict:
        data = {"message": self.message}
        for key in ("file", "line", "column", "rule", "remediation"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass(frozen=True)
class GateResult:
    """Outcome of one gate within one pipeline run."""
    gate: str
    passed: bool
    errors: tuple[GateError, ...] = ()
    warnings: tuple[str, ...] = ()
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "gate": self.gate,
            "passed": self.passed,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class PipelineResult:
    """Aggregated verdict over an ordered list of gate results.

    The result is derived from the gates: FAILED iff any gate did not pass.
    Gate order is the order the gates were requested in.
    """
    gates: tuple[GateResult, ...] = ()

    @property
    def result(self) -> str:
        return PASSED if all(g.passed for g in self.gates) else FAILED

    @property
    def passed(self) -> bool:
        return self.result == PASSED

    def failed_gates(self) -> list[GateResult]:
        return [g for g in self.gates if not g.passed]

    def to_dict(self) -> dict:
        return {
            "result": self.result,
            "gates": [g.to_dict() for g in self.gates],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class RequirementState(Enum):
    """Lifecycle of a requirement inside the convergence loop."""

    PENDING = "pending"
    RUNNING = "running"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED_EXHAUSTED = "failed_exhausted"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RequirementState.SUCCEEDED,
            RequirementState.FAILED_EXHAUSTED,
            RequirementState.BLOCKED,
        )


@dataclass
class RequirementOutcome:
    """One dispatch+verify cycle for a requirement. Not persisted."""
    requirement_id: str
    iteration: int
    pipeline_result: PipelineResult
    timestamp: datetime = field(default_factory=datetime.now)
