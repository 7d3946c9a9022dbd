"""
Verification gates for forge.

Provides the checker interface, the built-in Python checkers and the
pipeline that aggregates them into one verdict.
"""

from .base import Checker, CommandChecker, CommandOutput
from .checkers import LintChecker, TestsChecker, TypesChecker, default_registry
from .pipeline import MAX_ERRORS_PER_GATE, Pipeline

__all__ = [
    "Checker",
    "CommandChecker",
    "CommandOutput",
    "LintChecker",
    "TestsChecker",
    "TypesChecker",
    "default_registry",
    "MAX_ERRORS_PER_GATE",
    "Pipeline",
]
