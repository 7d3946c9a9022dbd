"""
Remediation hints for gate errors.

Maps mypy error codes, ruff rule codes and common pytest failure patterns
to short, actionable fix instructions. The hints are attached to each
GateError so the next agent iteration gets guidance, not just a symptom.
"""

import re

from forgeloop.lib.types import GateError


MYPY_CODE_MAP = {
    "arg-type": "Argument type mismatch - pass a value of the annotated parameter type or widen the annotation.",
    "assignment": "Incompatible assignment - change the variable's annotation or convert the assigned value.",
    "attr-defined": "Attribute does not exist on this type - check for a typo, add the attribute, or narrow the type first.",
    "union-attr": "Attribute access on an Optional/Union - guard with an `is not None` or isinstance check before use.",
    "call-arg": "Wrong arguments for the call - add missing arguments or remove unexpected ones to match the signature.",
    "call-overload": "No overload matches - check the argument types against each overload signature.",
    "return-value": "Returned value does not match the declared return type - fix the value or the annotation.",
    "return": "Missing return statement - return a value on every code path or annotate the function as returning None.",
    "name-defined": "Name is not defined - add the missing import or definition, or fix the spelling.",
    "import-not-found": "Module cannot be found - check the import path and that the package is installed.",
    "import-untyped": "Library has no type information - install its stubs package or add a per-module ignore in the mypy config.",
    "index": "Invalid index operation - check that the value supports indexing with this key type.",
    "operator": "Unsupported operand types - convert operands to compatible types before the operation.",
    "override": "Signature incompatible with the base class - make the override accept the same parameters and return a compatible type.",
    "no-untyped-def": "Function is missing type annotations - annotate all parameters and the return type.",
    "no-any-return": "Returning Any from a typed function - cast or annotate the value so its type is known.",
    "var-annotated": "Variable needs a type annotation - annotate the empty container, e.g. `items: list[str] = []`.",
    "misc": "Review the mypy message and fix the underlying type inconsistency.",
}

# Exact ruff codes first, then prefixes
RUFF_CODE_MAP = {
    "F401": "Remove the unused import, or re-export it explicitly via __all__.",
    "F811": "Remove the redefinition or rename one of the definitions.",
    "F821": "Undefined name - add the missing import or definition, or fix the spelling.",
    "F841": "Remove the unused local variable, or prefix it with _ if it is intentionally unused.",
    "E501": "Line too long - wrap the expression or split the string.",
    "E711": "Compare to None with `is` / `is not`, not `==` / `!=`.",
    "E712": "Do not compare to True/False with `==`; use the value directly.",
    "E722": "Do not use a bare `except:` - catch a specific exception class.",
    "E741": "Ambiguous variable name (l, O, I) - choose a descriptive name.",
    "I001": "Import block is unsorted - reorder imports (stdlib, third-party, local) or run `ruff check --fix`.",
    "B006": "Mutable default argument - default to None and create the container inside the function.",
    "B008": "Function call in default argument - move the call into the function body.",
    "B904": "Within an except block, raise with `from err` (or `from None`) to keep the cause explicit.",
    "SIM108": "Replace the if/else assignment with a conditional expression.",
}

RUFF_PREFIX_MAP = {
    "UP": "Use the modern syntax ruff suggests for the configured Python version (`ruff check --fix` can apply it).",
    "N": "Rename to follow PEP 8 naming conventions.",
    "D": "Add or fix the docstring to match the configured docstring convention.",
    "S": "Security-sensitive pattern - replace it with the safe alternative ruff describes.",
    "W": "Whitespace issue - remove trailing whitespace or fix blank lines.",
    "C4": "Simplify the comprehension or collection call as suggested.",
}

TEST_PATTERNS = [
    (re.compile(r"AssertionError|assert .* ==|\bassert\b", re.IGNORECASE),
     "Assertion failed - compare expected and actual values, then fix the implementation (not the test) to produce the expected result."),
    (re.compile(r"ModuleNotFoundError|ImportError"),
     "Import failed - check the module path, that the file exists, and that the package is installed."),
    (re.compile(r"AttributeError"),
     "Attribute missing at runtime - check the object type, spelling, and that the attribute is set before use."),
    (re.compile(r"TypeError"),
     "Runtime type error - check argument counts and types at the failing call."),
    (re.compile(r"NameError"),
     "Name not defined at runtime - add the missing import or definition."),
    (re.compile(r"KeyError"),
     "Missing key - ensure the key is populated, or use .get() with a sensible default."),
    (re.compile(r"FileNotFoundError|No such file"),
     "File not found - check the path and create any fixture or data file the test needs."),
    (re.compile(r"timeout|timed?\s*out", re.IGNORECASE),
     "Test timed out - look for infinite loops, blocking I/O or missing mocks for slow operations."),
    (re.compile(r"fixture '.*' not found"),
     "Unknown fixture - define it in the test module or conftest.py, or fix the fixture name."),
    (re.compile(r"SyntaxError|IndentationError"),
     "Syntax error - fix the invalid syntax in the referenced file."),
]


def _prefix(error: GateError) -> str:
    location = error.location()
    return f"{location}: " if location else ""


def build_type_remediation(error: GateError) -> str:
    """Remediation for a type checker (mypy) error."""
    hint = MYPY_CODE_MAP.get(error.rule or "")
    if hint:
        return f"{_prefix(error)}[{error.rule}] {hint}"
    return f"{_prefix(error)}Fix the type error: {error.message}"


def build_lint_remediation(error: GateError) -> str:
    """Remediation for a linter (ruff) error."""
    code = error.rule or ""
    hint = RUFF_CODE_MAP.get(code)
    if hint is None:
        for prefix in sorted(RUFF_PREFIX_MAP, key=len, reverse=True):
            if code.startswith(prefix) and code[len(prefix):].isdigit():
                hint = RUFF_PREFIX_MAP[prefix]
                break
    if hint:
        return f"{_prefix(error)}[{code}] {hint}"
    return f"{_prefix(error)}Fix the lint issue: {error.message}"


def build_test_remediation(error: GateError) -> str:
    """Remediation for a failing test, matched on the failure message."""
    for pattern, hint in TEST_PATTERNS:
        if pattern.search(error.message):
            return f"{_prefix(error)}{hint}"
    return f"{_prefix(error)}Fix the failing test: {error.message}"


_BUILDERS = {
    "types": build_type_remediation,
    "lint": build_lint_remediation,
    "tests": build_test_remediation,
}


def build_remediation(gate: str, error: GateError) -> str:
    """Remediation text for an error from the named gate."""
    builder = _BUILDERS.get(gate)
    if builder is None:
        return f"{_prefix(error)}Fix the {gate} error: {error.message}"
    return builder(error)
