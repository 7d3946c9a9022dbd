"""
Configuration loader for forge.

Loads the per-project `.forge.json`, validates it against the bundled
schema and fills in defaults. Config is loaded once per run and is
immutable afterwards.
"""

import json
import logging
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from . import validate

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".forge.json"

DEFAULT_GATES = ("types", "lint", "tests")
DEFAULT_MAX_ITERATIONS = 5
DEFAULT_VERIFY_FRESHNESS_MS = 600_000
DEFAULT_FORGE_VERSION = "1.0.0"

# Python tooling -> gate it implies when gates are not set explicitly
TOOL_GATE_MAP = {
    "mypy": "types",
    "ruff": "lint",
    "pytest": "tests",
}

_REQ_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


class ConfigValidationError(Exception):
    """The project config is malformed. Fatal: nothing runs."""

    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"Invalid config {path}: {message}")


@dataclass(frozen=True)
class ForgeConfig:
    """Run configuration from .forge.json"""
    gates: tuple[str, ...] = DEFAULT_GATES
    gate_timeouts: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))  # ms per gate
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    verify_freshness_ms: int = DEFAULT_VERIFY_FRESHNESS_MS
    linear_team: str = ""
    forge_version: str = DEFAULT_FORGE_VERSION

    def gate_timeout(self, gate: str, default: float) -> float:
        """Timeout in seconds for a gate, falling back to the checker default."""
        ms = self.gate_timeouts.get(gate)
        if ms is None:
            return default
        return ms / 1000


def load_config(project_dir: Path) -> ForgeConfig:
    """Load .forge.json from project_dir and return ForgeConfig.

    A missing file yields the defaults. Malformed JSON or a schema
    violation raises ConfigValidationError.
    """
    config_path = project_dir / CONFIG_FILENAME
    raw: dict = {}

    if config_path.exists():
        try:
            raw = json.loads(config_path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigValidationError(config_path, f"invalid JSON: {e}") from None
        try:
            validate.validate(raw, "config")
        except validate.SchemaError as e:
            raise ConfigValidationError(config_path, f"{e.message} at {e.path}") from None
    else:
        logger.debug(f"No {CONFIG_FILENAME} in {project_dir}, using defaults")

    gates = list(raw.get("gates", DEFAULT_GATES))
    if "gates" not in raw:
        for gate in detect_gates(project_dir):
            if gate not in gates:
                gates.append(gate)

    return ForgeConfig(
        gates=tuple(gates),
        gate_timeouts=MappingProxyType(dict(raw.get("gateTimeouts", {}))),
        max_iterations=raw.get("maxIterations", DEFAULT_MAX_ITERATIONS),
        verify_freshness_ms=raw.get("verifyFreshness", DEFAULT_VERIFY_FRESHNESS_MS),
        linear_team=raw.get("linearTeam", ""),
        forge_version=raw.get("forgeVersion", DEFAULT_FORGE_VERSION),
    )


def detect_gates(project_dir: Path) -> list[str]:
    """Infer gates from the tools a pyproject.toml declares or configures."""
    pyproject = project_dir / "pyproject.toml"
    if not pyproject.exists():
        return []

    try:
        data = tomllib.loads(pyproject.read_text())
    except (tomllib.TOMLDecodeError, OSError) as e:
        logger.warning(f"Could not read {pyproject} for gate detection: {e}")
        return []

    tools = set(data.get("tool", {}).keys())
    for name in _declared_requirements(data):
        tools.add(name)

    gates = []
    for tool, gate in TOOL_GATE_MAP.items():
        if tool in tools and gate not in gates:
            gates.append(gate)
    return gates


def _declared_requirements(data: dict) -> set[str]:
    """Collect bare distribution names from every dependency list."""
    specs = list(data.get("project", {}).get("dependencies", []))
    for group in data.get("project", {}).get("optional-dependencies", {}).values():
        specs.extend(group)
    for group in data.get("dependency-groups", {}).values():
        specs.extend(s for s in group if isinstance(s, str))

    names = set()
    for spec in specs:
        match = _REQ_NAME.match(spec)
        if match:
            names.add(match.group(1).lower())
    return names
