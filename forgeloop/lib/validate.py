"""
Schema validation for forge.

Every persisted document (config, status files, graph index, requirement
frontmatter) is checked against a bundled JSON Schema before it is used.
Fails hard with clear errors when data doesn't match schema.
"""

import json
from pathlib import Path

import jsonschema


class SchemaError(Exception):
    """Data did not match its schema."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.message = message
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"

# Cache loaded schemas
_schema_cache: dict[str, dict] = {}


def _load_schema(schema_name: str) -> dict:
    """Load schema by name, with caching."""
    if schema_name not in _schema_cache:
        schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise SchemaError(schema_name, f"Schema file not found: {schema_path}")
        _schema_cache[schema_name] = json.loads(schema_path.read_text())
    return _schema_cache[schema_name]


def validate(data, schema_name: str) -> None:
    """
    Validate data against named schema.

    Args:
        data: Parsed document to validate
        schema_name: Schema name (e.g., "config", "status", "graph_index")

    Raises:
        SchemaError: If validation fails
    """
    schema = _load_schema(schema_name)

    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise SchemaError(schema_name, e.message, path) from None


def validate_before_write(data, schema_name: str, filepath: Path) -> None:
    """
    Validate data before writing to file. Ensures we never write invalid data.

    Raises:
        SchemaError: If data doesn't match schema
    """
    try:
        validate(data, schema_name)
    except SchemaError as e:
        raise SchemaError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e.message}",
            e.path,
        ) from None
