"""
JSON Schema checks for storyloop's files.

Two documents are validated: prd.json (on every load and before every
rewrite) and a run's result.json (before it is written). Schemas live in
storyloop/schemas/<name>.schema.json.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema.exceptions import best_match

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


class ValidationError(Exception):
    """A document does not match its schema (or could not be read)."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        location = f" at {path}" if path else ""
        super().__init__(f"[{schema_name}] {message}{location}")


@lru_cache(maxsize=None)
def _validator(schema_name: str):
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    try:
        schema = json.loads(schema_path.read_text())
    except FileNotFoundError:
        raise ValidationError(schema_name, f"Schema file not found: {schema_path}") from None
    cls = jsonschema.validators.validator_for(schema)
    cls.check_schema(schema)
    return cls(schema)


def validate(data: Any, schema_name: str) -> None:
    """Raise ValidationError describing the most relevant schema violation."""
    error = best_match(_validator(schema_name).iter_errors(data))
    if error is None:
        return
    path = ".".join(str(p) for p in error.absolute_path) or "(root)"
    raise ValidationError(schema_name, error.message, path)


def validate_file(filepath: Path, schema_name: str) -> dict:
    """Read a JSON file and validate it. Returns the parsed document."""
    try:
        text = filepath.read_text()
    except FileNotFoundError:
        raise ValidationError(schema_name, f"File not found: {filepath}") from None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(schema_name, f"Invalid JSON in {filepath}: {e}") from None

    validate(data, schema_name)
    return data


def validate_before_write(data: Any, schema_name: str, filepath: Path) -> None:
    """Guard for writers: invalid data never reaches filepath."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e}"
        ) from None
