"""
JSON Schema checks for unit.json, runs.json and featureloop.yaml.

Schemas ship with the package under schemas/<name>.schema.json. Every error
the validator finds is reported, not just the first, so a hand-edited record
can be fixed in one pass.
"""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema
from jsonschema.validators import validator_for

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


class ValidationError(Exception):
    """A document didn't match its schema."""

    def __init__(self, schema_name: str, problems: list[str]):
        self.schema_name = schema_name
        self.problems = problems
        super().__init__(f"[{schema_name}] " + "; ".join(problems))


@lru_cache(maxsize=None)
def _validator(schema_name: str):
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    if not schema_path.exists():
        raise ValidationError(schema_name, [f"no schema at {schema_path}"])
    schema = json.loads(schema_path.read_text())
    cls = validator_for(schema)
    cls.check_schema(schema)
    return cls(schema)


def _describe(error: jsonschema.ValidationError) -> str:
    where = ".".join(str(p) for p in error.absolute_path) or "(root)"
    return f"{where}: {error.message}"


def validate(data: dict, schema_name: str) -> None:
    """Check data against a named schema ("unit", "runs", "config").

    Raises:
        ValidationError: Listing every violation, ordered by location.
    """
    errors = sorted(
        _validator(schema_name).iter_errors(data),
        key=lambda e: [str(p) for p in e.absolute_path],
    )
    if errors:
        raise ValidationError(schema_name, [_describe(e) for e in errors])


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Refuse to put a document on disk that wouldn't pass validate() on read."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(schema_name, [f"not writing {filepath}"] + e.problems) from None
