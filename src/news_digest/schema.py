"""Helpers to load and validate the JSON schemas for model responses."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import ValidationError

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"

SUMMARY_SCHEMA = "summary_result.json"
CATEGORY_SUGGESTION_SCHEMA = "category_suggestion.json"


def schema_path(name: str) -> Path:
    """Return the path to a packaged schema file."""
    return SCHEMAS_DIR / name


@lru_cache(maxsize=None)
def load_schema(name: str = SUMMARY_SCHEMA) -> Dict[str, Any]:
    """Load and cache a packaged schema as a dictionary."""
    return json.loads(schema_path(name).read_text(encoding="utf-8"))


def format_errors(errors: Iterable[ValidationError]) -> str:
    """Turn jsonschema errors into a concise human-readable string."""
    parts = []
    for err in sorted(errors, key=lambda e: [str(p) for p in e.absolute_path]):
        location = ".".join(str(piece) for piece in err.absolute_path) or "<root>"
        parts.append(f"{location}: {err.message}")
    return "; ".join(parts)


def validate_payload(
    payload: Any, name: str = SUMMARY_SCHEMA, schema: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Validate a decoded JSON payload against a packaged schema.

    Raises ValueError with a readable message if validation fails.
    """
    schema_dict = schema or load_schema(name)
    validator = Draft202012Validator(schema_dict, format_checker=FormatChecker())
    errors = list(validator.iter_errors(payload))
    if errors:
        raise ValueError(f"Schema validation failed: {format_errors(errors)}")
    return payload
