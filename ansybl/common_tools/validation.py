"""
JSON Schema validation utilities for Ansybl documents.

This module provides helper functions for loading and merging schemas,
building Draft 7 validators with the date-time/uuid format checks, and
turning jsonschema errors into ValidationDiagnostic values with readable
field paths, messages and suggestions.
"""

import copy
import json
import logging
import re
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from jsonschema import Draft7Validator, FormatChecker, ValidationError

from .dates import is_iso_datetime
from .diagnostics import ErrorCode, ValidationDiagnostic, code_for_keyword

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_PATH = Path(__file__).parent.parent / "schemas" / "ansybl-feed.schema.json"

_UUID_DASH_POSITIONS = (8, 13, 18, 23)

_JSON_TYPE_NAMES = {
    dict: "object",
    list: "array",
    str: "string",
    bool: "boolean",
    int: "integer",
    float: "number",
    type(None): "null",
}


def load_schema(schema_path: Path = DEFAULT_SCHEMA_PATH) -> Dict[str, Any]:
    """
    Load a JSON schema from file.

    Args:
        schema_path: Path to the schema file

    Returns:
        Loaded schema dictionary

    Raises:
        FileNotFoundError: If schema file doesn't exist
        json.JSONDecodeError: If schema file is invalid JSON
    """
    schema_path = Path(schema_path)
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema file not found: {schema_path}")

    with open(schema_path, "r", encoding="utf-8") as f:
        return json.load(f)


def merge_schemas(base_schema: Dict[str, Any], *additional_schemas: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge schema fragments into a copy of a base schema.

    Properties and definitions are merged key by key, required fields are
    appended without duplicates. The base schema is never modified.

    Args:
        base_schema: Base schema to start with
        *additional_schemas: Fragments to merge, in order

    Returns:
        Merged schema dictionary
    """
    result = copy.deepcopy(base_schema)

    for schema in additional_schemas:
        schema = copy.deepcopy(schema)

        for section in ("properties", "definitions"):
            if section in schema:
                result.setdefault(section, {}).update(schema[section])

        if "required" in schema:
            required = result.setdefault("required", [])
            required.extend(
                field for field in schema["required"]
                if field not in required
            )

    return result


def _check_uuid(instance: Any) -> bool:
    if not isinstance(instance, str):
        return True
    try:
        uuid.UUID(instance)
    except ValueError:
        return False
    return len(instance) == 36 and all(instance[position] == "-" for position in _UUID_DASH_POSITIONS)


def _check_date_time(instance: Any) -> bool:
    if not isinstance(instance, str):
        return True
    return is_iso_datetime(instance)


def build_format_checker() -> FormatChecker:
    """FormatChecker with explicit date-time and uuid checks."""
    checker = FormatChecker(formats=())
    checker.checks("date-time")(_check_date_time)
    checker.checks("uuid")(_check_uuid)
    return checker


def create_validator(schema: Dict[str, Any]) -> Draft7Validator:
    """Compile a Draft 7 validator for a schema."""
    Draft7Validator.check_schema(schema)
    return Draft7Validator(schema, format_checker=build_format_checker())


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

def join_path(parent: str, key: Union[str, int]) -> str:
    """Append a property name or array index to a field path."""
    if isinstance(key, int):
        return f"{parent}[{key}]" if parent != "root" else f"[{key}]"
    if not parent or parent == "root":
        return str(key)
    return f"{parent}.{key}"


def format_path(path: Iterable[Union[str, int]]) -> str:
    """Format a sequence of path parts as e.g. "items[0].attachments[1].url"."""
    result = "root"
    for part in path:
        result = join_path(result, part)
    return result


def extract_validation_path(error: ValidationError) -> str:
    """
    Extract a human-readable path from a validation error.

    Args:
        error: ValidationError instance

    Returns:
        Human-readable path string (e.g., "items[0].url"), or "root"
    """
    return format_path(error.absolute_path)


def json_type_name(value: Any) -> str:
    return _JSON_TYPE_NAMES.get(type(value), type(value).__name__)


# ---------------------------------------------------------------------------
# Error formatting
# ---------------------------------------------------------------------------

def _field_label(field_path: str) -> str:
    return "document" if field_path == "root" else field_path


def _pattern_kind(pattern: str) -> str:
    if pattern.startswith("^https://"):
        return "url"
    if pattern.startswith("^ed25519:"):
        return "envelope"
    if pattern.startswith("^[a-z]{2,3}"):
        return "language"
    return "other"


def human_message(error: ValidationError, field_path: str) -> str:
    """Human-readable message for a schema error."""
    keyword = error.validator
    value = error.validator_value
    field = _field_label(field_path)

    if keyword == "type":
        expected = " or ".join(value) if isinstance(value, list) else value
        return f"Field '{field}' must be {expected}, got {json_type_name(error.instance)}"

    if keyword == "format":
        if value == "date-time":
            return f"Field '{field}' must be a valid ISO 8601 date-time"
        if value == "uuid":
            return f"Field '{field}' must be a valid UUID"
        return f"Field '{field}' has invalid format: {value}"

    if keyword == "pattern":
        kind = _pattern_kind(value)
        if kind == "url":
            return f"Field '{field}' must be an HTTPS URL"
        if kind == "envelope":
            return f"Field '{field}' must be a valid ed25519 key/signature (format: ed25519:base64data)"
        if kind == "language":
            return f"Field '{field}' must be a valid language code (e.g., 'en', 'en-US')"
        return f"Field '{field}' doesn't match required pattern"

    if keyword == "minLength":
        return f"Field '{field}' is too short (minimum {value} characters)"
    if keyword == "maxLength":
        return f"Field '{field}' is too long (maximum {value} characters)"
    if keyword == "minimum":
        return f"Field '{field}' must be at least {value}"
    if keyword == "maximum":
        return f"Field '{field}' must be at most {value}"
    if keyword == "minItems":
        return f"Field '{field}' must have at least {value} entries"
    if keyword == "maxItems":
        return f"Field '{field}' must have at most {value} entries"
    if keyword == "enum":
        return f"Field '{field}' must be one of: {', '.join(map(str, value))}"

    return error.message


def suggestions_for(error: ValidationError) -> List[str]:
    """Suggestions for fixing a schema error."""
    keyword = error.validator
    value = error.validator_value

    if keyword == "format":
        if value == "date-time":
            return ["Use ISO 8601 format: 2025-11-04T10:00:00Z", "Include timezone information"]
        if value == "uuid":
            return ["Use a canonical UUID such as 123e4567-e89b-12d3-a456-426614174000"]
        return ["Check the format requirements in the documentation"]

    if keyword == "pattern":
        kind = _pattern_kind(value)
        if kind == "url":
            return ["Use HTTPS URLs only", "Example: https://example.com/path"]
        if kind == "envelope":
            return ["Use ed25519 format: ed25519:base64data", "Ensure proper base64 encoding"]
        if kind == "language":
            return ["Use an ISO 639 language code, optionally with a region (e.g., 'en-US')"]
        return ["Check the pattern requirements"]

    if keyword == "maxItems":
        return [f"Reduce the number of entries to {value} or fewer"]

    return ["Check the field value against schema requirements"]


def _missing_property_suggestions(name: str) -> List[str]:
    if name == "signature":
        return ["Add a cryptographic signature using ed25519", 'Use format: "ed25519:base64encodeddata"']
    if name == "public_key":
        return ["Add the author's ed25519 public key", "Generate key pair if needed"]
    return [f"Add the required field: {name}"]


def _declared_names(schema: Dict[str, Any]) -> Tuple[Set[str], List[str]]:
    return set(schema.get("properties", {})), list(schema.get("patternProperties", {}))


def format_schema_errors(errors: Sequence[ValidationError]) -> List[ValidationDiagnostic]:
    """
    Convert jsonschema errors into diagnostics.

    `required` errors are reported at the missing property's own path and
    `additionalProperties` errors yield one UNKNOWN_FIELD per offending key.
    """
    diagnostics: List[ValidationDiagnostic] = []
    seen: Set[Tuple[str, str]] = set()

    for error in sorted(errors, key=lambda e: [str(p) for p in e.absolute_path]):
        parent = extract_validation_path(error)

        if error.validator == "required" and isinstance(error.instance, dict):
            for name in error.validator_value:
                if name in error.instance or (parent, name) in seen:
                    continue
                seen.add((parent, name))
                diagnostics.append(ValidationDiagnostic(
                    code=ErrorCode.MISSING_REQUIRED_FIELD,
                    field=join_path(parent, name),
                    message=f"Missing required field: {name}",
                    details=error.message,
                    suggestions=_missing_property_suggestions(name),
                ))
            continue

        if error.validator == "additionalProperties" and isinstance(error.instance, dict):
            declared, patterns = _declared_names(error.schema)
            for name in error.instance:
                if name in declared or any(re.search(p, name) for p in patterns):
                    continue
                if (parent, name) in seen:
                    continue
                seen.add((parent, name))
                message = f"Unknown field '{name}'"
                if not name.startswith("_"):
                    message += ". Extension fields must start with underscore (_)"
                diagnostics.append(ValidationDiagnostic(
                    code=ErrorCode.UNKNOWN_FIELD,
                    field=join_path(parent, name),
                    message=message,
                    details=error.message,
                    suggestions=[
                        "Remove unknown fields or prefix with underscore for extensions",
                        "Check field name spelling",
                    ],
                ))
            continue

        diagnostics.append(ValidationDiagnostic(
            code=code_for_keyword(error.validator),
            field=parent,
            message=human_message(error, parent),
            details=error.message,
            suggestions=suggestions_for(error),
        ))

    return diagnostics


def validate_against_schema(
    document: Any,
    validator: Draft7Validator,
) -> List[ValidationDiagnostic]:
    """Run a compiled validator and return formatted diagnostics."""
    return format_schema_errors(list(validator.iter_errors(document)))


def reroot_path(field_path: str, prefix: str, replacement: Optional[str] = None) -> Optional[str]:
    """
    Strip a path prefix such as "items[0]".

    Returns None when the path is not under the prefix. The prefix itself
    maps to `replacement` (default "root").
    """
    if field_path == prefix:
        return replacement or "root"
    if field_path.startswith(prefix + "."):
        return field_path[len(prefix) + 1:]
    if field_path.startswith(prefix + "["):
        return field_path[len(prefix):]
    return None
