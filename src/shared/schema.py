"""JSON Schema validation utilities."""

from typing import Any

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def check_schema(schema: dict[str, Any]) -> list[str]:
    """Return problems with a schema itself; empty when it is valid Draft 7."""
    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        return [e.message]

    problems = []
    if schema.get("type") != "object":
        problems.append("input schema must describe an object")
    properties = schema.get("properties", {})
    for name in schema.get("required", []):
        if name not in properties:
            problems.append(f"required field '{name}' is not a declared property")
    return problems


def required_fields(schema: dict[str, Any]) -> set[str]:
    return set(schema.get("required", []))


def declared_fields(schema: dict[str, Any]) -> set[str]:
    return set(schema.get("properties", {}))
