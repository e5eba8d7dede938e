"""toolweave JSON Schema definitions and validation utilities.

Schemas:
    - workflow.schema.json: Workflow DAG file (tasks, dependencies, permissions)
    - config.schema.json: Runtime configuration file
    - patterns.schema.json: One exported learned pattern (edge)

Usage:
    from toolweave.schemas import validate_workflow

    with open("workflow.json") as f:
        data = json.load(f)
    validate_workflow(data)  # Raises jsonschema.ValidationError if invalid
"""

from __future__ import annotations

import json
from functools import lru_cache
from importlib.resources import files
from typing import Any

import jsonschema


@lru_cache(maxsize=None)
def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema from the schemas package.

    Args:
        name: Schema filename (e.g., 'workflow.schema.json')

    Returns:
        Parsed JSON schema as a dictionary
    """
    schema_text = files("toolweave.schemas").joinpath(name).read_text()
    result: dict[str, Any] = json.loads(schema_text)
    return result


def get_workflow_schema() -> dict[str, Any]:
    return _load_schema("workflow.schema.json")


def get_config_schema() -> dict[str, Any]:
    return _load_schema("config.schema.json")


def get_pattern_schema() -> dict[str, Any]:
    return _load_schema("patterns.schema.json")


def validate_workflow(data: dict[str, Any]) -> None:
    """Validate a workflow file against the schema.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_workflow_schema())


def validate_config(data: dict[str, Any]) -> None:
    """Validate a configuration file against the schema.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_config_schema())


def validate_pattern(data: dict[str, Any]) -> None:
    """Validate one exported learned pattern.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_pattern_schema())


__all__ = [
    "get_workflow_schema",
    "get_config_schema",
    "get_pattern_schema",
    "validate_workflow",
    "validate_config",
    "validate_pattern",
]
