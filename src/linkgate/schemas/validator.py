"""Schema registry and validation using package data only.

Schemas ship inside ``linkgate.schemas`` so validation behaves the same
regardless of the current working directory.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from importlib.resources import files
from typing import Any

from jsonschema.validators import Draft202012Validator

_SCHEMA_PACKAGE = "linkgate.schemas"
_SCHEMA_SUFFIX = ".schema.json"


@dataclass(frozen=True)
class SchemaRegistry:
    """Registry of available schemas from package data.

    Attributes:
        available: Sorted tuple of canonical schema names (without .schema.json suffix)
    """

    available: tuple[str, ...] = ()

    def __init__(self) -> None:
        names = [
            item.name[: -len(_SCHEMA_SUFFIX)]
            for item in files(_SCHEMA_PACKAGE).iterdir()
            if item.name.endswith(_SCHEMA_SUFFIX)
        ]
        object.__setattr__(self, "available", tuple(sorted(names)))

    def get_json(self, name: str) -> dict[str, Any]:
        """Load schema as parsed dictionary.

        Raises:
            KeyError: If schema not found (includes available schemas in message)
        """
        canonical = name.removesuffix(_SCHEMA_SUFFIX)
        if canonical not in self.available:
            raise KeyError(
                f"Schema '{canonical}' not found in linkgate package data.\n"
                f"Available schemas: {', '.join(self.available)}"
            )
        text = files(_SCHEMA_PACKAGE).joinpath(canonical + _SCHEMA_SUFFIX).read_text(encoding="utf-8")
        return json.loads(text)


@lru_cache(maxsize=1)
def get_registry() -> SchemaRegistry:
    """Return the process-wide schema registry."""
    return SchemaRegistry()


def validate_data(
    data: Any,
    schema_name: str,
    strict: bool = True,
) -> tuple[bool, list[str]]:
    """Validate data against a schema from package data.

    Args:
        data: Data to validate
        schema_name: Name of schema to validate against
        strict: If True, raise on validation errors; if False, return error list

    Returns:
        Tuple of (is_valid, error_messages)

    Raises:
        KeyError: If schema not found in package data
        ValueError: If validation fails and strict=True
    """
    schema = get_registry().get_json(schema_name)
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]
    if strict:
        raise ValueError(
            f"Schema validation failed for '{schema_name}':\n"
            + "\n".join(f"  - {msg}" for msg in error_messages)
        )
    return False, error_messages
