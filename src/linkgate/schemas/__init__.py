"""Packaged JSON schemas for linkgate config and reports."""

from linkgate.schemas.validator import SchemaRegistry, get_registry, validate_data

__all__ = ["SchemaRegistry", "get_registry", "validate_data"]
