"""Tool input schema compilation, coercion and validation."""

from toolguard.validation.schema import (
    coerce_llm_types,
    create_parameter_schema,
    create_tool_definition,
    format_validation_error,
    generate_tool_documentation,
    validate_tool_input,
)

__all__ = [
    "coerce_llm_types",
    "create_parameter_schema",
    "create_tool_definition",
    "format_validation_error",
    "generate_tool_documentation",
    "validate_tool_input",
]
