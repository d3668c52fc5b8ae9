"""Unit tests for tool protocol types."""

import pytest

from toolguard.core.tool_protocol import (
    ParameterType,
    ToolDefinition,
    ToolParameter,
    ToolResult,
    ValidationErrorDetail,
    ValidationResult,
)


class TestToolDefinition:
    """Test ToolDefinition checks."""

    def test_valid_definition(self):
        """Test a definition with an object schema."""
        definition = ToolDefinition(
            name="file_read",
            description="Read a file",
            input_schema={"type": "object", "properties": {}},
        )

        assert definition.examples == []
        assert definition.metadata == {}

    def test_schema_must_be_dict(self):
        """Test non-dict schemas are rejected."""
        with pytest.raises(ValueError, match="must be a dictionary"):
            ToolDefinition(name="x", description="x", input_schema=["object"])  # type: ignore[arg-type]

    def test_schema_needs_type(self):
        """Test schemas without a type are rejected."""
        with pytest.raises(ValueError, match="must specify 'type'"):
            ToolDefinition(name="x", description="x", input_schema={"properties": {}})


def test_parameter_type_values():
    assert ParameterType("integer") is ParameterType.INTEGER
    param = ToolParameter(name="tags", description="Tags", type=[ParameterType.STRING, ParameterType.NULL])
    assert param.required is False
    assert param.items is None


def test_error_detail_omits_unset_fields():
    detail = ValidationErrorDetail(path="input.count", message="must be >= 1")
    assert detail.to_dict() == {"path": "input.count", "message": "must be >= 1"}

    typed = ValidationErrorDetail(path="input.count", message="wrong type", expected="integer", actual="string")
    assert typed.to_dict()["expected"] == "integer"
    assert typed.to_dict()["actual"] == "string"


def test_result_defaults():
    assert ToolResult(success=True).error_code is None
    result = ValidationResult(valid=True)
    assert result.errors == []
    assert result.error_details == []
    assert result.coerced_input is None
