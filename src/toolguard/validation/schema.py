"""Tool input schemas: compile, coerce, validate and report.

Tool arguments usually come from a language model, which often sends
``"true"`` for a boolean or ``"5"`` for an integer. Input is first coerced
toward the declared types, then checked against the schema. Every
violation is collected (not just the first) with a dotted path such as
``input.options.depth`` or ``input.files[2]``.
"""

import json
import math
import re
import uuid
from dataclasses import replace
from datetime import date, datetime
from typing import Any
from urllib.parse import urlparse

from toolguard.core.tool_protocol import (
    ParameterType,
    ToolDefinition,
    ToolExample,
    ToolParameter,
    ValidationErrorDetail,
    ValidationResult,
)

ROOT_PATH = "input"

_TRUE_STRINGS = frozenset({"true", "1", "yes"})
_FALSE_STRINGS = frozenset({"false", "0", "no"})

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_TIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)
_TIME_RE = re.compile(r"^(\d{2}):(\d{2}):(\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})?$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_UUID_RE = re.compile(
    r"^(urn:uuid:)?[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_URI_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*$")


def _parameter_schema(param: ToolParameter) -> dict[str, Any]:
    if isinstance(param.type, list):
        type_value: str | list[str] = [t.value for t in param.type]
    else:
        type_value = param.type.value

    schema: dict[str, Any] = {"type": type_value, "description": param.description}

    if param.format is not None:
        schema["format"] = param.format.value
    if param.minimum is not None:
        schema["minimum"] = param.minimum
    if param.maximum is not None:
        schema["maximum"] = param.maximum
    if param.min_length is not None:
        schema["minLength"] = param.min_length
    if param.max_length is not None:
        schema["maxLength"] = param.max_length
    if param.pattern:
        schema["pattern"] = param.pattern
    if param.enum is not None:
        schema["enum"] = list(param.enum)
    if param.default is not None:
        schema["default"] = param.default

    if param.type == ParameterType.ARRAY and param.items is not None:
        schema["items"] = _parameter_schema(param.items)

    if param.type == ParameterType.OBJECT and param.properties:
        schema["properties"] = {
            name: _parameter_schema(replace(child, name=name))
            for name, child in param.properties.items()
        }
        if param.required_properties:
            schema["required"] = list(param.required_properties)
        if param.additional_properties is not None:
            schema["additionalProperties"] = param.additional_properties

    return schema


def create_parameter_schema(parameters: list[ToolParameter]) -> dict[str, Any]:
    """Compile parameter definitions into a closed object schema.

    Args:
        parameters: Parameter definitions in declaration order

    Returns:
        Schema dict with ``properties``, ``required`` and
        ``additionalProperties: False``
    """
    schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "required": [],
        "additionalProperties": False,
    }
    for param in parameters:
        schema["properties"][param.name] = _parameter_schema(param)
        if param.required:
            schema["required"].append(param.name)
    return schema


def create_tool_definition(
    name: str,
    description: str,
    parameters: list[ToolParameter],
    examples: list[ToolExample] | None = None,
    metadata: dict[str, Any] | None = None,
) -> ToolDefinition:
    """Build a ToolDefinition from parameter definitions.

    Raises:
        ValueError: If name or description is empty
    """
    if not isinstance(name, str) or not name.strip():
        raise ValueError("Tool name must be a non-empty string")
    if not isinstance(description, str) or not description.strip():
        raise ValueError("Tool description must be a non-empty string")
    if not isinstance(parameters, list):
        raise ValueError("Tool parameters must be a list")

    return ToolDefinition(
        name=name,
        description=description,
        input_schema=create_parameter_schema(parameters),
        examples=list(examples or []),
        metadata=dict(metadata or {}),
    )


def is_valid_tool_schema(schema: dict[str, Any]) -> bool:
    """Check the basic shape of a compiled input schema.

    Args:
        schema: Schema dict to check

    Returns:
        True if valid, False otherwise
    """
    try:
        if not isinstance(schema.get("type"), str | list):
            return False

        if schema["type"] == "object":
            if not isinstance(schema.get("properties", {}), dict):
                return False
            if "required" in schema and not isinstance(schema["required"], list):
                return False

        for prop_def in schema.get("properties", {}).values():
            if not isinstance(prop_def, dict) or "type" not in prop_def:
                return False

        return True

    except (KeyError, TypeError, AttributeError):
        return False


def _coerce_number(value: str, integer: bool) -> int | float | None:
    text = value.strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    if integer:
        return math.floor(number)
    return int(number) if number.is_integer() and "." not in text else number


def coerce_llm_types(schema: dict[str, Any], input: Any) -> Any:
    """Convert loosely typed top-level values toward their declared types.

    - boolean: "true"/"1"/"yes" and "false"/"0"/"no" (trimmed, any case)
    - number/integer: numeric strings (integers are floored)
    - object/array: JSON strings whose parsed value has the declared kind

    Values that cannot be converted are left as they are so that
    validation reports them. The input is not mutated.
    """
    properties = schema.get("properties")
    if not isinstance(input, dict) or not properties:
        return input

    coerced = dict(input)
    for key, prop_schema in properties.items():
        if key not in coerced or not isinstance(prop_schema, dict):
            continue

        value = coerced[key]
        expected = prop_schema.get("type")
        if not isinstance(value, str):
            continue

        if expected == "boolean":
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                coerced[key] = True
            elif lowered in _FALSE_STRINGS:
                coerced[key] = False

        elif expected in ("number", "integer"):
            number = _coerce_number(value, integer=expected == "integer")
            if number is not None:
                coerced[key] = number

        elif expected in ("object", "array"):
            try:
                parsed = json.loads(value)
            except ValueError:
                continue
            if expected == "object" and isinstance(parsed, dict):
                coerced[key] = parsed
            elif expected == "array" and isinstance(parsed, list):
                coerced[key] = parsed

    return coerced


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list | tuple):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _matches_type(value: Any, expected: str) -> bool:
    if expected == "integer":
        if isinstance(value, bool):
            return False
        return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
    if expected == "number":
        return isinstance(value, int | float) and not isinstance(value, bool)
    return _json_type(value) == expected


def _enum_contains(allowed: list[Any], value: Any) -> bool:
    # 1 == True in Python; JSON treats them as different values
    return any(
        candidate == value and isinstance(candidate, bool) == isinstance(value, bool)
        for candidate in allowed
    )


def _is_valid_date(value: str) -> bool:
    if not _DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _is_valid_date_time(value: str) -> bool:
    if not _DATE_TIME_RE.match(value):
        return False
    try:
        datetime.fromisoformat(value.replace("z", "Z"))
    except ValueError:
        return False
    return True


def _is_valid_time(value: str) -> bool:
    match = _TIME_RE.match(value)
    if not match:
        return False
    hour, minute, second = (int(match.group(i)) for i in range(1, 4))
    # Leap seconds are allowed
    return hour <= 23 and minute <= 59 and second <= 60


def _is_valid_uri(value: str) -> bool:
    parsed = urlparse(value)
    if not parsed.scheme or not _URI_SCHEME_RE.match(parsed.scheme):
        return False
    if any(ch.isspace() for ch in value):
        return False
    return bool(parsed.netloc or parsed.path)


def _is_valid_uuid(value: str) -> bool:
    if not _UUID_RE.match(value):
        return False
    try:
        uuid.UUID(value.removeprefix("urn:uuid:"))
    except ValueError:
        return False
    return True


def _is_valid_regex(value: str) -> bool:
    try:
        re.compile(value)
    except re.error:
        return False
    return True


FORMAT_CHECKERS = {
    "date": _is_valid_date,
    "date-time": _is_valid_date_time,
    "time": _is_valid_time,
    "email": lambda v: bool(_EMAIL_RE.match(v)),
    "uri": _is_valid_uri,
    "uuid": _is_valid_uuid,
    "regex": _is_valid_regex,
}


def _validate_node(
    schema: dict[str, Any], value: Any, path: str, details: list[ValidationErrorDetail]
) -> None:
    declared = schema.get("type")
    if declared is not None:
        expected_types = declared if isinstance(declared, list) else [declared]
        if not any(_matches_type(value, t) for t in expected_types):
            expected = ",".join(expected_types)
            details.append(
                ValidationErrorDetail(
                    path=path,
                    message=f"{path} must be {expected}",
                    expected=expected,
                    actual=_json_type(value),
                )
            )
            return

    if "enum" in schema and not _enum_contains(schema["enum"], value):
        allowed = schema["enum"]
        details.append(
            ValidationErrorDetail(
                path=path,
                message=f"{path} must be one of: {', '.join(str(v) for v in allowed)}",
                expected=allowed,
                actual=value,
            )
        )

    if isinstance(value, str):
        _validate_string(schema, value, path, details)
    elif isinstance(value, int | float) and not isinstance(value, bool):
        _validate_number(schema, value, path, details)
    elif isinstance(value, list | tuple):
        items_schema = schema.get("items")
        if isinstance(items_schema, dict):
            for index, item in enumerate(value):
                _validate_node(items_schema, item, f"{path}[{index}]", details)
    elif isinstance(value, dict):
        _validate_object(schema, value, path, details)


def _validate_string(
    schema: dict[str, Any], value: str, path: str, details: list[ValidationErrorDetail]
) -> None:
    fmt = schema.get("format")
    checker = FORMAT_CHECKERS.get(fmt) if fmt else None
    if checker is not None and not checker(value):
        details.append(
            ValidationErrorDetail(
                path=path, message=f"{path} must be a valid {fmt}", expected=fmt, actual=value
            )
        )

    min_length = schema.get("minLength")
    if min_length is not None and len(value) < min_length:
        details.append(
            ValidationErrorDetail(
                path=path,
                message=f"{path} must NOT have fewer than {min_length} characters",
                expected=min_length,
                actual=len(value),
            )
        )

    max_length = schema.get("maxLength")
    if max_length is not None and len(value) > max_length:
        details.append(
            ValidationErrorDetail(
                path=path,
                message=f"{path} must NOT have more than {max_length} characters",
                expected=max_length,
                actual=len(value),
            )
        )

    pattern = schema.get("pattern")
    if pattern and not re.search(pattern, value):
        details.append(
            ValidationErrorDetail(
                path=path,
                message=f"{path} must match pattern: {pattern}",
                expected=pattern,
                actual=value,
            )
        )


def _validate_number(
    schema: dict[str, Any], value: float, path: str, details: list[ValidationErrorDetail]
) -> None:
    minimum = schema.get("minimum")
    if minimum is not None and value < minimum:
        details.append(
            ValidationErrorDetail(
                path=path, message=f"{path} must be >= {minimum}", expected=minimum, actual=value
            )
        )

    maximum = schema.get("maximum")
    if maximum is not None and value > maximum:
        details.append(
            ValidationErrorDetail(
                path=path, message=f"{path} must be <= {maximum}", expected=maximum, actual=value
            )
        )


def _validate_object(
    schema: dict[str, Any], value: dict[str, Any], path: str, details: list[ValidationErrorDetail]
) -> None:
    for name in schema.get("required", []):
        if name not in value:
            details.append(
                ValidationErrorDetail(
                    path=f"{path}.{name}",
                    message=f"Missing required parameter: {name}",
                    expected="defined",
                    actual="undefined",
                )
            )

    properties = schema.get("properties", {})
    for name, prop_schema in properties.items():
        if name in value and isinstance(prop_schema, dict):
            _validate_node(prop_schema, value[name], f"{path}.{name}", details)

    if schema.get("additionalProperties") is False:
        for name in value:
            if name not in properties:
                details.append(
                    ValidationErrorDetail(
                        path=f"{path}.{name}", message=f"Unexpected property: {name}"
                    )
                )


def validate_tool_input(schema: dict[str, Any], input: Any) -> ValidationResult:
    """Coerce then validate tool input against its schema.

    Args:
        schema: Compiled input schema
        input: Raw arguments from the caller

    Returns:
        ValidationResult with every violation found and the coerced input
    """
    try:
        coerced = coerce_llm_types(schema, input)
        details: list[ValidationErrorDetail] = []
        _validate_node(schema, coerced, ROOT_PATH, details)
    except (TypeError, ValueError, AttributeError, re.error) as e:
        return ValidationResult(valid=False, errors=[f"Validation error: {e}"])

    if details:
        return ValidationResult(
            valid=False,
            errors=[d.message for d in details],
            error_details=details,
            coerced_input=coerced,
        )
    return ValidationResult(valid=True, coerced_input=coerced)


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def format_validation_error(
    result: ValidationResult, tool_name: str, schema: dict[str, Any], input: Any
) -> str:
    """Render a failed ValidationResult as a report the agent can act on.

    Returns an empty string for a valid result.
    """
    if result.valid:
        return ""

    lines = [f'Invalid input for tool "{tool_name}":', ""]

    if result.errors:
        lines.append("Errors:")
        lines.extend(f"  {i}. {error}" for i, error in enumerate(result.errors, start=1))
        lines.append("")

    if result.error_details:
        lines.append("Details:")
        for detail in result.error_details:
            lines.append(f"  - {detail.path}: {detail.message}")
            if detail.expected is not None:
                lines.append(f"    Expected: {json.dumps(detail.expected, default=str)}")
            if detail.actual is not None:
                lines.append(f"    Actual: {json.dumps(detail.actual, default=str)}")
        lines.append("")

    lines.append("Expected schema:")
    lines.append(_dump(schema))
    lines.append("")
    lines.append("Received input:")
    lines.append(_dump(input))

    return "\n".join(lines)


def generate_tool_documentation(tool: ToolDefinition) -> str:
    """Markdown reference for a tool: parameters, constraints and examples."""
    schema = tool.input_schema
    lines = [f"## {tool.name}", "", tool.description, "", "### Parameters:", ""]

    required = set(schema.get("required", []))
    for name, prop in schema.get("properties", {}).items():
        marker = " (required)" if name in required else " (optional)"
        lines.append(f"- **{name}**{marker}: {prop.get('description') or 'No description'}")
        prop_type = prop.get("type")
        lines.append(f"  - Type: {' | '.join(prop_type) if isinstance(prop_type, list) else prop_type}")

        if "format" in prop:
            lines.append(f"  - Format: {prop['format']}")
        if "enum" in prop:
            lines.append(f"  - Values: {', '.join(str(v) for v in prop['enum'])}")
        if "minimum" in prop:
            lines.append(f"  - Minimum: {prop['minimum']}")
        if "maximum" in prop:
            lines.append(f"  - Maximum: {prop['maximum']}")
        if "minLength" in prop:
            lines.append(f"  - Min length: {prop['minLength']}")
        if "maxLength" in prop:
            lines.append(f"  - Max length: {prop['maxLength']}")
        if "pattern" in prop:
            lines.append(f"  - Pattern: {prop['pattern']}")
        if "default" in prop:
            lines.append(f"  - Default: {json.dumps(prop['default'], default=str)}")
        lines.append("")

    if tool.examples:
        lines.extend(["### Examples:", ""])
        for i, example in enumerate(tool.examples, start=1):
            lines.append(f"#### Example {i}: {example.description}")
            lines.extend(["```json", _dump(example.input), "```"])
            if example.output is not None:
                lines.extend(["Output:", "```json", _dump(example.output), "```"])
            lines.append("")

    return "\n".join(lines)
