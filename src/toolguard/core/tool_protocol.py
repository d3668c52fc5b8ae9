"""Tool protocol core types.

Tools are authored with a list of ``ToolParameter`` definitions. The
validator compiles those into a JSON-Schema-like dict (``input_schema``) and
checks agent-supplied arguments against it before the tool runs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ParameterType(str, Enum):
    """Data types a tool parameter may declare."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"


class ParameterFormat(str, Enum):
    """String formats understood by the validator."""

    DATE = "date"
    DATE_TIME = "date-time"
    TIME = "time"
    EMAIL = "email"
    URI = "uri"
    UUID = "uuid"
    REGEX = "regex"


@dataclass
class ToolParameter:
    """A single parameter of a tool, as written by the tool author.

    ``items`` describes array elements; ``properties`` plus
    ``required_properties`` describe nested objects.
    """

    name: str
    description: str
    type: ParameterType | list[ParameterType]
    required: bool = False
    format: ParameterFormat | None = None
    default: Any = None
    minimum: float | None = None
    maximum: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    enum: list[Any] | None = None
    items: "ToolParameter | None" = None
    properties: "dict[str, ToolParameter] | None" = None
    required_properties: list[str] | None = None
    additional_properties: bool | None = None


@dataclass
class ToolExample:
    """Example invocation used in generated documentation."""

    input: dict[str, Any]
    description: str
    output: Any = None


@dataclass
class ToolCall:
    """Represents a tool call request from the agent."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class ToolResult:
    """Result from tool dispatch."""

    success: bool
    output: str | None = None
    error: str | None = None
    error_code: str | None = None
    data: dict[str, Any] | None = None


@dataclass
class ToolDefinition:
    """Tool definition: compiled input schema plus metadata."""

    name: str
    description: str
    input_schema: dict[str, Any]
    examples: list[ToolExample] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate tool definition structure."""
        if not isinstance(self.input_schema, dict):
            raise ValueError("Tool input schema must be a dictionary")
        if "type" not in self.input_schema:
            raise ValueError("Tool input schema must specify 'type'")


@dataclass
class ValidationErrorDetail:
    """One schema violation, addressed by its path in the input."""

    path: str
    message: str
    expected: Any = None
    actual: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path, "message": self.message}
        if self.expected is not None:
            data["expected"] = self.expected
        if self.actual is not None:
            data["actual"] = self.actual
        return data


@dataclass
class ValidationResult:
    """Outcome of validating tool input against its schema."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    error_details: list[ValidationErrorDetail] = field(default_factory=list)
    coerced_input: Any = None
