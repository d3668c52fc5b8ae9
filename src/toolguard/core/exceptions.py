"""Exception hierarchy with error codes for ToolGuard.

Policy verdicts are never exceptions: a denied command or path is a normal
result with ``allowed=False``. Exceptions are reserved for configuration
problems, tool failures, and internal confirmation errors.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar

# Codes reported back to the calling agent in ToolResult.error_code
E_NOT_FOUND = "E_NOT_FOUND"
E_VALIDATION = "E_VALIDATION"
E_PERMISSIONS = "E_PERMISSIONS"
E_TIMEOUT = "E_TIMEOUT"
E_UNSAFE = "E_UNSAFE"
E_CONFIRMED_DENY = "E_CONFIRMED_DENY"
E_TOOL_UNKNOWN = "E_TOOL_UNKNOWN"


@dataclass
class ToolGuardException(Exception):  # noqa: N818
    """Base exception for all ToolGuard errors.

    Subclasses declare ``context_fields`` (attribute name to metadata key);
    non-empty values are copied into ``metadata`` on construction so the
    error can be logged without knowing its concrete type.
    """

    default_code: ClassVar[str | None] = None
    context_fields: ClassVar[dict[str, str]] = {}

    message: str
    error_code: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.error_code is None:
            self.error_code = self.default_code
        self.metadata.update(self.context())
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def context(self) -> dict[str, Any]:
        """Type-specific fields that are set, keyed by their metadata name."""
        found: dict[str, Any] = {}
        for attr, key in self.context_fields.items():
            value = getattr(self, attr, None)
            if value:
                found[key] = value
        return found

    def describe(self) -> str:
        """One-line message suitable for showing to an operator."""
        return self.message


@dataclass
class ConfigurationError(ToolGuardException):
    """Merged configuration failed validation, or saving it failed.

    ``key`` is the dotted config path (``confirmation.timeout``); ``reason``
    a short machine-readable tag such as ``unknown_mode``.
    """

    default_code: ClassVar[str | None] = E_VALIDATION
    context_fields: ClassVar[dict[str, str]] = {"key": "config_key", "reason": "reason"}

    key: str = ""
    reason: str = ""

    def describe(self) -> str:
        if self.key:
            return f"Configuration error '{self.key}': {self.message}"
        return f"Configuration error: {self.message}"


@dataclass
class ToolExecutionError(ToolGuardException):
    """A tool handler raised after every guard check had passed."""

    context_fields: ClassVar[dict[str, str]] = {"tool_name": "tool_name", "details": "details"}

    tool_name: str = ""
    details: str | None = None

    def describe(self) -> str:
        if self.tool_name:
            return f"Tool '{self.tool_name}' failed: {self.message}"
        return f"Tool execution failed: {self.message}"


@dataclass
class ConfirmationError(ToolGuardException):
    """A strategy could not resolve a request.

    The confirmation manager catches this and treats the request as denied.
    """

    default_code: ClassVar[str | None] = E_CONFIRMED_DENY
    context_fields: ClassVar[dict[str, str]] = {"request_id": "request_id"}

    request_id: str = ""

    def describe(self) -> str:
        return f"Confirmation failed: {self.message}"


def format_error_for_user(exception: ToolGuardException) -> str:
    """Render an exception for the CLI, without internal details."""
    return exception.describe()


def format_error_for_log(exception: ToolGuardException) -> dict[str, Any]:
    """Render an exception as structured log fields.

    Type-specific context is flattened to the top level as well as kept
    under ``metadata``.
    """
    log_data: dict[str, Any] = {
        "error_type": type(exception).__name__,
        "message": exception.message,
        "error_code": exception.error_code,
    }
    if exception.metadata:
        log_data["metadata"] = exception.metadata
    log_data.update(exception.context())
    return log_data
