"""Guarded tool framework and registry.

Defines the abstract tool interface and the registry that runs every call
through input validation, the security guard and, when needed, the
confirmation manager before the tool's own ``execute`` is reached.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from toolguard.core.config import SecurityConfig
from toolguard.core.events import EventBus, EventType, GuardEvent
from toolguard.core.exceptions import (
    E_CONFIRMED_DENY,
    E_PERMISSIONS,
    E_TOOL_UNKNOWN,
    E_UNSAFE,
    E_VALIDATION,
    ToolExecutionError,
)
from toolguard.core.logger import ToolGuardLogger, get_logger
from toolguard.core.tool_protocol import ToolCall, ToolDefinition, ToolResult
from toolguard.core.types import RiskLevel, SecurityContext
from toolguard.security.confirmation import (
    DEFAULT_TIMEOUT_MS,
    ConfirmationDetails,
    ConfirmationManager,
    ConfirmationType,
)
from toolguard.security.guard import PathOperation, SecurityGuard
from toolguard.validation.schema import (
    format_validation_error,
    is_valid_tool_schema,
    validate_tool_input,
)


@dataclass
class GuardTarget:
    """The side effect of a tool call that the guard must classify.

    Set ``command`` for shell execution or ``path`` (with ``operation``)
    for filesystem access.
    """

    command: str | None = None
    path: str | None = None
    operation: PathOperation = "read"

    def __post_init__(self) -> None:
        if (self.command is None) == (self.path is None):
            raise ValueError("GuardTarget needs exactly one of command or path")


@dataclass
class ToolContext:
    """Context provided to tools during execution."""

    security: SecurityContext
    logger: ToolGuardLogger
    guard: SecurityGuard
    event_bus: EventBus | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class BaseTool(ABC):
    """Abstract base class for guarded tools.

    To create a new tool:
    1. Subclass BaseTool
    2. Implement execute() and get_definition()
    3. Override get_guard_target() if the tool runs commands or touches files
    4. Register with ToolRegistry
    """

    @abstractmethod
    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        """Execute the tool with already validated and coerced arguments.

        Raises:
            ToolExecutionError: On execution failures
        """
        raise NotImplementedError

    @abstractmethod
    def get_definition(self) -> ToolDefinition:
        """Get the tool's definition (name, description and input schema)."""
        raise NotImplementedError

    def get_guard_target(self, arguments: dict[str, Any]) -> GuardTarget | None:
        """Describe the command or path this call would act on.

        Tools without side effects keep the default (None) and skip the guard.
        """
        return None

    def get_name(self) -> str:
        return self.get_definition().name

    def get_description(self) -> str:
        return self.get_definition().description


class ToolRegistry:
    """Registry for guarded tools.

    ``execute`` is the single entry point for an agent's tool call:

    1. unknown tool -> E_TOOL_UNKNOWN
    2. schema validation with coercion -> E_VALIDATION
    3. guard classification of the tool's command or path -> E_UNSAFE / E_PERMISSIONS
    4. confirmation when the verdict asks for it -> E_CONFIRMED_DENY
    5. the tool handler, called with the coerced arguments

    Steps 3 and 4 are skipped when security is disabled in the config.
    """

    def __init__(
        self,
        guard: SecurityGuard,
        confirmation_manager: ConfirmationManager,
        config: SecurityConfig | None = None,
        logger: ToolGuardLogger | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        """Initialize tool registry.

        Args:
            guard: Guard used to classify commands and paths
            confirmation_manager: Manager resolving confirmations
            config: Security config (default: built-in defaults)
            logger: Logger instance (default: shared logger)
            event_bus: Bus for blocked/rejected events (default: the manager's)
        """
        self.guard = guard
        self.confirmation_manager = confirmation_manager
        self.config = config or SecurityConfig()
        self.logger = logger or get_logger()
        self.event_bus = event_bus or confirmation_manager.event_bus
        self._tools: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        """Register a tool.

        Raises:
            ValueError: If the name is taken or the input schema is malformed
        """
        definition = tool.get_definition()
        if definition.name in self._tools:
            raise ValueError(f"Tool already registered: {definition.name}")
        if not is_valid_tool_schema(definition.input_schema):
            raise ValueError(f"Tool {definition.name} has an invalid input schema")

        self._tools[definition.name] = tool
        self.logger.debug("Tool registered", tool_name=definition.name)

    def unregister(self, name: str) -> bool:
        """Remove a tool. Returns False if it was not registered."""
        if self._tools.pop(name, None) is None:
            return False
        self.logger.debug("Tool unregistered", tool_name=name)
        return True

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def get_definitions(self) -> list[ToolDefinition]:
        return [tool.get_definition() for tool in self._tools.values()]

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def clear(self) -> None:
        self._tools.clear()
        self.logger.debug("Tool registry cleared")

    async def execute(self, call: ToolCall, context: SecurityContext) -> ToolResult:
        """Run a tool call through validation, the guard and confirmation.

        Args:
            call: Tool call from the agent
            context: Who is asking

        Returns:
            ToolResult from the tool, or a failed result with an error code

        Raises:
            ToolExecutionError: If the tool handler itself fails
        """
        log_fields = {"tool_name": call.name, **context.as_log_fields()}

        tool = self._tools.get(call.name)
        if tool is None:
            self.logger.warn("Unknown tool requested", **log_fields)
            return ToolResult(
                success=False,
                error=f"Unknown tool: {call.name}",
                error_code=E_TOOL_UNKNOWN,
            )

        definition = tool.get_definition()
        validation = validate_tool_input(definition.input_schema, call.arguments)
        if not validation.valid:
            self.logger.warn("Tool input rejected", errors=validation.errors, **log_fields)
            self._publish(
                "tool_input_rejected", {"errors": validation.errors, **log_fields}
            )
            return ToolResult(
                success=False,
                error=format_validation_error(
                    validation, call.name, definition.input_schema, call.arguments
                ),
                error_code=E_VALIDATION,
                data={"errors": [d.to_dict() for d in validation.error_details]},
            )

        arguments = validation.coerced_input

        if self.config.enabled:
            target = tool.get_guard_target(arguments)
            if target is not None:
                denied = await self._authorize(target, definition, context, log_fields)
                if denied is not None:
                    return denied

        tool_context = ToolContext(
            security=context, logger=self.logger, guard=self.guard, event_bus=self.event_bus
        )
        try:
            self.logger.debug("Executing tool", **log_fields)
            result = await tool.execute(
                ToolCall(id=call.id, name=call.name, arguments=arguments), tool_context
            )
            self.logger.info("Tool executed", success=result.success, **log_fields)
            return result
        except ToolExecutionError:
            raise
        except Exception as e:
            self.logger.error("Tool execution failed", exc_info=True, error=str(e), **log_fields)
            raise ToolExecutionError(
                message=f"Tool {call.name} failed: {e}",
                tool_name=call.name,
                details=type(e).__name__,
            ) from e

    async def _authorize(
        self,
        target: GuardTarget,
        definition: ToolDefinition,
        context: SecurityContext,
        log_fields: dict[str, Any],
    ) -> ToolResult | None:
        """Classify the target and confirm if needed. Returns a failed result on denial."""
        forced = bool(definition.metadata.get("requires_confirmation"))

        if target.command is not None:
            verdict = self.guard.validate_command(target.command, context)
            if not verdict.allowed:
                self._publish(
                    "command_blocked",
                    {"command": target.command, "reason": verdict.reason, **log_fields},
                )
                return ToolResult(success=False, error=verdict.reason, error_code=E_UNSAFE)

            risk_level = verdict.risk_level or RiskLevel.LOW
            needs_confirmation = (
                verdict.requires_confirmation
                or forced
                or risk_level.value in self.config.confirmation.require_confirmation_for
            )
            if not needs_confirmation:
                return None
            confirmation_type = ConfirmationType.COMMAND
            operation = "execute_command"
            details = ConfirmationDetails(
                risk_level=risk_level,
                reason=verdict.reason or "Command requires confirmation",
                command=target.command,
            )
        else:
            path_verdict = self.guard.validate_path(target.path or "", target.operation)
            if not path_verdict.allowed:
                self._publish(
                    "path_blocked",
                    {
                        "path": target.path,
                        "operation": target.operation,
                        "reason": path_verdict.reason,
                        **log_fields,
                    },
                )
                return ToolResult(
                    success=False, error=path_verdict.reason, error_code=E_PERMISSIONS
                )

            if not forced:
                return None
            confirmation_type = ConfirmationType.FILE_OPERATION
            operation = f"{target.operation}_file"
            details = ConfirmationDetails(
                risk_level=RiskLevel.HIGH if target.operation == "delete" else RiskLevel.MEDIUM,
                reason=f"Tool {definition.name} requires confirmation",
                path=path_verdict.resolved_path or target.path,
                action=target.operation,
            )

        timeout_ms = self.config.confirmation.timeout
        approved = await self.confirmation_manager.request_confirmation(
            confirmation_type,
            operation,
            details,
            context,
            timeout_ms=DEFAULT_TIMEOUT_MS if timeout_ms is None else timeout_ms,
        )
        if not approved:
            self.logger.warn("Operation not confirmed", **log_fields)
            return ToolResult(
                success=False, error="Operation not confirmed", error_code=E_CONFIRMED_DENY
            )
        return None

    def _publish(self, event_type: EventType, data: dict[str, Any]) -> None:
        self.event_bus.publish(GuardEvent(type=event_type, data=data))
