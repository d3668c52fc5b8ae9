"""Tests for the guarded tool registry."""

from typing import Any

import pytest

from toolguard.core.config import SecurityConfig
from toolguard.core.events import GuardEvent
from toolguard.core.exceptions import (
    E_CONFIRMED_DENY,
    E_PERMISSIONS,
    E_TOOL_UNKNOWN,
    E_UNSAFE,
    E_VALIDATION,
    ToolExecutionError,
)
from toolguard.core.tool_protocol import (
    ParameterType,
    ToolCall,
    ToolDefinition,
    ToolParameter,
    ToolResult,
)
from toolguard.core.types import Platform, RiskLevel, SecurityContext
from toolguard.security.confirmation import (
    ConfirmationManager,
    ConfirmationStrategy,
    ConfirmationType,
    LoggingConfirmationStrategy,
    PolicyConfirmationStrategy,
)
from toolguard.security.guard import SecurityGuard
from toolguard.tools.base import BaseTool, GuardTarget, ToolContext, ToolRegistry
from toolguard.validation.schema import create_tool_definition


class RecordingStrategy(ConfirmationStrategy):
    """Strategy that records every request and returns a fixed answer."""

    def __init__(self, approve: bool = True):
        self.approve = approve
        self.requests = []

    async def decide(self, request):
        self.requests.append(request)
        return self.approve


class CommandTool(BaseTool):
    """Reports the command it would run instead of running it."""

    def __init__(self, name: str = "run", metadata: dict[str, Any] | None = None):
        self.name = name
        self.metadata = metadata
        self.calls: list[ToolCall] = []

    def get_definition(self) -> ToolDefinition:
        return create_tool_definition(
            self.name,
            "Run a command",
            [
                ToolParameter("command", "Command", ParameterType.STRING, required=True),
                ToolParameter("retries", "Retries", ParameterType.INTEGER),
            ],
            metadata=self.metadata,
        )

    def get_guard_target(self, arguments):
        return GuardTarget(command=arguments["command"])

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        self.calls.append(call)
        return ToolResult(success=True, output=f"ran {call.arguments['command']}")


class PathTool(BaseTool):
    def __init__(self, operation: str = "write", requires_confirmation: bool = False):
        self.operation = operation
        self.requires_confirmation = requires_confirmation
        self.executed = False

    def get_definition(self) -> ToolDefinition:
        return create_tool_definition(
            f"path_{self.operation}",
            "Touch a path",
            [ToolParameter("path", "Path", ParameterType.STRING, required=True)],
            metadata={"requires_confirmation": self.requires_confirmation},
        )

    def get_guard_target(self, arguments):
        return GuardTarget(path=arguments["path"], operation=self.operation)

    async def execute(self, call, context):
        self.executed = True
        return ToolResult(success=True)


class PureTool(BaseTool):
    """No side effects, so the guard is never consulted."""

    def __init__(self, error: Exception | None = None):
        self.error = error

    def get_definition(self) -> ToolDefinition:
        return create_tool_definition(
            "echo_args", "Echo arguments", [ToolParameter("flag", "Flag", ParameterType.BOOLEAN)]
        )

    async def execute(self, call, context):
        if self.error is not None:
            raise self.error
        return ToolResult(success=True, data=dict(call.arguments))


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def context():
    return SecurityContext(agent_id="agent-1", channel_id="chan-1", request_id="req-1")


def make_registry(project, strategy, config=None, tools=()):
    config = config or SecurityConfig()
    manager = ConfirmationManager(strategy=strategy)
    registry = ToolRegistry(SecurityGuard(project, platform=Platform.LINUX), manager, config=config)
    for tool in tools:
        registry.register(tool)
    events: list[GuardEvent] = []
    registry.event_bus.subscribe(events.append)
    return registry, events


def call(name, **arguments):
    return ToolCall(id="call-1", name=name, arguments=arguments)


class TestGuardTarget:
    def test_requires_exactly_one_target(self):
        with pytest.raises(ValueError):
            GuardTarget()
        with pytest.raises(ValueError):
            GuardTarget(command="ls", path="a.txt")
        assert GuardTarget(path="a.txt").operation == "read"


class TestRegistration:
    def test_register_and_lookup(self, project):
        tool = CommandTool()
        registry, _ = make_registry(project, RecordingStrategy(), tools=[tool])

        assert registry.has("run")
        assert registry.get("run") is tool
        assert registry.list_tools() == ["run"]
        assert [d.name for d in registry.get_definitions()] == ["run"]
        assert tool.get_name() == "run"
        assert tool.get_description() == "Run a command"

    def test_duplicate_name_rejected(self, project):
        registry, _ = make_registry(project, RecordingStrategy(), tools=[CommandTool()])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(CommandTool())

    def test_invalid_schema_rejected(self, project):
        class BrokenTool(PureTool):
            def get_definition(self):
                return ToolDefinition(
                    name="broken",
                    description="Broken",
                    input_schema={"type": "object", "properties": {"x": "string"}},
                )

        registry, _ = make_registry(project, RecordingStrategy())
        with pytest.raises(ValueError, match="invalid input schema"):
            registry.register(BrokenTool())

    def test_unregister_and_clear(self, project):
        registry, _ = make_registry(project, RecordingStrategy(), tools=[CommandTool(), PureTool()])

        assert registry.unregister("run") is True
        assert registry.unregister("run") is False
        assert registry.list_tools() == ["echo_args"]

        registry.clear()
        assert registry.list_tools() == []


class TestExecutePipeline:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, project, context):
        registry, _ = make_registry(project, RecordingStrategy())
        result = await registry.execute(call("missing"), context)
        assert result.success is False
        assert result.error_code == E_TOOL_UNKNOWN
        assert result.error == "Unknown tool: missing"

    @pytest.mark.asyncio
    async def test_invalid_input(self, project, context):
        tool = CommandTool()
        strategy = RecordingStrategy()
        registry, events = make_registry(project, strategy, tools=[tool])

        result = await registry.execute(call("run", retries="several"), context)

        assert result.error_code == E_VALIDATION
        assert result.error.startswith('Invalid input for tool "run":')
        assert [e["message"] for e in result.data["errors"]] == [
            "Missing required parameter: command",
            "input.retries must be integer",
        ]
        assert [e.type for e in events] == ["tool_input_rejected"]
        assert tool.calls == []
        assert strategy.requests == []

    @pytest.mark.asyncio
    async def test_handler_gets_coerced_arguments(self, project, context):
        registry, _ = make_registry(project, RecordingStrategy(), tools=[PureTool()])
        result = await registry.execute(call("echo_args", flag="yes"), context)
        assert result.success is True
        assert result.data == {"flag": True}

    @pytest.mark.asyncio
    async def test_blocked_command_never_reaches_confirmation(self, project, context):
        tool = CommandTool()
        strategy = RecordingStrategy(approve=True)
        registry, events = make_registry(project, strategy, tools=[tool])

        result = await registry.execute(call("run", command="sudo rm -rf /"), context)

        assert result.success is False
        assert result.error_code == E_UNSAFE
        assert strategy.requests == []
        assert registry.confirmation_manager.history == []
        assert tool.calls == []
        [event] = events
        assert event.type == "command_blocked"
        assert event.data["command"] == "sudo rm -rf /"
        assert event.data["agent_id"] == "agent-1"

    @pytest.mark.asyncio
    async def test_safe_command_runs_without_confirmation(self, project, context):
        tool = CommandTool()
        strategy = RecordingStrategy()
        registry, _ = make_registry(project, strategy, tools=[tool])

        result = await registry.execute(call("run", command="git status"), context)

        assert result.success is True
        assert strategy.requests == []
        assert len(tool.calls) == 1

    @pytest.mark.asyncio
    async def test_policy_approves_package_query(self, project, context):
        tool = CommandTool()
        registry, _ = make_registry(project, PolicyConfirmationStrategy(project_root=project), tools=[tool])

        result = await registry.execute(call("run", command="npm list"), context)

        assert result.success is True
        assert result.output == "ran npm list"
        [request] = registry.confirmation_manager.history
        assert request.type is ConfirmationType.COMMAND
        assert request.details.risk_level is RiskLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_denied_confirmation(self, project, context):
        tool = CommandTool()
        registry, _ = make_registry(project, PolicyConfirmationStrategy(project_root=project), tools=[tool])

        result = await registry.execute(call("run", command="make-release --all"), context)

        assert result.success is False
        assert result.error_code == E_CONFIRMED_DENY
        assert result.error == "Operation not confirmed"
        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_require_confirmation_for_low_risk(self, project, context):
        config = SecurityConfig.from_dict({"confirmation": {"requireConfirmationFor": ["low"]}})
        strategy = RecordingStrategy(approve=False)
        registry, _ = make_registry(project, strategy, config=config, tools=[CommandTool()])

        result = await registry.execute(call("run", command="ls"), context)

        assert result.error_code == E_CONFIRMED_DENY
        assert strategy.requests[0].details.risk_level is RiskLevel.LOW

    @pytest.mark.asyncio
    async def test_tool_metadata_forces_confirmation(self, project, context):
        strategy = RecordingStrategy()
        tool = CommandTool(metadata={"requires_confirmation": True})
        registry, _ = make_registry(project, strategy, tools=[tool])

        result = await registry.execute(call("run", command="ls"), context)

        assert result.success is True
        assert len(strategy.requests) == 1

    @pytest.mark.asyncio
    async def test_confirmation_timeout_comes_from_config(self, project, context):
        config = SecurityConfig.from_dict({"confirmation": {"timeout": 1234}})
        strategy = RecordingStrategy()
        registry, _ = make_registry(project, strategy, config=config, tools=[CommandTool()])

        await registry.execute(call("run", command="crontab -l"), context)

        [request] = strategy.requests
        assert request.expires_at - request.timestamp == 1234

    @pytest.mark.asyncio
    async def test_blocked_path(self, project, context):
        tool = PathTool(operation="read")
        strategy = RecordingStrategy()
        registry, events = make_registry(project, strategy, tools=[tool])

        result = await registry.execute(call("path_read", path="/etc/shadow"), context)

        assert result.error_code == E_PERMISSIONS
        assert result.error == "Access to /etc is blocked"
        assert tool.executed is False
        assert strategy.requests == []
        assert events[0].type == "path_blocked"
        assert events[0].data["operation"] == "read"

    @pytest.mark.asyncio
    async def test_project_path_without_confirmation(self, project, context):
        tool = PathTool(operation="write")
        strategy = RecordingStrategy()
        registry, _ = make_registry(project, strategy, tools=[tool])

        result = await registry.execute(call("path_write", path="notes/todo.md"), context)

        assert result.success is True
        assert strategy.requests == []

    @pytest.mark.asyncio
    async def test_path_confirmation_from_metadata(self, project, context):
        tool = PathTool(operation="delete", requires_confirmation=True)
        strategy = RecordingStrategy(approve=False)
        registry, _ = make_registry(project, strategy, tools=[tool])

        result = await registry.execute(call("path_delete", path="old.txt"), context)

        assert result.error_code == E_CONFIRMED_DENY
        [request] = strategy.requests
        assert request.type is ConfirmationType.FILE_OPERATION
        assert request.operation == "delete_file"
        assert request.details.risk_level is RiskLevel.HIGH
        assert request.details.path == str(project / "old.txt")
        assert request.details.action == "delete"

    @pytest.mark.asyncio
    async def test_disabled_security_skips_guard(self, project, context):
        config = SecurityConfig(enabled=False)
        tool = CommandTool()
        strategy = RecordingStrategy()
        registry, events = make_registry(project, strategy, config=config, tools=[tool])

        result = await registry.execute(call("run", command="sudo reboot"), context)

        assert result.success is True
        assert strategy.requests == []
        assert events == []

    @pytest.mark.asyncio
    async def test_disabled_security_still_validates(self, project, context):
        registry, _ = make_registry(
            project, RecordingStrategy(), config=SecurityConfig(enabled=False), tools=[CommandTool()]
        )
        result = await registry.execute(call("run"), context)
        assert result.error_code == E_VALIDATION

    @pytest.mark.asyncio
    async def test_handler_exception_is_wrapped(self, project, context):
        registry, _ = make_registry(project, RecordingStrategy(), tools=[PureTool(RuntimeError("disk"))])

        with pytest.raises(ToolExecutionError) as exc_info:
            await registry.execute(call("echo_args"), context)

        assert exc_info.value.tool_name == "echo_args"
        assert exc_info.value.details == "RuntimeError"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_tool_execution_error_passes_through(self, project, context):
        error = ToolExecutionError("custom", tool_name="echo_args")
        registry, _ = make_registry(project, RecordingStrategy(), tools=[PureTool(error)])

        with pytest.raises(ToolExecutionError) as exc_info:
            await registry.execute(call("echo_args"), context)

        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_logging_strategy_end_to_end(self, project, context):
        strategy = LoggingConfirmationStrategy(auto_approve=True)
        registry, events = make_registry(project, strategy, tools=[CommandTool()])

        result = await registry.execute(call("run", command="crontab -l"), context)

        assert result.success is True
        assert strategy.records[0]["details"]["command"] == "crontab -l"
        assert events[-1].type == "confirmation_resolved"
