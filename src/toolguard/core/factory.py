"""Factories wiring guard, confirmation and tool registry from a SecurityConfig.

Central entry point used by the CLI or any host framework embedding the
guard layer.
"""

from pathlib import Path

from toolguard.core.config import SecurityConfig
from toolguard.core.events import EventBus
from toolguard.core.exceptions import ConfigurationError
from toolguard.core.logger import ToolGuardLogger, get_logger
from toolguard.core.types import Platform
from toolguard.security.confirmation import (
    ConfirmationManager,
    ConfirmationStrategy,
    InteractiveConfirmationStrategy,
    LoggingConfirmationStrategy,
    PolicyConfirmationStrategy,
)
from toolguard.security.guard import SecurityGuard
from toolguard.tools.base import BaseTool, ToolRegistry
from toolguard.tools.files import FileDeleteTool, FileReadTool, FileWriteTool
from toolguard.tools.shell import ShellCommandTool


def create_guard(
    config: SecurityConfig,
    project_root: str | Path,
    platform: Platform | None = None,
    logger: ToolGuardLogger | None = None,
) -> SecurityGuard:
    """Create a guard for ``project_root`` seeded from the config."""
    return SecurityGuard.from_config(config, project_root, platform=platform, logger=logger)


def create_confirmation_strategy(
    config: SecurityConfig,
    project_root: str | Path | None = None,
    event_bus: EventBus | None = None,
    logger: ToolGuardLogger | None = None,
) -> ConfirmationStrategy:
    """Create the strategy named by ``confirmation.strategy``.

    ``none`` means no human in the loop: every request is audited and
    approved.

    Raises:
        ConfigurationError: If the strategy name is unknown
    """
    confirmation = config.confirmation
    name = confirmation.strategy

    if name == "interactive":
        return InteractiveConfirmationStrategy(event_bus=event_bus, logger=logger)
    if name == "policy":
        return PolicyConfirmationStrategy(
            project_root=project_root,
            development=confirmation.auto_approve_in_dev,
            custom_policies=confirmation.custom_policies,
            logger=logger,
        )
    if name == "logging":
        return LoggingConfirmationStrategy(auto_approve=confirmation.auto_approve, logger=logger)
    if name == "none":
        return LoggingConfirmationStrategy(auto_approve=True, logger=logger)

    raise ConfigurationError(
        f"Invalid confirmation strategy: {name}",
        key="confirmation.strategy",
        reason="unknown_strategy",
    )


def create_confirmation_manager(
    config: SecurityConfig,
    project_root: str | Path | None = None,
    strategy: ConfirmationStrategy | None = None,
    event_bus: EventBus | None = None,
    logger: ToolGuardLogger | None = None,
) -> ConfirmationManager:
    """Create a manager using ``strategy`` or the one named in the config."""
    logger = logger or get_logger()
    if strategy is None:
        strategy = create_confirmation_strategy(config, project_root, logger=logger)
    return ConfirmationManager(strategy=strategy, event_bus=event_bus, logger=logger)


def create_tool_registry(
    config: SecurityConfig,
    project_root: str | Path,
    tools: list[BaseTool] | None = None,
    platform: Platform | None = None,
    strategy: ConfirmationStrategy | None = None,
    logger: ToolGuardLogger | None = None,
) -> ToolRegistry:
    """Create a fully wired tool registry.

    Args:
        config: Loaded security config
        project_root: Directory the agent works in
        tools: Tools to register (default: the built-in tools)
        platform: Rule table to use (default: running OS)
        strategy: Confirmation strategy (default: from config)
        logger: Logger instance (default: built from the ``logging`` section)

    Returns:
        ToolRegistry with guard and confirmation manager attached
    """
    logger = logger or ToolGuardLogger.from_config(config.logging)
    guard = create_guard(config, project_root, platform=platform, logger=logger)
    manager = create_confirmation_manager(config, project_root, strategy=strategy, logger=logger)

    registry = ToolRegistry(guard, manager, config=config, logger=logger)
    for tool in create_builtin_tools(config) if tools is None else tools:
        registry.register(tool)

    logger.debug(
        "Tool registry created",
        project_root=str(guard.project_root),
        strategy=type(manager.strategy).__name__,
        tool_count=len(registry.list_tools()),
    )
    return registry


def create_builtin_tools(config: SecurityConfig) -> list[BaseTool]:
    """Shell and file tools configured from the ``commands`` and ``filesystem`` sections."""
    filesystem = config.filesystem
    timeout_ms = config.commands.default_timeout
    return [
        ShellCommandTool(default_timeout_ms=30_000 if timeout_ms is None else timeout_ms),
        FileReadTool(max_file_size=filesystem.max_file_size),
        FileWriteTool(
            max_file_size=filesystem.max_file_size,
            auto_backup=filesystem.auto_backup,
            backup_directory=filesystem.backup_directory,
        ),
        FileDeleteTool(),
    ]
