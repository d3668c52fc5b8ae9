"""Core modules for ToolGuard.

Shared types, exceptions, logging, events, configuration and factories.
"""

from .events import EventBus, GuardEvent
from .exceptions import (
    ConfigurationError,
    ConfirmationError,
    ToolExecutionError,
    ToolGuardException,
)
from .logger import ToolGuardLogger, get_logger
from .types import Platform, RiskLevel, SecurityContext

__all__ = [
    "ConfigurationError",
    "ConfirmationError",
    "EventBus",
    "GuardEvent",
    "Platform",
    "RiskLevel",
    "SecurityContext",
    "ToolExecutionError",
    "ToolGuardException",
    "ToolGuardLogger",
    "get_logger",
]
