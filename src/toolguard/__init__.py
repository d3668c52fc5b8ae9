"""
ToolGuard

Guardrails for agent tool execution: command and path classification,
confirmation workflows, layered security configuration and tool input
validation.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from toolguard.core.config import SecurityConfig, SecurityConfigLoader, load_config
from toolguard.core.exceptions import (
    ConfigurationError,
    ConfirmationError,
    ToolExecutionError,
    ToolGuardException,
)
from toolguard.core.types import Platform, RiskLevel, SecurityContext
from toolguard.security.confirmation import ConfirmationManager
from toolguard.security.guard import SecurityGuard
from toolguard.validation.schema import validate_tool_input

# Convenience alias
Guard = SecurityGuard

__all__ = [
    # Version
    "__version__",
    # Core
    "Platform",
    "RiskLevel",
    "SecurityConfig",
    "SecurityConfigLoader",
    "SecurityContext",
    "load_config",
    # Security
    "ConfirmationManager",
    "Guard",  # Alias for SecurityGuard
    "SecurityGuard",
    # Validation
    "validate_tool_input",
    # Exceptions
    "ConfigurationError",
    "ConfirmationError",
    "ToolExecutionError",
    "ToolGuardException",
]
