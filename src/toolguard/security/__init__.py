"""Security components for ToolGuard.

Provides command/path classification and the confirmation workflow.
"""

from toolguard.security.confirmation import (
    ConfirmationDetails,
    ConfirmationManager,
    ConfirmationRequest,
    ConfirmationStatus,
    ConfirmationStrategy,
    ConfirmationType,
    InteractiveConfirmationStrategy,
    LoggingConfirmationStrategy,
    PolicyConfirmationStrategy,
)
from toolguard.security.guard import (
    CommandValidationResult,
    PathValidationResult,
    SecurityGuard,
)

__all__ = [
    "CommandValidationResult",
    "ConfirmationDetails",
    "ConfirmationManager",
    "ConfirmationRequest",
    "ConfirmationStatus",
    "ConfirmationStrategy",
    "ConfirmationType",
    "InteractiveConfirmationStrategy",
    "LoggingConfirmationStrategy",
    "PathValidationResult",
    "PolicyConfirmationStrategy",
    "SecurityGuard",
]
