"""Shared value types for guard decisions."""

import sys
from dataclasses import dataclass, field
from enum import Enum


class RiskLevel(str, Enum):
    """Severity attached to a verdict, ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


_RISK_ORDER = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class Platform(str, Enum):
    """Operating system families with their own rule tables."""

    DARWIN = "darwin"
    WIN32 = "win32"
    LINUX = "linux"

    @classmethod
    def current(cls) -> "Platform":
        """Platform of the running interpreter; unknown systems map to linux."""
        return cls.from_identifier(sys.platform)

    @classmethod
    def from_identifier(cls, identifier: str) -> "Platform":
        if identifier.startswith("darwin"):
            return cls.DARWIN
        if identifier.startswith(("win32", "cygwin", "msys")):
            return cls.WIN32
        return cls.LINUX


@dataclass(frozen=True)
class SecurityContext:
    """Identifies who is asking. Carried through every decision for audit."""

    agent_id: str
    channel_id: str
    request_id: str
    user_id: str | None = None
    permissions: tuple[str, ...] = field(default_factory=tuple)

    def as_log_fields(self) -> dict[str, str]:
        fields = {
            "agent_id": self.agent_id,
            "channel_id": self.channel_id,
            "request_id": self.request_id,
        }
        if self.user_id:
            fields["user_id"] = self.user_id
        return fields
