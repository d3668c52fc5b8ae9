"""Command and path authorization.

Classifies shell commands and filesystem paths requested by an agent into
allow / block / needs-confirmation verdicts with a risk level. Validation
calls never raise: malformed input yields a rejected verdict whose
``reason`` carries the underlying error.
"""

import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from toolguard.core.logger import ToolGuardLogger, get_logger
from toolguard.core.types import Platform, RiskLevel, SecurityContext
from toolguard.security.rules import (
    BLOCKED_PATHS,
    COMMON_DANGEROUS_COMMANDS,
    DANGEROUS_PATTERNS,
    OS_COMMAND_RULES,
    ROOT_DELETION,
    SAFE_COMMANDS,
    SENSITIVE_PATHS,
    SHELL_OPERATORS,
    compile_term,
    normalize_command,
)

if TYPE_CHECKING:
    from toolguard.core.config import CommandsConfig, FilesystemConfig, SecurityConfig

PathOperation = Literal["read", "write", "delete"]

_ENV_VAR = re.compile(r"%([^%]+)%")


@dataclass(frozen=True)
class CommandValidationResult:
    """Verdict for a shell command.

    A blocked command never asks for confirmation.
    """

    allowed: bool
    reason: str | None = None
    requires_confirmation: bool = False
    risk_level: RiskLevel | None = None

    def __post_init__(self) -> None:
        if not self.allowed and self.requires_confirmation:
            raise ValueError("A blocked command cannot require confirmation")


@dataclass(frozen=True)
class PathValidationResult:
    """Verdict for a filesystem path.

    ``resolved_path`` is the canonical absolute path the checks ran on.
    """

    allowed: bool
    reason: str | None = None
    resolved_path: str | None = None


class SecurityGuard:
    """Validates commands and paths against built-in and configured rules."""

    def __init__(
        self,
        project_root: str | Path,
        additional_allowed_paths: list[str] | None = None,
        platform: Platform | None = None,
        commands_config: "CommandsConfig | None" = None,
        filesystem_config: "FilesystemConfig | None" = None,
        logger: ToolGuardLogger | None = None,
    ) -> None:
        """Initialize guard.

        Args:
            project_root: Directory the agent may freely read and write
            additional_allowed_paths: Extra trusted directories
            platform: Rule table to use (default: running OS)
            commands_config: ``commands`` config section (optional)
            filesystem_config: ``filesystem`` config section (optional)
            logger: Logger instance (default: shared logger)
        """
        self.platform = platform or Platform.current()
        self.project_root = Path(project_root).expanduser().resolve()
        self.logger = logger or get_logger()

        self._max_command_length: int | None = None
        self._custom_risk_levels: dict[str, RiskLevel] = {}
        self._allow_outside_project = False
        self._extra_blocked_paths: tuple[str, ...] = ()

        rules = OS_COMMAND_RULES[self.platform]
        safe = set(SAFE_COMMANDS)
        blocked = list(rules.blocked)

        if commands_config is not None:
            safe.update(c.lower() for c in commands_config.additional_allowed)
            blocked.extend(c.lower() for c in commands_config.additional_blocked)
            unblock = {c.lower() for c in commands_config.unblock}
            blocked = [term for term in blocked if term not in unblock]
            self._max_command_length = commands_config.max_command_length
            self._custom_risk_levels = {
                normalize_command(cmd): RiskLevel(level)
                for cmd, level in commands_config.custom_risk_levels.items()
            }

        extra_allowed = list(additional_allowed_paths or [])
        if filesystem_config is not None:
            extra_allowed.extend(filesystem_config.additional_allowed_paths)
            self._extra_blocked_paths = tuple(filesystem_config.additional_blocked_paths)
            self._allow_outside_project = filesystem_config.allow_outside_project

        self._safe_commands = frozenset(safe)
        self._restricted = rules.restricted
        self._common_dangerous = [(term, compile_term(term)) for term in COMMON_DANGEROUS_COMMANDS]
        self._blocked_commands = [(term, compile_term(term)) for term in blocked]

        self._paths_lock = threading.Lock()
        self._allowed_paths: list[Path] = [self.project_root]
        for extra in extra_allowed:
            expanded = _expand_path(extra)
            if expanded is not None and expanded not in self._allowed_paths:
                self._allowed_paths.append(expanded)

    @classmethod
    def from_config(
        cls,
        config: "SecurityConfig",
        project_root: str | Path,
        platform: Platform | None = None,
        logger: ToolGuardLogger | None = None,
    ) -> "SecurityGuard":
        """Build a guard seeded from a loaded SecurityConfig."""
        return cls(
            project_root,
            platform=platform,
            commands_config=config.commands,
            filesystem_config=config.filesystem,
            logger=logger,
        )

    @property
    def allowed_paths(self) -> tuple[str, ...]:
        """Snapshot of the trusted directories."""
        return tuple(str(p) for p in self._allowed_paths)

    def add_allowed_path(self, path_to_add: str | Path) -> None:
        """Trust another directory for subsequent path validations."""
        resolved = _expand_path(str(path_to_add))
        if resolved is None:
            return
        with self._paths_lock:
            if resolved not in self._allowed_paths:
                # Readers iterate without the lock; never mutate in place
                self._allowed_paths = [*self._allowed_paths, resolved]
        self.logger.info("Allowed path added", path=str(resolved))

    def validate_command(
        self, command: str, context: SecurityContext | None = None
    ) -> CommandValidationResult:
        """Classify a shell command.

        Checks run in a fixed order and the first match wins: safe allowlist
        (still scanned for dangerous patterns), common dangerous commands,
        the platform blocked and restricted tables, shell operators, and
        finally a confirm-by-default for anything unrecognized.

        Args:
            command: Raw command string
            context: Who is asking (used for log correlation)

        Returns:
            CommandValidationResult
        """
        result = self._classify_command(command)
        self._log_verdict(result, command=command, context=context)
        return result

    def _classify_command(self, command: str) -> CommandValidationResult:
        normalized = normalize_command(command)
        if not normalized:
            return CommandValidationResult(
                allowed=False, reason="Empty command", risk_level=RiskLevel.LOW
            )

        if self._max_command_length is not None and len(command.strip()) > self._max_command_length:
            return CommandValidationResult(
                allowed=False,
                reason=f"Command exceeds maximum length of {self._max_command_length} characters",
                risk_level=RiskLevel.HIGH,
            )

        base_command = normalized.split()[0]

        if ROOT_DELETION.search(normalized):
            return CommandValidationResult(
                allowed=False,
                reason="Command deletes the filesystem root",
                risk_level=RiskLevel.CRITICAL,
            )

        if base_command in self._safe_commands:
            for pattern in DANGEROUS_PATTERNS:
                if pattern.search(normalized):
                    return CommandValidationResult(
                        allowed=False,
                        reason=f"Command contains dangerous pattern: {pattern.pattern}",
                        risk_level=RiskLevel.CRITICAL,
                    )
            custom = self._custom_risk(normalized)
            if custom is not None:
                return custom
            return CommandValidationResult(allowed=True, risk_level=RiskLevel.LOW)

        for term, pattern in self._common_dangerous:
            if pattern.search(normalized):
                return CommandValidationResult(
                    allowed=False,
                    reason=f"Command contains dangerous pattern: {term}",
                    risk_level=RiskLevel.CRITICAL,
                )

        for term, pattern in self._blocked_commands:
            if pattern.search(normalized):
                return CommandValidationResult(
                    allowed=False,
                    reason=f"Command '{term}' is blocked on {self.platform.value}",
                    risk_level=RiskLevel.CRITICAL,
                )

        custom = self._custom_risk(normalized)
        if custom is not None:
            return custom

        for restricted in self._restricted:
            if base_command == restricted.command:
                return CommandValidationResult(
                    allowed=True,
                    requires_confirmation=True,
                    reason=f"Command '{restricted.command}' requires confirmation",
                    risk_level=restricted.risk_level,
                )

        for op in SHELL_OPERATORS:
            if op in normalized:
                return CommandValidationResult(
                    allowed=True,
                    requires_confirmation=True,
                    reason=f"Command contains shell operator '{op}'",
                    risk_level=RiskLevel.MEDIUM,
                )

        return CommandValidationResult(
            allowed=True,
            requires_confirmation=True,
            reason="Unknown command requires confirmation",
            risk_level=RiskLevel.MEDIUM,
        )

    def _custom_risk(self, normalized: str) -> CommandValidationResult | None:
        """Apply the longest configured command-prefix risk level, if any."""
        best: str | None = None
        for prefix in self._custom_risk_levels:
            if normalized == prefix or normalized.startswith(prefix + " "):
                if best is None or len(prefix) > len(best):
                    best = prefix
        if best is None:
            return None

        level = self._custom_risk_levels[best]
        if level is RiskLevel.LOW:
            return CommandValidationResult(allowed=True, risk_level=level)
        return CommandValidationResult(
            allowed=True,
            requires_confirmation=True,
            reason=f"Command '{best}' is configured as {level.value} risk",
            risk_level=level,
        )

    def validate_path(
        self, requested_path: str, operation: PathOperation = "read"
    ) -> PathValidationResult:
        """Classify a filesystem path for the given operation.

        Args:
            requested_path: Raw path (relative paths resolve against the project root)
            operation: read, write or delete

        Returns:
            PathValidationResult
        """
        try:
            result = self._classify_path(requested_path, operation, expand_home=True)
        except (OSError, ValueError, RuntimeError) as e:
            result = PathValidationResult(allowed=False, reason=f"Invalid path: {e}")
        self._log_verdict(result, path=requested_path, operation=operation)
        return result

    def _classify_path(
        self, requested_path: str, operation: str, expand_home: bool
    ) -> PathValidationResult:
        if not requested_path:
            return PathValidationResult(allowed=False, reason="Empty path")

        if requested_path.startswith("~"):
            expanded = os.path.expanduser(requested_path)
            if not expand_home or expanded.startswith("~"):
                return PathValidationResult(
                    allowed=False, reason="Cannot expand home directory in path"
                )
            return self._classify_path(expanded, operation, expand_home=False)

        if ".." in requested_path:
            return PathValidationResult(
                allowed=False, reason="Path traversal attempts are not allowed"
            )

        candidate = Path(requested_path)
        if not candidate.is_absolute():
            candidate = self.project_root / candidate
        resolved = candidate.resolve()
        resolved_str = str(resolved)

        for blocked in (*BLOCKED_PATHS[self.platform], *self._extra_blocked_paths):
            blocked_path = _expand_path(blocked)
            if blocked_path is not None and _is_within(resolved, blocked_path):
                return PathValidationResult(
                    allowed=False,
                    reason=f"Access to {blocked} is blocked",
                    resolved_path=resolved_str,
                )

        for allowed_path in tuple(self._allowed_paths):
            if _is_within(resolved, allowed_path):
                return PathValidationResult(allowed=True, resolved_path=resolved_str)

        is_read = operation == "read"

        for sensitive in SENSITIVE_PATHS[self.platform]:
            sensitive_path = _expand_path(sensitive)
            if sensitive_path is not None and _is_within(resolved, sensitive_path):
                return PathValidationResult(
                    allowed=is_read,
                    reason=None
                    if is_read
                    else f"Write/delete operations to {sensitive} require explicit permission",
                    resolved_path=resolved_str,
                )

        if not is_read and not self._allow_outside_project:
            return PathValidationResult(
                allowed=False,
                reason="Write/delete operations outside project directory require explicit permission",
                resolved_path=resolved_str,
            )

        return PathValidationResult(allowed=True, resolved_path=resolved_str)

    def requires_confirmation(self, command: str, context: SecurityContext | None = None) -> bool:
        """Whether ``command`` should trigger a confirmation prompt."""
        return self._classify_command(command).requires_confirmation

    def get_risk_level(self, command: str, context: SecurityContext | None = None) -> RiskLevel:
        """Risk level of ``command`` (low when none was assigned)."""
        return self._classify_command(command).risk_level or RiskLevel.LOW

    def _log_verdict(
        self,
        result: CommandValidationResult | PathValidationResult,
        context: SecurityContext | None = None,
        **kv: object,
    ) -> None:
        fields = dict(kv)
        if context is not None:
            fields.update(context.as_log_fields())
        if isinstance(result, CommandValidationResult):
            fields["risk_level"] = result.risk_level.value if result.risk_level else None
            fields["requires_confirmation"] = result.requires_confirmation
        else:
            fields["resolved_path"] = result.resolved_path

        if result.allowed:
            self.logger.debug("Guard allowed", reason=result.reason, **fields)
        else:
            self.logger.warn("Guard blocked", reason=result.reason, **fields)


def _expand_path(path_str: str) -> Path | None:
    """Expand ``~`` and ``%VAR%`` then resolve; None if a variable is unset."""
    if path_str.startswith("~"):
        path_str = os.path.expanduser(path_str)

    missing = False

    def _substitute(match: re.Match[str]) -> str:
        nonlocal missing
        value = os.environ.get(match.group(1))
        if value is None:
            missing = True
            return ""
        return value

    path_str = _ENV_VAR.sub(_substitute, path_str)
    if missing or not path_str:
        return None
    return Path(path_str).resolve()


def _is_within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents
