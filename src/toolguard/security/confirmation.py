"""Approval workflow for operations the guard flags as needing confirmation.

The ConfirmationManager builds a ConfirmationRequest, hands it to a
pluggable strategy and records the outcome. Three strategies ship:

- InteractiveConfirmationStrategy: waits for an external responder (CLI/UI)
  until the request deadline
- PolicyConfirmationStrategy: deterministic rules keyed by request type
- LoggingConfirmationStrategy: audit-only, always returns a fixed answer

Request status moves one way only: pending -> approved | denied | expired.
"""

import asyncio
import re
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

from toolguard.core.config import CustomPolicy
from toolguard.core.events import EventBus, GuardEvent
from toolguard.core.exceptions import ToolGuardException, format_error_for_log
from toolguard.core.logger import ToolGuardLogger, get_logger
from toolguard.core.types import RiskLevel, SecurityContext
from toolguard.security.rules import SHELL_OPERATORS, normalize_command

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_HISTORY = 1000
DEFAULT_PRUNE_AGE_MS = 24 * 60 * 60 * 1000


class ConfirmationType(str, Enum):
    """What kind of operation is awaiting approval."""

    COMMAND = "command"
    FILE_OPERATION = "file_operation"
    SYSTEM_CHANGE = "system_change"


class ConfirmationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


@dataclass
class ConfirmationDetails:
    """What is being confirmed and why the guard flagged it."""

    risk_level: RiskLevel
    reason: str
    command: str | None = None
    path: str | None = None
    action: str | None = None  # read|write|delete for file operations

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"risk_level": self.risk_level.value, "reason": self.reason}
        for key in ("command", "path", "action"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class ConfirmationRequest:
    """A single approval request. Times are epoch milliseconds."""

    id: str
    type: ConfirmationType
    operation: str
    details: ConfirmationDetails
    context: SecurityContext
    timestamp: int
    expires_at: int
    status: ConfirmationStatus = ConfirmationStatus.PENDING

    def resolve(self, status: ConfirmationStatus) -> bool:
        """Move out of ``pending``.

        Returns:
            True if the transition happened, False if already terminal
        """
        if status is ConfirmationStatus.PENDING:
            raise ValueError("Cannot resolve a request back to pending")
        if self.status is not ConfirmationStatus.PENDING:
            return False
        self.status = status
        return True

    @property
    def is_resolved(self) -> bool:
        return self.status is not ConfirmationStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "operation": self.operation,
            "details": self.details.to_dict(),
            "context": self.context.as_log_fields(),
            "timestamp": self.timestamp,
            "expires_at": self.expires_at,
            "status": self.status.value,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConfirmationStrategy(ABC):
    """Resolves a ConfirmationRequest to approve (True) or deny (False)."""

    @abstractmethod
    async def decide(self, request: ConfirmationRequest) -> bool:
        """Decide the request, updating its status.

        Args:
            request: Pending request

        Returns:
            True if approved
        """


class InteractiveConfirmationStrategy(ConfirmationStrategy):
    """Waits for an external responder until the request deadline.

    Each request publishes a ``confirmation_required`` event; whoever
    handles it calls ``respond_to_confirmation`` (from any thread). A
    request that is not answered before ``expires_at`` becomes ``expired``
    and is denied. The first resolution wins; later ones are ignored.
    """

    def __init__(
        self, event_bus: EventBus | None = None, logger: ToolGuardLogger | None = None
    ) -> None:
        self.logger = logger or get_logger()
        self.event_bus = event_bus or EventBus(logger=self.logger)
        self._pending: dict[
            str, tuple[ConfirmationRequest, asyncio.Future[bool], asyncio.AbstractEventLoop]
        ] = {}
        self._lock = threading.Lock()

    def on_confirmation_required(
        self, callback: Callable[[ConfirmationRequest], None]
    ) -> Callable[[GuardEvent], None]:
        """Register ``callback`` to receive each new pending request.

        Returns:
            The bus handler, for passing to ``event_bus.unsubscribe``
        """

        def handler(event: GuardEvent) -> None:
            callback(event.data["request"])

        self.event_bus.subscribe(handler, "confirmation_required")
        return handler

    @property
    def pending_requests(self) -> list[ConfirmationRequest]:
        with self._lock:
            return [request for request, _future, _loop in self._pending.values()]

    async def decide(self, request: ConfirmationRequest) -> bool:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[bool] = loop.create_future()

        with self._lock:
            self._pending[request.id] = (request, future, loop)

        self.event_bus.publish(
            GuardEvent(
                type="confirmation_required",
                data={"request": request, "confirmation_id": request.id},
            )
        )

        timeout = max(0.0, (request.expires_at - _now_ms()) / 1000)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            with self._lock:
                if self._pending.pop(request.id, None) is not None:
                    request.resolve(ConfirmationStatus.EXPIRED)
            if request.status is ConfirmationStatus.EXPIRED:
                self.logger.warn(
                    "Confirmation expired",
                    confirmation_id=request.id,
                    operation=request.operation,
                )
                return False
            # A response won the race with the deadline
            return request.status is ConfirmationStatus.APPROVED
        except asyncio.CancelledError:
            with self._lock:
                if self._pending.pop(request.id, None) is not None:
                    request.resolve(ConfirmationStatus.DENIED)
            raise

    def respond_to_confirmation(self, request_id: str, approved: bool) -> bool:
        """Resolve a pending request.

        Safe to call from any thread.

        Returns:
            True if the request was pending and is now resolved
        """
        with self._lock:
            entry = self._pending.pop(request_id, None)
            if entry is None:
                return False
            request, future, loop = entry
            request.resolve(ConfirmationStatus.APPROVED if approved else ConfirmationStatus.DENIED)

        loop.call_soon_threadsafe(_settle, future, approved)
        return True


def _settle(future: asyncio.Future[bool], approved: bool) -> None:
    if not future.done():
        future.set_result(approved)


PolicyRule = Callable[[ConfirmationRequest], bool | None]

_PACKAGE_QUERY = re.compile(r"^(npm|yarn|pnpm)\s+(list|info|view)\b")


class PolicyConfirmationStrategy(ConfirmationStrategy):
    """Deterministic approval by rule.

    Order: configured custom policies, then the rule registered for the
    request type, then a default by risk level. Rules return True (approve),
    False (deny) or None (no opinion).
    """

    def __init__(
        self,
        project_root: str | Path | None = None,
        development: bool = False,
        custom_policies: list[CustomPolicy] | None = None,
        logger: ToolGuardLogger | None = None,
    ) -> None:
        """Initialize policy strategy.

        Args:
            project_root: Root for the in-project file rule (default: cwd)
            development: Approve medium-risk requests no rule decided
            custom_policies: Glob rules consulted before the built-ins
            logger: Logger instance (default: shared logger)
        """
        self.project_root = Path(project_root or Path.cwd()).expanduser().resolve()
        self.development = development
        self.custom_policies = list(custom_policies or [])
        self.logger = logger or get_logger()
        self._policies: dict[str, PolicyRule] = {
            ConfirmationType.COMMAND.value: self._command_rule,
            ConfirmationType.FILE_OPERATION.value: self._file_operation_rule,
        }

    def add_policy(self, request_type: ConfirmationType | str, rule: PolicyRule) -> None:
        """Register ``rule`` for a request type, replacing any existing one."""
        key = request_type.value if isinstance(request_type, ConfirmationType) else request_type
        self._policies[key] = rule

    async def decide(self, request: ConfirmationRequest) -> bool:
        verdict = self._match_custom_policy(request)
        source = "custom_policy"

        if verdict is None:
            rule = self._policies.get(request.type.value)
            if rule is not None:
                verdict = rule(request)
                source = "rule"

        if verdict is None:
            verdict = self._risk_default(request.details.risk_level)
            source = "risk_default"

        request.resolve(ConfirmationStatus.APPROVED if verdict else ConfirmationStatus.DENIED)
        self.logger.debug(
            "Policy decision",
            confirmation_id=request.id,
            approved=verdict,
            source=source,
            risk_level=request.details.risk_level,
        )
        return verdict

    def _match_custom_policy(self, request: ConfirmationRequest) -> bool | None:
        target = request.details.command if request.type is ConfirmationType.COMMAND else request.details.path
        if not target:
            return None

        for policy in self.custom_policies:
            if policy.type != request.type.value:
                continue
            if not fnmatchcase(target, policy.pattern):
                continue
            if policy.action == "approve":
                return True
            if policy.action == "deny":
                return False
            # "confirm" defers to the remaining rules
            return None
        return None

    def _command_rule(self, request: ConfirmationRequest) -> bool | None:
        command = normalize_command(request.details.command or "")
        # Chained or substituted commands get no rule-based approval
        if any(op in command for op in SHELL_OPERATORS):
            return None
        if command.startswith("git "):
            return True
        if _PACKAGE_QUERY.match(command):
            return True
        return None

    def _file_operation_rule(self, request: ConfirmationRequest) -> bool | None:
        if not request.details.path:
            return None
        try:
            path = Path(request.details.path).expanduser().resolve()
        except (OSError, RuntimeError):
            return False

        if path != self.project_root and self.project_root not in path.parents:
            return None
        if request.details.action == "delete" and request.details.risk_level > RiskLevel.MEDIUM:
            return False
        return True

    def _risk_default(self, risk_level: RiskLevel) -> bool:
        if risk_level is RiskLevel.MEDIUM:
            return self.development
        return False


class LoggingConfirmationStrategy(ConfirmationStrategy):
    """Audit-only strategy for dry runs: records each request, returns a fixed answer."""

    def __init__(self, auto_approve: bool = False, logger: ToolGuardLogger | None = None) -> None:
        self.auto_approve = auto_approve
        self.logger = logger or get_logger()
        self.records: list[dict[str, Any]] = []

    async def decide(self, request: ConfirmationRequest) -> bool:
        request.resolve(
            ConfirmationStatus.APPROVED if self.auto_approve else ConfirmationStatus.DENIED
        )
        record = {
            **request.to_dict(),
            "decision": "auto-approved" if self.auto_approve else "auto-denied",
            "logged_at": datetime.now(UTC).isoformat(),
        }
        self.records.append(record)
        self.logger.audit("Confirmation request", request=record)
        return self.auto_approve


class ConfirmationManager:
    """Creates confirmation requests, delegates them and keeps a bounded history.

    Any error raised while a strategy decides is logged and the request is
    denied; approval never fails open.
    """

    def __init__(
        self,
        strategy: ConfirmationStrategy | None = None,
        max_history: int = DEFAULT_MAX_HISTORY,
        event_bus: EventBus | None = None,
        logger: ToolGuardLogger | None = None,
    ) -> None:
        """Initialize manager.

        Args:
            strategy: Active strategy (default: interactive)
            max_history: Number of resolved requests kept (oldest evicted first)
            event_bus: Bus for ``confirmation_resolved`` events
            logger: Logger instance (default: shared logger)
        """
        self.logger = logger or get_logger()
        self._strategy = strategy or InteractiveConfirmationStrategy(logger=self.logger)
        self.max_history = max_history
        self.event_bus = event_bus or EventBus(logger=self.logger)
        self._history: deque[ConfirmationRequest] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    @property
    def strategy(self) -> ConfirmationStrategy:
        return self._strategy

    def set_strategy(self, strategy: ConfirmationStrategy) -> None:
        """Swap the strategy. Requests already submitted keep their original one."""
        self._strategy = strategy
        self.logger.info("Confirmation strategy changed", strategy=type(strategy).__name__)

    async def request_confirmation(
        self,
        request_type: ConfirmationType | str,
        operation: str,
        details: ConfirmationDetails,
        context: SecurityContext,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> bool:
        """Submit a request and wait for the active strategy's decision.

        Args:
            request_type: command, file_operation or system_change
            operation: Short operation name (e.g. "execute_command")
            details: What is being confirmed
            context: Who is asking
            timeout_ms: Time the request stays open

        Returns:
            True only if the request ended ``approved``
        """
        strategy = self._strategy
        now = _now_ms()
        request = ConfirmationRequest(
            id=str(uuid.uuid4()),
            type=ConfirmationType(request_type),
            operation=operation,
            details=details,
            context=context,
            timestamp=now,
            expires_at=now + timeout_ms,
        )

        try:
            self.logger.info(
                "Confirmation requested",
                confirmation_id=request.id,
                type=request.type.value,
                operation=operation,
                risk_level=details.risk_level.value,
                **context.as_log_fields(),
            )
            approved = bool(await strategy.decide(request))
        except Exception as e:
            error_fields = (
                format_error_for_log(e)
                if isinstance(e, ToolGuardException)
                else {"error": str(e), "error_type": type(e).__name__}
            )
            self.logger.error(
                "Confirmation strategy failed, denying request",
                confirmation_id=request.id,
                **error_fields,
            )
            request.resolve(ConfirmationStatus.DENIED)
            approved = False
        else:
            if not request.is_resolved:
                request.resolve(
                    ConfirmationStatus.APPROVED if approved else ConfirmationStatus.DENIED
                )
            approved = approved and request.status is ConfirmationStatus.APPROVED

        with self._lock:
            self._history.append(request)

        self.event_bus.publish(
            GuardEvent(
                type="confirmation_resolved",
                data={
                    "confirmation_id": request.id,
                    "type": request.type.value,
                    "operation": operation,
                    "status": request.status.value,
                    "approved": approved,
                    "risk_level": details.risk_level.value,
                    **context.as_log_fields(),
                },
            )
        )
        self.logger.audit(
            "Confirmation resolved",
            confirmation_id=request.id,
            status=request.status.value,
            approved=approved,
        )
        return approved

    def get_history(
        self,
        agent_id: str | None = None,
        status: ConfirmationStatus | str | None = None,
        since: int | None = None,
    ) -> list[ConfirmationRequest]:
        """Resolved requests, oldest first, optionally filtered."""
        wanted = ConfirmationStatus(status) if status is not None else None
        with self._lock:
            snapshot = list(self._history)

        return [
            request
            for request in snapshot
            if (agent_id is None or request.context.agent_id == agent_id)
            and (wanted is None or request.status is wanted)
            and (since is None or request.timestamp >= since)
        ]

    def prune_history(self, max_age_ms: int = DEFAULT_PRUNE_AGE_MS) -> int:
        """Drop requests older than ``max_age_ms``.

        Returns:
            Number of requests removed
        """
        cutoff = _now_ms() - max_age_ms
        with self._lock:
            kept = [request for request in self._history if request.timestamp > cutoff]
            removed = len(self._history) - len(kept)
            self._history = deque(kept, maxlen=self.max_history)
        return removed

    @property
    def history(self) -> list[ConfirmationRequest]:
        return self.get_history()
