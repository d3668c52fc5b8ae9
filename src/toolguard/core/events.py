"""Event bus for confirmation and audit notifications.

The interactive confirmation strategy publishes ``confirmation_required``
events here for a CLI or UI to pick up; the confirmation manager publishes
``confirmation_resolved`` so an external collaborator can keep a durable
audit trail. Each strategy or manager owns its own bus.
"""

import asyncio
import uuid
from collections import Counter
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from toolguard.core.logger import ToolGuardLogger, get_logger

EventType = Literal[
    "confirmation_required",
    "confirmation_resolved",
    "command_blocked",
    "path_blocked",
    "tool_input_rejected",
]

EventHandler = Callable[["GuardEvent"], None]


@dataclass
class GuardEvent:
    """A security-relevant occurrence: a block, a rejection or a confirmation."""

    type: EventType
    data: dict[str, Any]
    ts: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if not isinstance(self.data, dict):
            raise ValueError(f"Event data must be dict, got {type(self.data)}")


class EventBus:
    """Publish/subscribe bus with async iteration support.

    Handlers run synchronously inside ``publish`` and may restrict
    themselves to some event types. Every accepted event is also queued
    (bounded, oldest kept) for ``async for event in bus`` consumers, and
    counted per type.
    """

    def __init__(self, max_queue: int = 1000, logger: ToolGuardLogger | None = None) -> None:
        """Initialize event bus.

        Args:
            max_queue: Queue bound; events published while it is full are not queued
            logger: Logger for handler failures (default: shared logger)
        """
        # handler -> event types it wants (empty = all)
        self._subscribers: dict[EventHandler, frozenset[str]] = {}
        self._queue: asyncio.Queue[GuardEvent] = asyncio.Queue(maxsize=max_queue)
        self._closed = False
        self._logger = logger or get_logger()
        self.counts: Counter[str] = Counter()

    def subscribe(self, handler: EventHandler, *event_types: EventType) -> None:
        """Register ``handler``, optionally only for the given event types.

        Subscribing an already registered handler replaces its filter.
        """
        self._subscribers[handler] = frozenset(event_types)

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscribers.pop(handler, None)

    def publish(self, event: GuardEvent) -> None:
        """Deliver ``event`` to matching subscribers and queue it.

        A failing subscriber is logged and skipped.
        """
        if self._closed:
            self._logger.warn("Event dropped, bus closed", event_type=event.type)
            return

        self.counts[event.type] += 1
        if self._queue.full():
            self._logger.debug("Event not queued, queue full", event_type=event.type, event_id=event.id)
        else:
            self._queue.put_nowait(event)

        for handler, wanted in list(self._subscribers.items()):
            if wanted and event.type not in wanted:
                continue
            try:
                handler(event)
            except Exception as e:
                self._logger.error(
                    "Event handler raised",
                    error=str(e),
                    handler=getattr(handler, "__name__", repr(handler)),
                    event_type=event.type,
                    event_id=event.id,
                )

    async def __aiter__(self) -> AsyncIterator[GuardEvent]:
        """Yield queued events until the bus is closed and the queue is empty."""
        while True:
            if self._closed and self._queue.empty():
                return
            try:
                yield await asyncio.wait_for(self._queue.get(), timeout=0.1)
            except TimeoutError:
                pass

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()
