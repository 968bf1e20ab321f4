"""Event Bus for specflow.

A lightweight, async-first publish/subscribe channel that decouples the
workflow engine from its observers (session tracking, progress rendering,
structured logging, UI glue).

``emit`` is awaited by the engine before the step loop continues, so events
reach subscribers in order and are never queued behind later ones.

Usage::

    bus = EventBus()

    # Subscribe
    sub_id = bus.subscribe("workflow.progress", my_handler)

    # Emit
    await bus.emit(ProgressUpdated(workflow_name="Spec Mode", progress=progress))

    # Unsubscribe
    bus.unsubscribe(sub_id)
"""

import asyncio
import fnmatch
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from specflow.core.models import WorkflowProgress

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event Types
# ---------------------------------------------------------------------------


@dataclass
class SpecflowEvent:
    """Base event for all specflow events."""

    event_type: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    workflow_name: str | None = None
    session_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowStarted(SpecflowEvent):
    """Emitted when a run begins from step 0."""

    event_type: str = "workflow.started"
    mode: str = ""


@dataclass
class WorkflowResumed(SpecflowEvent):
    """Emitted when a run continues from a persisted snapshot."""

    event_type: str = "workflow.resumed"
    mode: str = ""
    step_index: int = 0


@dataclass
class WorkflowCompleted(SpecflowEvent):
    """Emitted when every step has run and been approved where required."""

    event_type: str = "workflow.completed"
    elapsed: str | None = None


@dataclass
class WorkflowStopped(SpecflowEvent):
    """Emitted when a step asks the engine to stop without failing."""

    event_type: str = "workflow.stopped"
    step_id: str = ""


@dataclass
class WorkflowFailed(SpecflowEvent):
    """Emitted when a step fails or a precondition is unmet."""

    event_type: str = "workflow.failed"
    step_id: str = ""
    error: str = ""


@dataclass
class WorkflowCancelled(SpecflowEvent):
    """Emitted on explicit cancellation or a denied approval."""

    event_type: str = "workflow.cancelled"
    reason: str = ""


@dataclass
class ProgressUpdated(SpecflowEvent):
    """Carries a :class:`WorkflowProgress` snapshot."""

    event_type: str = "workflow.progress"
    progress: WorkflowProgress | None = None


@dataclass
class ApprovalRequired(SpecflowEvent):
    """Emitted immediately before the engine blocks on the approval gateway."""

    event_type: str = "workflow.approval_required"
    step_name: str = ""
    message: str = ""
    options: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Handler Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class EventHandler(Protocol):
    """Protocol for event handler callables."""

    async def __call__(self, event: SpecflowEvent) -> None: ...


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Subscription:
    id: str
    event_type: str
    handler: Any  # Callable[[SpecflowEvent], Awaitable[None] | None]
    is_pattern: bool = False

    def matches(self, event_type: str) -> bool:
        if self.is_pattern:
            return fnmatch.fnmatchcase(event_type, self.event_type)
        return self.event_type == event_type


# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


class EventBus:
    """Async publish/subscribe channel between the engine and its observers.

    Handlers matching one event run concurrently through ``asyncio.gather``;
    ``emit`` returns once every one of them has finished. Subscriptions may be
    added or removed from any thread.
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, handler: Any) -> str:
        """Subscribe a sync or async handler to one event type.

        Returns:
            A subscription id for :meth:`unsubscribe`.
        """
        return self._add(_Subscription(uuid.uuid4().hex, event_type, handler))

    def subscribe_pattern(self, pattern: str, handler: Any) -> str:
        """Subscribe to every event type matching a glob, e.g. ``"workflow.*"``."""
        return self._add(_Subscription(uuid.uuid4().hex, pattern, handler, is_pattern=True))

    def _add(self, subscription: _Subscription) -> str:
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription.id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns ``True`` if it existed."""
        with self._lock:
            kept = [s for s in self._subscriptions if s.id != subscription_id]
            removed = len(kept) != len(self._subscriptions)
            self._subscriptions = kept
        return removed

    def subscriber_count(self, event_type: str | None = None) -> int:
        """Number of subscriptions, optionally only those registered under ``event_type``."""
        with self._lock:
            if event_type is None:
                return len(self._subscriptions)
            return sum(1 for s in self._subscriptions if s.event_type == event_type)

    async def emit(self, event: SpecflowEvent) -> None:
        """Deliver ``event`` to every matching subscriber.

        A failing handler is logged and never reaches the emitter, so an
        observer cannot break the workflow it watches.
        """
        with self._lock:
            handlers = [s.handler for s in self._subscriptions if s.matches(event.event_type)]
        if not handlers:
            return

        results = await asyncio.gather(
            *(_deliver(handler, event) for handler in handlers), return_exceptions=True
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Observer %r failed on %s: %s",
                    getattr(handler, "__qualname__", handler),
                    event.event_type,
                    result,
                    exc_info=result,
                )


async def _deliver(handler: Any, event: SpecflowEvent) -> None:
    result = handler(event)
    if asyncio.iscoroutine(result):
        await result
