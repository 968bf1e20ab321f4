"""Structured JSON logging of workflow events.

Subscribes to the event bus and writes one JSON document per workflow event,
ready for ingestion by log shippers such as Promtail or Fluentbit.
"""

import json
import logging
from dataclasses import fields
from enum import Enum
from typing import Any

from specflow.core.events import EventBus, SpecflowEvent

logger = logging.getLogger(__name__)

_BASE_FIELDS = {"event_type", "timestamp", "workflow_name", "session_id", "data"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "__dataclass_fields__"):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return value


class StructuredProgressLog:
    """
    Event bus subscriber that emits structured JSON logs.

    Every ``workflow.*`` event becomes a single ``info`` record on
    *logger_name*, carrying the event's own fields plus *extra_labels*.
    """

    def __init__(
        self,
        logger_name: str = "specflow.progress.structured",
        extra_labels: dict[str, str] | None = None,
    ):
        """
        Initialize the structured log subscriber.

        Args:
            logger_name: The logger to emit structured JSON logs to.
            extra_labels: Additional key-value pairs to include in every log payload
                          (e.g., {"app": "specflow", "env": "dev"}).
        """
        self._logger = logging.getLogger(logger_name)
        self._extra_labels = extra_labels or {}
        self._subscription_id: str | None = None
        self._bus: EventBus | None = None

    def attach(self, bus: EventBus) -> str:
        """Start logging the workflow events of *bus*."""
        self.detach()
        self._bus = bus
        self._subscription_id = bus.subscribe_pattern("workflow.*", self.handle)
        return self._subscription_id

    def detach(self) -> None:
        if self._bus is not None and self._subscription_id is not None:
            self._bus.unsubscribe(self._subscription_id)
        self._bus = None
        self._subscription_id = None

    def build_payload(self, event: SpecflowEvent) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "log_type": "workflow_event",
            "event_type": event.event_type,
            "timestamp": event.timestamp.isoformat(),
            "workflow_name": event.workflow_name,
            "session_id": event.session_id,
        }
        for f in fields(event):
            if f.name not in _BASE_FIELDS:
                payload[f.name] = _jsonable(getattr(event, f.name))
        if event.data:
            payload["data"] = _jsonable(event.data)
        payload.update(self._extra_labels)
        return payload

    def handle(self, event: SpecflowEvent) -> None:
        try:
            self._logger.info(json.dumps(self.build_payload(event), default=str))
        except (TypeError, ValueError) as exc:
            # Telemetry failures never reach the workflow.
            logger.warning("Failed to emit structured workflow log: %s", exc)
