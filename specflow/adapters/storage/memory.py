"""In-memory stores for tests and ephemeral workspaces."""

import copy
import threading
from dataclasses import replace
from typing import Any

from specflow.core.models import WorkflowRunState


class InMemoryWorkflowStateStore:
    """Keeps one snapshot per scope in a dict."""

    def __init__(self) -> None:
        self._states: dict[str, WorkflowRunState] = {}
        self._lock = threading.Lock()

    def save(self, scope: str, state: WorkflowRunState) -> None:
        with self._lock:
            self._states[scope] = replace(state)

    def load(self, scope: str) -> WorkflowRunState | None:
        with self._lock:
            state = self._states.get(scope)
        return replace(state) if state else None

    def clear(self, scope: str) -> None:
        with self._lock:
            self._states.pop(scope, None)


class InMemorySessionStorage:
    def __init__(self, payload: dict[str, Any] | None = None) -> None:
        self._payload = copy.deepcopy(payload) if payload is not None else None
        self.save_count = 0

    def load(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._payload)

    def save(self, payload: dict[str, Any]) -> None:
        self._payload = copy.deepcopy(payload)
        self.save_count += 1

    def clear(self) -> None:
        self._payload = None
