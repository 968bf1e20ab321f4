"""Protocols for persistent workflow snapshots and session payloads."""

from typing import Any, Protocol, runtime_checkable

from specflow.core.models import WorkflowRunState


@runtime_checkable
class WorkflowStateStore(Protocol):
    """Single-slot snapshot store, keyed by scope (usually one per workspace).

    Implementations raise :class:`~specflow.core.errors.PersistenceError` on
    I/O faults and unreadable snapshots.
    """

    def save(self, scope: str, state: WorkflowRunState) -> None:
        """Atomically replace the snapshot for *scope*."""
        ...

    def load(self, scope: str) -> WorkflowRunState | None:
        """Return the snapshot for *scope*, or ``None`` if nothing is persisted."""
        ...

    def clear(self, scope: str) -> None:
        """Remove the snapshot for *scope*. A missing snapshot is not an error."""
        ...


@runtime_checkable
class SessionStorage(Protocol):
    """Stores the serialized session collection of one scope."""

    def load(self) -> dict[str, Any] | None:
        """Return the stored payload, or ``None`` when nothing was saved yet."""
        ...

    def save(self, payload: dict[str, Any]) -> None:
        """Atomically replace the stored payload."""
        ...

    def clear(self) -> None:
        """Remove the stored payload."""
        ...
