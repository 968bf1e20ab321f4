"""Unit tests for :class:`SQLWorkflowStateStore` and :class:`SQLSessionStorage`.

Uses an in-memory SQLite database (via ``sqlite:///:memory:``) to exercise
the SQLAlchemy ORM layer without requiring a real PostgreSQL server.
"""

from __future__ import annotations

from typing import Any, Generator

import pytest
from sqlalchemy import text

from specflow.adapters.storage import (
    SQLSessionStorage,
    SQLWorkflowStateStore,
    WorkflowStateStore,
    create_state_engine,
)
from specflow.core.errors import PersistenceError
from specflow.core.models import WorkflowRunState

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> Generator[SQLWorkflowStateStore, Any, None]:
    """Create a store backed by in-memory SQLite (same SQLAlchemy ORM)."""
    instance = SQLWorkflowStateStore(connection_string="sqlite:///:memory:", echo=False)
    try:
        yield instance
    finally:
        instance.close()


def _snapshot(current_step: int = 0) -> WorkflowRunState:
    return WorkflowRunState(
        workflow_name="Spec Mode", current_step=current_step, total_steps=5, mode="spec"
    )


# ---------------------------------------------------------------------------
# Workflow snapshots
# ---------------------------------------------------------------------------


class TestWorkflowSnapshots:
    def test_is_instance_of_protocol(self, store: SQLWorkflowStateStore) -> None:
        assert isinstance(store, WorkflowStateStore)

    def test_save_and_load(self, store: SQLWorkflowStateStore) -> None:
        store.save("ws", _snapshot(2))
        loaded = store.load("ws")
        assert loaded.workflow_name == "Spec Mode"
        assert loaded.current_step == 2
        assert loaded.mode == "spec"

    def test_upsert_keeps_one_row(self, store: SQLWorkflowStateStore) -> None:
        store.save("ws", _snapshot(1))
        store.save("ws", _snapshot(3))

        assert store.load("ws").current_step == 3
        with store.engine.connect() as conn:
            count = conn.execute(text("SELECT COUNT(*) FROM specflow_workflow_state")).scalar()
        assert count == 1

    def test_load_missing(self, store: SQLWorkflowStateStore) -> None:
        assert store.load("missing") is None

    def test_clear(self, store: SQLWorkflowStateStore) -> None:
        store.save("ws", _snapshot())
        store.clear("ws")
        store.clear("ws")
        assert store.load("ws") is None

    def test_corrupt_payload(self, store: SQLWorkflowStateStore) -> None:
        store.save("ws", _snapshot())
        with store.engine.begin() as conn:
            conn.execute(text("UPDATE specflow_workflow_state SET payload = '{broken'"))

        with pytest.raises(PersistenceError):
            store.load("ws")


# ---------------------------------------------------------------------------
# Session payloads and engine sharing
# ---------------------------------------------------------------------------


class TestSessionStorage:
    def test_shared_engine(self) -> None:
        engine = create_state_engine("sqlite:///:memory:")
        snapshots = SQLWorkflowStateStore(engine=engine)
        sessions = SQLSessionStorage("ws", engine=engine)

        snapshots.save("ws", _snapshot())
        sessions.save({"sessions": {}, "activeSessionId": "session-1-aaaaaaa"})

        assert sessions.load() == {"sessions": {}, "activeSessionId": "session-1-aaaaaaa"}
        assert snapshots.load("ws") is not None

        snapshots.close()
        assert sessions.load() is not None
        engine.dispose()

    def test_scopes_are_separate_rows(self) -> None:
        engine = create_state_engine("sqlite:///:memory:")
        first = SQLSessionStorage("one", engine=engine)
        second = SQLSessionStorage("two", engine=engine)

        first.save({"sessions": {}})

        assert second.load() is None
        first.clear()
        assert first.load() is None
        engine.dispose()

    def test_requires_connection(self) -> None:
        with pytest.raises(ValueError):
            SQLSessionStorage("ws")
