"""Storage adapters for workflow snapshots and session payloads."""

from specflow.adapters.storage.base import SessionStorage, WorkflowStateStore
from specflow.adapters.storage.file import FileSessionStorage, FileWorkflowStateStore
from specflow.adapters.storage.memory import InMemorySessionStorage, InMemoryWorkflowStateStore
from specflow.adapters.storage.sql import (
    SQLSessionStorage,
    SQLWorkflowStateStore,
    create_state_engine,
)

__all__ = [
    "WorkflowStateStore",
    "SessionStorage",
    "FileWorkflowStateStore",
    "FileSessionStorage",
    "InMemoryWorkflowStateStore",
    "InMemorySessionStorage",
    "SQLWorkflowStateStore",
    "SQLSessionStorage",
    "create_state_engine",
]
