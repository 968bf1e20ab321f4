"""
specflow - human-in-the-loop workflow orchestration for spec-driven coding.

Copyright (c) 2026 specflow contributors
Licensed under Apache 2.0
"""

__version__ = "0.1.0"

from specflow.core.approval import (
    AutoApprovalGateway,
    CallbackApprovalGateway,
    InteractiveApprovalGateway,
)
from specflow.core.errors import SpecflowError
from specflow.core.models import (
    StepDefinition,
    StepResult,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowProgress,
    WorkflowState,
)
from specflow.core.registry import WorkflowRegistry
from specflow.core.sessions import SessionStore
from specflow.core.workflow import WorkflowEngine
from specflow.core.workspace import Workspace

# Adapter exports
from specflow.adapters.storage import (
    FileWorkflowStateStore,
    InMemoryWorkflowStateStore,
    SQLWorkflowStateStore,
)

__all__ = [
    # Version
    "__version__",
    # Core
    "Workspace",
    "WorkflowEngine",
    "WorkflowRegistry",
    "SessionStore",
    # Approval
    "AutoApprovalGateway",
    "CallbackApprovalGateway",
    "InteractiveApprovalGateway",
    # Models
    "StepDefinition",
    "StepResult",
    "WorkflowContext",
    "WorkflowDefinition",
    "WorkflowProgress",
    "WorkflowState",
    "SpecflowError",
    # Adapters
    "FileWorkflowStateStore",
    "InMemoryWorkflowStateStore",
    "SQLWorkflowStateStore",
]
