"""Core workflow orchestration components."""

from specflow.core.approval import (
    ApprovalDecision,
    ApprovalGateway,
    ApprovalStrategy,
    AutoApprovalGateway,
    CallbackApprovalGateway,
    DefaultApprovalStrategy,
    InteractiveApprovalGateway,
    ReviewChoice,
    ReviewChoiceApprovalStrategy,
)
from specflow.core.config import SpecflowConfig, load_config
from specflow.core.definition_loader import definition_from_dict, definition_from_yaml
from specflow.core.errors import (
    ApprovalDenied,
    HandlerError,
    HandlerNotFoundError,
    InvalidRunStateError,
    NoWorkflowToResumeError,
    PersistenceError,
    SessionNotFound,
    SpecflowError,
    UnknownModeError,
    ValidationError,
    WorkflowAlreadyRunningError,
    WorkflowDefinitionError,
)
from specflow.core.events import EventBus
from specflow.core.models import (
    ApprovalRequest,
    ChatMessage,
    EngineState,
    ProgressStatus,
    Session,
    StepDefinition,
    StepResult,
    StepStatus,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowProgress,
    WorkflowRunState,
    WorkflowState,
)
from specflow.core.progress import ProgressRenderOptions, ProgressReporter
from specflow.core.registry import HandlerRegistry, WorkflowRegistry
from specflow.core.sessions import SessionStore
from specflow.core.workflow import WorkflowEngine

__all__ = [
    # Engine
    "WorkflowEngine",
    "WorkflowRegistry",
    "HandlerRegistry",
    "definition_from_dict",
    "definition_from_yaml",
    "EventBus",
    # Approval
    "ApprovalGateway",
    "CallbackApprovalGateway",
    "InteractiveApprovalGateway",
    "AutoApprovalGateway",
    "ApprovalStrategy",
    "ApprovalDecision",
    "DefaultApprovalStrategy",
    "ReviewChoice",
    "ReviewChoiceApprovalStrategy",
    # Sessions and progress
    "SessionStore",
    "ProgressReporter",
    "ProgressRenderOptions",
    # Config
    "SpecflowConfig",
    "load_config",
    # Models
    "StepDefinition",
    "WorkflowDefinition",
    "WorkflowContext",
    "WorkflowRunState",
    "WorkflowState",
    "WorkflowProgress",
    "ProgressStatus",
    "StepStatus",
    "StepResult",
    "ApprovalRequest",
    "EngineState",
    "Session",
    "ChatMessage",
    # Errors
    "SpecflowError",
    "ValidationError",
    "HandlerError",
    "ApprovalDenied",
    "PersistenceError",
    "SessionNotFound",
    "WorkflowAlreadyRunningError",
    "NoWorkflowToResumeError",
    "InvalidRunStateError",
    "UnknownModeError",
    "HandlerNotFoundError",
    "WorkflowDefinitionError",
]
