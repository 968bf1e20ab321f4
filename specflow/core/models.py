"""Core data models for specflow workflows and sessions."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal, Protocol, runtime_checkable


class WorkflowState(Enum):
    """Engine execution state."""

    IDLE = "idle"
    RUNNING = "running"
    WAITING_APPROVAL = "waiting-approval"
    COMPLETED = "completed"
    STOPPED = "stopped"  # soft stop requested by a step (should_continue=False)
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            WorkflowState.COMPLETED,
            WorkflowState.STOPPED,
            WorkflowState.FAILED,
            WorkflowState.CANCELLED,
        )


class ProgressStatus(Enum):
    """Status carried by a progress event."""

    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    WAITING_APPROVAL = "waiting-approval"


class StepStatus(Enum):
    """Per-step status used when rendering progress."""

    COMPLETED = "completed"
    IN_PROGRESS = "in-progress"
    PENDING = "pending"
    FAILED = "failed"
    WAITING_APPROVAL = "waiting-approval"


LogLevel = Literal["info", "warning", "error"]
MessageRole = Literal["user", "assistant", "system"]


# ---------------------------------------------------------------------------
# Workflow definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepDefinition:
    """Single step in a workflow definition."""

    id: str
    name: str
    description: str
    handler_ref: str
    requires_approval: bool = False
    prompt_file: str | None = None
    consumes: tuple[str, ...] = ()  # context keys that must exist before the handler runs
    produces: tuple[str, ...] = ()  # keys the handler must return in its data dict
    approval_strategy: str | None = None  # registered strategy name, None -> default

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


@dataclass(frozen=True)
class WorkflowDefinition:
    """Immutable, ordered list of steps associated with a mode."""

    name: str
    steps: tuple[StepDefinition, ...] = ()
    description: str = ""

    def __len__(self) -> int:
        return len(self.steps)

    def get_step(self, index: int) -> StepDefinition | None:
        """Return the step at *index*, or ``None`` when out of range."""
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


@dataclass
class WorkflowContext:
    """Mutable context shared by the step handlers of one run.

    ``step_data`` is the context bag. Insertion order is preserved and
    survives serialization.
    """

    mode: str
    spec_name: str | None = None
    command: str | None = None
    user_input: str | None = None
    step_data: dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> "WorkflowContext":
        """Return a copy detached from the live bag."""
        return WorkflowContext(
            mode=self.mode,
            spec_name=self.spec_name,
            command=self.command,
            user_input=self.user_input,
            step_data=dict(self.step_data),
        )


@dataclass
class WorkflowRunState:
    """Persisted position of a workflow run (single slot per scope)."""

    workflow_name: str
    current_step: int
    total_steps: int
    spec_name: str | None = None
    mode: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_complete(self) -> bool:
        return self.current_step >= self.total_steps

    def validate(self) -> None:
        """Raise ``ValueError`` if the index is outside ``0..total_steps``."""
        if self.total_steps < 0:
            raise ValueError(f"total_steps must be >= 0, got {self.total_steps}")
        if not 0 <= self.current_step <= self.total_steps:
            raise ValueError(
                f"current_step {self.current_step} outside 0..{self.total_steps}"
            )


@dataclass
class StepResult:
    """Outcome returned by a step handler."""

    success: bool
    should_continue: bool = True
    message: str | None = None
    data: Any = None


@runtime_checkable
class StepHandler(Protocol):
    """Opaque unit of work for a step.

    Must tolerate being invoked again for the same step after a crash
    (at-least-once). Sync callables are accepted as well.
    """

    def __call__(self, context: WorkflowContext) -> Awaitable[StepResult] | StepResult: ...


PromptLoader = Callable[[str, WorkflowContext], Awaitable[str | None] | str | None]


@dataclass
class WorkflowProgress:
    """Point-in-time status report for an in-flight workflow."""

    workflow_name: str
    total_steps: int
    current_step: int
    current_step_name: str
    status: ProgressStatus
    message: str | None = None
    details: str | None = None

    @property
    def percent(self) -> int:
        if self.total_steps <= 0:
            return 100 if self.status == ProgressStatus.COMPLETED else 0
        return round(self.current_step / self.total_steps * 100)


@dataclass
class ApprovalRequest:
    """Question put to a human before a step may advance."""

    step_name: str
    message: str
    options: tuple[str, ...]


@dataclass
class EngineState:
    """Read-only view of an engine returned by ``WorkflowEngine.get_state()``."""

    state: WorkflowState
    workflow: WorkflowDefinition | None
    current_step: int
    context: WorkflowContext | None
    session_id: str | None = None


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass
class ChatMessage:
    """Single entry of a session's conversation history."""

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class Session:
    """Unit of conversational and workflow continuity."""

    id: str
    mode: str
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_activity: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_active: bool = True
    workflow_name: str | None = None
    workflow_context: WorkflowContext | None = None
    current_step: int | None = None
    total_steps: int | None = None
    spec_name: str | None = None
    conversation_history: list[ChatMessage] = field(default_factory=list)

    def touch(self) -> None:
        self.last_activity = datetime.now(UTC)

    def clear_workflow(self) -> None:
        self.workflow_name = None
        self.workflow_context = None
        self.current_step = None
        self.total_steps = None


@dataclass
class SessionWorkflowState:
    """Workflow linkage restored from a session."""

    workflow_name: str
    workflow_context: WorkflowContext | None
    current_step: int | None
    total_steps: int | None
