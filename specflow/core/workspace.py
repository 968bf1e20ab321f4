"""Per-workspace wiring of stores, registry and engine."""

import logging
from pathlib import Path

import sqlalchemy as sa

from specflow.adapters.storage import (
    FileSessionStorage,
    FileWorkflowStateStore,
    InMemorySessionStorage,
    InMemoryWorkflowStateStore,
    SessionStorage,
    SQLSessionStorage,
    SQLWorkflowStateStore,
    WorkflowStateStore,
    create_state_engine,
)
from specflow.adapters.structured_log import StructuredProgressLog
from specflow.core.approval import ApprovalGateway, DefaultApprovalStrategy
from specflow.core.config import SpecflowConfig, load_config
from specflow.core.events import EventBus
from specflow.core.models import WorkflowState
from specflow.core.progress import ProgressReporter
from specflow.core.prompts import FilePromptLoader
from specflow.core.registry import WorkflowRegistry
from specflow.core.sessions import SessionStore
from specflow.core.specs import SpecManager
from specflow.core.steering import SteeringManager
from specflow.core.steps import ContextAction, register_builtin_workflows
from specflow.core.workflow import WorkflowEngine

logger = logging.getLogger(__name__)


class Workspace:
    """Everything one workspace needs to run workflows.

    Usage::

        workspace = Workspace("/path/to/project", approval_gateway=gateway)
        outcome = await workspace.start_mode("spec", spec_name="user-auth")
    """

    def __init__(
        self,
        root: Path | str,
        config: SpecflowConfig | None = None,
        *,
        approval_gateway: ApprovalGateway | None = None,
        review_action: ContextAction | None = None,
        generate_action: ContextAction | None = None,
        structured_logging: bool = False,
    ):
        self.root = Path(root)
        self.config = config or load_config()
        self.scope = str(self.root.resolve())
        self._sql_engine: sa.Engine | None = None

        self.state_store, session_storage = self._build_storage()

        self.event_bus = EventBus()
        self.progress = ProgressReporter()
        self.sessions = SessionStore(
            session_storage,
            max_sessions=self.config.max_sessions,
            timeout_hours=self.config.session_timeout_hours,
            max_history=self.config.max_history,
        )
        self.specs = SpecManager(self.root, self.config.specs_dir)
        self.steering = SteeringManager(self.root, self.config.steering_dir)

        self.registry = WorkflowRegistry()
        self.registry.register_strategy(
            WorkflowRegistry.DEFAULT_STRATEGY,
            DefaultApprovalStrategy(approve_option=self.config.approve_option),
        )
        register_builtin_workflows(
            self.registry,
            self.specs,
            self.steering,
            review_action=review_action,
            generate_action=generate_action,
        )

        self.engine = WorkflowEngine(
            self.registry,
            self.state_store,
            self.scope,
            approval_gateway=approval_gateway,
            event_bus=self.event_bus,
            progress_reporter=self.progress,
            session_store=self.sessions,
            prompt_loader=FilePromptLoader(self.root / self.config.prompts_dir),
        )

        self.structured_log: StructuredProgressLog | None = None
        if structured_logging:
            self.structured_log = StructuredProgressLog(extra_labels={"workspace": self.scope})
            self.structured_log.attach(self.event_bus)

        logger.info(
            "Workspace ready at %s (state backend: %s)", self.root, self.config.state_backend
        )

    def _build_storage(self) -> tuple[WorkflowStateStore, SessionStorage]:
        backend = self.config.state_backend
        if backend == "memory":
            return InMemoryWorkflowStateStore(), InMemorySessionStorage()
        if backend == "sql":
            self._sql_engine = create_state_engine(self.config.database_url)
            return (
                SQLWorkflowStateStore(engine=self._sql_engine),
                SQLSessionStorage(self.scope, engine=self._sql_engine),
            )
        state_dir = self.root / self.config.state_dir
        return FileWorkflowStateStore(state_dir), FileSessionStorage(state_dir, "workspace")

    async def start_mode(
        self,
        mode: str,
        command: str | None = None,
        spec_name: str | None = None,
        user_input: str | None = None,
    ) -> WorkflowState:
        """Start *mode*'s workflow in the active session, creating one if needed."""
        session = self.sessions.get_or_create_active_session(mode, spec_name)
        if user_input:
            self.sessions.add_message(session.id, "user", user_input)
        return await self.engine.start(
            mode,
            command=command,
            spec_name=spec_name,
            session_id=session.id,
            user_input=user_input,
        )

    async def resume(self) -> WorkflowState:
        """Resume the persisted run in the active session, if there is one."""
        session = self.sessions.get_active_session()
        return await self.engine.resume(session_id=session.id if session else None)

    def close(self) -> None:
        if self.structured_log is not None:
            self.structured_log.detach()
        if self._sql_engine is not None:
            self._sql_engine.dispose()
            self._sql_engine = None
