"""Workflow engine: runs the steps of a mode's workflow one at a time.

The engine is built once per workspace and owns at most one run. Every
transition is persisted through a :class:`WorkflowStateStore` so a run can
continue after a restart; a resumed run re-executes the step it stopped at
(step handlers are at-least-once).
"""

import inspect
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from specflow.core.approval import ApprovalGateway
from specflow.core.errors import (
    ApprovalDenied,
    HandlerError,
    HandlerNotFoundError,
    InvalidRunStateError,
    NoWorkflowToResumeError,
    PersistenceError,
    ValidationError,
    WorkflowAlreadyRunningError,
)
from specflow.core.events import (
    ApprovalRequired,
    EventBus,
    ProgressUpdated,
    SpecflowEvent,
    WorkflowCancelled,
    WorkflowCompleted,
    WorkflowFailed,
    WorkflowResumed,
    WorkflowStarted,
    WorkflowStopped,
)
from specflow.core.models import (
    EngineState,
    ProgressStatus,
    PromptLoader,
    StepDefinition,
    StepResult,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowProgress,
    WorkflowRunState,
    WorkflowState,
)
from specflow.core.progress import ProgressRenderOptions, ProgressReporter
from specflow.core.registry import WorkflowRegistry

if TYPE_CHECKING:
    from specflow.adapters.storage.base import WorkflowStateStore
    from specflow.core.sessions import SessionStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[WorkflowProgress], Any]
ApprovalCallback = Callable[[ApprovalRequired], Any]


class WorkflowEngine:
    """
    Step-by-step workflow executor with approval gates.

    Handles one run at a time: ``start`` or ``resume`` drive the step loop
    until the workflow completes, a step fails or stops it, an approval is
    denied or ``cancel`` is called.
    """

    def __init__(
        self,
        registry: WorkflowRegistry,
        state_store: "WorkflowStateStore",
        scope: str = "default",
        *,
        approval_gateway: ApprovalGateway | None = None,
        event_bus: EventBus | None = None,
        progress_reporter: ProgressReporter | None = None,
        session_store: "SessionStore | None" = None,
        prompt_loader: PromptLoader | None = None,
    ):
        """
        Initialize the workflow engine.

        Args:
            registry: Mode → workflow lookup plus handler and strategy resolution.
            state_store: Snapshot store; one slot under *scope*.
            scope: Key of this engine's snapshot (usually the workspace).
            approval_gateway: Asked whenever a step requires approval. Without
                one, every approval is denied.
            event_bus: Receives progress, approval and lifecycle events.
            progress_reporter: Collects timings and the execution log.
            session_store: When set, the session passed to ``start`` tracks
                the run's position.
            prompt_loader: Loads a step's ``prompt_file`` into the context.
        """
        self._registry = registry
        self._store = state_store
        self.scope = scope
        self._gateway = approval_gateway
        self._bus = event_bus or EventBus()
        self._progress = progress_reporter or ProgressReporter()
        self._sessions = session_store
        self._prompt_loader = prompt_loader

        self._state = WorkflowState.IDLE
        self._workflow: WorkflowDefinition | None = None
        self._context: WorkflowContext | None = None
        self._current_step = 0
        self._session_id: str | None = None
        self._started_at: datetime | None = None
        self._current_progress: WorkflowProgress | None = None
        self._running = False
        self._generation = 0
        self.last_outcome: WorkflowState | None = None

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def progress_reporter(self) -> ProgressReporter:
        return self._progress

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    async def start(
        self,
        mode: str,
        command: str | None = None,
        spec_name: str | None = None,
        session_id: str | None = None,
        user_input: str | None = None,
    ) -> WorkflowState:
        """Start the workflow registered for *mode* from its first step.

        Returns:
            The state the run ended in.

        Raises:
            WorkflowAlreadyRunningError: A run is already in flight.
            UnknownModeError: No workflow is registered for *mode*.
            PersistenceError: The snapshot could not be written or cleared.
        """
        if self._running:
            raise WorkflowAlreadyRunningError(
                f"Workflow {self._workflow_name()!r} is already running"
            )

        workflow = self._registry.get(mode)
        generation = self._begin_run(
            workflow,
            WorkflowContext(
                mode=mode, spec_name=spec_name, command=command, user_input=user_input
            ),
            current_step=0,
            session_id=session_id,
        )
        self._progress.reset()
        self._progress.start_tracking()
        self._progress.add_log("Workflow", f"Started {workflow.name}")
        logger.info("Starting workflow %s (mode=%s, spec=%s)", workflow.name, mode, spec_name)

        try:
            if len(workflow) > 0:
                self._persist()
            await self._emit(WorkflowStarted(workflow_name=workflow.name, mode=mode))
            return await self._run_loop(generation)
        except PersistenceError:
            self._abort_after_persistence_error(generation)
            raise
        finally:
            if self._generation == generation:
                self._running = False

    async def resume(self, session_id: str | None = None) -> WorkflowState:
        """Continue the persisted run, re-executing the step it stopped at.

        Raises:
            WorkflowAlreadyRunningError: A run is already in flight.
            NoWorkflowToResumeError: Nothing is persisted for this scope.
            InvalidRunStateError: The snapshot does not fit its workflow.
            PersistenceError: The snapshot could not be read or written.
        """
        if self._running:
            raise WorkflowAlreadyRunningError("A workflow is already running")

        snapshot = self._store.load(self.scope)
        if snapshot is None:
            raise NoWorkflowToResumeError(f"No workflow state persisted for {self.scope!r}")

        mode, workflow = self._resolve_snapshot(snapshot)
        generation = self._begin_run(
            workflow,
            WorkflowContext(mode=mode, spec_name=snapshot.spec_name),
            current_step=snapshot.current_step,
            session_id=session_id,
        )
        self._started_at = snapshot.started_at
        self._progress.reset()
        self._progress.start_tracking()
        self._progress.add_log(
            "Workflow", f"Resumed {workflow.name} at step {snapshot.current_step + 1}"
        )
        logger.info(
            "Resuming workflow %s at step %d/%d",
            workflow.name,
            snapshot.current_step + 1,
            snapshot.total_steps,
        )

        try:
            await self._emit(
                WorkflowResumed(
                    workflow_name=workflow.name, mode=mode, step_index=snapshot.current_step
                )
            )
            return await self._run_loop(generation)
        except PersistenceError:
            self._abort_after_persistence_error(generation)
            raise
        finally:
            if self._generation == generation:
                self._running = False

    async def cancel(self, reason: str = "Cancelled by user") -> bool:
        """Cancel the active run and forget its persisted state.

        A running handler is allowed to finish and a pending approval is left
        unanswered; neither can advance the cancelled run afterwards.

        Returns:
            ``True`` if something was cancelled.
        """
        if not self._running:
            if self._store.load(self.scope) is None:
                return False
            self._store.clear(self.scope)
            logger.info("Cleared dormant workflow snapshot for %s", self.scope)
            return True

        workflow_name = self._workflow.name if self._workflow else None
        self._generation += 1
        self._running = False
        self._store.clear(self.scope)
        self._context = None
        self._state = WorkflowState.CANCELLED
        self.last_outcome = WorkflowState.CANCELLED
        self._progress.add_log("Workflow", reason, "warning")
        logger.info("Cancelled workflow %s: %s", workflow_name, reason)
        await self._emit(
            WorkflowCancelled(
                workflow_name=workflow_name, session_id=self._session_id, reason=reason
            )
        )
        return True

    def _begin_run(
        self,
        workflow: WorkflowDefinition,
        context: WorkflowContext,
        *,
        current_step: int,
        session_id: str | None,
    ) -> int:
        self._generation += 1
        self._workflow = workflow
        self._context = context
        self._current_step = current_step
        self._session_id = session_id
        self._started_at = datetime.now(UTC)
        self._current_progress = None
        self._state = WorkflowState.RUNNING
        self._running = True
        return self._generation

    def _resolve_snapshot(self, snapshot: WorkflowRunState) -> tuple[str, WorkflowDefinition]:
        try:
            snapshot.validate()
        except ValueError as exc:
            raise InvalidRunStateError(str(exc)) from exc
        if snapshot.is_complete:
            raise InvalidRunStateError(
                f"Snapshot of {snapshot.workflow_name!r} is already at its last step"
            )

        if snapshot.mode:
            mode, workflow = snapshot.mode, self._registry.get(snapshot.mode)
        else:
            found = self._registry.get_by_name(snapshot.workflow_name)
            if found is None:
                raise InvalidRunStateError(
                    f"No registered workflow named {snapshot.workflow_name!r}"
                )
            mode, workflow = found

        if workflow.name != snapshot.workflow_name or len(workflow) != snapshot.total_steps:
            raise InvalidRunStateError(
                f"Snapshot ({snapshot.workflow_name!r}, {snapshot.total_steps} steps) does not "
                f"match workflow {workflow.name!r} with {len(workflow)} steps"
            )
        return mode, workflow

    def _abort_after_persistence_error(self, generation: int) -> None:
        if self._generation != generation:
            return
        logger.error("Workflow stopped: state could not be persisted")
        self._context = None
        self._state = WorkflowState.STOPPED
        self.last_outcome = WorkflowState.STOPPED

    # ------------------------------------------------------------------
    # Step loop
    # ------------------------------------------------------------------

    def _is_stale(self, generation: int) -> bool:
        return self._generation != generation

    async def _run_loop(self, generation: int) -> WorkflowState:
        workflow = self._workflow
        assert workflow is not None

        while self._current_step < len(workflow):
            if self._is_stale(generation):
                return WorkflowState.CANCELLED

            index = self._current_step
            step = workflow.steps[index]
            self._progress.record_step_start(index)
            self._progress.add_log(step.name, f"Starting: {step.description or step.name}")
            logger.info("Step %d/%d: %s", index + 1, len(workflow), step)
            await self._emit_progress(step, ProgressStatus.IN_PROGRESS, step.description)
            if self._is_stale(generation):
                return WorkflowState.CANCELLED

            try:
                result = await self._execute_step(step)
            except (ValidationError, HandlerError) as exc:
                if self._is_stale(generation):
                    return WorkflowState.CANCELLED
                return await self._fail(step, str(exc))

            if self._is_stale(generation):
                logger.info("Ignoring result of %s: run was cancelled", step.id)
                return WorkflowState.CANCELLED

            if not result.success:
                return await self._fail(step, result.message or f"Step {step.name} failed")

            self._merge_step_data(step, result.data)

            if not result.should_continue:
                return await self._stop(step, result)

            if step.requires_approval:
                try:
                    await self._request_approval(step, generation)
                except ApprovalDenied as exc:
                    if self._is_stale(generation):
                        return WorkflowState.CANCELLED
                    return await self._deny(step, exc)
                except HandlerError as exc:
                    if self._is_stale(generation):
                        return WorkflowState.CANCELLED
                    return await self._fail(step, str(exc))
                if self._is_stale(generation):
                    logger.info("Ignoring approval of %s: run was cancelled", step.id)
                    return WorkflowState.CANCELLED

            self._progress.add_log(step.name, result.message or "Completed")
            self._current_step = index + 1
            if self._current_step < len(workflow):
                self._persist()

        return await self._complete()

    async def _execute_step(self, step: StepDefinition) -> StepResult:
        """Run *step*'s handler.

        Raises:
            ValidationError: A consumed key is missing, a produced key was not
                returned or the handler rejected its preconditions.
            HandlerError: The handler is unknown, raised or returned garbage.
        """
        context = self._context
        assert context is not None

        missing = [key for key in step.consumes if key not in context.step_data]
        if missing:
            raise ValidationError(
                f"Step {step.name} requires context keys: {', '.join(missing)}"
            )

        await self._load_prompt(step, context)

        try:
            handler = self._registry.resolve_handler(step)
        except HandlerNotFoundError as exc:
            raise HandlerError(step.id, str(exc)) from exc

        try:
            result = handler(context)
            if inspect.isawaitable(result):
                result = await result
        except ValidationError:
            raise
        except Exception as exc:
            logger.error("Step %s raised: %s", step.id, exc, exc_info=True)
            raise HandlerError(step.id, str(exc) or type(exc).__name__) from exc

        if not isinstance(result, StepResult):
            raise HandlerError(
                step.id, f"Handler {step.handler_ref} returned {type(result).__name__}"
            )

        if result.success and step.produces:
            data = result.data if isinstance(result.data, dict) else {}
            absent = [key for key in step.produces if key not in data]
            if absent:
                raise ValidationError(
                    f"Step {step.name} did not produce: {', '.join(absent)}"
                )
        return result

    async def _load_prompt(self, step: StepDefinition, context: WorkflowContext) -> None:
        if not step.prompt_file or self._prompt_loader is None:
            return
        try:
            text = self._prompt_loader(step.prompt_file, context)
            if inspect.isawaitable(text):
                text = await text
        except Exception as exc:
            logger.warning("Could not load prompt %s for %s: %s", step.prompt_file, step.id, exc)
            self._progress.add_log(step.name, f"Prompt {step.prompt_file} unavailable", "warning")
            return
        if text is not None:
            context.step_data[f"{step.id}_prompt"] = text

    def _merge_step_data(self, step: StepDefinition, data: Any) -> None:
        if data is None or self._context is None:
            return
        if isinstance(data, dict):
            self._context.step_data.update(data)
        else:
            self._context.step_data[step.id] = data

    async def _request_approval(self, step: StepDefinition, generation: int) -> None:
        """Block on the approval strategy of *step*.

        Raises:
            ApprovalDenied: The answer was anything but approval.
            HandlerError: The strategy or one of its actions raised.
        """
        context = self._context
        assert context is not None
        strategy = self._registry.resolve_strategy(step)
        gateway = self._gateway

        self._state = WorkflowState.WAITING_APPROVAL
        self._progress.add_log(step.name, "Waiting for approval")
        await self._emit_progress(step, ProgressStatus.WAITING_APPROVAL, "Waiting for approval")

        async def ask(message: str, options) -> str:
            options = tuple(options)
            if gateway is None:
                logger.warning("No approval gateway configured; denying %s", step.id)
                return ""
            await self._emit(
                ApprovalRequired(
                    workflow_name=self._workflow.name if self._workflow else None,
                    session_id=self._session_id,
                    step_name=step.name,
                    message=message,
                    options=options,
                )
            )
            return await gateway.request(step.name, message, options)

        try:
            decision = await strategy.decide(step, context, ask)
        except Exception as exc:
            logger.error("Approval for %s failed: %s", step.id, exc, exc_info=True)
            raise HandlerError(step.id, f"Approval failed: {exc}") from exc

        if self._is_stale(generation):
            return
        self._state = WorkflowState.RUNNING
        if not decision.approved:
            raise ApprovalDenied(step.name, decision.response)
        self._progress.add_log(step.name, f"Approved ({decision.response})")

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    async def _fail(self, step: StepDefinition, message: str) -> WorkflowState:
        logger.error("Workflow %s failed at %s: %s", self._workflow_name(), step.id, message)
        self._progress.add_log(step.name, message, "error")
        await self._emit_progress(step, ProgressStatus.FAILED, message)
        self._finish(WorkflowState.FAILED, keep_context=False)
        await self._emit(
            WorkflowFailed(
                workflow_name=self._workflow_name(),
                session_id=self._session_id,
                step_id=step.id,
                error=message,
            )
        )
        return WorkflowState.FAILED

    async def _stop(self, step: StepDefinition, result: StepResult) -> WorkflowState:
        message = result.message or f"Stopped after {step.name}"
        logger.info("Workflow %s stopped at %s: %s", self._workflow_name(), step.id, message)
        self._progress.add_log(step.name, message)
        self._finish(WorkflowState.STOPPED, keep_context=True)
        await self._emit(
            WorkflowStopped(
                workflow_name=self._workflow_name(),
                session_id=self._session_id,
                step_id=step.id,
                data={"message": message},
            )
        )
        return WorkflowState.STOPPED

    async def _deny(self, step: StepDefinition, exc: ApprovalDenied) -> WorkflowState:
        reason = f"Workflow cancelled at {step.name}: not approved ({exc.response or 'no answer'})"
        logger.info(reason)
        self._progress.add_log(step.name, reason, "warning")
        self._finish(WorkflowState.CANCELLED, keep_context=False)
        await self._emit(
            WorkflowCancelled(
                workflow_name=self._workflow_name(), session_id=self._session_id, reason=reason
            )
        )
        return WorkflowState.CANCELLED

    async def _complete(self) -> WorkflowState:
        workflow = self._workflow
        assert workflow is not None
        elapsed = self._progress.get_total_elapsed_time() or "0s"
        message = f"Workflow completed successfully in {elapsed}"
        self._progress.add_log("Workflow", message)
        logger.info("%s: %s", workflow.name, message)

        progress = WorkflowProgress(
            workflow_name=workflow.name,
            total_steps=len(workflow),
            current_step=len(workflow),
            current_step_name="Complete",
            status=ProgressStatus.COMPLETED,
            message=message,
        )
        self._current_progress = progress
        await self._emit(
            ProgressUpdated(
                workflow_name=workflow.name, session_id=self._session_id, progress=progress
            )
        )

        session_id = self._session_id
        self._finish(WorkflowState.COMPLETED, keep_context=False)
        if self._sessions is not None and session_id:
            self._track_session(self._sessions.complete_session, session_id)
        await self._emit(
            WorkflowCompleted(workflow_name=workflow.name, session_id=session_id, elapsed=elapsed)
        )
        return WorkflowState.COMPLETED

    def _finish(self, state: WorkflowState, *, keep_context: bool) -> None:
        self._store.clear(self.scope)
        if not keep_context:
            self._context = None
        self._state = state
        self.last_outcome = state

    # ------------------------------------------------------------------
    # Persistence and events
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        workflow = self._workflow
        assert workflow is not None
        state = WorkflowRunState(
            workflow_name=workflow.name,
            current_step=self._current_step,
            total_steps=len(workflow),
            spec_name=self._context.spec_name if self._context else None,
            mode=self._context.mode if self._context else None,
            started_at=self._started_at or datetime.now(UTC),
            last_updated=datetime.now(UTC),
        )
        state.validate()
        self._store.save(self.scope, state)

    async def _emit_progress(
        self, step: StepDefinition, status: ProgressStatus, message: str | None = None
    ) -> None:
        workflow = self._workflow
        assert workflow is not None
        progress = WorkflowProgress(
            workflow_name=workflow.name,
            total_steps=len(workflow),
            current_step=self._current_step,
            current_step_name=step.name,
            status=status,
            message=message or None,
        )
        self._current_progress = progress

        if self._sessions is not None and self._session_id and self._context is not None:
            self._track_session(
                self._sessions.update_session_workflow,
                self._session_id,
                workflow_name=workflow.name,
                context=self._context,
                current_step=self._current_step,
                total_steps=len(workflow),
            )

        await self._emit(
            ProgressUpdated(
                workflow_name=workflow.name, session_id=self._session_id, progress=progress
            )
        )

    def _track_session(self, update, *args, **kwargs) -> None:
        # Session bookkeeping never aborts a run.
        try:
            update(*args, **kwargs)
        except PersistenceError as exc:
            logger.error("Failed to persist session %s: %s", self._session_id, exc)

    async def _emit(self, event: SpecflowEvent) -> None:
        if event.session_id is None:
            event.session_id = self._session_id
        await self._bus.emit(event)

    def _workflow_name(self) -> str | None:
        return self._workflow.name if self._workflow else None

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_progress(self, handler: ProgressCallback) -> str:
        """Call *handler* with every :class:`WorkflowProgress`. Returns a subscription id."""

        async def _deliver(event: ProgressUpdated) -> None:
            if event.progress is None:
                return
            result = handler(event.progress)
            if inspect.isawaitable(result):
                await result

        return self._bus.subscribe("workflow.progress", _deliver)

    def on_approval_required(self, handler: ApprovalCallback) -> str:
        """Call *handler* right before the engine blocks on an approval."""
        return self._bus.subscribe("workflow.approval_required", handler)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_state(self) -> EngineState:
        return EngineState(
            state=self._state,
            workflow=self._workflow,
            current_step=self._current_step,
            context=self._context.snapshot() if self._context else None,
            session_id=self._session_id,
        )

    def is_running(self) -> bool:
        return self._running

    def get_progress_percent(self) -> int:
        if self._workflow is None:
            return 0
        total = len(self._workflow)
        if total == 0:
            return 100 if self._state == WorkflowState.COMPLETED else 0
        if self._state == WorkflowState.COMPLETED:
            return 100
        return round(self._current_step / total * 100)

    def get_current_progress(self) -> WorkflowProgress | None:
        return self._current_progress

    def render_progress(self, show_details: bool = False) -> str | None:
        """Markdown view of the latest progress, or ``None`` before the first event."""
        if self._current_progress is None:
            return None
        step_names = self._workflow.step_names() if self._workflow else None
        return self._progress.render_progress(
            self._current_progress,
            ProgressRenderOptions(show_details=show_details),
            step_names=step_names,
        )
