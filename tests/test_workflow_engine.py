"""Tests for WorkflowEngine: step loop, approval gates, persistence and cancellation."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from specflow.adapters.storage import FileSessionStorage, InMemoryWorkflowStateStore
from specflow.core.approval import AutoApprovalGateway, InteractiveApprovalGateway
from specflow.core.errors import (
    InvalidRunStateError,
    NoWorkflowToResumeError,
    PersistenceError,
    UnknownModeError,
    WorkflowAlreadyRunningError,
)
from specflow.core.models import (
    ProgressStatus,
    StepDefinition,
    StepResult,
    WorkflowDefinition,
    WorkflowRunState,
    WorkflowState,
)
from specflow.core.registry import WorkflowRegistry
from specflow.core.sessions import SessionStore
from specflow.core.workflow import WorkflowEngine

SCOPE = "/workspace"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_step(step_id: str, *, approval: bool = False, **kwargs) -> StepDefinition:
    return StepDefinition(
        id=step_id,
        name=step_id.title(),
        description=f"Run {step_id}",
        handler_ref=f"test.{step_id}",
        requires_approval=approval,
        **kwargs,
    )


def ok(**kwargs) -> MagicMock:
    return MagicMock(return_value=StepResult(success=True, **kwargs))


def build_engine(
    steps: list[StepDefinition],
    handlers: dict[str, object],
    *,
    mode: str = "spec",
    name: str = "Test Workflow",
    store=None,
    **engine_kwargs,
) -> tuple[WorkflowEngine, InMemoryWorkflowStateStore]:
    registry = WorkflowRegistry()
    registry.register_workflow(mode, WorkflowDefinition(name=name, steps=tuple(steps)))
    for step_id, handler in handlers.items():
        registry.register_handler(f"test.{step_id}", handler)
    store = store or InMemoryWorkflowStateStore()
    return WorkflowEngine(registry, store, SCOPE, **engine_kwargs), store


def collect_progress(engine: WorkflowEngine) -> list:
    seen: list = []
    engine.on_progress(seen.append)
    return seen


def collect_events(engine: WorkflowEngine) -> list:
    seen: list = []
    engine.event_bus.subscribe_pattern("workflow.*", seen.append)
    return seen


async def wait_for_approval(gateway: InteractiveApprovalGateway):
    return await asyncio.wait_for(gateway.next_request(), timeout=1)


# ---------------------------------------------------------------------------
# Basic execution
# ---------------------------------------------------------------------------


class TestRunToCompletion:
    @pytest.mark.asyncio
    async def test_runs_every_step_in_order(self):
        calls: list[str] = []

        def handler(step_id):
            def _run(context):
                calls.append(step_id)
                return StepResult(success=True)

            return _run

        engine, store = build_engine(
            [make_step("a"), make_step("b"), make_step("c")],
            {"a": handler("a"), "b": handler("b"), "c": handler("c")},
        )

        outcome = await engine.start("spec", spec_name="login")

        assert outcome == WorkflowState.COMPLETED
        assert calls == ["a", "b", "c"]
        assert store.load(SCOPE) is None
        assert engine.get_progress_percent() == 100
        assert engine.is_running() is False
        assert engine.last_outcome == WorkflowState.COMPLETED

    @pytest.mark.asyncio
    async def test_async_handlers_are_awaited(self):
        async def handler(context):
            await asyncio.sleep(0)
            return StepResult(success=True, data={"done": True})

        engine, _ = build_engine([make_step("a")], {"a": handler})
        assert await engine.start("spec") == WorkflowState.COMPLETED

    @pytest.mark.asyncio
    async def test_event_order_for_single_step(self):
        engine, _ = build_engine([make_step("a")], {"a": ok()})
        events = collect_events(engine)

        await engine.start("spec")

        assert [e.event_type for e in events] == [
            "workflow.started",
            "workflow.progress",
            "workflow.progress",
            "workflow.completed",
        ]
        assert events[-2].progress.status == ProgressStatus.COMPLETED
        assert events[-2].progress.current_step == 1

    @pytest.mark.asyncio
    async def test_zero_step_workflow_completes_immediately(self):
        engine, store = build_engine([], {})
        store.save = MagicMock(wraps=store.save)

        outcome = await engine.start("spec")

        assert outcome == WorkflowState.COMPLETED
        store.save.assert_not_called()
        assert engine.get_progress_percent() == 100

    @pytest.mark.asyncio
    async def test_unknown_mode(self):
        engine, _ = build_engine([make_step("a")], {"a": ok()})
        with pytest.raises(UnknownModeError):
            await engine.start("nope")
        assert engine.is_running() is False


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_after_approved_step(self):
        tasks = ok()
        engine, store = build_engine(
            [make_step("requirements", approval=True), make_step("design"), make_step("tasks")],
            {
                "requirements": ok(),
                "design": MagicMock(return_value=StepResult(success=False, message="boom")),
                "tasks": tasks,
            },
            approval_gateway=AutoApprovalGateway(),
        )
        progress = collect_progress(engine)

        outcome = await engine.start("spec", spec_name="login")

        assert outcome == WorkflowState.FAILED
        assert progress[-1].status == ProgressStatus.FAILED
        assert progress[-1].current_step == 1
        assert progress[-1].message == "boom"
        assert store.load(SCOPE) is None
        tasks.assert_not_called()

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_failure(self):
        engine, _ = build_engine(
            [make_step("a")], {"a": MagicMock(side_effect=RuntimeError("disk full"))}
        )
        events = collect_events(engine)

        assert await engine.start("spec") == WorkflowState.FAILED
        failed = [e for e in events if e.event_type == "workflow.failed"]
        assert failed[0].step_id == "a"
        assert "disk full" in failed[0].error
        assert engine.progress_reporter.has_errors()

    @pytest.mark.asyncio
    async def test_non_step_result_is_rejected(self):
        engine, _ = build_engine([make_step("a")], {"a": MagicMock(return_value={"ok": True})})
        assert await engine.start("spec") == WorkflowState.FAILED

    @pytest.mark.asyncio
    async def test_missing_consumed_key(self):
        handler = ok()
        engine, _ = build_engine(
            [make_step("design", consumes=("spec_path",))], {"design": handler}
        )
        progress = collect_progress(engine)

        assert await engine.start("spec") == WorkflowState.FAILED
        handler.assert_not_called()
        assert "spec_path" in progress[-1].message

    @pytest.mark.asyncio
    async def test_missing_produced_key(self):
        engine, _ = build_engine(
            [make_step("a", produces=("spec_path",)), make_step("b")],
            {"a": ok(data={"other": 1}), "b": ok()},
        )
        events = collect_events(engine)

        assert await engine.start("spec") == WorkflowState.FAILED
        failed = [e for e in events if e.event_type == "workflow.failed"]
        assert "spec_path" in failed[0].error

    @pytest.mark.asyncio
    async def test_persistence_error_stops_engine(self):
        store = InMemoryWorkflowStateStore()
        store.save = MagicMock(side_effect=PersistenceError("read-only"))
        engine, _ = build_engine([make_step("a")], {"a": ok()}, store=store)

        with pytest.raises(PersistenceError):
            await engine.start("spec")

        assert engine.get_state().state == WorkflowState.STOPPED
        assert engine.is_running() is False


# ---------------------------------------------------------------------------
# Soft stop
# ---------------------------------------------------------------------------


class TestSoftStop:
    @pytest.mark.asyncio
    async def test_stop_skips_own_approval(self):
        gateway = AutoApprovalGateway()
        engine, store = build_engine(
            [make_step("execute", approval=True)],
            {"execute": ok(should_continue=False, message="Ready")},
            approval_gateway=gateway,
        )
        events = collect_events(engine)

        outcome = await engine.start("spec")

        assert outcome == WorkflowState.STOPPED
        assert gateway.requests == []
        assert not [e for e in events if e.event_type == "workflow.failed"]
        assert store.load(SCOPE) is None

    @pytest.mark.asyncio
    async def test_stop_keeps_context(self):
        engine, _ = build_engine(
            [make_step("a"), make_step("b"), make_step("c")],
            {
                "a": ok(data={"spec_path": "/specs/login"}),
                "b": ok(data="free text"),
                "c": ok(should_continue=False),
            },
        )

        assert await engine.start("spec") == WorkflowState.STOPPED

        context = engine.get_state().context
        assert context is not None
        assert list(context.step_data.items()) == [
            ("spec_path", "/specs/login"),
            ("b", "free text"),
        ]

    @pytest.mark.asyncio
    async def test_cancel_after_stop_is_noop(self):
        engine, _ = build_engine([make_step("a")], {"a": ok(should_continue=False)})
        events = collect_events(engine)

        assert await engine.start("spec") == WorkflowState.STOPPED

        assert await engine.cancel() is False
        assert engine.last_outcome == WorkflowState.STOPPED
        assert not [e for e in events if e.event_type == "workflow.cancelled"]

    @pytest.mark.asyncio
    async def test_approval_step_that_continues_still_waits(self):
        gateway = InteractiveApprovalGateway()
        engine, _ = build_engine(
            [make_step("a", approval=True)], {"a": ok()}, approval_gateway=gateway
        )

        run = asyncio.create_task(engine.start("spec"))
        request = await wait_for_approval(gateway)

        assert request.step_name == "A"
        assert engine.get_state().state == WorkflowState.WAITING_APPROVAL
        assert not run.done()

        gateway.respond("Approve")
        assert await run == WorkflowState.COMPLETED


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------


class TestApproval:
    @pytest.mark.asyncio
    async def test_rejection_cancels(self):
        next_step = ok()
        engine, store = build_engine(
            [make_step("a", approval=True), make_step("b")],
            {"a": ok(data={"x": 1}), "b": next_step},
            approval_gateway=AutoApprovalGateway("Reject"),
        )

        assert await engine.start("spec") == WorkflowState.CANCELLED
        next_step.assert_not_called()
        assert store.load(SCOPE) is None
        assert engine.get_state().context is None

    @pytest.mark.asyncio
    async def test_no_gateway_denies(self):
        engine, _ = build_engine([make_step("a", approval=True)], {"a": ok()})
        assert await engine.start("spec") == WorkflowState.CANCELLED

    @pytest.mark.asyncio
    async def test_approval_required_event_precedes_request(self):
        gateway = InteractiveApprovalGateway()
        engine, _ = build_engine(
            [make_step("a", approval=True)], {"a": ok()}, approval_gateway=gateway
        )
        asked: list = []
        engine.on_approval_required(asked.append)
        progress = collect_progress(engine)

        run = asyncio.create_task(engine.start("spec"))
        await wait_for_approval(gateway)

        assert len(asked) == 1
        assert asked[0].options == ("Approve", "Reject", "Skip")
        assert progress[-1].status == ProgressStatus.WAITING_APPROVAL

        gateway.respond("Skip")
        assert await run == WorkflowState.CANCELLED

    @pytest.mark.asyncio
    async def test_snapshot_points_at_step_waiting_for_approval(self):
        gateway = InteractiveApprovalGateway()
        engine, store = build_engine(
            [make_step("a"), make_step("b", approval=True), make_step("c")],
            {"a": ok(), "b": ok(), "c": ok()},
            approval_gateway=gateway,
        )

        run = asyncio.create_task(engine.start("spec", spec_name="login"))
        await wait_for_approval(gateway)

        snapshot = store.load(SCOPE)
        assert snapshot.current_step == 1
        assert snapshot.total_steps == 3
        assert snapshot.spec_name == "login"
        assert snapshot.mode == "spec"
        assert engine.get_progress_percent() == 33

        gateway.respond("Approve")
        assert await run == WorkflowState.COMPLETED


# ---------------------------------------------------------------------------
# Concurrency and cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    @pytest.mark.asyncio
    async def test_second_start_rejected_while_running(self):
        gateway = InteractiveApprovalGateway()
        engine, _ = build_engine(
            [make_step("a", approval=True)], {"a": ok()}, approval_gateway=gateway
        )

        run = asyncio.create_task(engine.start("spec"))
        await wait_for_approval(gateway)

        with pytest.raises(WorkflowAlreadyRunningError):
            await engine.start("spec")
        with pytest.raises(WorkflowAlreadyRunningError):
            await engine.resume()

        gateway.respond("Approve")
        assert await run == WorkflowState.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_before_first_step_runs(self):
        handler = ok()
        engine, store = build_engine([make_step("a"), make_step("b")], {"a": handler, "b": ok()})

        async def cancel_on_first_progress(progress):
            if progress.status == ProgressStatus.IN_PROGRESS:
                await engine.cancel()

        engine.on_progress(cancel_on_first_progress)

        outcome = await engine.start("spec")

        assert outcome == WorkflowState.CANCELLED
        handler.assert_not_called()
        assert store.load(SCOPE) is None
        assert engine.get_state().state == WorkflowState.CANCELLED

    @pytest.mark.asyncio
    async def test_late_approval_after_cancel_is_ignored(self):
        gateway = InteractiveApprovalGateway()
        next_step = ok()
        engine, store = build_engine(
            [make_step("a", approval=True), make_step("b")],
            {"a": ok(), "b": next_step},
            approval_gateway=gateway,
        )
        events = collect_events(engine)

        run = asyncio.create_task(engine.start("spec"))
        await wait_for_approval(gateway)

        assert await engine.cancel("User closed the panel") is True
        assert engine.is_running() is False
        assert store.load(SCOPE) is None

        gateway.respond("Approve")
        assert await run == WorkflowState.CANCELLED
        next_step.assert_not_called()
        assert store.load(SCOPE) is None
        cancelled = [e for e in events if e.event_type == "workflow.cancelled"]
        assert [e.reason for e in cancelled] == ["User closed the panel"]

    @pytest.mark.asyncio
    async def test_cancel_without_run(self):
        engine, _ = build_engine([make_step("a")], {"a": ok()})
        assert await engine.cancel() is False

    @pytest.mark.asyncio
    async def test_cancel_clears_dormant_snapshot(self):
        engine, store = build_engine([make_step("a"), make_step("b")], {"a": ok(), "b": ok()})
        store.save(SCOPE, WorkflowRunState("Test Workflow", 1, 2, mode="spec"))

        assert await engine.cancel() is True
        assert store.load(SCOPE) is None


# ---------------------------------------------------------------------------
# Resume
# ---------------------------------------------------------------------------


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_reexecutes_interrupted_step_once(self):
        first, second, third = ok(), ok(), ok()
        engine, store = build_engine(
            [make_step("a"), make_step("b"), make_step("c")],
            {"a": first, "b": second, "c": third},
        )
        store.save(
            SCOPE, WorkflowRunState("Test Workflow", 1, 3, spec_name="login", mode="spec")
        )
        events = collect_events(engine)

        outcome = await engine.resume()

        assert outcome == WorkflowState.COMPLETED
        first.assert_not_called()
        second.assert_called_once()
        third.assert_called_once()
        assert second.call_args.args[0].spec_name == "login"
        assert events[0].event_type == "workflow.resumed"
        assert events[0].step_index == 1
        assert store.load(SCOPE) is None

    @pytest.mark.asyncio
    async def test_resume_finds_mode_by_workflow_name(self):
        handler = ok()
        engine, store = build_engine([make_step("a")], {"a": handler}, mode="vibe")
        store.save(SCOPE, WorkflowRunState("Test Workflow", 0, 1))

        assert await engine.resume() == WorkflowState.COMPLETED
        assert handler.call_args.args[0].mode == "vibe"

    @pytest.mark.asyncio
    async def test_resume_without_snapshot(self):
        engine, _ = build_engine([make_step("a")], {"a": ok()})
        with pytest.raises(NoWorkflowToResumeError):
            await engine.resume()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "snapshot",
        [
            WorkflowRunState("Test Workflow", 2, 2, mode="spec"),
            WorkflowRunState("Test Workflow", 0, 5, mode="spec"),
            WorkflowRunState("Other Workflow", 0, 2),
        ],
    )
    async def test_resume_rejects_mismatched_snapshot(self, snapshot):
        engine, store = build_engine([make_step("a"), make_step("b")], {"a": ok(), "b": ok()})
        store.save(SCOPE, snapshot)

        with pytest.raises(InvalidRunStateError):
            await engine.resume()
        assert engine.is_running() is False


# ---------------------------------------------------------------------------
# Prompts and sessions
# ---------------------------------------------------------------------------


class TestPromptLoading:
    @pytest.mark.asyncio
    async def test_prompt_is_stored_in_context(self):
        seen: dict = {}

        def handler(context):
            seen.update(context.step_data)
            return StepResult(success=True)

        loader = MagicMock(return_value="Write requirements for login")
        engine, _ = build_engine(
            [make_step("req", prompt_file="requirements.prompt.md")],
            {"req": handler},
            prompt_loader=loader,
        )

        await engine.start("spec", spec_name="login")

        assert seen["req_prompt"] == "Write requirements for login"
        assert loader.call_args.args[0] == "requirements.prompt.md"

    @pytest.mark.asyncio
    async def test_prompt_loader_error_is_a_warning(self):
        loader = MagicMock(side_effect=OSError("gone"))
        engine, _ = build_engine(
            [make_step("req", prompt_file="missing.md")], {"req": ok()}, prompt_loader=loader
        )

        assert await engine.start("spec") == WorkflowState.COMPLETED
        assert engine.progress_reporter.has_warnings()


class TestSessionTracking:
    @pytest.mark.asyncio
    async def test_session_follows_run_and_completes(self):
        sessions = SessionStore()
        session = sessions.create_session("spec", spec_name="login")
        gateway = InteractiveApprovalGateway()
        engine, _ = build_engine(
            [make_step("a"), make_step("b", approval=True)],
            {"a": ok(data={"k": "v"}), "b": ok()},
            approval_gateway=gateway,
            session_store=sessions,
        )

        run = asyncio.create_task(engine.start("spec", spec_name="login", session_id=session.id))
        await wait_for_approval(gateway)

        tracked = sessions.get_session(session.id)
        assert tracked.workflow_name == "Test Workflow"
        assert tracked.current_step == 1
        assert tracked.total_steps == 2
        assert tracked.workflow_context.step_data == {"k": "v"}

        gateway.respond("Approve")
        assert await run == WorkflowState.COMPLETED

        tracked = sessions.get_session(session.id)
        assert tracked.is_active is False
        assert tracked.workflow_name is None
        assert sessions.active_session_id is None

    @pytest.mark.asyncio
    async def test_unserializable_step_data_does_not_abort_run(self, tmp_path, caplog):
        sessions = SessionStore(FileSessionStorage(tmp_path))
        session = sessions.create_session("spec")
        engine, store = build_engine(
            [make_step("a"), make_step("b")],
            {"a": ok(data={"when": datetime.now(UTC)}), "b": ok()},
            session_store=sessions,
        )

        with caplog.at_level(logging.ERROR, logger="specflow.core.workflow"):
            outcome = await engine.start("spec", session_id=session.id)

        assert outcome == WorkflowState.COMPLETED
        assert store.load(SCOPE) is None
        assert "Failed to persist session" in caplog.text

    @pytest.mark.asyncio
    async def test_render_progress(self):
        engine, _ = build_engine([make_step("a"), make_step("b")], {"a": ok(), "b": ok()})
        assert engine.render_progress() is None

        await engine.start("spec")

        rendered = engine.render_progress(show_details=True)
        assert "### ⚙️ Test Workflow" in rendered
        assert "Workflow completed successfully" in rendered
        assert "<details>" in rendered
