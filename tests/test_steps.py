"""Tests for the built-in vibe and spec workflows and their step handlers."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from specflow.adapters.storage import InMemoryWorkflowStateStore
from specflow.core.approval import CallbackApprovalGateway
from specflow.core.errors import ValidationError
from specflow.core.models import ApprovalRequest, WorkflowContext, WorkflowState
from specflow.core.registry import WorkflowRegistry
from specflow.core.specs import SpecManager
from specflow.core.steering import SteeringManager
from specflow.core.steps import (
    STEERING_REVIEW_MESSAGE,
    BuiltinSteps,
    register_builtin_workflows,
)
from specflow.core.workflow import WorkflowEngine

TASKS_MD = "- [x] 1. Scaffold\n- [ ] 2. Build form\n"


@pytest.fixture
def specs(tmp_path) -> SpecManager:
    return SpecManager(tmp_path)


@pytest.fixture
def steering(tmp_path) -> SteeringManager:
    return SteeringManager(tmp_path)


@pytest.fixture
def steps(specs, steering) -> BuiltinSteps:
    return BuiltinSteps(specs, steering)


def _populate_steering(steering: SteeringManager) -> None:
    for name in ("product.md", "tech.md", "structure.md"):
        steering.write_steering_file(name, f"# {name}\n\nReal project notes.\n")


def _answer(choices: list[str]) -> CallbackApprovalGateway:
    asked: list[ApprovalRequest] = []

    def pick(request: ApprovalRequest) -> str:
        asked.append(request)
        for choice in choices:
            if choice in request.options:
                return choice
        return ""

    gateway = CallbackApprovalGateway(pick)
    gateway.asked = asked
    return gateway


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class TestHandlers:
    @pytest.mark.asyncio
    async def test_execute_task_stops_workflow(self, steps):
        result = await steps.execute_task(WorkflowContext("vibe"))
        assert result.success is True
        assert result.should_continue is False

    @pytest.mark.asyncio
    async def test_requirements_creates_spec_once(self, steps, specs):
        context = WorkflowContext("spec", spec_name="login")

        first = await steps.requirements(context)
        second = await steps.requirements(context)

        assert first.data["spec_path"] == str(specs.spec_path("login"))
        assert second.success is True
        assert specs.list_specs() == ["login"]

    @pytest.mark.asyncio
    async def test_requirements_needs_spec_name(self, steps):
        with pytest.raises(ValidationError, match="Spec name is required"):
            await steps.requirements(WorkflowContext("spec"))

    @pytest.mark.asyncio
    async def test_steering_check_when_complete(self, steps, steering):
        _populate_steering(steering)
        result = await steps.steering_check(WorkflowContext("spec"))
        assert result.data == {"needsGeneration": False}

    @pytest.mark.asyncio
    async def test_steering_check_creates_templates(self, steps, steering, tmp_path):
        (tmp_path / "pyproject.toml").write_text("[project]\nname = 'demo'\n")
        steering.write_steering_file("product.md", "   \n")

        result = await steps.steering_check(WorkflowContext("spec"))

        assert result.data["needsGeneration"] is True
        assert result.data["steering_missing"] == ["tech.md", "structure.md"]
        assert result.data["steering_empty"] == ["product.md"]
        assert sorted(result.data["steering_created"]) == ["product.md", "structure.md", "tech.md"]
        assert result.data["workspace_analysis"]["manifests"] == ["pyproject.toml"]
        assert not steering.needs_attention().needed

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "handler,documents,message",
        [
            ("design", [], "Requirements must be created before design"),
            ("create_tasks", ["requirements"], "Design must be created before tasks"),
            ("execute_tasks", ["requirements", "design"], "Tasks must be created before execution"),
        ],
    )
    async def test_stage_preconditions(self, steps, specs, handler, documents, message):
        specs.create_spec("login")
        for stage in documents:
            specs.write_document("login", stage, f"# {stage}\n")

        with pytest.raises(ValidationError, match=message):
            await getattr(steps, handler)(WorkflowContext("spec", spec_name="login"))

    @pytest.mark.asyncio
    async def test_execute_tasks_reports_next_task(self, steps, specs):
        specs.write_document("login", "tasks", TASKS_MD)

        result = await steps.execute_tasks(WorkflowContext("spec", spec_name="login"))

        assert result.should_continue is False
        assert result.data["next_task"] == "2"
        assert result.data["tasks_percent_complete"] == 50


# ---------------------------------------------------------------------------
# Built-in workflows end to end
# ---------------------------------------------------------------------------


def _engine(specs, steering, gateway, **kwargs) -> tuple[WorkflowEngine, BuiltinSteps]:
    registry = WorkflowRegistry()
    builtin = register_builtin_workflows(registry, specs, steering, **kwargs)
    engine = WorkflowEngine(registry, InMemoryWorkflowStateStore(), approval_gateway=gateway)
    return engine, builtin


class TestBuiltinWorkflows:
    def test_registers_both_modes(self, specs, steering):
        registry = WorkflowRegistry()
        register_builtin_workflows(registry, specs, steering)

        assert sorted(registry.modes()) == ["spec", "vibe"]
        spec = registry.get("spec")
        assert [s.id for s in spec.steps] == [
            "requirements",
            "steering-check",
            "design",
            "create-tasks",
            "execute-tasks",
        ]
        assert spec.steps[1].approval_strategy == "steering-review"
        assert len(registry.get("vibe")) == 1

    @pytest.mark.asyncio
    async def test_vibe_mode_stops_after_one_step(self, specs, steering):
        engine, _ = _engine(specs, steering, _answer(["Approve"]))
        assert await engine.start("vibe") == WorkflowState.STOPPED

    @pytest.mark.asyncio
    async def test_spec_mode_runs_to_task_execution(self, specs, steering):
        for stage in ("requirements", "design"):
            specs.write_document("login", stage, f"# {stage}\n")
        specs.write_document("login", "tasks", TASKS_MD)
        gateway = _answer(["Continue", "Approve"])
        engine, _ = _engine(specs, steering, gateway)

        outcome = await engine.start("spec", spec_name="login")

        assert outcome == WorkflowState.STOPPED
        assert engine.get_state().current_step == 4
        assert engine.get_state().context.step_data["next_task"] == "2"
        assert gateway.asked[1].message == STEERING_REVIEW_MESSAGE
        assert gateway.asked[1].options == ("Review Files", "Generate Content", "Continue")

    @pytest.mark.asyncio
    async def test_review_choice_runs_action(self, specs, steering):
        _populate_steering(steering)
        steering.delete_steering_file("tech.md")
        specs.write_document("login", "requirements", "# r\n")
        review = MagicMock(return_value=None)
        gateway = _answer(["Review Files", "Yes, Continue", "Approve"])
        engine, _ = _engine(specs, steering, gateway, review_action=review)

        outcome = await engine.start("spec", spec_name="login")

        review.assert_called_once()
        assert outcome == WorkflowState.FAILED
        assert [r.step_name for r in gateway.asked] == [
            "Requirements",
            "Steering Setup",
            "Steering Setup",
            "Design",
        ]

    @pytest.mark.asyncio
    async def test_design_without_requirements_fails(self, specs, steering):
        _populate_steering(steering)
        engine, _ = _engine(specs, steering, _answer(["Approve"]))
        failures: list = []
        engine.event_bus.subscribe("workflow.failed", failures.append)

        assert await engine.start("spec", spec_name="login") == WorkflowState.FAILED
        assert failures[0].step_id == "design"
        assert failures[0].error == "Requirements must be created before design"
