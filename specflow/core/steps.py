"""Built-in step handlers for the ``vibe`` and ``spec`` modes.

The workflows themselves live in ``specflow/workflows/builtin.yaml``; this
module supplies the handlers they reference and the approval strategy of
the steering step.
"""

import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from specflow.core.approval import ApprovalStrategy, ReviewChoice, ReviewChoiceApprovalStrategy
from specflow.core.errors import ValidationError
from specflow.core.models import StepResult, WorkflowContext
from specflow.core.registry import WorkflowRegistry
from specflow.core.specs import SpecManager
from specflow.core.steering import SteeringManager
from specflow.core.tasks import TaskFile

logger = logging.getLogger(__name__)

BUILTIN_WORKFLOWS_PATH = Path(__file__).resolve().parent.parent / "workflows" / "builtin.yaml"

STEERING_REVIEW_STRATEGY = "steering-review"

STEERING_REVIEW_MESSAGE = (
    "**Steering Setup Complete**\n\n"
    "I've created steering files with default templates. "
    "These files provide project context for all future development.\n\n"
    "Would you like to:\n"
    "- Review and customize the files now\n"
    "- Generate intelligent content based on workspace analysis\n"
    "- Continue with current templates"
)

ContextAction = Callable[[WorkflowContext], Awaitable[Any] | Any]


def _require_spec_name(context: WorkflowContext) -> str:
    if not context.spec_name:
        raise ValidationError("Spec name is required")
    return context.spec_name


class BuiltinSteps:
    """Handlers bound to one workspace's spec and steering documents."""

    def __init__(self, specs: SpecManager, steering: SteeringManager):
        self.specs = specs
        self.steering = steering

    async def execute_task(self, context: WorkflowContext) -> StepResult:
        # Execution itself happens in the conversation; the workflow ends here.
        return StepResult(success=True, should_continue=False, message="Ready for task execution")

    async def requirements(self, context: WorkflowContext) -> StepResult:
        spec_name = _require_spec_name(context)
        if self.specs.get_spec_info(spec_name) is None:
            self.specs.create_spec(spec_name)
        return StepResult(
            success=True,
            message="Requirements step ready",
            data={"spec_path": str(self.specs.spec_path(spec_name))},
        )

    async def steering_check(self, context: WorkflowContext) -> StepResult:
        attention = self.steering.needs_attention()
        if not attention.needed:
            return StepResult(
                success=True,
                message="Steering files already exist and are complete",
                data={"needsGeneration": False},
            )

        analysis = self.steering.analyze_workspace()
        result = self.steering.ensure_steering_files()
        files = [*attention.missing, *attention.empty]
        message = (
            f"Steering files need attention: {', '.join(files)}. "
            "I'll analyze your workspace and generate intelligent content for these files. "
            "You'll be able to review and customize them before continuing."
        )
        logger.info("Created steering files: %s", ", ".join(result.created) or "none")
        return StepResult(
            success=True,
            message=message,
            data={
                "workspace_analysis": analysis.to_dict(),
                "steering_missing": attention.missing,
                "steering_empty": attention.empty,
                "steering_created": result.created,
                "steering_existing": result.existing,
                "needsGeneration": True,
            },
        )

    async def design(self, context: WorkflowContext) -> StepResult:
        spec_name = _require_spec_name(context)
        info = self.specs.get_spec_info(spec_name)
        if info is None or not info.has_requirements:
            raise ValidationError("Requirements must be created before design")
        return StepResult(success=True, message="Design step ready")

    async def create_tasks(self, context: WorkflowContext) -> StepResult:
        spec_name = _require_spec_name(context)
        info = self.specs.get_spec_info(spec_name)
        if info is None or not info.has_design:
            raise ValidationError("Design must be created before tasks")
        return StepResult(success=True, message="Tasks step ready")

    async def execute_tasks(self, context: WorkflowContext) -> StepResult:
        spec_name = _require_spec_name(context)
        info = self.specs.get_spec_info(spec_name)
        if info is None or not info.has_tasks:
            raise ValidationError("Tasks must be created before execution")

        task_file = TaskFile(self.specs.document_path(spec_name, "tasks"))
        upcoming = task_file.next_task()
        stats = task_file.stats()
        return StepResult(
            success=True,
            should_continue=False,
            message="Ready for task execution",
            data={
                "tasks_file": str(task_file.path),
                "next_task": upcoming.number if upcoming else None,
                "tasks_percent_complete": stats.percent_complete,
            },
        )

    def register(self, registry: WorkflowRegistry) -> None:
        registry.register_handler("vibe.execute_task", self.execute_task)
        registry.register_handler("spec.requirements", self.requirements)
        registry.register_handler("spec.steering_check", self.steering_check)
        registry.register_handler("spec.design", self.design)
        registry.register_handler("spec.create_tasks", self.create_tasks)
        registry.register_handler("spec.execute_tasks", self.execute_tasks)


def steering_review_strategy(
    review_action: ContextAction | None = None,
    generate_action: ContextAction | None = None,
    fallback: ApprovalStrategy | None = None,
) -> ReviewChoiceApprovalStrategy:
    """Three-way question shown after steering templates were generated.

    While no templates were generated, *fallback* asks the usual question.
    """
    return ReviewChoiceApprovalStrategy(
        flag_key="needsGeneration",
        message=STEERING_REVIEW_MESSAGE,
        choices={
            "Review Files": ReviewChoice(
                action=review_action,
                follow_up="Have you finished reviewing the steering files?",
            ),
            "Generate Content": ReviewChoice(
                action=generate_action,
                follow_up="Have you finished customizing the steering files?",
            ),
            "Continue": ReviewChoice(approves=True),
        },
        fallback=fallback,
    )


def register_builtin_workflows(
    registry: WorkflowRegistry,
    specs: SpecManager,
    steering: SteeringManager,
    *,
    review_action: ContextAction | None = None,
    generate_action: ContextAction | None = None,
) -> BuiltinSteps:
    """Register the ``vibe`` and ``spec`` workflows with their handlers."""
    steps = BuiltinSteps(specs, steering)
    steps.register(registry)
    review = steering_review_strategy(
        review_action, generate_action, fallback=registry.default_strategy
    )
    registry.register_strategy(STEERING_REVIEW_STRATEGY, review)
    registry.load_yaml(BUILTIN_WORKFLOWS_PATH)
    registry.validate()
    return steps
