"""
Basic Workflow Example - Demonstrates core specflow usage.

This example shows:
1. Defining a 3-step workflow with an approval gate
2. Using file storage for crash-safe snapshots
3. Observing progress through the event bus
4. Answering approvals from the console
"""
import asyncio
import tempfile

from specflow.adapters.storage import FileWorkflowStateStore
from specflow.core.approval import CallbackApprovalGateway
from specflow.core.models import (
    ApprovalRequest,
    StepDefinition,
    StepResult,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowProgress,
)
from specflow.core.registry import WorkflowRegistry
from specflow.core.workflow import WorkflowEngine


async def triage(context: WorkflowContext) -> StepResult:
    return StepResult(
        success=True,
        message="Complexity = high, Priority = P1",
        data={"complexity": "high", "priority": "P1"},
    )


async def design(context: WorkflowContext) -> StepResult:
    return StepResult(
        success=True,
        message=f"Design drafted for a {context.step_data['complexity']} complexity feature",
        data={"components": ["api", "database", "frontend"]},
    )


async def implement(context: WorkflowContext) -> StepResult:
    components = ", ".join(context.step_data["components"])
    return StepResult(success=True, message=f"Implemented {components}")


def ask_on_console(request: ApprovalRequest) -> str:
    print(f"\n{request.message}")
    for index, option in enumerate(request.options, start=1):
        print(f"  {index}. {option}")
    answer = input("> ").strip()
    if answer.isdigit() and 1 <= int(answer) <= len(request.options):
        return request.options[int(answer) - 1]
    return answer


async def main():
    """Run a basic workflow example."""

    # 1. Setup storage
    state_dir = tempfile.mkdtemp(prefix="specflow-")
    store = FileWorkflowStateStore(state_dir)
    print(f"✓ Initialized file storage at {state_dir}")

    # 2. Define the workflow and register its handlers
    workflow = WorkflowDefinition(
        name="Feature Development",
        description="Simple 3-step feature development workflow",
        steps=(
            StepDefinition(
                "triage", "Triage", "Analyze the request", "demo.triage", produces=("complexity",)
            ),
            StepDefinition(
                "design",
                "Design",
                "Create technical design",
                "demo.design",
                requires_approval=True,
                consumes=("complexity",),
            ),
            StepDefinition(
                "implement", "Implement", "Build it", "demo.implement", consumes=("components",)
            ),
        ),
    )
    registry = WorkflowRegistry({"feature": workflow})
    registry.register_handler("demo.triage", triage)
    registry.register_handler("demo.design", design)
    registry.register_handler("demo.implement", implement)
    registry.validate()
    print(f"✓ Registered workflow: {workflow.name}")

    # 3. Create workflow engine
    engine = WorkflowEngine(
        registry,
        store,
        scope="demo",
        approval_gateway=CallbackApprovalGateway(ask_on_console),
    )

    def show(progress: WorkflowProgress) -> None:
        print(engine.progress_reporter.render_compact(progress))

    engine.on_progress(show)

    # 4. Run until completion, failure, denial or stop
    print("\n--- Running Workflow ---\n")
    outcome = await engine.start("feature", user_input="Add SSO login")
    print(f"\n✓ Workflow finished: {outcome.value}")
    print(engine.render_progress(show_details=True))


if __name__ == "__main__":
    asyncio.run(main())
