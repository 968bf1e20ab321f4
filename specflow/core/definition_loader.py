"""Build :class:`WorkflowDefinition` objects from dicts and YAML documents.

A workflow document looks like::

    name: Spec Mode
    mode: spec
    description: Plan first, then build.
    steps:
      - id: requirements
        name: Requirements
        description: Generate requirements document
        handler: spec.requirements
        requires_approval: true
        prompt_file: requirements.prompt.md

A file may also hold several workflows under a top-level ``workflows`` list.
"""

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from specflow.core.errors import WorkflowDefinitionError
from specflow.core.models import StepDefinition, WorkflowDefinition

logger = logging.getLogger(__name__)

_TRUTHY_STRINGS = {"1", "true", "yes", "on"}
_FALSY_STRINGS = {"0", "false", "no", "off"}

_STEP_KEYS = {
    "id",
    "name",
    "description",
    "handler",
    "handler_ref",
    "requires_approval",
    "prompt_file",
    "consumes",
    "produces",
    "approval_strategy",
}


def slugify(text: str) -> str:
    """Convert text into a safe step id."""
    value = re.sub(r"[^a-zA-Z0-9_-]+", "-", text.strip().lower())
    return value.strip("-")


def _parse_bool(value: Any, *, where: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUTHY_STRINGS:
            return True
        if normalized in _FALSY_STRINGS:
            return False
    raise WorkflowDefinitionError(f"{where}: expected a boolean, got {value!r}")


def _parse_keys(value: Any, *, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return tuple(value)
    raise WorkflowDefinitionError(f"{where}: expected a list of strings, got {value!r}")


def build_step(step_data: dict[str, Any], index: int) -> StepDefinition:
    """Build one :class:`StepDefinition` from its dict form."""
    where = f"step {index + 1}"
    if not isinstance(step_data, dict):
        raise WorkflowDefinitionError(f"{where} must be a mapping")

    unknown = set(step_data) - _STEP_KEYS
    if unknown:
        logger.warning("Ignoring unknown keys in %s: %s", where, ", ".join(sorted(unknown)))

    name = str(step_data.get("name") or "").strip()
    step_id = str(step_data.get("id") or "").strip() or slugify(name)
    if not step_id:
        raise WorkflowDefinitionError(f"{where} needs an id or a name")

    handler_ref = step_data.get("handler") or step_data.get("handler_ref")
    if not handler_ref or not isinstance(handler_ref, str):
        raise WorkflowDefinitionError(f"{where} ({step_id}) needs a handler reference")

    return StepDefinition(
        id=step_id,
        name=name or step_id,
        description=str(step_data.get("description", "")),
        handler_ref=handler_ref,
        requires_approval=_parse_bool(
            step_data.get("requires_approval", False), where=f"{where}.requires_approval"
        ),
        prompt_file=step_data.get("prompt_file") or None,
        consumes=_parse_keys(step_data.get("consumes"), where=f"{where}.consumes"),
        produces=_parse_keys(step_data.get("produces"), where=f"{where}.produces"),
        approval_strategy=step_data.get("approval_strategy") or None,
    )


def definition_from_dict(data: dict[str, Any]) -> WorkflowDefinition:
    """Build a :class:`WorkflowDefinition` from a parsed document.

    Raises:
        WorkflowDefinitionError: The document is not a mapping, has no name,
            has a malformed step or repeats a step id.
    """
    if not isinstance(data, dict):
        raise WorkflowDefinitionError("Workflow definition must be a mapping")

    name = str(data.get("name") or "").strip()
    if not name:
        raise WorkflowDefinitionError("Workflow definition needs a name")

    steps_data = data.get("steps") or []
    if not isinstance(steps_data, list):
        raise WorkflowDefinitionError(f"Workflow '{name}': steps must be a list")

    steps = tuple(build_step(step_data, index) for index, step_data in enumerate(steps_data))

    seen: set[str] = set()
    for step in steps:
        if step.id in seen:
            raise WorkflowDefinitionError(f"Workflow '{name}': duplicate step id '{step.id}'")
        seen.add(step.id)

    return WorkflowDefinition(
        name=name,
        steps=steps,
        description=str(data.get("description", "")),
    )


def load_workflow_documents(yaml_path: str | Path) -> list[dict[str, Any]]:
    """Read a YAML file holding one workflow or a ``workflows`` list."""
    with open(yaml_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if isinstance(data, dict) and "workflows" in data:
        documents = data["workflows"]
        if not isinstance(documents, list):
            raise WorkflowDefinitionError(f"{yaml_path}: 'workflows' must be a list")
        return documents
    if isinstance(data, dict):
        return [data]
    raise WorkflowDefinitionError(f"{yaml_path}: expected a mapping at the top level")


def definition_from_yaml(yaml_path: str | Path) -> WorkflowDefinition:
    """Load a single workflow definition from a YAML file."""
    documents = load_workflow_documents(yaml_path)
    if len(documents) != 1:
        raise WorkflowDefinitionError(
            f"{yaml_path}: expected exactly one workflow, found {len(documents)}"
        )
    return definition_from_dict(documents[0])
