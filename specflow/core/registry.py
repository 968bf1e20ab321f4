"""Registries mapping modes to workflow definitions and references to handlers."""

import logging
import threading
from collections.abc import Mapping
from pathlib import Path

from specflow.core.approval import ApprovalStrategy, DefaultApprovalStrategy
from specflow.core.definition_loader import definition_from_dict, load_workflow_documents
from specflow.core.errors import (
    HandlerNotFoundError,
    UnknownModeError,
    WorkflowDefinitionError,
)
from specflow.core.models import StepDefinition, StepHandler, WorkflowDefinition

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Named step handlers, looked up through ``StepDefinition.handler_ref``."""

    def __init__(self) -> None:
        self._handlers: dict[str, StepHandler] = {}
        self._lock = threading.Lock()

    def register(self, ref: str, handler: StepHandler, *, force: bool = False) -> None:
        """Register *handler* under *ref*.

        Raises:
            ValueError: *ref* is already registered and *force* is False.
        """
        if not callable(handler):
            raise TypeError(f"Handler for {ref!r} is not callable")
        with self._lock:
            if ref in self._handlers and not force:
                raise ValueError(f"Handler already registered: {ref}")
            self._handlers[ref] = handler
        logger.debug("Registered step handler %s", ref)

    def get(self, ref: str) -> StepHandler:
        with self._lock:
            handler = self._handlers.get(ref)
        if handler is None:
            raise HandlerNotFoundError(f"No handler registered for {ref!r}")
        return handler

    def __contains__(self, ref: object) -> bool:
        with self._lock:
            return ref in self._handlers

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._handlers)


class WorkflowRegistry:
    """Mode → :class:`WorkflowDefinition` lookup plus handler and strategy resolution.

    Definitions are registered once while the workspace is wired; the engine
    only reads from the registry afterwards.
    """

    DEFAULT_STRATEGY = "default"

    def __init__(
        self,
        workflows: Mapping[str, WorkflowDefinition] | None = None,
        handlers: HandlerRegistry | None = None,
    ):
        self._workflows: dict[str, WorkflowDefinition] = {}
        self.handlers = handlers or HandlerRegistry()
        self._strategies: dict[str, ApprovalStrategy] = {
            self.DEFAULT_STRATEGY: DefaultApprovalStrategy(),
        }
        self._lock = threading.Lock()
        for mode, definition in (workflows or {}).items():
            self.register_workflow(mode, definition)

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def register_workflow(
        self, mode: str, definition: WorkflowDefinition, *, force: bool = False
    ) -> None:
        if not mode:
            raise ValueError("mode must be a non-empty string")
        with self._lock:
            if mode in self._workflows and not force:
                raise ValueError(f"Workflow already registered for mode {mode!r}")
            self._workflows[mode] = definition
        logger.info(
            "Registered workflow %r for mode %s (%d steps)", definition.name, mode, len(definition)
        )

    def get(self, mode: str) -> WorkflowDefinition:
        """Return the definition for *mode*.

        Raises:
            UnknownModeError: No definition is registered for *mode*.
        """
        with self._lock:
            definition = self._workflows.get(mode)
        if definition is None:
            raise UnknownModeError(f"No workflow registered for mode {mode!r}")
        return definition

    def get_by_name(self, workflow_name: str) -> tuple[str, WorkflowDefinition] | None:
        with self._lock:
            for mode, definition in self._workflows.items():
                if definition.name == workflow_name:
                    return mode, definition
        return None

    def modes(self) -> list[str]:
        with self._lock:
            return list(self._workflows)

    def load_yaml(self, yaml_path: str | Path, *, force: bool = False) -> list[str]:
        """Register every workflow in a YAML file. Each document needs a ``mode`` key.

        Returns:
            The modes that were registered.
        """
        registered = []
        for document in load_workflow_documents(yaml_path):
            mode = document.get("mode") if isinstance(document, dict) else None
            if not mode:
                raise WorkflowDefinitionError(f"{yaml_path}: workflow document without a mode")
            self.register_workflow(str(mode), definition_from_dict(document), force=force)
            registered.append(str(mode))
        return registered

    # ------------------------------------------------------------------
    # Handlers and approval strategies
    # ------------------------------------------------------------------

    def register_handler(self, ref: str, handler: StepHandler, *, force: bool = False) -> None:
        self.handlers.register(ref, handler, force=force)

    def resolve_handler(self, step: StepDefinition) -> StepHandler:
        return self.handlers.get(step.handler_ref)

    def register_strategy(self, name: str, strategy: ApprovalStrategy) -> None:
        with self._lock:
            self._strategies[name] = strategy
        logger.debug("Registered approval strategy %s", name)

    @property
    def default_strategy(self) -> ApprovalStrategy:
        with self._lock:
            return self._strategies[self.DEFAULT_STRATEGY]

    def resolve_strategy(self, step: StepDefinition) -> ApprovalStrategy:
        name = step.approval_strategy or self.DEFAULT_STRATEGY
        with self._lock:
            strategy = self._strategies.get(name)
        if strategy is None:
            raise WorkflowDefinitionError(
                f"Step {step.id!r} names unknown approval strategy {name!r}"
            )
        return strategy

    def validate(self) -> None:
        """Check that every step's handler and approval strategy is registered."""
        with self._lock:
            workflows = list(self._workflows.items())
            strategies = set(self._strategies)
        for mode, definition in workflows:
            for step in definition.steps:
                if step.handler_ref not in self.handlers:
                    raise HandlerNotFoundError(
                        f"Mode {mode!r} step {step.id!r}: no handler {step.handler_ref!r}"
                    )
                if step.approval_strategy and step.approval_strategy not in strategies:
                    raise WorkflowDefinitionError(
                        f"Mode {mode!r} step {step.id!r}: unknown approval strategy "
                        f"{step.approval_strategy!r}"
                    )
