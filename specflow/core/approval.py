"""Approval gates for workflow steps.

Two layers:

* an :class:`ApprovalGateway` asks a human one question and returns the
  chosen option. It has no timeout and may block indefinitely;
* an :class:`ApprovalStrategy` decides, per step, which questions to ask
  through the gateway and whether the answers approve the step. Steps name
  their strategy in the workflow definition; the engine never inspects step
  ids to pick one.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from specflow.core.config import APPROVE_OPTION, DEFAULT_APPROVAL_OPTIONS
from specflow.core.models import ApprovalRequest, StepDefinition, WorkflowContext

logger = logging.getLogger(__name__)

AskFn = Callable[[str, Sequence[str]], Awaitable[str]]


# ---------------------------------------------------------------------------
# Gateways
# ---------------------------------------------------------------------------


@runtime_checkable
class ApprovalGateway(Protocol):
    """Asks a human to pick one of *options* for a pending step."""

    async def request(self, step_name: str, message: str, options: Sequence[str]) -> str: ...


class CallbackApprovalGateway:
    """Delegates the question to a sync or async callable.

    The callable receives an :class:`ApprovalRequest` and returns the chosen
    option.
    """

    def __init__(self, callback: Callable[[ApprovalRequest], Awaitable[str] | str]):
        self._callback = callback

    async def request(self, step_name: str, message: str, options: Sequence[str]) -> str:
        approval_request = ApprovalRequest(
            step_name=step_name, message=message, options=tuple(options)
        )
        result = self._callback(approval_request)
        if inspect.isawaitable(result):
            result = await result
        response = "" if result is None else str(result)
        if response not in approval_request.options:
            logger.warning(
                "Approval callback for %s returned %r, which is not one of %s",
                step_name,
                response,
                list(approval_request.options),
            )
        return response


class AutoApprovalGateway:
    """Answers every request with a fixed option. Useful for headless runs."""

    def __init__(self, choice: str = APPROVE_OPTION):
        self.choice = choice
        self.requests: list[ApprovalRequest] = []

    async def request(self, step_name: str, message: str, options: Sequence[str]) -> str:
        self.requests.append(
            ApprovalRequest(step_name=step_name, message=message, options=tuple(options))
        )
        logger.info("Auto-answering approval for %s with %r", step_name, self.choice)
        return self.choice


class InteractiveApprovalGateway:
    """Bounded channel between the engine and a UI.

    ``request`` enqueues the question and waits for :meth:`respond`. The queue
    is bounded so a second engine run blocks instead of piling up questions.

    Usage::

        gateway = InteractiveApprovalGateway()
        pending = await gateway.next_request()
        gateway.respond("Approve")
    """

    def __init__(self, maxsize: int = 1):
        self._queue: asyncio.Queue[tuple[ApprovalRequest, asyncio.Future]] = asyncio.Queue(
            maxsize=maxsize
        )
        self._current: tuple[ApprovalRequest, asyncio.Future] | None = None

    async def request(self, step_name: str, message: str, options: Sequence[str]) -> str:
        approval_request = ApprovalRequest(
            step_name=step_name, message=message, options=tuple(options)
        )
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((approval_request, future))
        return await future

    @property
    def pending(self) -> ApprovalRequest | None:
        """The request :meth:`respond` would answer next, if already taken off the queue."""
        if self._current and not self._current[1].done():
            return self._current[0]
        return None

    async def next_request(self) -> ApprovalRequest:
        """Wait for the next unanswered request."""
        if self._current is None or self._current[1].done():
            self._current = await self._queue.get()
        return self._current[0]

    def respond(self, choice: str) -> ApprovalRequest:
        """Answer the oldest pending request.

        Raises:
            LookupError: No request is pending.
            ValueError: *choice* is not one of the offered options.
        """
        if self._current is None or self._current[1].done():
            try:
                self._current = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                raise LookupError("No approval request is pending") from None

        approval_request, future = self._current
        if choice not in approval_request.options:
            raise ValueError(
                f"{choice!r} is not one of {list(approval_request.options)} "
                f"for step {approval_request.step_name}"
            )
        if not future.done():
            future.set_result(choice)
        self._current = None
        return approval_request


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


@dataclass
class ApprovalDecision:
    approved: bool
    response: str | None = None


@runtime_checkable
class ApprovalStrategy(Protocol):
    """Decides whether a step is approved, asking questions through *ask*."""

    async def decide(
        self, step: StepDefinition, context: WorkflowContext, ask: AskFn
    ) -> ApprovalDecision: ...


class DefaultApprovalStrategy:
    """Single question; only the canonical approve option advances."""

    def __init__(
        self,
        approve_option: str = APPROVE_OPTION,
        options: Sequence[str] = DEFAULT_APPROVAL_OPTIONS,
    ):
        if approve_option not in options:
            options = (approve_option, *options)
        self.approve_option = approve_option
        self.options = tuple(options)

    async def decide(
        self, step: StepDefinition, context: WorkflowContext, ask: AskFn
    ) -> ApprovalDecision:
        response = await ask(f"Do you want to proceed with: {step.name}?", self.options)
        return ApprovalDecision(approved=response == self.approve_option, response=response)


@dataclass
class ReviewChoice:
    """One option of a :class:`ReviewChoiceApprovalStrategy` question.

    ``action`` runs when the option is picked (e.g. open files for review).
    With a ``follow_up`` question the step is approved only if the follow-up
    is confirmed; without one, ``approves`` decides.
    """

    action: Callable[[WorkflowContext], Awaitable[Any] | Any] | None = None
    follow_up: str | None = None
    approves: bool = False


class ReviewChoiceApprovalStrategy:
    """Offers several actions before asking for confirmation.

    Applies only while ``context.step_data[flag_key]`` is truthy; otherwise
    the *fallback* strategy decides.
    """

    def __init__(
        self,
        flag_key: str,
        message: str,
        choices: Mapping[str, ReviewChoice],
        confirm_option: str = "Yes, Continue",
        cancel_option: str = "Cancel Workflow",
        fallback: ApprovalStrategy | None = None,
    ):
        if not choices:
            raise ValueError("ReviewChoiceApprovalStrategy needs at least one choice")
        self.flag_key = flag_key
        self.message = message
        self.choices = dict(choices)
        self.confirm_option = confirm_option
        self.cancel_option = cancel_option
        self.fallback = fallback or DefaultApprovalStrategy()

    async def decide(
        self, step: StepDefinition, context: WorkflowContext, ask: AskFn
    ) -> ApprovalDecision:
        if not context.step_data.get(self.flag_key):
            return await self.fallback.decide(step, context, ask)

        response = await ask(self.message, tuple(self.choices))
        choice = self.choices.get(response)
        if choice is None:
            return ApprovalDecision(approved=False, response=response)

        if choice.action is not None:
            result = choice.action(context)
            if inspect.isawaitable(result):
                await result

        if choice.follow_up:
            confirmation = await ask(choice.follow_up, (self.confirm_option, self.cancel_option))
            return ApprovalDecision(
                approved=confirmation == self.confirm_option, response=confirmation
            )
        return ApprovalDecision(approved=choice.approves, response=response)
