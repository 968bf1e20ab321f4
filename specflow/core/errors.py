"""Exception hierarchy for the specflow workflow engine and session store."""


class SpecflowError(Exception):
    """Base class for all specflow errors."""


class ValidationError(SpecflowError):
    """A step precondition failed (e.g. design requested before requirements).

    Non-retryable. The engine reports it as a failed progress event.
    """


class HandlerError(SpecflowError):
    """A step handler raised or returned ``success=False``."""

    def __init__(self, step_id: str, message: str):
        super().__init__(message)
        self.step_id = step_id
        self.message = message


class ApprovalDenied(SpecflowError):
    """The approval gateway answered with anything but the approve value."""

    def __init__(self, step_name: str, response: str | None):
        super().__init__(f"Step '{step_name}' not approved (response: {response!r})")
        self.step_name = step_name
        self.response = response


class PersistenceError(SpecflowError):
    """Saving, loading or clearing persisted state failed."""


class SessionNotFound(SpecflowError):
    """A session id is unknown. Only used for reporting, never raised by the store."""


class WorkflowAlreadyRunningError(SpecflowError):
    """``start()``/``resume()`` was called while a run is in flight."""


class NoWorkflowToResumeError(SpecflowError):
    """``resume()`` was called but no snapshot is persisted for the scope."""


class InvalidRunStateError(SpecflowError):
    """A persisted snapshot violates ``0 <= current_step < total_steps``."""


class UnknownModeError(SpecflowError, KeyError):
    """No workflow definition is registered for the requested mode."""


class HandlerNotFoundError(SpecflowError, KeyError):
    """A step references a handler that is not registered."""


class WorkflowDefinitionError(SpecflowError, ValueError):
    """A workflow definition document is malformed."""
