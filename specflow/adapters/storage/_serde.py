"""Snapshot and session ↔ dict serialization shared across storage backends.

Field names are camelCase on the wire, timestamps are ISO-8601 strings and
the context bag is written as an ordered list of ``[key, value]`` pairs so
insertion order survives a round trip through any JSON store.
"""

from datetime import UTC, datetime
from typing import Any

from specflow.core.models import ChatMessage, Session, WorkflowContext, WorkflowRunState


def _parse_datetime(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"{field_name}: expected an ISO-8601 timestamp, got {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name}: expected an integer, got {value!r}")
    return value


# ---------------------------------------------------------------------------
# Workflow snapshot
# ---------------------------------------------------------------------------


def run_state_to_dict(state: WorkflowRunState) -> dict[str, Any]:
    data: dict[str, Any] = {
        "workflowName": state.workflow_name,
        "currentStep": state.current_step,
        "totalSteps": state.total_steps,
        "startedAt": state.started_at.isoformat(),
        "lastUpdated": state.last_updated.isoformat(),
    }
    if state.spec_name is not None:
        data["specName"] = state.spec_name
    if state.mode is not None:
        data["mode"] = state.mode
    return data


def run_state_from_dict(data: dict[str, Any]) -> WorkflowRunState:
    """Rebuild a :class:`WorkflowRunState`.

    Raises:
        ValueError: A field is missing or has the wrong type.
    """
    if not isinstance(data, dict):
        raise ValueError("Workflow snapshot must be a JSON object")
    try:
        workflow_name = data["workflowName"]
        current_step = _parse_int(data["currentStep"], "currentStep")
        total_steps = _parse_int(data["totalSteps"], "totalSteps")
    except KeyError as exc:
        raise ValueError(f"Workflow snapshot is missing {exc.args[0]}") from exc
    if not isinstance(workflow_name, str):
        raise ValueError("workflowName must be a string")

    now = datetime.now(UTC).isoformat()
    return WorkflowRunState(
        workflow_name=workflow_name,
        current_step=current_step,
        total_steps=total_steps,
        spec_name=data.get("specName"),
        mode=data.get("mode"),
        started_at=_parse_datetime(data.get("startedAt", now), "startedAt"),
        last_updated=_parse_datetime(data.get("lastUpdated", now), "lastUpdated"),
    )


# ---------------------------------------------------------------------------
# Workflow context
# ---------------------------------------------------------------------------


def context_to_dict(context: WorkflowContext) -> dict[str, Any]:
    return {
        "mode": context.mode,
        "specName": context.spec_name,
        "command": context.command,
        "userInput": context.user_input,
        "stepData": [[key, value] for key, value in context.step_data.items()],
    }


def context_from_dict(data: dict[str, Any]) -> WorkflowContext:
    step_data = data.get("stepData") or []
    if isinstance(step_data, dict):
        pairs = list(step_data.items())
    else:
        pairs = [(pair[0], pair[1]) for pair in step_data]
    return WorkflowContext(
        mode=data.get("mode", ""),
        spec_name=data.get("specName"),
        command=data.get("command"),
        user_input=data.get("userInput"),
        step_data=dict(pairs),
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def message_to_dict(message: ChatMessage) -> dict[str, Any]:
    return {
        "role": message.role,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
    }


def message_from_dict(data: dict[str, Any]) -> ChatMessage:
    return ChatMessage(
        role=data["role"],
        content=data["content"],
        timestamp=_parse_datetime(data["timestamp"], "timestamp"),
    )


def session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "mode": session.mode,
        "workflowName": session.workflow_name,
        "workflowContext": (
            context_to_dict(session.workflow_context) if session.workflow_context else None
        ),
        "currentStep": session.current_step,
        "totalSteps": session.total_steps,
        "specName": session.spec_name,
        "startedAt": session.started_at.isoformat(),
        "lastActivity": session.last_activity.isoformat(),
        "isActive": session.is_active,
        "conversationHistory": [message_to_dict(m) for m in session.conversation_history],
    }


def session_from_dict(data: dict[str, Any]) -> Session:
    context_data = data.get("workflowContext")
    return Session(
        id=data["id"],
        mode=data["mode"],
        workflow_name=data.get("workflowName"),
        workflow_context=context_from_dict(context_data) if context_data else None,
        current_step=data.get("currentStep"),
        total_steps=data.get("totalSteps"),
        spec_name=data.get("specName"),
        started_at=_parse_datetime(data["startedAt"], "startedAt"),
        last_activity=_parse_datetime(data["lastActivity"], "lastActivity"),
        is_active=bool(data.get("isActive", False)),
        conversation_history=[
            message_from_dict(m) for m in data.get("conversationHistory") or []
        ],
    )


def sessions_to_payload(sessions: dict[str, Session], active_session_id: str | None) -> dict:
    payload: dict[str, Any] = {
        "sessions": {session_id: session_to_dict(s) for session_id, s in sessions.items()},
    }
    if active_session_id is not None:
        payload["activeSessionId"] = active_session_id
    return payload


def sessions_from_payload(payload: dict[str, Any]) -> tuple[dict[str, Session], str | None]:
    """Inverse of :func:`sessions_to_payload`.

    Raises:
        ValueError: The payload is malformed.
    """
    if not isinstance(payload, dict):
        raise ValueError("Session payload must be a JSON object")
    raw_sessions = payload.get("sessions") or {}
    if not isinstance(raw_sessions, dict):
        raise ValueError("'sessions' must be an object")
    try:
        sessions = {session_id: session_from_dict(s) for session_id, s in raw_sessions.items()}
    except (KeyError, TypeError, IndexError) as exc:
        raise ValueError(f"Malformed session entry: {exc}") from exc
    return sessions, payload.get("activeSessionId")
