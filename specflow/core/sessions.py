"""Session store: a bounded population of conversational sessions.

Each session may be linked to a running workflow. At most one session is the
*active* one; completed sessions are deactivated rather than deleted and are
evicted later by :meth:`SessionStore.cleanup_sessions`.

Every mutation is written through to a :class:`SessionStorage` backend.
Unknown session ids are logged and ignored, since ids may go stale after
eviction.
"""

import logging
import threading
import time
import uuid
from datetime import UTC, datetime, timedelta

from specflow.adapters.storage._serde import sessions_from_payload, sessions_to_payload
from specflow.adapters.storage.base import SessionStorage
from specflow.adapters.storage.memory import InMemorySessionStorage
from specflow.core.config import MAX_CONVERSATION_HISTORY, MAX_SESSIONS, SESSION_TIMEOUT_HOURS
from specflow.core.errors import PersistenceError
from specflow.core.models import (
    ChatMessage,
    MessageRole,
    Session,
    SessionWorkflowState,
    WorkflowContext,
)

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """Return an id like ``session-1718000000000-a1b2c3d``."""
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"


class SessionStore:
    """Creates, activates, tracks and evicts :class:`Session` objects."""

    def __init__(
        self,
        storage: SessionStorage | None = None,
        *,
        max_sessions: int = MAX_SESSIONS,
        timeout_hours: float = SESSION_TIMEOUT_HOURS,
        max_history: int = MAX_CONVERSATION_HISTORY,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be >= 1")
        if max_history < 1:
            raise ValueError("max_history must be >= 1")
        self._storage = storage or InMemorySessionStorage()
        self.max_sessions = max_sessions
        self.timeout = timedelta(hours=timeout_hours)
        self.max_history = max_history
        self._sessions: dict[str, Session] = {}
        self._active_session_id: str | None = None
        self._lock = threading.RLock()
        self._load()

    # ------------------------------------------------------------------
    # Creation and activation
    # ------------------------------------------------------------------

    def create_session(self, mode: str, spec_name: str | None = None) -> Session:
        """Create an active session and point the active pointer at it.

        Other sessions keep their ``is_active`` flag; use
        :meth:`set_active_session` to make the new one exclusive.
        """
        with self._lock:
            session = Session(id=generate_session_id(), mode=mode, spec_name=spec_name)
            self._sessions[session.id] = session
            self._active_session_id = session.id
            logger.info("Created session %s (mode=%s)", session.id, mode)
            if len(self._sessions) > self.max_sessions:
                self._cleanup_locked()
            self._persist()
            return session

    def get_or_create_active_session(self, mode: str, spec_name: str | None = None) -> Session:
        with self._lock:
            if self._active_session_id:
                session = self._sessions.get(self._active_session_id)
                if session and session.is_active:
                    session.touch()
                    self._persist()
                    return session
            return self.create_session(mode, spec_name)

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def get_active_session(self) -> Session | None:
        with self._lock:
            if not self._active_session_id:
                return None
            return self._sessions.get(self._active_session_id)

    @property
    def active_session_id(self) -> str | None:
        return self._active_session_id

    def set_active_session(self, session_id: str) -> bool:
        """Make *session_id* the only active session.

        Returns:
            ``False`` if the id is unknown.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning("Session not found: %s", session_id)
                return False

            self._active_session_id = session_id
            session.is_active = True
            session.touch()
            for other_id, other in self._sessions.items():
                if other_id != session_id:
                    other.is_active = False

            active = [s.id for s in self._sessions.values() if s.is_active]
            assert active == [session_id], f"expected one active session, found {active}"

            logger.info("Set active session: %s", session_id)
            self._persist()
            return True

    # ------------------------------------------------------------------
    # Workflow linkage and conversation
    # ------------------------------------------------------------------

    def update_session_workflow(
        self,
        session_id: str,
        workflow_name: str,
        context: WorkflowContext,
        current_step: int,
        total_steps: int,
    ) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning("Session not found: %s", session_id)
                return

            session.workflow_name = workflow_name
            session.workflow_context = context.snapshot()
            session.current_step = current_step
            session.total_steps = total_steps
            if context.spec_name:
                session.spec_name = context.spec_name
            session.touch()
            logger.debug(
                "Updated workflow for session %s: %s (%d/%d)",
                session_id,
                workflow_name,
                current_step,
                total_steps,
            )
            self._persist()

    def add_message(self, session_id: str, role: MessageRole, content: str) -> None:
        """Append a message, dropping the oldest ones beyond ``max_history``."""
        if role not in ("user", "assistant", "system"):
            raise ValueError(f"Unknown message role: {role!r}")
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning("Session not found: %s", session_id)
                return

            session.conversation_history.append(ChatMessage(role=role, content=content))
            overflow = len(session.conversation_history) - self.max_history
            if overflow > 0:
                del session.conversation_history[:overflow]
            session.touch()
            self._persist()

    def get_conversation_history(self, session_id: str) -> list[ChatMessage]:
        with self._lock:
            session = self._sessions.get(session_id)
            return list(session.conversation_history) if session else []

    def restore_workflow_state(self, session_id: str) -> SessionWorkflowState | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not session.workflow_name:
                return None
            session.touch()
            self._persist()
            return SessionWorkflowState(
                workflow_name=session.workflow_name,
                workflow_context=(
                    session.workflow_context.snapshot() if session.workflow_context else None
                ),
                current_step=session.current_step,
                total_steps=session.total_steps,
            )

    def has_active_workflow(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            return bool(session and session.workflow_name and session.is_active)

    # ------------------------------------------------------------------
    # Completion and removal
    # ------------------------------------------------------------------

    def complete_session(self, session_id: str) -> None:
        """Deactivate the session and drop its workflow linkage."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning("Session not found: %s", session_id)
                return

            session.is_active = False
            session.clear_workflow()
            if self._active_session_id == session_id:
                self._active_session_id = None
            logger.info("Completed session %s", session_id)
            self._persist()

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                logger.warning("Session not found: %s", session_id)
                return
            if self._active_session_id == session_id:
                self._active_session_id = None
            logger.info("Deleted session %s", session_id)
            self._persist()

    def get_all_sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def get_active_sessions(self) -> list[Session]:
        with self._lock:
            return [s for s in self._sessions.values() if s.is_active]

    def cleanup_sessions(self, now: datetime | None = None) -> int:
        """Evict stale sessions.

        1. every inactive session idle for longer than the timeout;
        2. the least recently active inactive sessions while over capacity;
        3. if still over capacity, the least recently active sessions other
           than the one the active pointer names.

        Returns:
            Number of sessions removed.
        """
        with self._lock:
            removed = self._cleanup_locked(now)
            if removed:
                self._persist()
            return removed

    def clear_all_sessions(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._active_session_id = None
            self._storage.clear()
            logger.info("Cleared all sessions")

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _cleanup_locked(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        removed = 0

        for session_id, session in list(self._sessions.items()):
            if not session.is_active and now - session.last_activity > self.timeout:
                del self._sessions[session_id]
                removed += 1

        inactive = sorted(
            (s for s in self._sessions.values() if not s.is_active),
            key=lambda s: s.last_activity,
        )
        while len(self._sessions) > self.max_sessions and inactive:
            del self._sessions[inactive.pop(0).id]
            removed += 1

        if len(self._sessions) > self.max_sessions:
            candidates = sorted(
                (s for s in self._sessions.values() if s.id != self._active_session_id),
                key=lambda s: s.last_activity,
            )
            while len(self._sessions) > self.max_sessions and candidates:
                del self._sessions[candidates.pop(0).id]
                removed += 1

        if self._active_session_id not in self._sessions:
            self._active_session_id = None
        if removed:
            logger.info("Cleaned up %d old sessions", removed)
        return removed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        payload = sessions_to_payload(self._sessions, self._active_session_id)
        self._storage.save(payload)

    def _load(self) -> None:
        try:
            payload = self._storage.load()
        except PersistenceError as exc:
            logger.error("Failed to load sessions, starting empty: %s", exc)
            return
        if payload is None:
            return

        try:
            sessions, active_session_id = sessions_from_payload(payload)
        except ValueError as exc:
            logger.error("Failed to load sessions, starting empty: %s", exc)
            return

        with self._lock:
            self._sessions = sessions
            self._active_session_id = active_session_id
            logger.info("Loaded %d sessions from storage", len(sessions))
            if self._cleanup_locked():
                self._persist()
