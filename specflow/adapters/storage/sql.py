"""SQLAlchemy implementations of the snapshot and session stores.

Any SQLAlchemy URL works (SQLite for a single workstation, PostgreSQL when a
host already runs one). Each scope owns exactly one row; saves are an upsert
inside a single transaction.

Tables:
- ``specflow_workflow_state``: scope -> workflow snapshot JSON
- ``specflow_session_state``: scope -> session payload JSON
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from specflow.adapters.storage._serde import run_state_from_dict, run_state_to_dict
from specflow.core.errors import PersistenceError
from specflow.core.models import WorkflowRunState

logger = logging.getLogger(__name__)


class _StateBase(DeclarativeBase):
    pass


class _WorkflowStateRow(_StateBase):
    __tablename__ = "specflow_workflow_state"

    scope: Mapped[str] = mapped_column(sa.String(256), primary_key=True)
    payload: Mapped[str] = mapped_column(sa.Text)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(tz=UTC),
        onupdate=lambda: datetime.now(tz=UTC),
    )


class _SessionStateRow(_StateBase):
    __tablename__ = "specflow_session_state"

    scope: Mapped[str] = mapped_column(sa.String(256), primary_key=True)
    payload: Mapped[str] = mapped_column(sa.Text)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(tz=UTC),
        onupdate=lambda: datetime.now(tz=UTC),
    )


def create_state_engine(connection_string: str, echo: bool = False) -> sa.Engine:
    """Create an engine and make sure both state tables exist."""
    dsn = connection_string
    if dsn.startswith("postgres://"):
        dsn = dsn.replace("postgres://", "postgresql://", 1)
    try:
        engine = sa.create_engine(dsn, echo=echo)
        _StateBase.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to open state database: {exc}") from exc
    logger.info("State database ready (%s)", dsn.split("@")[-1])
    return engine


class _SQLStoreBase:
    def __init__(
        self,
        connection_string: str | None = None,
        *,
        engine: sa.Engine | None = None,
        echo: bool = False,
    ) -> None:
        if engine is None:
            if not connection_string:
                raise ValueError("Either connection_string or engine is required")
            engine = create_state_engine(connection_string, echo=echo)
            self._owns_engine = True
        else:
            _StateBase.metadata.create_all(engine)
            self._owns_engine = False
        self._engine = engine

    @property
    def engine(self) -> sa.Engine:
        return self._engine

    def _upsert(self, row_type: type, scope: str, payload: str) -> None:
        now = datetime.now(tz=UTC)
        try:
            with Session(self._engine) as session, session.begin():
                row = session.get(row_type, scope)
                if row:
                    row.payload = payload
                    row.updated_at = now
                else:
                    session.add(row_type(scope=scope, payload=payload, updated_at=now))
        except SQLAlchemyError as exc:
            logger.error("Failed to save %s for %s: %s", row_type.__tablename__, scope, exc)
            raise PersistenceError(f"Failed to save state for {scope}: {exc}") from exc

    def _fetch(self, row_type: type, scope: str) -> Any:
        try:
            with Session(self._engine) as session:
                row = session.get(row_type, scope)
                payload = row.payload if row else None
        except SQLAlchemyError as exc:
            logger.error("Failed to load %s for %s: %s", row_type.__tablename__, scope, exc)
            raise PersistenceError(f"Failed to load state for {scope}: {exc}") from exc
        if payload is None:
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Corrupt state payload for {scope}: {exc}") from exc

    def _delete(self, row_type: type, scope: str) -> None:
        try:
            with Session(self._engine) as session, session.begin():
                row = session.get(row_type, scope)
                if row:
                    session.delete(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to clear state for {scope}: {exc}") from exc

    def close(self) -> None:
        """Dispose the engine if this store created it."""
        if self._owns_engine:
            self._engine.dispose()


class SQLWorkflowStateStore(_SQLStoreBase):
    """SQLAlchemy-backed :class:`~specflow.adapters.storage.base.WorkflowStateStore`."""

    def save(self, scope: str, state: WorkflowRunState) -> None:
        self._upsert(_WorkflowStateRow, scope, json.dumps(run_state_to_dict(state)))
        logger.debug(
            "Saved workflow snapshot for %s: %s step %d/%d",
            scope,
            state.workflow_name,
            state.current_step,
            state.total_steps,
        )

    def load(self, scope: str) -> WorkflowRunState | None:
        data = self._fetch(_WorkflowStateRow, scope)
        if data is None:
            return None
        try:
            return run_state_from_dict(data)
        except ValueError as exc:
            raise PersistenceError(f"Unreadable workflow snapshot for {scope}: {exc}") from exc

    def clear(self, scope: str) -> None:
        self._delete(_WorkflowStateRow, scope)


class SQLSessionStorage(_SQLStoreBase):
    """Session payload of one scope stored as a single row."""

    def __init__(
        self,
        scope: str = "default",
        connection_string: str | None = None,
        *,
        engine: sa.Engine | None = None,
        echo: bool = False,
    ) -> None:
        super().__init__(connection_string, engine=engine, echo=echo)
        self.scope = scope

    def load(self) -> dict[str, Any] | None:
        return self._fetch(_SessionStateRow, self.scope)

    def save(self, payload: dict[str, Any]) -> None:
        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Session payload is not serializable: {exc}") from exc
        self._upsert(_SessionStateRow, self.scope, encoded)

    def clear(self) -> None:
        self._delete(_SessionStateRow, self.scope)
