"""JSON-file implementations of the snapshot and session stores.

Each scope gets its own file inside *base_path*:

- ``workflow_state.<scope>.json`` for the workflow snapshot
- ``sessions.<scope>.json`` for the session payload

Writes go to a ``.tmp`` sibling first and are moved into place with
:meth:`Path.replace`, so readers see either the old or the new document.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from specflow.adapters.storage._serde import run_state_from_dict, run_state_to_dict
from specflow.core.errors import PersistenceError
from specflow.core.models import WorkflowRunState

logger = logging.getLogger(__name__)


def _scope_slug(scope: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9_.-]+", "-", scope.strip()).strip("-.")
    return slug or "default"


def _read_json(path: Path) -> Any:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PersistenceError(f"Corrupt JSON in {path}: {exc}") from exc
    except OSError as exc:
        logger.error("Failed to read %s: %s", path, exc)
        raise PersistenceError(f"Failed to read {path}: {exc}") from exc


def _write_json(path: Path, data: Any) -> None:
    tmp = path.with_suffix(".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(path)
    except (OSError, TypeError, ValueError) as exc:
        logger.error("Failed to write %s: %s", path, exc)
        raise PersistenceError(f"Failed to write {path}: {exc}") from exc


def _unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.error("Failed to remove %s: %s", path, exc)
        raise PersistenceError(f"Failed to remove {path}: {exc}") from exc


class FileWorkflowStateStore:
    """Persist workflow snapshots as JSON files on the local filesystem."""

    def __init__(self, base_path: Path | str) -> None:
        self._base = Path(base_path)

    def path_for(self, scope: str) -> Path:
        return self._base / f"workflow_state.{_scope_slug(scope)}.json"

    def save(self, scope: str, state: WorkflowRunState) -> None:
        _write_json(self.path_for(scope), run_state_to_dict(state))
        logger.debug(
            "Saved workflow snapshot for %s: %s step %d/%d",
            scope,
            state.workflow_name,
            state.current_step,
            state.total_steps,
        )

    def load(self, scope: str) -> WorkflowRunState | None:
        path = self.path_for(scope)
        data = _read_json(path)
        if data is None:
            return None
        try:
            return run_state_from_dict(data)
        except ValueError as exc:
            raise PersistenceError(f"Unreadable workflow snapshot in {path}: {exc}") from exc

    def clear(self, scope: str) -> None:
        _unlink(self.path_for(scope))
        logger.debug("Cleared workflow snapshot for %s", scope)


class FileSessionStorage:
    """Persist the session payload of one scope as a JSON file."""

    def __init__(self, base_path: Path | str, scope: str = "default") -> None:
        self._path = Path(base_path) / f"sessions.{_scope_slug(scope)}.json"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any] | None:
        return _read_json(self._path)

    def save(self, payload: dict[str, Any]) -> None:
        _write_json(self._path, payload)

    def clear(self) -> None:
        _unlink(self._path)
