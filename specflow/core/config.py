"""Runtime configuration for specflow.

Defaults come from environment variables so a host can tune limits without
code changes. :func:`load_config` additionally reads an optional YAML file;
environment variables win over file values.
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

MAX_SESSIONS = max(1, int(os.getenv("SPECFLOW_MAX_SESSIONS", "10")))
SESSION_TIMEOUT_HOURS = float(os.getenv("SPECFLOW_SESSION_TIMEOUT_HOURS", "24"))
MAX_CONVERSATION_HISTORY = max(1, int(os.getenv("SPECFLOW_MAX_HISTORY", "50")))
APPROVE_OPTION = os.getenv("SPECFLOW_APPROVE_OPTION", "Approve")
DEFAULT_APPROVAL_OPTIONS = (APPROVE_OPTION, "Reject", "Skip")

STATE_DIR = os.getenv("SPECFLOW_STATE_DIR", ".kiro/state")
STATE_BACKEND = os.getenv("SPECFLOW_STATE_BACKEND", "file")  # file, sql, memory
DATABASE_URL = os.getenv("SPECFLOW_DATABASE_URL", "")

SPECS_DIR = ".kiro/specs"
STEERING_DIR = ".kiro/steering"
PROMPTS_DIR = os.getenv("SPECFLOW_PROMPTS_DIR", ".kiro/prompts")

_ENV_OVERRIDES = {
    "max_sessions": "SPECFLOW_MAX_SESSIONS",
    "session_timeout_hours": "SPECFLOW_SESSION_TIMEOUT_HOURS",
    "max_history": "SPECFLOW_MAX_HISTORY",
    "approve_option": "SPECFLOW_APPROVE_OPTION",
    "state_dir": "SPECFLOW_STATE_DIR",
    "state_backend": "SPECFLOW_STATE_BACKEND",
    "database_url": "SPECFLOW_DATABASE_URL",
    "prompts_dir": "SPECFLOW_PROMPTS_DIR",
}


@dataclass
class SpecflowConfig:
    """Settings for one workspace."""

    max_sessions: int = MAX_SESSIONS
    session_timeout_hours: float = SESSION_TIMEOUT_HOURS
    max_history: int = MAX_CONVERSATION_HISTORY
    approve_option: str = APPROVE_OPTION
    state_dir: str = STATE_DIR
    state_backend: str = STATE_BACKEND
    database_url: str = DATABASE_URL
    specs_dir: str = SPECS_DIR
    steering_dir: str = STEERING_DIR
    prompts_dir: str = PROMPTS_DIR

    def __post_init__(self) -> None:
        if self.state_backend not in ("file", "sql", "memory"):
            raise ValueError(f"Unsupported state backend: {self.state_backend!r}")
        if self.state_backend == "sql" and not self.database_url:
            raise ValueError("state_backend 'sql' requires database_url")
        if self.max_sessions < 1:
            raise ValueError("max_sessions must be >= 1")
        if self.max_history < 1:
            raise ValueError("max_history must be >= 1")


def load_config(path: str | Path | None = None) -> SpecflowConfig:
    """Load configuration from a YAML file, then apply environment overrides.

    Args:
        path: Optional YAML file. Falls back to ``SPECFLOW_CONFIG``; a missing
            file yields the defaults.
    """
    config_path = path or os.getenv("SPECFLOW_CONFIG")
    data: dict[str, Any] = {}
    if config_path and os.path.exists(config_path):
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        data = loaded
        logger.debug("Loaded specflow config from %s", config_path)

    known = {f.name: f for f in fields(SpecflowConfig)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

    values = {key: value for key, value in data.items() if key in known}
    for key, env_name in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is not None and raw != "":
            values[key] = raw

    for key, value in list(values.items()):
        field_type = known[key].type
        if field_type in (int, "int"):
            values[key] = int(value)
        elif field_type in (float, "float"):
            values[key] = float(value)
        else:
            values[key] = str(value)

    return SpecflowConfig(**values)
