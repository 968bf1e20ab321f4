"""Tests for SpecflowConfig and load_config."""

from __future__ import annotations

import pytest

from specflow.core.config import SpecflowConfig, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "SPECFLOW_CONFIG",
        "SPECFLOW_MAX_SESSIONS",
        "SPECFLOW_SESSION_TIMEOUT_HOURS",
        "SPECFLOW_MAX_HISTORY",
        "SPECFLOW_APPROVE_OPTION",
        "SPECFLOW_STATE_DIR",
        "SPECFLOW_STATE_BACKEND",
        "SPECFLOW_DATABASE_URL",
        "SPECFLOW_PROMPTS_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert config.specs_dir == ".kiro/specs"
    assert config.prompts_dir == ".kiro/prompts"


def test_file_values_are_coerced(tmp_path):
    path = tmp_path / "specflow.yaml"
    path.write_text(
        "max_sessions: '4'\nsession_timeout_hours: 2\nstate_backend: memory\nunknown_key: 1\n"
    )

    config = load_config(path)

    assert config.max_sessions == 4
    assert config.session_timeout_hours == 2.0
    assert config.state_backend == "memory"


def test_environment_wins_over_file(tmp_path, monkeypatch):
    path = tmp_path / "specflow.yaml"
    path.write_text("max_history: 20\n")
    monkeypatch.setenv("SPECFLOW_MAX_HISTORY", "5")
    monkeypatch.setenv("SPECFLOW_APPROVE_OPTION", "Ship it")

    config = load_config(path)

    assert config.max_history == 5
    assert config.approve_option == "Ship it"


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "specflow.yaml"
    path.write_text("steering_dir: docs/steering\n")
    monkeypatch.setenv("SPECFLOW_CONFIG", str(path))

    assert load_config().steering_dir == "docs/steering"


def test_non_mapping_file(tmp_path):
    path = tmp_path / "specflow.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(path)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"state_backend": "redis"},
        {"state_backend": "sql"},
        {"max_sessions": 0},
        {"max_history": 0},
    ],
)
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        SpecflowConfig(**kwargs)
