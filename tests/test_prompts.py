"""Tests for render_prompt and FilePromptLoader."""

from __future__ import annotations

import pytest

from specflow.core.models import WorkflowContext
from specflow.core.prompts import FilePromptLoader, render_prompt


def test_render_keeps_unknown_placeholders():
    assert render_prompt("Spec {spec_name} in {repo}", {"spec_name": "login"}) == (
        "Spec login in {repo}"
    )


def test_render_returns_unparseable_template():
    template = "JSON example: {\"a\": 1} and {"
    assert render_prompt(template, {}) == template


class TestFilePromptLoader:
    def test_renders_context(self, tmp_path):
        (tmp_path / "design.prompt.md").write_text("Design {spec_name} ({mode}): {user_input}")
        loader = FilePromptLoader(tmp_path)
        context = WorkflowContext("spec", spec_name="login", user_input="keep it simple")

        assert loader("design.prompt.md", context) == "Design login (spec): keep it simple"

    def test_missing_file(self, tmp_path):
        assert FilePromptLoader(tmp_path)("nope.md", WorkflowContext("spec")) is None

    def test_rejects_paths_outside_directory(self, tmp_path):
        prompts = tmp_path / "prompts"
        prompts.mkdir()
        (tmp_path / "secret.md").write_text("x")

        with pytest.raises(ValueError):
            FilePromptLoader(prompts)("../secret.md", WorkflowContext("spec"))
