"""File-based prompt loader for steps that name a ``prompt_file``."""

import logging
from pathlib import Path
from typing import Any

from specflow.core.config import PROMPTS_DIR
from specflow.core.models import WorkflowContext

logger = logging.getLogger(__name__)


class _SafeDict(dict):  # type: ignore[type-arg]
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_prompt(template: str, variables: dict[str, Any]) -> str:
    """Substitute ``{variable}`` placeholders, leaving unknown ones intact.

    Templates with stray braces that ``str.format_map`` cannot parse are
    returned unchanged.
    """
    try:
        return template.format_map(_SafeDict(variables))
    except (ValueError, IndexError) as exc:
        logger.debug("Prompt template not rendered: %s", exc)
        return template


class FilePromptLoader:
    """Reads prompt templates from a directory and renders them for a context.

    Available variables: ``spec_name``, ``mode``, ``command``, ``user_input``.
    Returns ``None`` when the file does not exist.
    """

    def __init__(self, prompts_dir: Path | str = PROMPTS_DIR):
        self.prompts_dir = Path(prompts_dir)

    def __call__(self, prompt_file: str, context: WorkflowContext) -> str | None:
        path = self.prompts_dir / prompt_file
        if self.prompts_dir.resolve() not in path.resolve().parents:
            raise ValueError(f"Prompt file outside {self.prompts_dir}: {prompt_file}")
        if not path.is_file():
            logger.debug("Prompt file not found: %s", path)
            return None
        template = path.read_text(encoding="utf-8")
        return render_prompt(
            template,
            {
                "spec_name": context.spec_name or "",
                "mode": context.mode,
                "command": context.command or "",
                "user_input": context.user_input or "",
            },
        )
