"""Checklist parser for ``tasks.md`` documents.

Task lines look like::

    - [ ] 1. Set up project structure
      - [x] 1.1. Create package layout _Requirements: 1.1, 2.3_
      - [ ]* 1.2. Write optional smoke test

``[x]`` marks completion, a ``*`` right after the box marks an optional task
and two spaces of indentation make one nesting level. Parsing and editing
work on text; :class:`TaskFile` adds the file round trip.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

TASK_LINE_RE = re.compile(r"^(\s*)- \[([ x])\](\*)?\s+(\d+(?:\.\d+)?)\.\s+(.+)$")
REQUIREMENTS_RE = re.compile(r"_Requirements?:\s*([\d., ]+)_")
_REQUIREMENTS_SUFFIX_RE = re.compile(r"(_Requirements?:\s*[\d., ]+_)")
_CHECKBOX_RE = re.compile(r"^(\s*)- \[[ x]\]")
_TASKS_PATH_RE = re.compile(r"\.kiro[/\\]specs[/\\]([^/\\]+)[/\\]tasks\.md$")


@dataclass
class Task:
    number: str  # "2" or "2.1"
    description: str
    completed: bool
    optional: bool
    line_number: int  # zero-based
    indent_level: int
    parent_task: int | None = None
    requirements: list[str] = field(default_factory=list)


@dataclass
class TaskStats:
    total: int
    completed: int
    optional: int
    required: int

    @property
    def percent_complete(self) -> int:
        return round(self.completed / self.total * 100) if self.total else 0


def _same_number(a: str | float, b: str | float) -> bool:
    return float(a) == float(b)


def parse_tasks(text: str) -> list[Task]:
    tasks = []
    for index, line in enumerate(text.split("\n")):
        match = TASK_LINE_RE.match(line)
        if not match:
            continue
        indent, checked, optional_marker, number, description = match.groups()

        requirements: list[str] = []
        requirement_match = REQUIREMENTS_RE.search(description)
        if requirement_match:
            requirements = [
                ref.strip() for ref in requirement_match.group(1).split(",") if ref.strip()
            ]

        tasks.append(
            Task(
                number=number,
                description=description.strip(),
                completed=checked == "x",
                optional=optional_marker == "*",
                line_number=index,
                indent_level=len(indent) // 2,
                parent_task=int(number.split(".")[0]) if "." in number else None,
                requirements=requirements,
            )
        )
    return tasks


def find_task(tasks: list[Task], number: str | float) -> Task | None:
    return next((task for task in tasks if _same_number(task.number, number)), None)


def get_subtasks(tasks: list[Task], parent_number: int) -> list[Task]:
    return [task for task in tasks if task.parent_task == parent_number]


def get_task_at_line(tasks: list[Task], line_number: int) -> Task | None:
    return next((task for task in tasks if task.line_number == line_number), None)


def task_stats(tasks: list[Task]) -> TaskStats:
    return TaskStats(
        total=len(tasks),
        completed=sum(1 for task in tasks if task.completed),
        optional=sum(1 for task in tasks if task.optional),
        required=sum(1 for task in tasks if not task.optional),
    )


def next_task(tasks: list[Task]) -> Task | None:
    """First incomplete required task, else the first incomplete optional one."""
    for task in tasks:
        if not task.completed and not task.optional:
            return task
    return next((task for task in tasks if not task.completed), None)


def set_task_completed(text: str, number: str | float, completed: bool) -> tuple[str, bool]:
    """Tick or untick a task's checkbox.

    Returns:
        The new text and whether a line changed. Nothing changes if the task
        is missing or already in the requested state.
    """
    lines = text.split("\n")
    current, target = (" ", "x") if completed else ("x", " ")
    for index, line in enumerate(lines):
        match = TASK_LINE_RE.match(line)
        if not match or match.group(2) != current or not _same_number(match.group(4), number):
            continue
        lines[index] = _CHECKBOX_RE.sub(rf"\g<1>- [{target}]", line, count=1)
        return "\n".join(lines), True
    return text, False


def update_task_description(
    text: str, number: str | float, new_description: str
) -> tuple[str, bool]:
    """Replace a task's description, keeping its ``_Requirements: ..._`` suffix."""
    lines = text.split("\n")
    for index, line in enumerate(lines):
        match = TASK_LINE_RE.match(line)
        if not match or not _same_number(match.group(4), number):
            continue
        indent, checked, optional_marker, task_number, old_description = match.groups()
        suffix_match = _REQUIREMENTS_SUFFIX_RE.search(old_description)
        suffix = f" {suffix_match.group(1)}" if suffix_match else ""
        lines[index] = (
            f"{indent}- [{checked}]{optional_marker or ''} {task_number}. {new_description}{suffix}"
        )
        return "\n".join(lines), True
    return text, False


def spec_name_from_path(file_path: Path | str) -> str | None:
    """``.kiro/specs/<name>/tasks.md`` → ``<name>``."""
    match = _TASKS_PATH_RE.search(str(file_path))
    return match.group(1) if match else None


def is_task_file(file_path: Path | str) -> bool:
    return Path(file_path).name == "tasks.md"


class TaskFile:
    """A ``tasks.md`` file on disk."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    @property
    def spec_name(self) -> str | None:
        return spec_name_from_path(self.path)

    def read(self) -> list[Task]:
        return parse_tasks(self.path.read_text(encoding="utf-8"))

    def stats(self) -> TaskStats:
        return task_stats(self.read())

    def next_task(self) -> Task | None:
        return next_task(self.read())

    def mark_complete(self, number: str | float) -> bool:
        return self._rewrite(lambda text: set_task_completed(text, number, True), number)

    def mark_incomplete(self, number: str | float) -> bool:
        return self._rewrite(lambda text: set_task_completed(text, number, False), number)

    def update_description(self, number: str | float, description: str) -> bool:
        return self._rewrite(
            lambda text: update_task_description(text, number, description), number
        )

    def _rewrite(self, edit, number: str | float) -> bool:
        new_text, changed = edit(self.path.read_text(encoding="utf-8"))
        if changed:
            self.path.write_text(new_text, encoding="utf-8")
            logger.info("Updated task %s in %s", number, self.path)
        else:
            logger.warning("Task %s not changed in %s", number, self.path)
        return changed
