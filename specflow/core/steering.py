"""Steering documents under ``.kiro/steering``.

The three foundation files (``product.md``, ``tech.md``, ``structure.md``)
describe the project to the assistant. Missing or blank ones are filled with
templates the assistant can refine later.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from specflow.core.config import STEERING_DIR

logger = logging.getLogger(__name__)

FOUNDATION_FILES = ("product.md", "tech.md", "structure.md")

_MANIFEST_FILES = ("pyproject.toml", "package.json", "setup.cfg", "Cargo.toml", "go.mod")
_README_NAMES = ("README.md", "README.MD", "readme.md", "Readme.md", "README.rst", "README")
_IGNORED_DIRS = {"node_modules", "__pycache__", "venv"}

_TEMPLATES = {
    "product.md": """# Product Overview

## Purpose

[Describe the purpose and goals of this project]

## Key Features

- [Feature 1]
- [Feature 2]
- [Feature 3]

## Target Users

[Describe who will use this product]

## Objectives

1. [Objective 1]
2. [Objective 2]
3. [Objective 3]
""",
    "tech.md": """# Technology Stack

## Core Technologies

[List main technologies, frameworks, and tools]

## Dependencies

[List key dependencies]

## Architecture

[Describe high-level architecture]

## Development Tools

[List development and build tools]
""",
    "structure.md": """# Project Structure and Conventions

## Directory Organization

```
[Describe directory structure]
```

## Naming Conventions

### Files
[Describe file naming conventions]

### Code
[Describe code naming conventions]

## Coding Standards

[Describe coding standards and best practices]
""",
}


def default_template(filename: str) -> str:
    """Template for *filename*; custom files get a title derived from the name."""
    if filename in _TEMPLATES:
        return _TEMPLATES[filename]
    title = Path(filename).stem.replace("-", " ").replace("_", " ").title()
    return f"# {title}\n\n[Add content here]\n"


@dataclass
class SteeringAttention:
    missing: list[str] = field(default_factory=list)
    empty: list[str] = field(default_factory=list)

    @property
    def needed(self) -> bool:
        return bool(self.missing or self.empty)


@dataclass
class SteeringEnsureResult:
    created: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)


@dataclass
class WorkspaceAnalysis:
    manifests: dict[str, str] = field(default_factory=dict)
    readme: str | None = None
    directories: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "manifests": sorted(self.manifests),
            "hasReadme": self.readme is not None,
            "directories": list(self.directories),
        }


class SteeringManager:
    def __init__(self, root: Path | str, steering_dir: str = STEERING_DIR):
        self.root = Path(root)
        self.steering_dir = self.root / steering_dir

    def file_path(self, filename: str) -> Path:
        if not filename or Path(filename).name != filename:
            raise ValueError(f"Invalid steering file name: {filename!r}")
        return self.steering_dir / filename

    def needs_attention(self) -> SteeringAttention:
        """Foundation files that are missing or contain only whitespace."""
        attention = SteeringAttention()
        for filename in FOUNDATION_FILES:
            path = self.file_path(filename)
            if not path.exists():
                attention.missing.append(filename)
            elif not path.read_text(encoding="utf-8").strip():
                attention.empty.append(filename)
        return attention

    def ensure_steering_files(self) -> SteeringEnsureResult:
        """Write templates for missing or blank foundation files."""
        result = SteeringEnsureResult()
        self.steering_dir.mkdir(parents=True, exist_ok=True)
        for filename in FOUNDATION_FILES:
            path = self.file_path(filename)
            if path.exists() and path.read_text(encoding="utf-8").strip():
                result.existing.append(filename)
                continue
            path.write_text(default_template(filename), encoding="utf-8")
            result.created.append(filename)
            logger.info("Created steering file %s", filename)
        return result

    def list_steering_files(self) -> list[str]:
        if not self.steering_dir.is_dir():
            return []
        return sorted(p.name for p in self.steering_dir.glob("*.md") if p.is_file())

    def read_steering_file(self, filename: str) -> str:
        path = self.file_path(filename)
        if not path.exists():
            raise FileNotFoundError(f'Steering file "{filename}" does not exist')
        return path.read_text(encoding="utf-8")

    def write_steering_file(self, filename: str, content: str) -> None:
        path = self.file_path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def delete_steering_file(self, filename: str) -> None:
        path = self.file_path(filename)
        if not path.exists():
            raise FileNotFoundError(f'Steering file "{filename}" does not exist')
        path.unlink()

    def get_all_steering_content(self) -> dict[str, str]:
        return {name: self.read_steering_file(name) for name in self.list_steering_files()}

    def analyze_workspace(self) -> WorkspaceAnalysis:
        """Collect manifests, the README and top-level directories of the workspace root."""
        analysis = WorkspaceAnalysis()
        for name in _MANIFEST_FILES:
            path = self.root / name
            if path.is_file():
                try:
                    analysis.manifests[name] = path.read_text(encoding="utf-8")
                except OSError as exc:
                    logger.warning("Failed to read %s: %s", path, exc)

        for name in _README_NAMES:
            path = self.root / name
            if path.is_file():
                try:
                    analysis.readme = path.read_text(encoding="utf-8")
                    break
                except OSError as exc:
                    logger.warning("Failed to read %s: %s", path, exc)

        if self.root.is_dir():
            analysis.directories = sorted(
                entry.name
                for entry in self.root.iterdir()
                if entry.is_dir()
                and not entry.name.startswith(".")
                and entry.name not in _IGNORED_DIRS
            )
        return analysis

    def validate_steering_content(self) -> list[str]:
        """Issues with foundation files that still look like bare templates."""
        issues = []
        for filename in FOUNDATION_FILES:
            path = self.file_path(filename)
            if not path.exists():
                issues.append(f"{filename} does not exist")
                continue
            lines = [line.strip() for line in path.read_text(encoding="utf-8").splitlines()]
            meaningful = [
                line
                for line in lines
                if line and not line.startswith(("#", "[", "`")) and len(line) > 10
            ]
            if len(meaningful) < 3:
                issues.append(
                    f"{filename} appears to have minimal content "
                    f"(only {len(meaningful)} meaningful lines)"
                )
        return issues

    def summary(self) -> str:
        """Markdown status of the steering files."""
        attention = self.needs_attention()
        files = self.list_steering_files()
        lines = ["## Steering Files Status", ""]
        if attention.missing:
            lines += [f"**Missing files:** {', '.join(attention.missing)}", ""]
        if attention.empty:
            lines += [f"**Empty files:** {', '.join(attention.empty)}", ""]
        if not attention.needed:
            lines += ["✅ All foundation steering files are present and populated", ""]
        lines.append(f"**Total steering files:** {len(files)}")
        lines.append(f"**Files:** {', '.join(files)}")
        return "\n".join(lines) + "\n"
