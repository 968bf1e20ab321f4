"""Spec documents: ``.kiro/specs/<name>/{requirements,design,tasks}.md``."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from specflow.core.config import SPECS_DIR

logger = logging.getLogger(__name__)

SpecStage = Literal["requirements", "design", "tasks"]
SPEC_STAGES: tuple[SpecStage, ...] = ("requirements", "design", "tasks")

_DOCUMENT_PATH_RE = re.compile(
    r"\.kiro[/\\]specs[/\\]([^/\\]+)[/\\](requirements|design|tasks)\.md$"
)


@dataclass
class SpecInfo:
    name: str
    path: Path
    stage: SpecStage
    has_requirements: bool
    has_design: bool
    has_tasks: bool


class SpecManager:
    """Creates, reads and lists spec documents under one workspace root."""

    def __init__(self, root: Path | str, specs_dir: str = SPECS_DIR):
        self.root = Path(root)
        self.specs_dir = self.root / specs_dir

    def spec_path(self, spec_name: str) -> Path:
        if not spec_name or spec_name in (".", "..") or re.search(r"[/\\]", spec_name):
            raise ValueError(f"Invalid spec name: {spec_name!r}")
        return self.specs_dir / spec_name

    def document_path(self, spec_name: str, stage: SpecStage) -> Path:
        if stage not in SPEC_STAGES:
            raise ValueError(f"Unknown spec stage: {stage!r}")
        return self.spec_path(spec_name) / f"{stage}.md"

    def ensure_specs_directory(self) -> None:
        self.specs_dir.mkdir(parents=True, exist_ok=True)

    def list_specs(self) -> list[str]:
        if not self.specs_dir.is_dir():
            return []
        return sorted(entry.name for entry in self.specs_dir.iterdir() if entry.is_dir())

    def get_spec_info(self, spec_name: str) -> SpecInfo | None:
        """Report which documents exist; ``None`` if the spec directory is missing."""
        path = self.spec_path(spec_name)
        if not path.is_dir():
            return None

        has_requirements = self.document_path(spec_name, "requirements").exists()
        has_design = self.document_path(spec_name, "design").exists()
        has_tasks = self.document_path(spec_name, "tasks").exists()

        stage: SpecStage = "requirements"
        if has_tasks:
            stage = "tasks"
        elif has_design:
            stage = "design"

        return SpecInfo(
            name=spec_name,
            path=path,
            stage=stage,
            has_requirements=has_requirements,
            has_design=has_design,
            has_tasks=has_tasks,
        )

    def get_spec_info_for_path(self, file_path: Path | str) -> SpecInfo | None:
        """Spec info for a document path such as ``.kiro/specs/auth/design.md``."""
        match = _DOCUMENT_PATH_RE.search(str(file_path))
        if not match:
            return None
        return self.get_spec_info(match.group(1))

    def create_spec(self, spec_name: str) -> Path:
        """Create the spec directory.

        Raises:
            FileExistsError: The spec already exists.
        """
        path = self.spec_path(spec_name)
        if path.exists():
            raise FileExistsError(f'Spec "{spec_name}" already exists')
        path.mkdir(parents=True)
        logger.info("Created spec directory: %s", path)
        return path

    def write_document(self, spec_name: str, stage: SpecStage, content: str) -> Path:
        """Create or overwrite a document, creating the spec if needed."""
        path = self.document_path(spec_name, stage)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info("Wrote %s for spec %s", stage, spec_name)
        return path

    def read_document(self, spec_name: str, stage: SpecStage) -> str:
        path = self.document_path(spec_name, stage)
        if not path.exists():
            raise FileNotFoundError(f'{stage}.md does not exist for spec "{spec_name}"')
        return path.read_text(encoding="utf-8")

    def update_document(self, spec_name: str, stage: SpecStage, content: str) -> None:
        """Overwrite an existing document.

        Raises:
            FileNotFoundError: The document does not exist yet.
        """
        path = self.document_path(spec_name, stage)
        if not path.exists():
            raise FileNotFoundError(f'{stage}.md does not exist for spec "{spec_name}"')
        path.write_text(content, encoding="utf-8")
        logger.info("Updated %s for spec %s", stage, spec_name)

    def get_all_documents(self, spec_name: str) -> dict[str, str]:
        documents = {}
        for stage in SPEC_STAGES:
            path = self.document_path(spec_name, stage)
            if path.exists():
                documents[f"{stage}.md"] = path.read_text(encoding="utf-8")
        return documents

    def delete_spec(self, spec_name: str) -> None:
        """Delete the spec's documents. The directory itself is kept."""
        path = self.spec_path(spec_name)
        if not path.exists():
            raise FileNotFoundError(f'Spec "{spec_name}" does not exist')
        for stage in SPEC_STAGES:
            self.document_path(spec_name, stage).unlink(missing_ok=True)
        logger.info("Deleted documents for spec %s", spec_name)
