"""
Workflow File Store - JSON workflow documents on disk.

Layout:
  {directory}/{workflow name}.json

Writes go through a temp file + rename, so an interrupted save leaves the
previous version intact.
"""

import asyncio
import json
import logging
import re
from pathlib import Path

from pydantic import ValidationError

from nodebanana.errors import PersistenceFailureError
from nodebanana.graph.models import WorkflowDocument
from nodebanana.utils.io import atomic_write

logger = logging.getLogger(__name__)

_UNSAFE_NAME = re.compile(r'[\\/:*?"<>|]')


class WorkflowFileStore:
    """Save and load workflow documents in one directory."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        safe_name = _UNSAFE_NAME.sub("_", name).strip() or "workflow"
        return self.directory / f"{safe_name}.json"

    async def save(self, document: WorkflowDocument) -> Path:
        """
        Atomically write ``document`` as ``<name>.json``.

        Raises:
            PersistenceFailureError: the directory is missing or the write failed
        """
        path = self.path_for(document.name)

        def _write() -> None:
            if not self.directory.is_dir():
                raise PersistenceFailureError(f"Directory does not exist: {self.directory}")
            try:
                with atomic_write(path) as f:
                    f.write(json.dumps(document.to_wire(), indent=2))
            except OSError as e:
                raise PersistenceFailureError(f"Failed to save workflow: {e}") from e

        await asyncio.to_thread(_write)
        logger.info(f"Saved workflow '{document.name}' to {path}")
        return path

    async def load(self, name_or_path: str | Path) -> WorkflowDocument:
        """
        Load a workflow by name (within the directory) or by explicit path.

        Raises:
            PersistenceFailureError: missing, unreadable or malformed file
        """
        path = Path(name_or_path)
        if path.suffix != ".json":
            path = self.path_for(str(name_or_path))
        return await asyncio.to_thread(load_workflow_file, path)

    async def list_workflows(self) -> list[Path]:
        def _scan() -> list[Path]:
            if not self.directory.is_dir():
                return []
            return sorted(p for p in self.directory.glob("*.json") if p.is_file())

        return await asyncio.to_thread(_scan)


def load_workflow_file(path: Path | str) -> WorkflowDocument:
    """Read and validate one workflow file."""
    path = Path(path)
    try:
        return WorkflowDocument.model_validate_json(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise PersistenceFailureError(f"Workflow file not found: {path}") from e
    except OSError as e:
        raise PersistenceFailureError(f"Failed to read workflow: {e}") from e
    except ValidationError as e:
        raise PersistenceFailureError(f"Invalid workflow file {path}: {e.error_count()} error(s)") from e
