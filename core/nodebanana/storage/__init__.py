"""File persistence for workflows and generated artifacts."""

from nodebanana.storage.generations import LocalGenerationStore, derive_filename
from nodebanana.storage.workflow_files import WorkflowFileStore

__all__ = ["LocalGenerationStore", "WorkflowFileStore", "derive_filename"]
