"""Generation service access: request building, HTTP client, job polling and artifacts."""

from nodebanana.generation.artifacts import ArtifactSaver
from nodebanana.generation.catalog import ModelCatalog, ModelInfo, describe_model
from nodebanana.generation.client import (
    GenerateResponse,
    GenerationClient,
    HttpGenerationClient,
    MediaArtifact,
    OperationStatus,
    SaveResult,
)
from nodebanana.generation.poller import JobPoller
from nodebanana.generation.request_builder import (
    OptionDescriptor,
    OptionKind,
    build_generation_request,
)

__all__ = [
    "ArtifactSaver",
    "GenerateResponse",
    "GenerationClient",
    "HttpGenerationClient",
    "JobPoller",
    "MediaArtifact",
    "ModelCatalog",
    "ModelInfo",
    "OperationStatus",
    "OptionDescriptor",
    "OptionKind",
    "SaveResult",
    "build_generation_request",
    "describe_model",
]
