"""Shared fixtures: a scripted generation client, fake clocks and small images."""

import asyncio
import io

import pytest
from PIL import Image

from nodebanana.generation.client import GenerateResponse, GenerationClient, OperationStatus, SaveResult
from nodebanana.graph.store import GraphStore
from nodebanana.observability import clear_trace_context
from nodebanana.utils.data_url import encode_data_url

IMAGEN = "vertexai/imagen-3.0-generate-001"

GENERATOR_DEFAULTS = {
    "aspectRatio": "1:1",
    "resolution": "1K",
    "model": IMAGEN,
    "useGoogleSearch": False,
}


class ScriptedClient(GenerationClient):
    """
    In-memory generation backend.

    ``responses`` and ``statuses`` are consumed in order; exceptions in them
    are raised. Once ``responses`` runs dry each call returns a fresh
    synchronous result.
    """

    def __init__(self):
        self.responses: list[GenerateResponse | Exception] = []
        self.statuses: list[OperationStatus | None | Exception] = []
        self.requests: list[dict] = []
        self.operation_queries: list[str] = []
        self.saved: list[tuple[str, str, str]] = []
        self.save_error: Exception | None = None
        self.models: list[dict] = []

    async def generate(self, request):
        self.requests.append(request)
        if not self.responses:
            return GenerateResponse(success=True, output=f"https://cdn.test/out-{len(self.requests)}.png")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def get_operation(self, operation_id):
        self.operation_queries.append(operation_id)
        if not self.statuses:
            return OperationStatus(done=False)
        status = self.statuses.pop(0)
        if isinstance(status, Exception):
            raise status
        return status

    async def list_models(self):
        return list(self.models)

    async def save_generation(self, directory_path, artifact_url, prompt):
        if self.save_error is not None:
            raise self.save_error
        self.saved.append((directory_path, artifact_url, prompt))
        return SaveResult(success=True, file_path=f"{directory_path}/{prompt}.png", filename=f"{prompt}.png")


class FakeSleep:
    """Records requested delays and yields to the loop without waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


def make_png(width: int, height: int, color=(200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def _reset_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()


@pytest.fixture
def store():
    return GraphStore(generator_defaults=GENERATOR_DEFAULTS)


@pytest.fixture
def client():
    return ScriptedClient()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def png_data_url():
    def build(width: int = 60, height: int = 40) -> str:
        return encode_data_url(make_png(width, height))

    return build
