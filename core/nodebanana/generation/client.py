"""
Generation Client - async HTTP access to the generation service.

Endpoints (relative to the configured API base):

    POST /api/generate          start a generation
    GET  /api/operations?id=    status of a long-running job
    POST /api/save-generation   persist an artifact on the server side
    GET  /api/models            model catalog
    GET  <media url>            raw artifact bytes (relative urls resolve
                                against the API base)

Transport problems and non-2xx responses surface as RequestFailureError so
the run controller can report them on the node.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from nodebanana.config import get_api_base, get_request_timeout
from nodebanana.errors import PersistenceFailureError, RequestFailureError
from nodebanana.utils.data_url import decode_data_url, is_data_url

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Request timed out. Try reducing image sizes or using a simpler prompt."
ERROR_BODY_LIMIT = 200


# === RESPONSE MODELS ===


class MediaArtifact(BaseModel):
    """One generated artifact. ``url`` may be http(s), relative, or a data URL."""

    model_config = ConfigDict(extra="allow")

    url: str | None = None


class GenerateResponse(BaseModel):
    """Body of a generate call: an immediate result or a job handle."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    success: bool = False
    output: str | None = None
    image: str | None = None
    operation_id: str | None = Field(default=None, alias="operationId")
    error: str | None = None

    @property
    def primary_output(self) -> str | None:
        return self.output or self.image


class OperationError(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str | None = None


class OperationStatus(BaseModel):
    """Body of a job status query."""

    model_config = ConfigDict(extra="allow")

    success: bool = True
    done: bool = False
    error: OperationError | None = None
    medias: list[MediaArtifact] = Field(default_factory=list)
    media: MediaArtifact | None = None

    @field_validator("error", mode="before")
    @classmethod
    def _wrap_plain_error(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"message": value}
        return value

    def artifacts(self) -> list[MediaArtifact]:
        """Finished artifacts in order; the first is the primary result."""
        medias = [m for m in self.medias if m.url]
        if medias:
            return medias
        if self.media is not None and self.media.url:
            return [self.media]
        return []


class SaveResult(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    success: bool = False
    file_path: str | None = Field(default=None, alias="filePath")
    filename: str | None = None
    error: str | None = None


# === CLIENT ===


class GenerationClient(ABC):
    """The calls the engine makes against a generation backend."""

    @abstractmethod
    async def generate(self, request: dict[str, Any]) -> GenerateResponse:
        """
        Start a generation.

        Raises:
            RequestFailureError: the call failed or was rejected
        """

    @abstractmethod
    async def get_operation(self, operation_id: str) -> OperationStatus | None:
        """Query a job. Returns None when the status endpoint answered non-OK."""

    @abstractmethod
    async def save_generation(self, directory_path: str, artifact_url: str, prompt: str) -> SaveResult:
        """
        Persist one artifact.

        Raises:
            PersistenceFailureError: the artifact could not be saved
        """


def save_payload(directory_path: str, artifact_url: str, prompt: str) -> dict[str, Any]:
    """Body of a save-generation call: remote artifacts go by ``url``, inline ones by ``image``."""
    payload: dict[str, Any] = {"directoryPath": directory_path, "prompt": prompt}
    if artifact_url.startswith("http"):
        payload["url"] = artifact_url
    else:
        payload["image"] = artifact_url
    return payload


class HttpGenerationClient(GenerationClient):
    """
    GenerationClient over ``httpx.AsyncClient``.

    Example:
        async with HttpGenerationClient("http://localhost:3000") as client:
            response = await client.generate({"model": "...", "prompt": "a cat", "images": []})
    """

    def __init__(
        self,
        api_base: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            api_base: Service base URL (defaults to configuration)
            timeout: Per-request timeout in seconds (defaults to configuration)
            transport: Custom transport, e.g. ``httpx.MockTransport`` in tests
            http_client: Pre-built client; takes precedence over the other arguments
        """
        self.api_base = (api_base or get_api_base()).rstrip("/")
        self.timeout = timeout if timeout is not None else get_request_timeout()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self.api_base,
            timeout=httpx.Timeout(self.timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "HttpGenerationClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RequestFailureError(TIMEOUT_MESSAGE) from e
        except httpx.RequestError as e:
            raise RequestFailureError(f"Network error: {e}") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Prefer the service's JSON ``error``; otherwise status line plus a body excerpt."""
        message = f"HTTP {response.status_code}: {response.reason_phrase}"
        text = response.text
        try:
            payload = response.json()
        except ValueError:
            if text:
                message += f" - {text[:ERROR_BODY_LIMIT]}"
            return message
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
        return message

    async def generate(self, request: dict[str, Any]) -> GenerateResponse:
        logger.info(f"POST /api/generate model={request.get('model')}", extra={"model": request.get("model")})
        response = await self._request("POST", "/api/generate", json=request)
        if not response.is_success:
            raise RequestFailureError(self._error_message(response), status_code=response.status_code)
        try:
            return GenerateResponse.model_validate(response.json())
        except ValueError as e:
            raise RequestFailureError(
                f"Invalid response from generation service: {e}", status_code=response.status_code
            ) from e

    async def get_operation(self, operation_id: str) -> OperationStatus | None:
        response = await self._request("GET", "/api/operations", params={"id": operation_id})
        if not response.is_success:
            logger.warning(
                f"Operation status returned HTTP {response.status_code}",
                extra={"operation_id": operation_id},
            )
            return None
        try:
            return OperationStatus.model_validate(response.json())
        except ValueError:
            logger.warning("Unreadable operation status", extra={"operation_id": operation_id})
            return None

    async def save_generation(self, directory_path: str, artifact_url: str, prompt: str) -> SaveResult:
        payload = save_payload(directory_path, artifact_url, prompt)
        try:
            response = await self._request("POST", "/api/save-generation", json=payload)
        except RequestFailureError as e:
            raise PersistenceFailureError(f"Failed to save generation: {e.message}") from e
        if not response.is_success:
            raise PersistenceFailureError(f"Failed to save generation: {self._error_message(response)}")
        try:
            result = SaveResult.model_validate(response.json())
        except ValueError as e:
            raise PersistenceFailureError(f"Failed to save generation: {e}") from e
        if not result.success:
            raise PersistenceFailureError(f"Failed to save generation: {result.error or 'unknown error'}")
        return result

    async def list_models(self) -> list[dict[str, Any]]:
        """Raw model entries from the catalog endpoint."""
        response = await self._request("GET", "/api/models")
        if not response.is_success:
            raise RequestFailureError(self._error_message(response), status_code=response.status_code)
        try:
            body = response.json()
        except ValueError as e:
            raise RequestFailureError(f"Invalid response from model catalog: {e}") from e
        if not isinstance(body, dict):
            raise RequestFailureError("Invalid response from model catalog")
        if not body.get("success", True):
            raise RequestFailureError(str(body.get("error") or "Failed to fetch models"))
        return list(body.get("models") or [])

    async def fetch_media(self, url: str) -> tuple[str, bytes]:
        """
        Download an artifact. Returns ``(content_type, bytes)``.

        Data URLs are decoded locally; relative URLs resolve against the API base.
        """
        if is_data_url(url):
            return decode_data_url(url)
        response = await self._request("GET", url)
        if not response.is_success:
            raise RequestFailureError(self._error_message(response), status_code=response.status_code)
        content_type = response.headers.get("content-type", "application/octet-stream")
        return content_type, response.content
