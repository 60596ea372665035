"""
Local Generation Store - writes generated artifacts straight to disk.

Drop-in alternative to the service's save-generation endpoint for hosts that
run the engine next to the generations folder. Hand it to
``RunController.from_config(artifact_backend=...)``; ``nodebanana run
--save-locally`` does this. Files are named
``<timestamp>_<prompt snippet>.<png|mp4>``.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path

from nodebanana.errors import EngineError, PersistenceFailureError
from nodebanana.generation.client import SaveResult
from nodebanana.utils.data_url import decode_data_url, is_data_url
from nodebanana.utils.io import atomic_write

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 30

MediaFetcher = Callable[[str], Awaitable[tuple[str, bytes]]]


def derive_filename(prompt: str | None, now: datetime | None = None) -> str:
    """
    Base filename (no extension) for an artifact.

    >>> derive_filename("A cat, on a mat!", datetime(2025, 1, 2, 3, 4, 5))
    '2025-01-02T03-04-05_a_cat_on_a_mat'
    """
    now = now or datetime.now(UTC)
    timestamp = now.strftime("%Y-%m-%dT%H-%M-%S")
    snippet = ""
    if prompt:
        snippet = re.sub(r"[^a-zA-Z0-9]", "_", prompt[:SNIPPET_LENGTH])
        snippet = re.sub(r"_+", "_", snippet).strip("_").lower()
    return f"{timestamp}_{snippet or 'generation'}"


def _extension(source: str, content_type: str | None) -> str:
    if content_type and "video" in content_type:
        return ".mp4"
    if ".mp4" in source:
        return ".mp4"
    return ".png"


class LocalGenerationStore:
    """
    Save artifacts into a local directory.

    Data URLs are decoded in place. Remote and relative URLs are downloaded
    with ``fetch_media`` (typically ``HttpGenerationClient.fetch_media``).
    """

    def __init__(self, fetch_media: MediaFetcher | None = None, clock: Callable[[], datetime] | None = None):
        self.fetch_media = fetch_media
        self._clock = clock or (lambda: datetime.now(UTC))

    async def save_generation(self, directory_path: str, artifact_url: str, prompt: str) -> SaveResult:
        """
        Write one artifact into ``directory_path``.

        Raises:
            PersistenceFailureError: bad directory, undecodable data or failed download
        """
        directory = Path(directory_path)
        if not directory.exists():
            raise PersistenceFailureError("Directory does not exist")
        if not directory.is_dir():
            raise PersistenceFailureError("Path is not a directory")

        base_name = derive_filename(prompt, self._clock())
        if is_data_url(artifact_url):
            try:
                content_type, payload = decode_data_url(artifact_url)
            except ValueError as e:
                raise PersistenceFailureError(f"Failed to decode artifact: {e}") from e
        else:
            if self.fetch_media is None:
                raise PersistenceFailureError(f"Cannot download {artifact_url}: no media fetcher configured")
            try:
                content_type, payload = await self.fetch_media(artifact_url)
            except EngineError as e:
                raise PersistenceFailureError(f"Failed to fetch content from {artifact_url}: {e}") from e

        filename = base_name + _extension(artifact_url if not is_data_url(artifact_url) else "", content_type)
        path = directory / filename

        def _write() -> None:
            try:
                with atomic_write(path, mode="wb") as f:
                    f.write(payload)
            except OSError as e:
                raise PersistenceFailureError(f"Failed to write {path}: {e}") from e

        await asyncio.to_thread(_write)
        logger.info(f"Saved generation to: {path}")
        return SaveResult(success=True, file_path=str(path), filename=filename)
