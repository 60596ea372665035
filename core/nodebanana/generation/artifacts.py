"""
Artifact Saver - fire-and-forget persistence of generated artifacts.

Saves run as background tasks so a slow or failing save never holds up or
fails a run. Failures are logged and published as error notifications.
Call ``drain()`` before shutdown to let pending saves finish.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from nodebanana.errors import PersistenceFailureError
from nodebanana.generation.client import SaveResult
from nodebanana.runtime.event_bus import EventBus, NotificationLevel

logger = logging.getLogger(__name__)


class ArtifactBackend(Protocol):
    async def save_generation(self, directory_path: str, artifact_url: str, prompt: str) -> SaveResult: ...


def numbered_prompts(prompt: str, count: int) -> list[str]:
    """Prompt labels for ``count`` artifacts: suffixed ``_1``, ``_2``... only when several."""
    if count <= 1:
        return [prompt] * count
    return [f"{prompt}_{index + 1}" for index in range(count)]


class ArtifactSaver:
    """Schedules artifact saves and tracks them until they finish."""

    def __init__(self, backend: ArtifactBackend, event_bus: EventBus | None = None):
        self.backend = backend
        self.event_bus = event_bus
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(
        self,
        directory_path: str,
        artifact_urls: Sequence[str],
        prompt: str,
        node_id: str | None = None,
        run_id: str | None = None,
    ) -> list[asyncio.Task]:
        """Start one background save per artifact. Returns the tasks."""
        tasks = []
        for url, label in zip(artifact_urls, numbered_prompts(prompt, len(artifact_urls)), strict=True):
            task = asyncio.create_task(self._save_one(directory_path, url, label, node_id, run_id))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)
        return tasks

    async def _save_one(
        self,
        directory_path: str,
        url: str,
        prompt: str,
        node_id: str | None,
        run_id: str | None,
    ) -> SaveResult | None:
        try:
            result = await self.backend.save_generation(directory_path, url, prompt)
        except PersistenceFailureError as e:
            logger.warning(f"Failed to save generation: {e}", extra={"node_id": node_id})
            await self._notify_failure(str(e), node_id, run_id)
            return None
        except Exception as e:
            logger.exception(f"Unexpected error saving generation: {e}", extra={"node_id": node_id})
            await self._notify_failure(f"Failed to save generation: {e}", node_id, run_id)
            return None

        logger.debug(f"Saved artifact to {result.file_path}", extra={"node_id": node_id})
        if self.event_bus is not None:
            await self.event_bus.emit_artifact_saved(node_id, result.file_path, prompt, run_id=run_id)
        return result

    async def _notify_failure(self, message: str, node_id: str | None, run_id: str | None) -> None:
        if self.event_bus is not None:
            await self.event_bus.notify(message, NotificationLevel.ERROR, node_id=node_id, run_id=run_id)

    async def drain(self) -> None:
        """Wait for every pending save."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
