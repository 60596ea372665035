"""
Auto-save - periodic background save of the workflow document.

A save happens on each tick only when auto-save is enabled, there are unsaved
changes, the workflow has an id, a name and a save directory, and no other
save is in flight. Failures become error notifications.
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from nodebanana.config import get_autosave_interval
from nodebanana.errors import PersistenceFailureError
from nodebanana.generation.poller import SleepFn
from nodebanana.graph.store import GraphStore
from nodebanana.runtime.event_bus import EventBus, NotificationLevel
from nodebanana.storage.workflow_files import WorkflowFileStore

logger = logging.getLogger(__name__)


class AutoSaveTask:
    """Owned background task with explicit ``start()``/``stop()``."""

    def __init__(
        self,
        store: GraphStore,
        interval: float | None = None,
        event_bus: EventBus | None = None,
        sleep: SleepFn | None = None,
        file_store_factory: Callable[[Path], WorkflowFileStore] = WorkflowFileStore,
    ):
        self.store = store
        self.interval = interval if interval is not None else get_autosave_interval()
        self.event_bus = event_bus
        self._sleep = sleep or asyncio.sleep
        self._file_store_factory = file_store_factory
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def should_save(self) -> bool:
        store = self.store
        return bool(
            store.auto_save_enabled
            and store.has_unsaved_changes
            and store.workflow_id
            and store.workflow_name
            and store.save_directory_path
            and not store.is_saving
        )

    async def save_if_needed(self) -> bool:
        """Save now if the workflow qualifies. Returns True when a save succeeded."""
        if not self.should_save():
            return False

        store = self.store
        store.is_saving = True
        try:
            file_store = self._file_store_factory(Path(store.save_directory_path))  # type: ignore[arg-type]
            path = await file_store.save(store.to_document())
        except PersistenceFailureError as e:
            logger.warning(f"Auto-save failed: {e}")
            if self.event_bus:
                await self.event_bus.notify(f"Auto-save failed: {e}", NotificationLevel.ERROR)
            return False
        finally:
            store.is_saving = False

        store.mark_saved()
        logger.info(f"Auto-saved workflow to {path}")
        if self.event_bus:
            await self.event_bus.emit_workflow_saved(store.workflow_id, str(path))
        return True

    async def _loop(self) -> None:
        while True:
            await self._sleep(self.interval)
            await self.save_if_needed()

    def start(self) -> None:
        """Start ticking. No-op if already started."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.debug(f"Auto-save started (every {self.interval}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Auto-save stopped")
