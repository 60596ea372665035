"""Tests for the auto-save background task."""

import json
from pathlib import Path

import pytest

from nodebanana.graph.models import NodeType
from nodebanana.runtime.autosave import AutoSaveTask
from nodebanana.runtime.event_bus import EventBus, EventType


@pytest.fixture
def saved_store(store, tmp_path: Path):
    store.set_workflow_metadata("wf-1", "Autosaved", str(tmp_path))
    store.add_node(NodeType.PROMPT, data={"prompt": "hello"})
    return store


class TestShouldSave:
    def test_needs_changes_and_metadata(self, store, tmp_path: Path):
        task = AutoSaveTask(store, interval=1.0)
        store.add_node(NodeType.PROMPT)
        assert task.should_save() is False

        store.set_workflow_metadata("wf-1", "name", str(tmp_path))
        assert task.should_save() is True

        store.auto_save_enabled = False
        assert task.should_save() is False

    def test_skips_while_a_save_is_in_flight(self, saved_store):
        saved_store.is_saving = True

        assert AutoSaveTask(saved_store, interval=1.0).should_save() is False

    def test_nothing_to_save_when_clean(self, saved_store):
        saved_store.mark_saved()

        assert AutoSaveTask(saved_store, interval=1.0).should_save() is False


class TestSaveIfNeeded:
    @pytest.mark.asyncio
    async def test_writes_and_marks_saved(self, saved_store, tmp_path: Path):
        bus = EventBus()
        task = AutoSaveTask(saved_store, interval=1.0, event_bus=bus)

        assert await task.save_if_needed() is True

        written = json.loads((tmp_path / "Autosaved.json").read_text())
        assert written["id"] == "wf-1"
        assert written["nodes"][0]["data"]["prompt"] == "hello"
        assert saved_store.has_unsaved_changes is False
        assert saved_store.is_saving is False
        assert bus.get_history(EventType.WORKFLOW_SAVED)[0].workflow_id == "wf-1"

        assert await task.save_if_needed() is False

    @pytest.mark.asyncio
    async def test_failure_becomes_a_notification(self, saved_store, tmp_path: Path):
        saved_store.save_directory_path = str(tmp_path / "gone")
        bus = EventBus()
        task = AutoSaveTask(saved_store, interval=1.0, event_bus=bus)

        assert await task.save_if_needed() is False

        (notice,) = bus.get_history(EventType.NOTIFICATION)
        assert notice.data["level"] == "error"
        assert notice.data["message"].startswith("Auto-save failed")
        assert saved_store.has_unsaved_changes is True
        assert saved_store.is_saving is False


class TestLoop:
    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self, saved_store, tmp_path: Path, fake_sleep):
        bus = EventBus()
        task = AutoSaveTask(saved_store, interval=90.0, event_bus=bus, sleep=fake_sleep)

        task.start()
        task.start()
        assert task.running is True
        saved = await bus.wait_for(EventType.WORKFLOW_SAVED, timeout=5.0)
        await task.stop()

        assert saved is not None
        assert task.running is False
        assert fake_sleep.calls[0] == 90.0
        assert (tmp_path / "Autosaved.json").exists()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, saved_store):
        await AutoSaveTask(saved_store, interval=1.0).stop()
