"""Tests for background artifact saving."""

import pytest

from nodebanana.errors import PersistenceFailureError
from nodebanana.generation.artifacts import ArtifactSaver, numbered_prompts
from nodebanana.runtime.event_bus import EventBus, EventType


def test_numbered_prompts():
    assert numbered_prompts("cat", 1) == ["cat"]
    assert numbered_prompts("cat", 3) == ["cat_1", "cat_2", "cat_3"]
    assert numbered_prompts("cat", 0) == []


@pytest.mark.asyncio
async def test_saves_every_artifact(client):
    bus = EventBus()
    saver = ArtifactSaver(client, event_bus=bus)

    saver.schedule("/gen", ["https://cdn.test/1.mp4", "https://cdn.test/2.mp4"], "waves", node_id="g-1")
    await saver.drain()

    assert client.saved == [
        ("/gen", "https://cdn.test/1.mp4", "waves_1"),
        ("/gen", "https://cdn.test/2.mp4", "waves_2"),
    ]
    assert saver.pending == 0
    assert len(bus.get_history(EventType.ARTIFACT_SAVED)) == 2


@pytest.mark.asyncio
async def test_failures_are_reported_not_raised(client):
    client.save_error = PersistenceFailureError("Failed to save generation: disk full")
    bus = EventBus()
    saver = ArtifactSaver(client, event_bus=bus)

    (task,) = saver.schedule("/gen", ["https://cdn.test/1.png"], "cat", node_id="g-1", run_id="run-1")
    await saver.drain()

    assert task.result() is None
    (notice,) = bus.get_history(EventType.NOTIFICATION)
    assert notice.data == {"message": "Failed to save generation: disk full", "level": "error"}
    assert notice.node_id == "g-1"


@pytest.mark.asyncio
async def test_unexpected_errors_are_contained(client):
    client.save_error = RuntimeError("bug")
    saver = ArtifactSaver(client)

    (task,) = saver.schedule("/gen", ["https://cdn.test/1.png"], "cat")
    await saver.drain()

    assert task.result() is None
