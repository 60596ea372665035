"""Tests for the async job poller."""

import asyncio

import pytest

from nodebanana.errors import JobTimeoutError, RequestFailureError, RunCancelledError
from nodebanana.generation.client import OperationStatus
from nodebanana.generation.poller import JobPoller


def pending():
    return OperationStatus(done=False)


@pytest.mark.asyncio
async def test_returns_all_artifacts_in_order(client, fake_sleep):
    client.statuses = [
        pending(),
        pending(),
        pending(),
        OperationStatus.model_validate(
            {"done": True, "medias": [{"url": "https://cdn.test/1.mp4"}, {"url": "https://cdn.test/2.mp4"}]}
        ),
    ]
    poller = JobPoller(client, interval=5.0, max_attempts=120, sleep=fake_sleep)

    artifacts = await poller.poll("op-1")

    assert [a.url for a in artifacts] == ["https://cdn.test/1.mp4", "https://cdn.test/2.mp4"]
    assert client.operation_queries == ["op-1"] * 4
    assert fake_sleep.calls == [5.0] * 4


@pytest.mark.asyncio
async def test_single_media_field(client, fake_sleep):
    client.statuses = [OperationStatus.model_validate({"done": True, "media": {"url": "https://cdn.test/v.mp4"}})]

    artifacts = await JobPoller(client, sleep=fake_sleep).poll("op-1")

    assert [a.url for a in artifacts] == ["https://cdn.test/v.mp4"]


@pytest.mark.asyncio
async def test_times_out_after_exactly_max_attempts(client, fake_sleep):
    poller = JobPoller(client, interval=5.0, max_attempts=120, sleep=fake_sleep)

    with pytest.raises(JobTimeoutError) as exc_info:
        await poller.poll("op-slow")

    assert len(client.operation_queries) == 120
    assert exc_info.value.attempts == 120
    assert exc_info.value.operation_id == "op-slow"


@pytest.mark.asyncio
async def test_non_ok_status_uses_up_an_attempt(client, fake_sleep):
    client.statuses = [None, None, None]

    with pytest.raises(JobTimeoutError):
        await JobPoller(client, max_attempts=3, sleep=fake_sleep).poll("op-1")

    assert len(client.operation_queries) == 3


@pytest.mark.asyncio
async def test_job_error_is_surfaced(client, fake_sleep):
    client.statuses = [pending(), OperationStatus.model_validate({"done": True, "error": {"message": "Quota exceeded"}})]

    with pytest.raises(RequestFailureError, match="Quota exceeded"):
        await JobPoller(client, sleep=fake_sleep).poll("op-1")


@pytest.mark.asyncio
async def test_plain_string_error(client, fake_sleep):
    client.statuses = [OperationStatus.model_validate({"done": True, "error": "blocked"})]

    with pytest.raises(RequestFailureError, match="blocked"):
        await JobPoller(client, sleep=fake_sleep).poll("op-1")


@pytest.mark.asyncio
async def test_done_without_artifacts_fails(client, fake_sleep):
    client.statuses = [OperationStatus(done=True)]

    with pytest.raises(RequestFailureError, match="without output"):
        await JobPoller(client, sleep=fake_sleep).poll("op-1")


@pytest.mark.asyncio
async def test_stop_event_cancels_before_query(client, fake_sleep):
    stop_event = asyncio.Event()
    stop_event.set()

    with pytest.raises(RunCancelledError):
        await JobPoller(client, sleep=fake_sleep).poll("op-1", stop_event=stop_event)

    assert client.operation_queries == []


@pytest.mark.asyncio
async def test_stop_wakes_the_wait_early(client):
    stop_event = asyncio.Event()
    poller = JobPoller(client, interval=30.0, max_attempts=5)

    task = asyncio.create_task(poller.poll("op-1", stop_event=stop_event))
    await asyncio.sleep(0.01)
    stop_event.set()

    with pytest.raises(RunCancelledError):
        await asyncio.wait_for(task, timeout=2.0)
    assert client.operation_queries == []


@pytest.mark.asyncio
async def test_on_attempt_reports_each_query(client, fake_sleep):
    seen = []

    async def on_attempt(operation_id, attempt, status):
        seen.append((operation_id, attempt, bool(status and status.done)))

    client.statuses = [pending(), OperationStatus.model_validate({"done": True, "medias": [{"url": "u"}]})]

    await JobPoller(client, sleep=fake_sleep, on_attempt=on_attempt).poll("op-1")

    assert seen == [("op-1", 1, False), ("op-1", 2, True)]
