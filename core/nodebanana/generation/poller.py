"""
Async Job Poller - waits out long-running generation jobs.

Each attempt sleeps for the poll interval first, then queries the job. A
non-OK status response still uses up an attempt. The poller gives up after
``max_attempts`` and raises JobTimeoutError; with the defaults that is ten
minutes.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from nodebanana.config import DEFAULT_POLL_INTERVAL, DEFAULT_POLL_MAX_ATTEMPTS
from nodebanana.errors import JobTimeoutError, RequestFailureError, RunCancelledError
from nodebanana.generation.client import GenerationClient, MediaArtifact, OperationStatus

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
AttemptCallback = Callable[[str, int, OperationStatus | None], Awaitable[None]]


class JobPoller:
    """
    Poll a job handle until it finishes, fails, times out or is cancelled.

    Example:
        poller = JobPoller(client, interval=5.0, max_attempts=120)
        artifacts = await poller.poll(operation_id, stop_event=run_stop_event)
        primary = artifacts[0].url
    """

    def __init__(
        self,
        client: GenerationClient,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        sleep: SleepFn | None = None,
        on_attempt: AttemptCallback | None = None,
    ):
        """
        Args:
            client: Client used for status queries
            interval: Seconds to wait before each query
            max_attempts: Attempt ceiling
            sleep: Awaitable sleep; inject a fake clock in tests
            on_attempt: Called after every query with (operation_id, attempt, status)
        """
        self.client = client
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.on_attempt = on_attempt

    async def _wait(self, stop_event: asyncio.Event | None) -> None:
        if self._sleep is not None:
            await self._sleep(self.interval)
            return
        if stop_event is None:
            await asyncio.sleep(self.interval)
            return
        # Wake early on stop so cancellation lands within one interval
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
        except TimeoutError:
            pass

    async def poll(self, operation_id: str, stop_event: asyncio.Event | None = None) -> list[MediaArtifact]:
        """
        Wait for ``operation_id`` to finish.

        Returns:
            Artifacts in order; the first is the primary result

        Raises:
            RequestFailureError: the job finished with an error, or without artifacts
            JobTimeoutError: ``max_attempts`` queries without completion
            RunCancelledError: ``stop_event`` was set
        """
        started = time.monotonic()
        for attempt in range(1, self.max_attempts + 1):
            if stop_event is not None and stop_event.is_set():
                raise RunCancelledError(f"Stopped while waiting on {operation_id}")
            await self._wait(stop_event)
            if stop_event is not None and stop_event.is_set():
                raise RunCancelledError(f"Stopped while waiting on {operation_id}")

            status = await self.client.get_operation(operation_id)
            if self.on_attempt is not None:
                await self.on_attempt(operation_id, attempt, status)

            if status is None or not status.done:
                logger.debug(
                    f"Job {operation_id} pending (attempt {attempt}/{self.max_attempts})",
                    extra={"operation_id": operation_id, "attempt": attempt},
                )
                continue

            if status.error is not None:
                raise RequestFailureError(status.error.message or "Operation failed")

            artifacts = status.artifacts()
            if not artifacts:
                raise RequestFailureError("Operation completed without output")

            latency_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                f"Job {operation_id} done after {attempt} attempt(s) with {len(artifacts)} artifact(s)",
                extra={"operation_id": operation_id, "attempt": attempt, "latency_ms": latency_ms},
            )
            return artifacts

        raise JobTimeoutError(operation_id, self.max_attempts)
