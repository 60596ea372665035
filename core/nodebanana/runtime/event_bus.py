"""
Event Bus - Pub/sub channel for run lifecycle events and user notifications.

Lets hosts (CLI, editors, tests):
- Follow runs and node executions as they happen
- Watch long-running jobs being polled
- Surface transient notifications ("toasts") such as pause prompts and
  failed artifact saves
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_PAUSED = "run_paused"
    RUN_RESUMED = "run_resumed"
    RUN_STOPPED = "run_stopped"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"

    # Async jobs
    JOB_POLLED = "job_polled"

    # Persistence
    ARTIFACT_SAVED = "artifact_saved"
    WORKFLOW_SAVED = "workflow_saved"

    # Transient user-facing message
    NOTIFICATION = "notification"

    CUSTOM = "custom"


class NotificationLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class WorkflowEvent:
    """An event in the workflow engine."""

    type: EventType
    run_id: str | None = None
    node_id: str | None = None
    workflow_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "workflow_id": self.workflow_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Type for event handlers
EventHandler = Callable[[WorkflowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_run: str | None = None  # Only receive events from this run
    filter_node: str | None = None  # Only receive events about this node


class EventBus:
    """
    Pub/sub event bus for engine events.

    Features:
    - Async event handling
    - Type-based subscriptions
    - Run/node filtering
    - Event history for debugging

    Example:
        bus = EventBus()

        async def on_node_failed(event: WorkflowEvent):
            print(f"{event.node_id} failed: {event.data['error']}")

        bus.subscribe(event_types=[EventType.NODE_FAILED], handler=on_node_failed)

        await bus.emit_node_failed(run_id="run_1", node_id="universalGenerator-3", error="HTTP 500")
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[WorkflowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            event_types: Types of events to receive
            handler: Async function to call when event occurs
            filter_run: Only receive events from this run
            filter_node: Only receive events about this node

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: WorkflowEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            subscription.handler
            for subscription in self._subscriptions.values()
            if self._matches(subscription, event)
        ]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: WorkflowEvent) -> bool:
        """Check if a subscription matches an event."""
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _execute_handlers(
        self,
        event: WorkflowEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === RUN LIFECYCLE PUBLISHERS ===

    async def emit_run_started(
        self,
        run_id: str,
        workflow_id: str | None = None,
        start_from: str | None = None,
        mode: str = "run",
    ) -> None:
        """Emit run started event."""
        await self.publish(
            WorkflowEvent(
                type=EventType.RUN_STARTED,
                run_id=run_id,
                workflow_id=workflow_id,
                data={"start_from": start_from, "mode": mode},
            )
        )

    async def emit_run_completed(
        self,
        run_id: str,
        path: list[str],
        workflow_id: str | None = None,
    ) -> None:
        """Emit run completed event."""
        await self.publish(
            WorkflowEvent(
                type=EventType.RUN_COMPLETED,
                run_id=run_id,
                workflow_id=workflow_id,
                data={"path": path},
            )
        )

    async def emit_run_failed(
        self,
        run_id: str,
        error: str,
        node_id: str | None = None,
        workflow_id: str | None = None,
    ) -> None:
        """Emit run failed event."""
        await self.publish(
            WorkflowEvent(
                type=EventType.RUN_FAILED,
                run_id=run_id,
                node_id=node_id,
                workflow_id=workflow_id,
                data={"error": error},
            )
        )

    async def emit_run_paused(self, run_id: str, node_id: str, workflow_id: str | None = None) -> None:
        """Emit run paused event."""
        await self.publish(
            WorkflowEvent(type=EventType.RUN_PAUSED, run_id=run_id, node_id=node_id, workflow_id=workflow_id)
        )

    async def emit_run_resumed(self, run_id: str, node_id: str, workflow_id: str | None = None) -> None:
        """Emit run resumed event."""
        await self.publish(
            WorkflowEvent(type=EventType.RUN_RESUMED, run_id=run_id, node_id=node_id, workflow_id=workflow_id)
        )

    async def emit_run_stopped(
        self,
        run_id: str,
        node_id: str | None = None,
        workflow_id: str | None = None,
    ) -> None:
        """Emit run stopped event."""
        await self.publish(
            WorkflowEvent(type=EventType.RUN_STOPPED, run_id=run_id, node_id=node_id, workflow_id=workflow_id)
        )

    # === NODE PUBLISHERS ===

    async def emit_node_started(self, run_id: str, node_id: str, node_type: str) -> None:
        """Emit node started event."""
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_STARTED,
                run_id=run_id,
                node_id=node_id,
                data={"node_type": node_type},
            )
        )

    async def emit_node_completed(
        self,
        run_id: str,
        node_id: str,
        node_type: str,
        outputs: dict[str, Any] | None = None,
    ) -> None:
        """Emit node completed event."""
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_COMPLETED,
                run_id=run_id,
                node_id=node_id,
                data={"node_type": node_type, "outputs": outputs or {}},
            )
        )

    async def emit_node_failed(self, run_id: str, node_id: str, error: str) -> None:
        """Emit node failed event."""
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_FAILED,
                run_id=run_id,
                node_id=node_id,
                data={"error": error},
            )
        )

    async def emit_job_polled(
        self,
        run_id: str | None,
        node_id: str | None,
        operation_id: str,
        attempt: int,
        done: bool,
    ) -> None:
        """Emit job polled event."""
        await self.publish(
            WorkflowEvent(
                type=EventType.JOB_POLLED,
                run_id=run_id,
                node_id=node_id,
                data={"operation_id": operation_id, "attempt": attempt, "done": done},
            )
        )

    # === PERSISTENCE PUBLISHERS ===

    async def emit_artifact_saved(
        self,
        node_id: str | None,
        file_path: str | None,
        prompt: str,
        run_id: str | None = None,
    ) -> None:
        """Emit artifact saved event."""
        await self.publish(
            WorkflowEvent(
                type=EventType.ARTIFACT_SAVED,
                run_id=run_id,
                node_id=node_id,
                data={"file_path": file_path, "prompt": prompt},
            )
        )

    async def emit_workflow_saved(self, workflow_id: str | None, file_path: str) -> None:
        """Emit workflow saved event."""
        await self.publish(
            WorkflowEvent(type=EventType.WORKFLOW_SAVED, workflow_id=workflow_id, data={"file_path": file_path})
        )

    async def notify(
        self,
        message: str,
        level: NotificationLevel = NotificationLevel.INFO,
        node_id: str | None = None,
        run_id: str | None = None,
    ) -> None:
        """Publish a transient user notification."""
        await self.publish(
            WorkflowEvent(
                type=EventType.NOTIFICATION,
                run_id=run_id,
                node_id=node_id,
                data={"message": message, "level": level.value},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        node_id: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]

        if event_type:
            events = [e for e in events if e.type == event_type]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        if node_id:
            events = [e for e in events if e.node_id == node_id]

        return events[:limit]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        run_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> WorkflowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: WorkflowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: WorkflowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_run=run_id,
            filter_node=node_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()

            return result
        finally:
            self.unsubscribe(sub_id)
