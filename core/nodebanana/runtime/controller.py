"""
Run Controller - orchestrates workflow runs.

States:

    idle ──run()/regenerate()──▶ running ──done/fatal error/stop──▶ idle
                                    │
                                    └──pause edge reached──▶ paused ──run(start_from=<paused node>)──▶ running

- Only one run at a time; requests while running are rejected.
- A node with an incoming pause edge halts the run before it executes,
  except when the run resumes exactly at that node.
- ``stop()`` is cooperative: the run keeps the controller busy until it
  notices the request at the next node boundary or poll attempt.
- ``regenerate()`` re-runs one generator node and touches nothing else.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum

from nodebanana.config import EngineConfig
from nodebanana.errors import GraphCycleError, NodeExecutionError, RunCancelledError
from nodebanana.generation.artifacts import ArtifactBackend, ArtifactSaver
from nodebanana.generation.catalog import ModelCatalog
from nodebanana.generation.client import GenerationClient, HttpGenerationClient
from nodebanana.generation.poller import SleepFn
from nodebanana.graph.executor import NodeExecutor, NodeResult
from nodebanana.graph.models import BaseNode, NodeType
from nodebanana.graph.resolver import order_from, resolve_order
from nodebanana.graph.store import GraphStore
from nodebanana.observability import clear_trace_context, set_trace_context
from nodebanana.runtime.event_bus import EventBus, NotificationLevel

PAUSE_MESSAGE = "Workflow paused - click Run to continue"


class RunState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class RunStatus(StrEnum):
    """How a run request ended."""

    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"
    STOPPED = "stopped"
    REJECTED = "rejected"


@dataclass
class RunResult:
    """Result of a run or regenerate request."""

    status: RunStatus
    run_id: str | None = None
    path: list[str] = field(default_factory=list)  # Node IDs executed, in order
    paused_at: str | None = None
    failed_node: str | None = None
    error: str | None = None
    node_results: list[NodeResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED


class RunController:
    """
    Drives runs over a graph store.

    Example:
        controller = RunController(store, NodeExecutor(store, client))

        result = await controller.run()
        if result.status == RunStatus.PAUSED:
            result = await controller.run(start_from=result.paused_at)
    """

    def __init__(
        self,
        store: GraphStore,
        executor: NodeExecutor,
        event_bus: EventBus | None = None,
    ):
        self.store = store
        self.executor = executor
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

        self._running = False
        self._current_node_id: str | None = None
        self._paused_at: str | None = None
        self._stop_event: asyncio.Event | None = None

    @classmethod
    def from_config(
        cls,
        store: GraphStore,
        config: EngineConfig | None = None,
        client: GenerationClient | None = None,
        event_bus: EventBus | None = None,
        sleep: SleepFn | None = None,
        catalog: ModelCatalog | None = None,
        artifact_backend: ArtifactBackend | None = None,
    ) -> "RunController":
        """
        Wire up a controller with an HTTP client and artifact saving from configuration.

        Args:
            catalog: Model catalog used to check generator options before each request
            artifact_backend: Where artifacts are saved; defaults to the client's
                save-generation endpoint
        """
        config = config or EngineConfig()
        client = client or HttpGenerationClient(config.api_base, timeout=config.request_timeout)
        saver = ArtifactSaver(artifact_backend or client, event_bus=event_bus) if config.generations_path else None
        executor = NodeExecutor(
            store,
            client,
            artifact_saver=saver,
            catalog=catalog,
            event_bus=event_bus,
            poll_interval=config.poll_interval,
            poll_max_attempts=config.poll_max_attempts,
            sleep=sleep,
            generations_path=config.generations_path,
        )
        return cls(store, executor, event_bus=event_bus)

    # === STATE ===

    @property
    def state(self) -> RunState:
        if self._running:
            return RunState.RUNNING
        if self._paused_at is not None:
            return RunState.PAUSED
        return RunState.IDLE

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current_node_id(self) -> str | None:
        return self._current_node_id

    @property
    def paused_at(self) -> str | None:
        return self._paused_at

    def stop(self) -> bool:
        """
        Request the current run to stop.

        Returns True if a run was in progress. The controller returns to idle
        once the run observes the request.
        """
        if not self._running or self._stop_event is None:
            return False
        self._stop_event.set()
        self.logger.info("⏹ Stop requested - will stop at next node boundary")
        return True

    def _begin(self) -> tuple[str, asyncio.Event]:
        run_id = uuid.uuid4().hex
        stop_event = asyncio.Event()
        self._running = True
        self._stop_event = stop_event
        set_trace_context(run_id=run_id, workflow_id=self.store.workflow_id or "")
        return run_id, stop_event

    def _finish(self) -> None:
        self._running = False
        self._current_node_id = None
        self._stop_event = None
        clear_trace_context()

    # === FULL RUN ===

    async def run(self, start_from: str | None = None, resume: bool = False) -> RunResult:
        """
        Execute the workflow in dependency order.

        Args:
            start_from: Node to start at. When it is the node the last run
                paused at, the run resumes past that pause; otherwise earlier
                nodes are simply skipped.
            resume: Treat ``start_from`` as a paused node even though this
                controller did not record the pause (e.g. a pause left by an
                earlier process)

        Raises:
            GraphCycleError: the graph has a cycle; raised after the
                controller is back to idle and before any node ran. A
                recorded pause is kept.
        """
        if self._running:
            self.logger.warning("Run requested while another run is in progress - ignored")
            return RunResult(status=RunStatus.REJECTED, error="A run is already in progress")

        resuming = start_from is not None and (resume or start_from == self._paused_at)
        run_id, stop_event = self._begin()
        try:
            try:
                order = resolve_order(self.store.nodes, self.store.edges)
            except GraphCycleError as e:
                self.logger.error(f"✗ {e}")
                if self.event_bus:
                    await self.event_bus.emit_run_failed(run_id, str(e), workflow_id=self.store.workflow_id)
                raise
            self._paused_at = None

            if resuming:
                self.logger.info(f"🔄 Resuming from paused node: {start_from}")
                if self.event_bus:
                    await self.event_bus.emit_run_resumed(run_id, start_from, workflow_id=self.store.workflow_id)
            else:
                self.logger.info(f"🚀 Starting run over {len(order)} node(s)")
            if self.event_bus:
                await self.event_bus.emit_run_started(run_id, self.store.workflow_id, start_from=start_from)

            return await self._execute_order(run_id, stop_event, order_from(order, start_from), start_from, resuming)
        finally:
            self._finish()

    async def _execute_order(
        self,
        run_id: str,
        stop_event: asyncio.Event,
        order: list[BaseNode],
        start_from: str | None,
        resuming: bool,
    ) -> RunResult:
        result = RunResult(status=RunStatus.COMPLETED, run_id=run_id)

        for step, planned in enumerate(order, start=1):
            if stop_event.is_set():
                return await self._stopped(result)

            node = self.store.get_node(planned.id)
            if node is None:
                self.logger.info(f"   Skipping {planned.id}: removed during run")
                continue

            if not (resuming and node.id == start_from) and self._has_pause_edge(node.id):
                self._paused_at = node.id
                result.status = RunStatus.PAUSED
                result.paused_at = node.id
                self.logger.info(f"⏸ Paused before {node.id}")
                if self.event_bus:
                    await self.event_bus.emit_run_paused(run_id, node.id, workflow_id=self.store.workflow_id)
                    await self.event_bus.notify(PAUSE_MESSAGE, NotificationLevel.WARNING, node_id=node.id, run_id=run_id)
                return result

            self._current_node_id = node.id
            self.logger.info(f"▶ Step {step}: {node.id} ({node.node_type})")
            if self.event_bus:
                await self.event_bus.emit_node_started(run_id, node.id, node.node_type.value)

            try:
                node_result = await self.executor.execute(node, run_id=run_id, stop_event=stop_event)
            except RunCancelledError:
                return await self._stopped(result)
            except NodeExecutionError as e:
                return await self._failed(result, node.id, e.message)

            result.path.append(node.id)
            result.node_results.append(node_result)
            if self.event_bus:
                await self.event_bus.emit_node_completed(run_id, node.id, node.node_type.value, node_result.outputs)

        if stop_event.is_set():
            return await self._stopped(result)

        self.logger.info("✓ Run complete!")
        self.logger.info(f"   Path: {' → '.join(result.path)}")
        if self.event_bus:
            await self.event_bus.emit_run_completed(run_id, result.path, workflow_id=self.store.workflow_id)
        return result

    def _has_pause_edge(self, node_id: str) -> bool:
        return any(edge.has_pause for edge in self.store.incoming_edges(node_id))

    async def _stopped(self, result: RunResult) -> RunResult:
        result.status = RunStatus.STOPPED
        self.logger.info(f"⏹ Run stopped after {len(result.path)} node(s)")
        if self.event_bus and result.run_id:
            await self.event_bus.emit_run_stopped(result.run_id, self._current_node_id, self.store.workflow_id)
        return result

    async def _failed(self, result: RunResult, node_id: str, message: str) -> RunResult:
        result.status = RunStatus.FAILED
        result.failed_node = node_id
        result.error = message
        self.logger.error(f"✗ Run failed at {node_id}: {message}")
        if self.event_bus and result.run_id:
            await self.event_bus.emit_node_failed(result.run_id, node_id, message)
            await self.event_bus.emit_run_failed(result.run_id, message, node_id, self.store.workflow_id)
        return result

    # === SINGLE NODE ===

    async def regenerate(self, node_id: str) -> RunResult:
        """
        Re-run one generator node with fresh inputs.

        Falls back to the node's last-used inputs when nothing is connected.
        Other nodes are never touched, and an existing pause is kept.
        """
        if self._running:
            self.logger.warning(f"Regenerate {node_id} requested while a run is in progress - ignored")
            return RunResult(status=RunStatus.REJECTED, error="A run is already in progress")

        node = self.store.get_node(node_id)
        if node is None:
            return RunResult(status=RunStatus.REJECTED, error=f"Node not found: {node_id}")
        if node.node_type != NodeType.GENERATOR:
            return RunResult(status=RunStatus.REJECTED, error=f"Node {node_id} cannot be regenerated")

        run_id, stop_event = self._begin()
        result = RunResult(status=RunStatus.COMPLETED, run_id=run_id)
        try:
            self._current_node_id = node_id
            self.logger.info(f"🔄 Regenerating {node_id}")
            if self.event_bus:
                await self.event_bus.emit_run_started(run_id, self.store.workflow_id, start_from=node_id, mode="regenerate")
                await self.event_bus.emit_node_started(run_id, node_id, node.node_type.value)

            try:
                node_result = await self.executor.execute(node, run_id=run_id, stop_event=stop_event, regenerate=True)
            except RunCancelledError:
                return await self._stopped(result)
            except NodeExecutionError as e:
                return await self._failed(result, node_id, e.message)

            result.path.append(node_id)
            result.node_results.append(node_result)
            if self.event_bus:
                await self.event_bus.emit_node_completed(run_id, node_id, node.node_type.value, node_result.outputs)
                await self.event_bus.emit_run_completed(run_id, result.path, workflow_id=self.store.workflow_id)
            return result
        finally:
            self._finish()
