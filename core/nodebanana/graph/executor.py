"""
Node Executor - runs a single node against the graph store.

One dispatch table maps each node variant to its handler:

    imageInput          nothing to do
    prompt              nothing to do
    annotation          take the first upstream image as source (and output
                        when nothing was drawn yet)
    universalGenerator  build request, call the service, poll async jobs,
                        record result and history, schedule artifact saves
    splitGrid           tile the first upstream image into the bound
                        child imageInput nodes
    output              show the first upstream image

Failures surface as NodeExecutionError subclasses after the node has been
marked ``error``. The node is locked against user edits while it runs.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from nodebanana.config import DEFAULT_GENERATIONS_PATH, DEFAULT_POLL_INTERVAL, DEFAULT_POLL_MAX_ATTEMPTS
from nodebanana.errors import (
    MissingRequiredInputError,
    NodeExecutionError,
    RequestFailureError,
    RunCancelledError,
    UnconfiguredNodeError,
)
from nodebanana.generation.artifacts import ArtifactSaver
from nodebanana.generation.catalog import ModelCatalog
from nodebanana.generation.client import GenerationClient, OperationStatus
from nodebanana.generation.poller import JobPoller, SleepFn
from nodebanana.generation.request_builder import build_generation_request
from nodebanana.graph.grid import split_image_async
from nodebanana.graph.models import BaseNode, NodeStatus, NodeType
from nodebanana.graph.store import GraphStore
from nodebanana.observability import set_trace_context
from nodebanana.runtime.event_bus import EventBus
from nodebanana.utils.data_url import decode_data_url, is_data_url

MediaFetcher = Callable[[str], Awaitable[tuple[str, bytes]]]


@dataclass
class ExecutionContext:
    """Per-call settings handed to node handlers."""

    run_id: str | None = None
    stop_event: asyncio.Event | None = None
    regenerate: bool = False


@dataclass
class NodeResult:
    """Outcome of executing one node."""

    node_id: str
    node_type: str
    success: bool = True
    outputs: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    latency_ms: int = 0


Handler = Callable[[BaseNode, ExecutionContext], Awaitable[dict[str, Any]]]


class NodeExecutor:
    """
    Executes nodes of every variant.

    Example:
        executor = NodeExecutor(store, client=HttpGenerationClient())
        result = await executor.execute(store.require_node("universalGenerator-3"))
    """

    def __init__(
        self,
        store: GraphStore,
        client: GenerationClient,
        artifact_saver: ArtifactSaver | None = None,
        catalog: ModelCatalog | None = None,
        event_bus: EventBus | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        sleep: SleepFn | None = None,
        generations_path: str | None = DEFAULT_GENERATIONS_PATH,
        media_fetcher: MediaFetcher | None = None,
    ):
        """
        Args:
            store: Graph store read for inputs and written with results
            client: Generation service client
            artifact_saver: Saves generated artifacts; None disables saving
            catalog: Model catalog supplying option descriptors for validation
            event_bus: Receives job polling events
            poll_interval: Seconds between job status queries
            poll_max_attempts: Job status query ceiling
            sleep: Awaitable sleep for the poller (fake clocks in tests)
            generations_path: Fallback artifact directory when the store has none
            media_fetcher: Downloads non-data-URL images for the grid splitter
        """
        self.store = store
        self.client = client
        self.artifact_saver = artifact_saver
        self.catalog = catalog
        self.event_bus = event_bus
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts
        self.sleep = sleep
        self.generations_path = generations_path
        self.media_fetcher = media_fetcher or getattr(client, "fetch_media", None)
        self.logger = logging.getLogger(__name__)

        self._handlers: dict[NodeType, Handler] = {
            NodeType.IMAGE_INPUT: self._execute_passive,
            NodeType.PROMPT: self._execute_passive,
            NodeType.ANNOTATION: self._execute_annotation,
            NodeType.GENERATOR: self._execute_generator,
            NodeType.SPLIT_GRID: self._execute_split_grid,
            NodeType.OUTPUT: self._execute_output,
        }

    async def execute(
        self,
        node: BaseNode,
        run_id: str | None = None,
        stop_event: asyncio.Event | None = None,
        regenerate: bool = False,
    ) -> NodeResult:
        """
        Execute one node.

        Raises:
            NodeExecutionError: fatal for the run; the node is already marked ``error``
            RunCancelledError: the run was stopped while the node waited on a job
        """
        node_type = node.node_type
        set_trace_context(node_id=node.id, node_type=node_type.value)
        context = ExecutionContext(run_id=run_id, stop_event=stop_event, regenerate=regenerate)
        handler = self._handlers[node_type]

        start = time.monotonic()
        self.store.lock(node.id)
        try:
            outputs = await handler(node, context)
        except RunCancelledError:
            if node.is_executable:
                self.store.write_node_data(node.id, {"status": NodeStatus.IDLE, "error": None})
            self.logger.info(f"   ⏹ Stopped while running {node.id}")
            raise
        except NodeExecutionError as e:
            e.node_id = node.id
            self._mark_failed(node, e.message)
            raise
        except Exception as e:
            self.logger.exception(f"   ✗ Unexpected error in {node.id}")
            message = str(e) or type(e).__name__
            self._mark_failed(node, message)
            raise NodeExecutionError(message, node_id=node.id) from e
        finally:
            self.store.unlock(node.id)

        latency_ms = int((time.monotonic() - start) * 1000)
        self.logger.info(
            f"   ✓ {node.id} done ({latency_ms}ms)",
            extra={"node_id": node.id, "node_type": node_type.value, "latency_ms": latency_ms},
        )
        return NodeResult(node_id=node.id, node_type=node_type.value, outputs=outputs, latency_ms=latency_ms)

    def _mark_failed(self, node: BaseNode, message: str) -> None:
        self.logger.error(f"   ✗ Failed: {message}", extra={"node_id": node.id})
        if node.is_executable and self.store.get_node(node.id) is not None:
            self.store.write_node_data(node.id, {"status": NodeStatus.ERROR, "error": message})

    # === HANDLERS ===

    async def _execute_passive(self, node: BaseNode, context: ExecutionContext) -> dict[str, Any]:
        return {}

    async def _execute_annotation(self, node: BaseNode, context: ExecutionContext) -> dict[str, Any]:
        images = self.store.resolve_inputs(node.id).images
        if not images:
            return {}
        image = images[0]
        changes: dict[str, Any] = {"sourceImage": image}
        if not self.store.require_node(node.id).data.output_image:  # type: ignore[attr-defined]
            # Nothing drawn yet: pass the image straight through
            changes["outputImage"] = image
        self.store.write_node_data(node.id, changes)
        return changes

    async def _execute_output(self, node: BaseNode, context: ExecutionContext) -> dict[str, Any]:
        images = self.store.resolve_inputs(node.id).images
        if not images:
            return {}
        self.store.write_node_data(node.id, {"image": images[0]})
        return {"image": images[0]}

    async def _execute_generator(self, node: BaseNode, context: ExecutionContext) -> dict[str, Any]:
        data = self.store.require_node(node.id).data  # type: ignore[attr-defined]
        inputs = self.store.resolve_inputs(node.id)

        if context.regenerate:
            # Fresh connections win; fall back to what the last run used
            images = inputs.images or list(data.input_images)
            text = inputs.text if inputs.text is not None else data.input_prompt
            if not text:
                raise MissingRequiredInputError("Missing connected text prompt")
        else:
            images, text = inputs.images, inputs.text
            if not text:
                raise MissingRequiredInputError("Missing text input")

        self.store.write_node_data(
            node.id,
            {"inputImages": images, "inputPrompt": text, "status": NodeStatus.LOADING, "error": None},
        )

        config = self.store.require_node(node.id).data.to_wire()  # type: ignore[attr-defined]
        model = str(config.get("model") or "")
        descriptors = self.catalog.descriptors_for(model) if self.catalog else None
        request = build_generation_request(config, text, images, descriptors)

        self.logger.info(f"   Generating with {model} ({len(images)} input image(s))", extra={"model": model})
        response = await self.client.generate(request)

        if response.operation_id:
            operation_id = response.operation_id
            self.store.write_node_data(node.id, {"operationId": operation_id, "status": NodeStatus.LOADING})
            self.logger.info(f"   ⏳ Waiting on job {operation_id}", extra={"operation_id": operation_id})
            media = await self._poller_for(node.id, context).poll(operation_id, stop_event=context.stop_event)
            artifacts = [m.url for m in media if m.url]
        else:
            primary = response.primary_output
            if not response.success or not primary:
                raise RequestFailureError(response.error or "Generation failed (No output returned)")
            artifacts = [primary]

        primary = artifacts[0]
        self.store.add_to_history(
            image=primary,
            prompt=text,
            aspect_ratio=config.get("aspectRatio"),
            model=model,
        )
        outputs = {"outputImage": primary, "outputImages": artifacts}
        self.store.write_node_data(node.id, {**outputs, "status": NodeStatus.SUCCESS, "error": None})

        directory = self.store.generations_path or self.generations_path
        if self.artifact_saver is not None and directory:
            self.artifact_saver.schedule(directory, artifacts, text, node_id=node.id, run_id=context.run_id)
        return outputs

    def _poller_for(self, node_id: str, context: ExecutionContext) -> JobPoller:
        bus = self.event_bus

        async def report_attempt(operation_id: str, attempt: int, status: OperationStatus | None) -> None:
            if bus is not None:
                await bus.emit_job_polled(context.run_id, node_id, operation_id, attempt, bool(status and status.done))

        return JobPoller(
            self.client,
            interval=self.poll_interval,
            max_attempts=self.poll_max_attempts,
            sleep=self.sleep,
            on_attempt=report_attempt,
        )

    async def _execute_split_grid(self, node: BaseNode, context: ExecutionContext) -> dict[str, Any]:
        images = self.store.resolve_inputs(node.id).images
        if not images:
            raise MissingRequiredInputError("No input image connected")
        source = images[0]

        data = self.store.require_node(node.id).data  # type: ignore[attr-defined]
        if not data.is_configured:
            raise UnconfiguredNodeError("Node not configured - open settings first")

        self.store.write_node_data(node.id, {"sourceImage": source, "status": NodeStatus.LOADING, "error": None})

        payload = await self._load_image_bytes(source)
        try:
            tiles = await split_image_async(payload, data.grid_rows, data.grid_cols)
        except ValueError as e:
            raise NodeExecutionError(str(e) or "Failed to split image") from e

        filled = []
        for child, tile in zip(data.child_node_ids, tiles, strict=False):
            if self.store.get_node(child.image_input) is None:
                self.logger.warning(f"   Grid child {child.image_input} no longer exists, skipping")
                continue
            self.store.write_node_data(
                child.image_input,
                {
                    "image": tile.image,
                    "filename": tile.filename,
                    "dimensions": {"width": tile.width, "height": tile.height},
                },
            )
            filled.append(child.image_input)

        self.store.write_node_data(node.id, {"status": NodeStatus.COMPLETE, "error": None})
        self.logger.info(f"   Split into {len(tiles)} tile(s), filled {len(filled)} child node(s)")
        return {"children": filled}

    async def _load_image_bytes(self, source: str) -> bytes:
        if is_data_url(source):
            try:
                return decode_data_url(source)[1]
            except ValueError as e:
                raise NodeExecutionError(f"Failed to split image: {e}") from e
        if self.media_fetcher is None:
            raise NodeExecutionError("Failed to split image: cannot download source image")
        _, payload = await self.media_fetcher(source)
        return payload
