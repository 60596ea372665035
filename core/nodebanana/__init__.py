"""
Node Banana - workflow execution engine for node-based image generation.

Build or load a workflow graph, then run it:

    store = GraphStore()
    store.load_document(load_workflow_file("my-workflow.json"))
    controller = RunController.from_config(store)
    result = await controller.run()
"""

from nodebanana.config import EngineConfig
from nodebanana.errors import (
    EngineError,
    GraphCycleError,
    InvalidOptionError,
    JobTimeoutError,
    MissingRequiredInputError,
    NodeExecutionError,
    NodeLockedError,
    NodeNotFoundError,
    PersistenceFailureError,
    RequestFailureError,
    RunCancelledError,
    UnconfiguredNodeError,
)
from nodebanana.graph import (
    GraphStore,
    NodeStatus,
    NodeType,
    WorkflowDocument,
    resolve_order,
)
from nodebanana.generation import HttpGenerationClient, JobPoller, build_generation_request
from nodebanana.graph.executor import NodeExecutor
from nodebanana.runtime.autosave import AutoSaveTask
from nodebanana.runtime.controller import RunController, RunResult, RunState, RunStatus
from nodebanana.runtime.event_bus import EventBus, EventType
from nodebanana.storage import LocalGenerationStore, WorkflowFileStore
from nodebanana.storage.workflow_files import load_workflow_file

__all__ = [
    "AutoSaveTask",
    "EngineConfig",
    "EngineError",
    "EventBus",
    "EventType",
    "GraphCycleError",
    "GraphStore",
    "HttpGenerationClient",
    "InvalidOptionError",
    "JobPoller",
    "JobTimeoutError",
    "LocalGenerationStore",
    "MissingRequiredInputError",
    "NodeExecutionError",
    "NodeExecutor",
    "NodeLockedError",
    "NodeNotFoundError",
    "NodeStatus",
    "NodeType",
    "PersistenceFailureError",
    "RequestFailureError",
    "RunCancelledError",
    "RunController",
    "RunResult",
    "RunState",
    "RunStatus",
    "UnconfiguredNodeError",
    "WorkflowDocument",
    "WorkflowFileStore",
    "build_generation_request",
    "load_workflow_file",
    "resolve_order",
]
