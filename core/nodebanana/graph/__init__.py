"""Workflow graph: schema, store, dependency resolution and node execution."""

from nodebanana.graph.models import (
    EdgeStyle,
    GroupColor,
    NodeGroup,
    NodeStatus,
    NodeType,
    Port,
    WorkflowDocument,
    WorkflowEdge,
    WorkflowNode,
)
from nodebanana.graph.resolver import order_from, resolve_order
from nodebanana.graph.store import GraphStore, ResolvedInputs, ValidationReport

__all__ = [
    "EdgeStyle",
    "GraphStore",
    "GroupColor",
    "NodeGroup",
    "NodeStatus",
    "NodeType",
    "Port",
    "ResolvedInputs",
    "ValidationReport",
    "WorkflowDocument",
    "WorkflowEdge",
    "WorkflowNode",
    "order_from",
    "resolve_order",
]
