"""
Dependency Resolver - execution order for a workflow graph.

A node depends on every node with an edge into it. The order is produced by
depth-first traversal over predecessors, visiting nodes in store order, so
for an already-sorted chain the result is the store order itself. Cycles are
reported, never broken.
"""

from collections.abc import Iterable, Sequence

from nodebanana.errors import GraphCycleError
from nodebanana.graph.models import BaseNode, WorkflowEdge

# Three-colour marking
_WHITE, _GREY, _BLACK = 0, 1, 2


def resolve_order(nodes: Sequence[BaseNode], edges: Iterable[WorkflowEdge]) -> list[BaseNode]:
    """
    Return ``nodes`` ordered so each appears after all of its predecessors.

    Raises:
        GraphCycleError: the graph contains a cycle
    """
    by_id = {node.id: node for node in nodes}
    predecessors: dict[str, list[str]] = {node_id: [] for node_id in by_id}
    for edge in edges:
        if edge.source in by_id and edge.target in by_id:
            predecessors[edge.target].append(edge.source)

    colour = dict.fromkeys(by_id, _WHITE)
    ordered: list[BaseNode] = []

    for root in by_id:
        if colour[root] != _WHITE:
            continue
        # Explicit stack of (node_id, next predecessor index) keeps deep chains off the call stack
        colour[root] = _GREY
        stack: list[tuple[str, int]] = [(root, 0)]
        while stack:
            node_id, index = stack[-1]
            preds = predecessors[node_id]
            if index < len(preds):
                stack[-1] = (node_id, index + 1)
                pred = preds[index]
                if colour[pred] == _GREY:
                    raise GraphCycleError(pred)
                if colour[pred] == _WHITE:
                    colour[pred] = _GREY
                    stack.append((pred, 0))
                continue
            stack.pop()
            colour[node_id] = _BLACK
            ordered.append(by_id[node_id])

    return ordered


def order_from(order: Sequence[BaseNode], start_node_id: str | None) -> list[BaseNode]:
    """
    Slice ``order`` to begin at ``start_node_id``.

    Earlier nodes are skipped, the relative order is unchanged. An unknown
    (or missing) start node yields the full order.
    """
    if start_node_id is None:
        return list(order)
    for index, node in enumerate(order):
        if node.id == start_node_id:
            return list(order[index:])
    return list(order)
