"""
Graph Store - the single mutable source of truth for a workflow.

Every node, edge and group change goes through one of the methods here so
the structural invariants hold after each call:

- edge endpoints always reference existing nodes
- removing a node removes its incident edges and its group membership
- node ids are never reused within a session

Two write surfaces exist for node data. ``update_node_data`` is the user
edit surface and refuses to touch the node the engine is executing;
``write_node_data`` is used by the engine itself.
"""

import logging
import random
import string
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from nodebanana.config import DEFAULT_MODEL, get_generator_defaults
from nodebanana.errors import NodeLockedError, NodeNotFoundError
from nodebanana.graph.ids import IdGenerator
from nodebanana.graph.models import (
    DEFAULT_NODE_SIZES,
    BaseNode,
    EdgeStyle,
    GroupColor,
    ImageHistoryItem,
    NodeGroup,
    NodeType,
    Port,
    Position,
    Size,
    WorkflowDocument,
    WorkflowEdge,
    make_edge_id,
    node_adapter,
)

logger = logging.getLogger(__name__)

GROUP_PADDING = 20
GROUP_HEADER_HEIGHT = 32
GROUP_COLOR_ORDER = list(GroupColor)

# Dark-mode tints used by the canvas
GROUP_COLORS: dict[GroupColor, str] = {
    GroupColor.NEUTRAL: "#262626",
    GroupColor.BLUE: "#1e3a5f",
    GroupColor.GREEN: "#1a3d2e",
    GroupColor.PURPLE: "#2d2458",
    GroupColor.ORANGE: "#3d2a1a",
    GroupColor.RED: "#3d1a1a",
}

DEFAULT_PASTE_OFFSET = (50.0, 50.0)

PositionLike = Position | dict[str, float] | tuple[float, float]


@dataclass
class ResolvedInputs:
    """Upstream values feeding a node, in edge store order."""

    images: list[str] = field(default_factory=list)
    text: str | None = None


@dataclass
class ValidationReport:
    valid: bool
    errors: list[str] = field(default_factory=list)


def _as_position(value: PositionLike) -> Position:
    if isinstance(value, Position):
        return value.model_copy()
    if isinstance(value, dict):
        return Position(**value)
    x, y = value
    return Position(x=x, y=y)


class GraphStore:
    """
    In-memory workflow graph with dirty tracking for auto-save.

    Nodes are kept in insertion order ("store order"); the dependency
    resolver and input resolution both rely on that order.
    """

    def __init__(
        self,
        generator_defaults: dict[str, Any] | None = None,
        node_ids: IdGenerator | None = None,
        group_ids: IdGenerator | None = None,
    ):
        self._nodes: dict[str, BaseNode] = {}
        self._edges: list[WorkflowEdge] = []
        self._groups: dict[str, NodeGroup] = {}
        self.edge_style = EdgeStyle.CURVED
        self.node_ids = node_ids or IdGenerator()
        self.group_ids = group_ids or IdGenerator()
        self.generator_defaults = (
            dict(generator_defaults) if generator_defaults is not None else get_generator_defaults()
        )

        # Workflow metadata (auto-save needs id, name and directory)
        self.workflow_id: str | None = None
        self.workflow_name: str | None = None
        self.save_directory_path: str | None = None
        self.generations_path: str | None = None
        self.auto_save_enabled = True
        self.is_saving = False
        self.last_saved_at: float | None = None

        self._clipboard: tuple[list[BaseNode], list[WorkflowEdge]] | None = None
        self._history: list[ImageHistoryItem] = []
        self._locked_node_id: str | None = None
        self._dirty = False

    # === READ ACCESS ===

    @property
    def nodes(self) -> list[BaseNode]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[WorkflowEdge]:
        return list(self._edges)

    @property
    def groups(self) -> dict[str, NodeGroup]:
        return dict(self._groups)

    @property
    def history(self) -> list[ImageHistoryItem]:
        return list(self._history)

    @property
    def has_clipboard(self) -> bool:
        return bool(self._clipboard and self._clipboard[0])

    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty

    @property
    def locked_node_id(self) -> str | None:
        return self._locked_node_id

    def get_node(self, node_id: str) -> BaseNode | None:
        return self._nodes.get(node_id)

    def require_node(self, node_id: str) -> BaseNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def get_edge(self, edge_id: str) -> WorkflowEdge | None:
        for edge in self._edges:
            if edge.id == edge_id:
                return edge
        return None

    def incoming_edges(self, node_id: str) -> list[WorkflowEdge]:
        return [edge for edge in self._edges if edge.target == node_id]

    def group_members(self, group_id: str) -> list[str]:
        return [node.id for node in self._nodes.values() if node.group_id == group_id]

    # === DIRTY TRACKING ===

    def mark_dirty(self) -> None:
        self._dirty = True

    def mark_saved(self, saved_at: float | None = None) -> None:
        self._dirty = False
        self.last_saved_at = saved_at if saved_at is not None else time.time()

    def set_workflow_metadata(
        self,
        workflow_id: str,
        name: str,
        directory_path: str,
        generations_path: str | None = None,
    ) -> None:
        self.workflow_id = workflow_id
        self.workflow_name = name
        self.save_directory_path = directory_path
        self.generations_path = generations_path

    def set_workflow_name(self, name: str) -> None:
        self.workflow_name = name
        self._dirty = True

    # === ENGINE LOCK ===

    def lock(self, node_id: str) -> None:
        """Mark ``node_id`` as executing. User edits to it are rejected until unlock."""
        self._locked_node_id = node_id

    def unlock(self, node_id: str | None = None) -> None:
        if node_id is None or self._locked_node_id == node_id:
            self._locked_node_id = None

    def _check_unlocked(self, node_id: str) -> None:
        if node_id == self._locked_node_id:
            raise NodeLockedError(node_id)

    # === NODES ===

    def add_node(
        self,
        node_type: NodeType | str,
        position: PositionLike = (0.0, 0.0),
        data: dict[str, Any] | None = None,
    ) -> str:
        """Create a node with the per-type default data and size. Returns its new id."""
        node_type = NodeType(node_type)
        node_id = self.node_ids.next(node_type.value)
        width, height = DEFAULT_NODE_SIZES[node_type]

        payload = self._default_data(node_type)
        if data:
            payload.update(data)

        node = node_adapter.validate_python(
            {
                "id": node_id,
                "type": node_type.value,
                "position": _as_position(position).model_dump(),
                "size": {"width": width, "height": height},
                "data": payload,
            }
        )
        self._nodes[node_id] = node
        self._dirty = True
        logger.debug(f"Added node {node_id}")
        return node_id

    def _default_data(self, node_type: NodeType) -> dict[str, Any]:
        if node_type == NodeType.GENERATOR:
            defaults = self.generator_defaults
            return {
                "aspectRatio": defaults.get("aspectRatio", "1:1"),
                "resolution": defaults.get("resolution", "1K"),
                "model": defaults.get("model") or DEFAULT_MODEL,
                "useGoogleSearch": defaults.get("useGoogleSearch", False),
            }
        return {}

    @staticmethod
    def _merge_data(node: BaseNode, changes: dict[str, Any]) -> None:
        data_cls = type(node.data)  # type: ignore[attr-defined]
        merged = node.data.to_wire()  # type: ignore[attr-defined]
        for key, value in changes.items():
            merged[data_cls.wire_key(key)] = value
        node.data = data_cls.model_validate(merged)  # type: ignore[attr-defined]

    def update_node_data(self, node_id: str, changes: dict[str, Any]) -> None:
        """
        Apply a user edit to a node's data.

        Raises:
            NodeNotFoundError: unknown node
            NodeLockedError: the engine is executing this node
        """
        node = self.require_node(node_id)
        self._check_unlocked(node_id)
        self._merge_data(node, changes)
        self._dirty = True

    def write_node_data(self, node_id: str, changes: dict[str, Any]) -> None:
        """Engine write path: status, inputs and outputs."""
        node = self.require_node(node_id)
        self._merge_data(node, changes)
        self._dirty = True

    def move_node(self, node_id: str, position: PositionLike) -> None:
        node = self.require_node(node_id)
        node.position = _as_position(position)
        self._dirty = True

    def remove_node(self, node_id: str) -> None:
        """Remove a node together with every edge touching it."""
        self.require_node(node_id)
        self._check_unlocked(node_id)
        del self._nodes[node_id]
        before = len(self._edges)
        self._edges = [e for e in self._edges if e.source != node_id and e.target != node_id]
        self._dirty = True
        logger.debug(f"Removed node {node_id} and {before - len(self._edges)} edge(s)")

    # === EDGES ===

    def connect(
        self,
        source: str,
        target: str,
        source_handle: str | None = None,
        target_handle: str | None = None,
        edge_type: str | None = None,
    ) -> str:
        """
        Connect two node ports.

        A connection identical to an existing one is ignored and the existing
        edge id returned.

        Raises:
            NodeNotFoundError: either endpoint is unknown
        """
        self.require_node(source)
        self.require_node(target)

        for edge in self._edges:
            if (
                edge.source == source
                and edge.target == target
                and edge.source_handle == source_handle
                and edge.target_handle == target_handle
            ):
                return edge.id

        edge = WorkflowEdge(
            id=make_edge_id(source, target, source_handle, target_handle),
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
            type=edge_type,
        )
        self._edges.append(edge)
        self._dirty = True
        return edge.id

    def remove_edge(self, edge_id: str) -> bool:
        before = len(self._edges)
        self._edges = [e for e in self._edges if e.id != edge_id]
        removed = len(self._edges) != before
        if removed:
            self._dirty = True
        return removed

    def toggle_edge_pause(self, edge_id: str) -> bool:
        """Flip the pause checkpoint on an edge. Returns the new value."""
        edge = self.get_edge(edge_id)
        if edge is None:
            raise KeyError(f"Edge not found: {edge_id}")
        edge.data.has_pause = not edge.data.has_pause
        self._dirty = True
        return edge.data.has_pause

    def set_edge_style(self, style: EdgeStyle | str) -> None:
        self.edge_style = EdgeStyle(style)
        self._dirty = True

    # === CLIPBOARD ===

    def copy_nodes(self, node_ids: Iterable[str]) -> int:
        """Copy nodes and the edges running between them. Returns the node count."""
        selected_ids = set(node_ids)
        nodes = [n.model_copy(deep=True) for n in self._nodes.values() if n.id in selected_ids]
        if not nodes:
            return 0
        edges = [
            e.model_copy(deep=True)
            for e in self._edges
            if e.source in selected_ids and e.target in selected_ids
        ]
        self._clipboard = (nodes, edges)
        return len(nodes)

    def paste_nodes(self, offset: tuple[float, float] = DEFAULT_PASTE_OFFSET) -> list[str]:
        """Insert the clipboard contents under fresh ids, shifted by ``offset``."""
        if not self._clipboard or not self._clipboard[0]:
            return []
        nodes, edges = self._clipboard
        dx, dy = offset

        id_mapping: dict[str, str] = {}
        for node in nodes:
            id_mapping[node.id] = self.node_ids.next(node.type)  # type: ignore[attr-defined]

        for node in nodes:
            new_node = node.model_copy(
                deep=True,
                update={
                    "id": id_mapping[node.id],
                    "position": Position(x=node.position.x + dx, y=node.position.y + dy),
                },
            )
            self._nodes[new_node.id] = new_node

        for edge in edges:
            source = id_mapping[edge.source]
            target = id_mapping[edge.target]
            self._edges.append(
                edge.model_copy(
                    deep=True,
                    update={
                        "id": make_edge_id(source, target, edge.source_handle, edge.target_handle),
                        "source": source,
                        "target": target,
                    },
                )
            )

        self._dirty = True
        return list(id_mapping.values())

    def clear_clipboard(self) -> None:
        self._clipboard = None

    # === GROUPS ===

    def create_group(self, node_ids: Iterable[str]) -> str | None:
        """
        Group nodes under a new coloured region sized to their bounding box.

        Returns the group id, or None when none of the ids exist.
        """
        wanted = set(node_ids)
        members = [n for n in self._nodes.values() if n.id in wanted]
        if not members:
            return None

        min_x = min_y = float("inf")
        max_x = max_y = float("-inf")
        for node in members:
            default_w, default_h = DEFAULT_NODE_SIZES[node.node_type]
            width = node.size.width if node.size else default_w
            height = node.size.height if node.size else default_h
            min_x = min(min_x, node.position.x)
            min_y = min(min_y, node.position.y)
            max_x = max(max_x, node.position.x + width)
            max_y = max(max_y, node.position.y + height)

        used = {g.color for g in self._groups.values()}
        color = next((c for c in GROUP_COLOR_ORDER if c not in used), GroupColor.NEUTRAL)

        group_id = self.group_ids.next("group")
        group = NodeGroup(
            id=group_id,
            name=f"Group {len(self._groups) + 1}",
            color=color,
            position=Position(x=min_x - GROUP_PADDING, y=min_y - GROUP_PADDING - GROUP_HEADER_HEIGHT),
            size=Size(
                width=max_x - min_x + GROUP_PADDING * 2,
                height=max_y - min_y + GROUP_PADDING * 2 + GROUP_HEADER_HEIGHT,
            ),
        )
        self._groups[group_id] = group
        for node in members:
            node.group_id = group_id
        self._dirty = True
        return group_id

    def delete_group(self, group_id: str) -> None:
        """Remove a group. Its member nodes stay, ungrouped."""
        self._groups.pop(group_id, None)
        for node in self._nodes.values():
            if node.group_id == group_id:
                node.group_id = None
        self._dirty = True

    def add_nodes_to_group(self, node_ids: Iterable[str], group_id: str) -> None:
        wanted = set(node_ids)
        for node in self._nodes.values():
            if node.id in wanted:
                node.group_id = group_id
        self._dirty = True

    def remove_nodes_from_group(self, node_ids: Iterable[str]) -> None:
        wanted = set(node_ids)
        for node in self._nodes.values():
            if node.id in wanted:
                node.group_id = None
        self._dirty = True

    def update_group(self, group_id: str, changes: dict[str, Any]) -> None:
        group = self._groups.get(group_id)
        if group is None:
            raise KeyError(f"Group not found: {group_id}")
        merged = group.to_wire()
        for key, value in changes.items():
            merged[NodeGroup.wire_key(key)] = value
        self._groups[group_id] = NodeGroup.model_validate(merged)
        self._dirty = True

    def move_group_nodes(self, group_id: str, delta: tuple[float, float]) -> None:
        dx, dy = delta
        for node in self._nodes.values():
            if node.group_id == group_id:
                node.position = Position(x=node.position.x + dx, y=node.position.y + dy)
        self._dirty = True

    def set_node_group_id(self, node_id: str, group_id: str | None) -> None:
        self.require_node(node_id).group_id = group_id
        self._dirty = True

    # === INPUTS & VALIDATION ===

    def resolve_inputs(self, node_id: str) -> ResolvedInputs:
        """
        Collect the values flowing into ``node_id``.

        Image edges (target port ``image`` or unset) contribute the source's
        image output; a prompt node wired into the ``text`` port supplies the
        text. Sources with nothing to offer are skipped.
        """
        resolved = ResolvedInputs()
        for edge in self._edges:
            if edge.target != node_id:
                continue
            source = self._nodes.get(edge.source)
            if source is None:
                continue

            handle = edge.target_handle
            if handle == Port.IMAGE or not handle:
                image = self._image_output(source)
                if image:
                    resolved.images.append(image)
            if handle == Port.TEXT and source.node_type == NodeType.PROMPT:
                resolved.text = source.data.prompt  # type: ignore[attr-defined]
        return resolved

    @staticmethod
    def _image_output(node: BaseNode) -> str | None:
        data = node.data  # type: ignore[attr-defined]
        match node.node_type:
            case NodeType.IMAGE_INPUT:
                return data.image
            case NodeType.ANNOTATION | NodeType.GENERATOR:
                return data.output_image
        return None

    def validate(self) -> ValidationReport:
        """Check the graph is wired well enough to run."""
        if not self._nodes:
            return ValidationReport(valid=False, errors=["Workflow is empty"])

        errors: list[str] = []
        targets: dict[str, set[str | None]] = {}
        for edge in self._edges:
            targets.setdefault(edge.target, set()).add(edge.target_handle)

        for node in self._nodes.values():
            if node.node_type == NodeType.GENERATOR and Port.TEXT not in targets.get(node.id, set()):
                errors.append(f'Generate node "{node.id}" missing text input')

        for node in self._nodes.values():
            if (
                node.node_type == NodeType.ANNOTATION
                and node.id not in targets
                and node.data.source_image is None  # type: ignore[attr-defined]
            ):
                errors.append(f'Annotation node "{node.id}" missing image input')

        for node in self._nodes.values():
            if node.node_type == NodeType.OUTPUT and node.id not in targets:
                errors.append(f'Output node "{node.id}" missing image input')

        return ValidationReport(valid=not errors, errors=errors)

    # === HISTORY ===

    def add_to_history(
        self,
        image: str,
        prompt: str,
        aspect_ratio: str | None = None,
        model: str | None = None,
    ) -> ImageHistoryItem:
        """Prepend a generated image to the session history."""
        now_ms = int(time.time() * 1000)
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        item = ImageHistoryItem(
            id=f"{now_ms}-{suffix}",
            image=image,
            timestamp=now_ms,
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            model=model,
        )
        self._history.insert(0, item)
        return item

    def clear_history(self) -> None:
        self._history.clear()

    # === DOCUMENT I/O ===

    def to_document(self) -> WorkflowDocument:
        return WorkflowDocument(
            id=self.workflow_id,
            name=self.workflow_name or "Untitled Workflow",
            nodes=[n.model_copy(deep=True) for n in self._nodes.values()],
            edges=[e.model_copy(deep=True) for e in self._edges],
            edge_style=self.edge_style,
            groups={gid: g.model_copy(deep=True) for gid, g in self._groups.items()} or None,
        )

    def load_document(self, document: WorkflowDocument | dict[str, Any]) -> None:
        """
        Replace the graph with a saved workflow.

        Id counters advance past the largest suffix found so new nodes never
        collide with loaded ones. Edges pointing at missing nodes are dropped.
        """
        if not isinstance(document, WorkflowDocument):
            document = WorkflowDocument.model_validate(document)

        self._nodes = {node.id: node for node in document.nodes}
        self._edges = [
            edge for edge in document.edges if edge.source in self._nodes and edge.target in self._nodes
        ]
        dropped = len(document.edges) - len(self._edges)
        if dropped:
            logger.warning(f"Dropped {dropped} edge(s) referencing missing nodes")
        self._groups = dict(document.groups or {})
        self.edge_style = document.edge_style

        self.node_ids.reseed(self._nodes)
        self.group_ids.reseed(self._groups)

        self.workflow_id = document.id
        self.workflow_name = document.name
        self._locked_node_id = None
        self._dirty = False
        logger.info(f"Loaded workflow '{document.name}' ({len(self._nodes)} nodes, {len(self._edges)} edges)")

    def clear(self) -> None:
        """Empty the graph and forget the workflow metadata."""
        self._nodes = {}
        self._edges = []
        self._groups = {}
        self.workflow_id = None
        self.workflow_name = None
        self.save_directory_path = None
        self.generations_path = None
        self.last_saved_at = None
        self._locked_node_id = None
        self._dirty = False
