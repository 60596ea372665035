"""
Workflow Schema - Nodes, edges, groups and the workflow document.

The on-disk workflow format uses camelCase keys (``groupId``,
``targetHandle``, ``outputImage``); the models expose snake_case attributes
and accept either spelling. Unknown keys are kept so documents written by
newer editors survive a load/save round-trip.

Node variants form a discriminated union on ``type``:

    imageInput          user-supplied image
    annotation          image with manual markup
    prompt              text prompt
    universalGenerator  calls the generation service
    splitGrid           tiles an image into child imageInput nodes
    output              displays a result
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from nodebanana.config import DEFAULT_MODEL


class NodeType(StrEnum):
    """Closed set of node variants."""

    IMAGE_INPUT = "imageInput"
    ANNOTATION = "annotation"
    PROMPT = "prompt"
    GENERATOR = "universalGenerator"
    SPLIT_GRID = "splitGrid"
    OUTPUT = "output"


class NodeStatus(StrEnum):
    """Execution status of executable nodes."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"
    COMPLETE = "complete"


class GroupColor(StrEnum):
    NEUTRAL = "neutral"
    BLUE = "blue"
    GREEN = "green"
    PURPLE = "purple"
    ORANGE = "orange"
    RED = "red"


class EdgeStyle(StrEnum):
    ANGULAR = "angular"
    CURVED = "curved"


class Port(StrEnum):
    """Handle ids distinguishing node inputs."""

    IMAGE = "image"
    TEXT = "text"


# Default canvas footprint per node type
DEFAULT_NODE_SIZES: dict[NodeType, tuple[float, float]] = {
    NodeType.IMAGE_INPUT: (300, 280),
    NodeType.ANNOTATION: (300, 280),
    NodeType.PROMPT: (320, 220),
    NodeType.GENERATOR: (300, 300),
    NodeType.SPLIT_GRID: (300, 320),
    NodeType.OUTPUT: (320, 320),
}


class WireModel(BaseModel):
    """Base for models serialized in the workflow document format."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_wire(self) -> dict[str, Any]:
        """Dump using document (camelCase) keys."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def wire_key(cls, key: str) -> str:
        """Translate a snake_case attribute name into its document key."""
        field = cls.model_fields.get(key)
        if field is not None and field.alias:
            return field.alias
        return key


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class Size(BaseModel):
    width: float
    height: float


class Dimensions(BaseModel):
    width: int
    height: int


# === NODE PAYLOADS ===


class ImageInputData(WireModel):
    image: str | None = None
    filename: str | None = None
    dimensions: Dimensions | None = None


class AnnotationData(WireModel):
    source_image: str | None = None
    annotations: list[Any] = Field(default_factory=list)
    output_image: str | None = None


class PromptData(WireModel):
    prompt: str = ""


class GeneratorData(WireModel):
    """
    Generator configuration and results.

    Only the engine-managed keys are declared. Everything else (aspectRatio,
    seed, addWatermark, upscaleFactor, ...) is a dynamic generation option
    and lives in ``model_extra``.
    """

    model: str = DEFAULT_MODEL
    use_google_search: bool = False
    resolution: str | None = None  # legacy, never sent
    input_images: list[str] = Field(default_factory=list)
    input_prompt: str | None = None
    output_image: str | None = None
    output_images: list[str] = Field(default_factory=list)
    operation_id: str | None = None
    status: NodeStatus = NodeStatus.IDLE
    error: str | None = None


class SplitGridChild(WireModel):
    """Node ids created for one grid cell."""

    image_input: str
    prompt: str | None = None
    generator: str | None = None


class SplitGridData(WireModel):
    source_image: str | None = None
    target_count: int = 6
    default_prompt: str = ""
    generate_settings: dict[str, Any] = Field(
        default_factory=lambda: {
            "aspectRatio": "1:1",
            "resolution": "1K",
            "model": DEFAULT_MODEL,
            "useGoogleSearch": False,
        }
    )
    child_node_ids: list[SplitGridChild] = Field(default_factory=list)
    grid_rows: int = 2
    grid_cols: int = 3
    is_configured: bool = False
    status: NodeStatus = NodeStatus.IDLE
    error: str | None = None


class OutputData(WireModel):
    image: str | None = None


NodeData = ImageInputData | AnnotationData | PromptData | GeneratorData | SplitGridData | OutputData


# === NODES ===


class BaseNode(WireModel):
    """Fields shared by every node variant."""

    id: str
    position: Position = Field(default_factory=Position)
    size: Size | None = Field(default=None, validation_alias=AliasChoices("size", "style"))
    group_id: str | None = None

    def to_wire(self) -> dict[str, Any]:
        wire = super().to_wire()
        for key in ("size", "groupId"):
            if wire.get(key) is None:
                wire.pop(key, None)
        return wire

    @property
    def node_type(self) -> NodeType:
        return NodeType(self.type)  # type: ignore[attr-defined]

    @property
    def is_executable(self) -> bool:
        """True for variants that carry a status field."""
        return hasattr(self.data, "status")  # type: ignore[attr-defined]


class ImageInputNode(BaseNode):
    type: Literal["imageInput"] = "imageInput"
    data: ImageInputData = Field(default_factory=ImageInputData)


class AnnotationNode(BaseNode):
    type: Literal["annotation"] = "annotation"
    data: AnnotationData = Field(default_factory=AnnotationData)


class PromptNode(BaseNode):
    type: Literal["prompt"] = "prompt"
    data: PromptData = Field(default_factory=PromptData)


class GeneratorNode(BaseNode):
    type: Literal["universalGenerator"] = "universalGenerator"
    data: GeneratorData = Field(default_factory=GeneratorData)


class SplitGridNode(BaseNode):
    type: Literal["splitGrid"] = "splitGrid"
    data: SplitGridData = Field(default_factory=SplitGridData)


class OutputNode(BaseNode):
    type: Literal["output"] = "output"
    data: OutputData = Field(default_factory=OutputData)


WorkflowNode = Annotated[
    ImageInputNode | AnnotationNode | PromptNode | GeneratorNode | SplitGridNode | OutputNode,
    Field(discriminator="type"),
]

node_adapter: TypeAdapter[WorkflowNode] = TypeAdapter(WorkflowNode)

NODE_CLASSES: dict[NodeType, type[BaseNode]] = {
    NodeType.IMAGE_INPUT: ImageInputNode,
    NodeType.ANNOTATION: AnnotationNode,
    NodeType.PROMPT: PromptNode,
    NodeType.GENERATOR: GeneratorNode,
    NodeType.SPLIT_GRID: SplitGridNode,
    NodeType.OUTPUT: OutputNode,
}


# === EDGES ===


class EdgeData(WireModel):
    has_pause: bool = False


class WorkflowEdge(WireModel):
    """
    A directed connection between two node ports.

    ``data.hasPause`` marks the edge as a pause checkpoint: the run halts
    before the target node executes until explicitly resumed.
    """

    id: str
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None
    type: str | None = None
    data: EdgeData = Field(default_factory=EdgeData)

    @model_validator(mode="before")
    @classmethod
    def _fold_pause_flag(cls, values: Any) -> Any:
        # Older documents carry the flag on the edge itself
        if isinstance(values, dict) and "hasPause" in values:
            values = dict(values)
            data = dict(values.get("data") or {})
            data.setdefault("hasPause", values.pop("hasPause"))
            values["data"] = data
        return values

    @property
    def has_pause(self) -> bool:
        return self.data.has_pause

    def to_wire(self) -> dict[str, Any]:
        wire = super().to_wire()
        for key in ("sourceHandle", "targetHandle", "type"):
            if wire.get(key) is None:
                wire.pop(key, None)
        return wire


def make_edge_id(
    source: str,
    target: str,
    source_handle: str | None = None,
    target_handle: str | None = None,
) -> str:
    return f"edge-{source}-{target}-{source_handle or 'default'}-{target_handle or 'default'}"


# === GROUPS ===


class NodeGroup(WireModel):
    """A named, coloured canvas region. Members point at it via ``groupId``."""

    id: str
    name: str
    color: GroupColor = GroupColor.NEUTRAL
    position: Position = Field(default_factory=Position)
    size: Size


# === DOCUMENT ===


class WorkflowDocument(WireModel):
    """The saved workflow file."""

    version: Literal[1] = 1
    id: str | None = None
    name: str
    nodes: list[WorkflowNode] = Field(default_factory=list)
    edges: list[WorkflowEdge] = Field(default_factory=list)
    edge_style: EdgeStyle = EdgeStyle.ANGULAR
    groups: dict[str, NodeGroup] | None = None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {"version": self.version}
        if self.id:
            wire["id"] = self.id
        wire["name"] = self.name
        wire["nodes"] = [node.to_wire() for node in self.nodes]
        wire["edges"] = [edge.to_wire() for edge in self.edges]
        wire["edgeStyle"] = self.edge_style.value
        if self.groups:
            wire["groups"] = {gid: group.to_wire() for gid, group in self.groups.items()}
        for key, value in (self.model_extra or {}).items():
            wire.setdefault(key, value)
        return wire


class ImageHistoryItem(BaseModel):
    """One entry in the session-wide generation history."""

    id: str
    image: str
    timestamp: int  # epoch milliseconds
    prompt: str
    aspect_ratio: str | None = None
    model: str | None = None
