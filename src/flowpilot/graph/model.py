"""
Automation graph model.

Nodes are a tagged union on ``type``: ``automationStep`` nodes own exactly
one step, ``conditional`` nodes own a condition. Edges are directed and may
carry an ``if``/``else`` source handle. ``Automation`` is the persisted
aggregate; ``Graph`` is the read-only indexed view the engine walks.
"""

from datetime import datetime
from typing import Annotated, Any, Iterable, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .steps import AutomationStep, ComparisonOp


ENTRY_NODE_ID = "1"

BranchHandle = Literal["if", "else"]
BRANCH_HANDLES: tuple[str, ...] = ("if", "else")

ConditionType = Literal["elementExists", "valueMatches", "loopUntilFalse"]
AutomationStatus = Literal["idle", "running", "paused"]

# Handle ids the visual editor writes that mean something else here.
_HANDLE_ALIASES = {"default": None, "": None, "then": "if"}


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Position(_Model):
    """Editor placement. Never read by the engine."""
    x: float = 0
    y: float = 0


class StepNodeData(_Model):
    step: AutomationStep


class ConditionalNodeData(_Model):
    """
    Condition owned by a conditional node.

    ``comparison_op``/``expected_value`` apply to ``valueMatches`` (and to
    ``loopUntilFalse`` when both are set). The loop fields only apply to
    ``loopUntilFalse``.
    """
    condition_type: ConditionType = "elementExists"
    selector: str = ""
    comparison_op: Optional[ComparisonOp] = Field(default=None, alias="condition")
    expected_value: Optional[str] = None
    start_index: int = 1
    increment: int = 1
    max_iterations: Optional[int] = Field(default=None, ge=1)
    index_variable: Optional[str] = None


class StepNode(_Model):
    id: str
    type: Literal["automationStep"] = "automationStep"
    data: StepNodeData
    position: Position = Field(default_factory=Position)

    @property
    def step(self) -> AutomationStep:
        return self.data.step


class ConditionalNode(_Model):
    id: str
    type: Literal["conditional"] = "conditional"
    data: ConditionalNodeData = Field(default_factory=ConditionalNodeData)
    position: Position = Field(default_factory=Position)


Node = Annotated[Union[StepNode, ConditionalNode], Field(discriminator="type")]


class Edge(_Model):
    id: str
    source: str
    target: str
    source_handle: Optional[BranchHandle] = None

    @field_validator("source_handle", mode="before")
    @classmethod
    def _normalize_handle(cls, value: Any) -> Any:
        if isinstance(value, str) and value in _HANDLE_ALIASES:
            return _HANDLE_ALIASES[value]
        return value


class LastRun(_Model):
    timestamp: datetime
    success: bool
    duration: Optional[float] = None


class Automation(_Model):
    """
    Aggregate root of one automation document.

    ``steps`` and ``linked_credentials`` are derived from the nodes on every
    dump; values present in a loaded document are ignored.
    """
    id: str
    name: str = ""
    description: str = ""
    status: AutomationStatus = "idle"
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    schedule: dict[str, Any] = Field(default_factory=lambda: {"type": "manual"})
    last_run: Optional[LastRun] = None

    @computed_field(alias="steps")
    @property
    def steps(self) -> list[AutomationStep]:
        return [node.data.step for node in self.nodes if isinstance(node, StepNode)]

    @computed_field(alias="linkedCredentials")
    @property
    def linked_credentials(self) -> list[str]:
        seen: list[str] = []
        for step in self.steps:
            for ref in step.credential_refs():
                credential_id = ref.split("#", 1)[0]
                if credential_id not in seen:
                    seen.append(credential_id)
        return seen

    def get_node(self, node_id: str) -> Optional[Union[StepNode, ConditionalNode]]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def to_document(self) -> dict[str, Any]:
        """JSON-ready document in the persisted camelCase shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Graph:
    """
    Read-only indexed view over nodes and edges.

    Nodes live in an ordered list; ``_index`` maps ids to positions and
    ``_outgoing`` keeps each source's edges in document order.
    """

    def __init__(self, nodes: Iterable[Union[StepNode, ConditionalNode]], edges: Iterable[Edge]):
        self._nodes = list(nodes)
        self._edges = list(edges)
        self._index: dict[str, int] = {}
        for i, node in enumerate(self._nodes):
            self._index.setdefault(node.id, i)
        self._outgoing: dict[str, list[Edge]] = {}
        for edge in self._edges:
            self._outgoing.setdefault(edge.source, []).append(edge)

    @classmethod
    def from_automation(cls, automation: Automation) -> "Graph":
        return cls(automation.nodes, automation.edges)

    @property
    def nodes(self) -> list[Union[StepNode, ConditionalNode]]:
        return list(self._nodes)

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, node_id: str) -> Optional[Union[StepNode, ConditionalNode]]:
        i = self._index.get(node_id)
        return None if i is None else self._nodes[i]

    def outgoing(self, node_id: str) -> list[Edge]:
        """Edges leaving node_id in document order."""
        return list(self._outgoing.get(node_id, []))

    def branch(self, node_id: str, handle: str) -> list[Edge]:
        """Edges leaving node_id on the given source handle."""
        return [e for e in self._outgoing.get(node_id, []) if e.source_handle == handle]
