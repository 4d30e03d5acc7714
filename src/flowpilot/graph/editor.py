"""
Programmatic graph editing.

GraphEditor is what templates and scripts use instead of the visual
editor: every change goes through the validator, so the automation it
holds always satisfies the graph invariants.
"""

import uuid
from typing import Any, Optional

import structlog

from ..core.errors import GraphError, UnknownNodeError
from .model import (
    ENTRY_NODE_ID,
    Automation,
    ConditionalNode,
    ConditionalNodeData,
    Position,
    StepNode,
    StepNodeData,
)
from .steps import AutomationStep, NavigateStep, default_step, parse_step
from .validator import add_edge, delete_node, validate_automation

logger = structlog.get_logger()

NODE_SPACING_Y = 100


def new_automation(
    name: str,
    description: str = "",
    automation_id: Optional[str] = None,
    start_url: str = "https://",
) -> Automation:
    """Create an automation holding only the entry navigate node."""
    entry = StepNode(
        id=ENTRY_NODE_ID,
        data=StepNodeData(step=NavigateStep(
            id=ENTRY_NODE_ID,
            description="Navigate to URL",
            url=start_url,
        )),
        position=Position(x=400, y=50),
    )
    return Automation(
        id=automation_id or uuid.uuid4().hex,
        name=name,
        description=description,
        nodes=[entry],
    )


class GraphEditor:
    """
    Mutating wrapper around an Automation.

    Features:
    - Add a step or conditional after an existing node (auto-connected)
    - Connect nodes under the branch rules
    - Update step and conditional fields
    - Cascade deletes, entry node protected
    """

    def __init__(self, automation: Automation):
        self.automation = automation

    def _next_id(self) -> str:
        numeric = [int(n.id) for n in self.automation.nodes if n.id.isdigit()]
        return str(max(numeric, default=0) + 1)

    def _require(self, node_id: str):
        node = self.automation.get_node(node_id)
        if node is None:
            raise UnknownNodeError(node_id)
        return node

    def add_step(
        self,
        after: str,
        step_type: str,
        handle: Optional[str] = None,
        **fields: Any,
    ) -> str:
        """
        Append a step node connected from ``after``.

        Extra keyword fields override the seeded step values (snake_case
        or camelCase). Returns the new node id. When the connection is
        rejected the node is not added and the GraphError propagates.
        """
        new_id = self._next_id()
        step = default_step(step_type, new_id)
        if fields:
            data = step.model_dump(by_alias=False)
            data.update(fields)
            step = parse_step(data)

        node = StepNode(
            id=new_id,
            data=StepNodeData(step=step),
            position=self._position_below(after),
        )
        return self._attach(after, node, handle)

    def add_conditional(
        self,
        after: str,
        condition_type: str = "elementExists",
        selector: str = "",
        handle: Optional[str] = None,
        **fields: Any,
    ) -> str:
        """Append a conditional node connected from ``after``. Returns its id."""
        new_id = self._next_id()
        node = ConditionalNode(
            id=new_id,
            data=ConditionalNodeData(
                condition_type=condition_type,
                selector=selector,
                **fields,
            ),
            position=self._position_below(after),
        )
        return self._attach(after, node, handle)

    def connect(self, source: str, target: str, handle: Optional[str] = None) -> None:
        self.automation.edges = add_edge(
            self.automation.nodes,
            self.automation.edges,
            source,
            target,
            handle,
        )

    def update_step(self, node_id: str, **fields: Any) -> AutomationStep:
        """Replace fields of a step node's step. The step type cannot change."""
        node = self._require(node_id)
        if not isinstance(node, StepNode):
            raise GraphError(f"Node {node_id} is not a step node", node_id=node_id)

        data = node.data.step.model_dump(by_alias=False)
        data.update(fields)
        data["type"] = node.data.step.type
        node.data = StepNodeData(step=parse_step(data))
        return node.data.step

    def update_conditional(self, node_id: str, **fields: Any) -> ConditionalNodeData:
        node = self._require(node_id)
        if not isinstance(node, ConditionalNode):
            raise GraphError(f"Node {node_id} is not a conditional node", node_id=node_id)

        data = node.data.model_dump(by_alias=False)
        data.update(fields)
        node.data = ConditionalNodeData.model_validate(data)
        return node.data

    def delete(self, node_id: str) -> None:
        self.automation.nodes, self.automation.edges = delete_node(
            self.automation.nodes,
            self.automation.edges,
            node_id,
        )

    def validate(self) -> None:
        validate_automation(self.automation)

    def _attach(self, after: str, node, handle: Optional[str]) -> str:
        self._require(after)
        nodes = self.automation.nodes + [node]
        # Edge first: a rejected connection leaves the graph untouched.
        edges = add_edge(nodes, self.automation.edges, after, node.id, handle)
        self.automation.nodes = nodes
        self.automation.edges = edges
        logger.debug("node_added", node_id=node.id, after=after, node_type=node.type)
        return node.id

    def _position_below(self, node_id: str) -> Position:
        source = self.automation.get_node(node_id)
        if source is None:
            return Position(x=250, y=len(self.automation.nodes) * 150 + 50)
        return Position(x=source.position.x, y=source.position.y + NODE_SPACING_Y)
