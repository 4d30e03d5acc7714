"""
Graph connection rules.

Every mutation of the edge set goes through ``add_edge`` and every node
removal through ``delete_node``; both return new lists and leave their
inputs untouched. ``find_problems`` checks a whole graph loaded from disk.
"""

from typing import Iterable, Optional, Sequence, Union

import structlog

from ..core.errors import (
    BranchesExhaustedError,
    DanglingEdgeError,
    DuplicateBranchError,
    DuplicateNodeError,
    DuplicateStepEdgeError,
    EntryNodeError,
    GraphError,
    InvalidHandleError,
    UnknownNodeError,
)
from .model import (
    BRANCH_HANDLES,
    ENTRY_NODE_ID,
    Automation,
    ConditionalNode,
    Edge,
    StepNode,
)

logger = structlog.get_logger()

AnyNode = Union[StepNode, ConditionalNode]


def edge_id(source: str, target: str, handle: Optional[str] = None) -> str:
    """Deterministic edge id, so re-adding the same connection is a no-op."""
    return f"e{source}-{target}-{handle or 'default'}"


def add_edge(
    nodes: Sequence[AnyNode],
    edges: Sequence[Edge],
    source: str,
    target: str,
    handle: Optional[str] = None,
) -> list[Edge]:
    """
    Connect source to target under the branch rules.

    Args:
        nodes: Current nodes
        edges: Current edge set
        source: Source node id
        target: Target node id
        handle: Requested source handle ("if", "else" or None)

    Returns:
        New edge list with the edge appended, or an equal copy when the
        same connection already exists.

    Raises:
        DanglingEdgeError: source or target is not a node
        DuplicateStepEdgeError: step node already has its successor
        DuplicateBranchError: requested branch already connected
        BranchesExhaustedError: no free branch left for auto-assignment
    """
    by_id = {n.id: n for n in nodes}
    candidate_id = edge_id(source, target, handle)
    if source not in by_id:
        raise DanglingEdgeError(candidate_id, source)
    if target not in by_id:
        raise DanglingEdgeError(candidate_id, target)

    current = list(edges)
    outgoing = [e for e in current if e.source == source]
    source_node = by_id[source]

    if isinstance(source_node, ConditionalNode):
        if handle is None:
            if any(e.target == target and e.source_handle for e in outgoing):
                return current
            used = {e.source_handle for e in outgoing}
            free = [h for h in BRANCH_HANDLES if h not in used]
            if not free:
                raise BranchesExhaustedError(source)
            handle = free[0]
        elif handle in BRANCH_HANDLES:
            if any(e.source_handle == handle and e.target == target for e in outgoing):
                return current
            if any(e.source_handle == handle for e in outgoing):
                raise DuplicateBranchError(source, handle)
        else:
            raise InvalidHandleError(
                f"Unknown branch handle '{handle}' on node {source}",
                node_id=source,
            )
    else:
        # Step nodes have a single unlabelled exit.
        handle = None
        if any(e.source_handle is None and e.target == target for e in outgoing):
            return current
        if any(e.source_handle is None for e in outgoing):
            raise DuplicateStepEdgeError(source)

    edge = Edge(id=edge_id(source, target, handle), source=source, target=target, source_handle=handle)
    logger.debug("edge_added", edge_id=edge.id, handle=handle)
    return current + [edge]


def delete_node(
    nodes: Sequence[AnyNode],
    edges: Sequence[Edge],
    node_id: str,
) -> tuple[list[AnyNode], list[Edge]]:
    """Remove a node and every edge touching it. The entry node is protected."""
    if node_id == ENTRY_NODE_ID:
        raise EntryNodeError("The entry node cannot be deleted", node_id=node_id)
    if not any(n.id == node_id for n in nodes):
        raise UnknownNodeError(node_id)

    kept_nodes = [n for n in nodes if n.id != node_id]
    kept_edges = [e for e in edges if e.source != node_id and e.target != node_id]
    logger.debug(
        "node_deleted",
        node_id=node_id,
        edges_removed=len(edges) - len(kept_edges),
    )
    return kept_nodes, kept_edges


def find_problems(nodes: Iterable[AnyNode], edges: Iterable[Edge]) -> list[GraphError]:
    """Collect every invariant violation in a graph."""
    nodes = list(nodes)
    edges = list(edges)
    problems: list[GraphError] = []

    seen: set[str] = set()
    for node in nodes:
        if node.id in seen:
            problems.append(DuplicateNodeError(node.id))
        seen.add(node.id)

    if ENTRY_NODE_ID not in seen:
        problems.append(EntryNodeError("Graph has no entry node", node_id=ENTRY_NODE_ID))

    by_id = {n.id: n for n in nodes}
    exits: dict[tuple[str, Optional[str]], int] = {}
    for edge in edges:
        for end in (edge.source, edge.target):
            if end not in by_id:
                problems.append(DanglingEdgeError(edge.id, end))
        source_node = by_id.get(edge.source)
        if source_node is None:
            continue

        if isinstance(source_node, StepNode) and edge.source_handle is not None:
            problems.append(InvalidHandleError(
                f"Step node {edge.source} has a '{edge.source_handle}' edge",
                node_id=edge.source,
            ))
        if isinstance(source_node, ConditionalNode) and edge.source_handle is None:
            problems.append(InvalidHandleError(
                f"Conditional node {edge.source} has an edge without a branch",
                node_id=edge.source,
            ))

        key = (edge.source, edge.source_handle)
        exits[key] = exits.get(key, 0) + 1
        if exits[key] == 2:
            if edge.source_handle is None:
                problems.append(DuplicateStepEdgeError(edge.source))
            else:
                problems.append(DuplicateBranchError(edge.source, edge.source_handle))

    return problems


def validate_graph(nodes: Iterable[AnyNode], edges: Iterable[Edge]) -> None:
    """Raise the first invariant violation, if any."""
    problems = find_problems(nodes, edges)
    if problems:
        raise problems[0]


def validate_automation(automation: Automation) -> None:
    validate_graph(automation.nodes, automation.edges)
