"""Automation graph: step vocabulary, node/edge model and connection rules."""

from .steps import AutomationStep, parse_step, default_step
from .model import (
    Automation,
    ConditionalNode,
    Edge,
    Graph,
    StepNode,
    ENTRY_NODE_ID,
)
from .validator import add_edge, delete_node, validate_graph, edge_id
from .editor import GraphEditor, new_automation

__all__ = [
    "AutomationStep",
    "parse_step",
    "default_step",
    "Automation",
    "ConditionalNode",
    "Edge",
    "Graph",
    "StepNode",
    "ENTRY_NODE_ID",
    "add_edge",
    "delete_node",
    "validate_graph",
    "edge_id",
    "GraphEditor",
    "new_automation",
]
