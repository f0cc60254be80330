"""
Interaction graph module for the Site Explorer.

Derives screenshot/action graphs per page for later visualization.
"""

from site_explorer.graph.models import (
    ActionEntry,
    FlowPattern,
    GraphEdge,
    GraphFlow,
    GraphNode,
    InteractionGraph,
    MAIN_FLOW_ID,
    NodeMetadata,
    node_id_for,
)
from site_explorer.graph.builder import InteractionGraphBuilder, action_slug, classify_flow
from site_explorer.graph.store import GraphStore, PageStore

__all__ = [
    "ActionEntry",
    "FlowPattern",
    "GraphEdge",
    "GraphFlow",
    "GraphNode",
    "InteractionGraph",
    "MAIN_FLOW_ID",
    "NodeMetadata",
    "node_id_for",
    "InteractionGraphBuilder",
    "action_slug",
    "classify_flow",
    "GraphStore",
    "PageStore",
]
