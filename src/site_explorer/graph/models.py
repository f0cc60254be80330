"""
Interaction graph records.

Nodes are page states (one screenshot each), edges are the actions that
moved between them, and flows group edges that belong to one sequence
of work on the page.
"""

import base64
import hashlib
from dataclasses import dataclass, field
from enum import Enum

from site_explorer.session.models import utc_now_iso


class FlowPattern(str, Enum):
    LINEAR = "linear"
    BRANCHING = "branching"
    CIRCULAR = "circular"


MAIN_FLOW_ID = "main"


def node_id_for(step_number: int, image: bytes) -> str:
    """
    Node identity: step_<step>_<first 8 hex of sha256(image)>.

    The step number keeps identities unique even when two screenshots
    are byte-identical.
    """
    digest = hashlib.sha256(image).hexdigest()[:8]
    return f"step_{step_number}_{digest}"


@dataclass
class NodeMetadata:
    visible_elements: list[str] = field(default_factory=list)
    clickable_elements: list[str] = field(default_factory=list)
    dialogs_open: bool = False
    flows_connected: list[str] = field(default_factory=list)
    page_title: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "visible_elements": list(self.visible_elements),
            "clickable_elements": list(self.clickable_elements),
            "dialogs_open": self.dialogs_open,
            "flows_connected": list(self.flows_connected),
            "page_title": self.page_title,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NodeMetadata":
        return cls(
            visible_elements=list(data.get("visible_elements", [])),
            clickable_elements=list(data.get("clickable_elements", [])),
            dialogs_open=data.get("dialogs_open", False),
            flows_connected=list(data.get("flows_connected", [])),
            page_title=data.get("page_title"),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )


@dataclass
class GraphNode:
    id: str
    step_number: int
    instruction: str
    image_data: str = field(default="", repr=False)
    metadata: NodeMetadata = field(default_factory=NodeMetadata)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_number": self.step_number,
            "instruction": self.instruction,
            "image_data": self.image_data,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GraphNode":
        return cls(
            id=data["id"],
            step_number=data.get("step_number", 0),
            instruction=data.get("instruction", ""),
            image_data=data.get("image_data", ""),
            metadata=NodeMetadata.from_dict(data.get("metadata", {})),
        )


@dataclass
class GraphEdge:
    source: str
    target: str
    action: str
    instruction: str
    description: str = ""
    flow_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "from": self.source,
            "to": self.target,
            "action": self.action,
            "instruction": self.instruction,
            "description": self.description,
            "flow_id": self.flow_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GraphEdge":
        return cls(
            source=data["from"],
            target=data["to"],
            action=data.get("action", ""),
            instruction=data.get("instruction", ""),
            description=data.get("description", ""),
            flow_id=data.get("flow_id"),
        )


@dataclass
class GraphFlow:
    id: str
    name: str
    start_node: str
    end_nodes: list[str]
    nodes: list[str]
    pattern: FlowPattern
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "start_node": self.start_node,
            "end_nodes": list(self.end_nodes),
            "nodes": list(self.nodes),
            "flow_type": self.pattern.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GraphFlow":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            start_node=data["start_node"],
            end_nodes=list(data.get("end_nodes", [])),
            nodes=list(data.get("nodes", [])),
            pattern=FlowPattern(data.get("flow_type", FlowPattern.LINEAR.value)),
        )


@dataclass
class InteractionGraph:
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    flows: list[GraphFlow] = field(default_factory=list)
    description: str = ""
    page_summary: str = ""
    last_updated: str = field(default_factory=utc_now_iso)

    def node(self, node_id: str) -> GraphNode | None:
        return next((n for n in self.nodes if n.id == node_id), None)

    def flow(self, flow_id: str) -> GraphFlow | None:
        return next((f for f in self.flows if f.id == flow_id), None)

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "flows": [f.to_dict() for f in self.flows],
            "description": self.description,
            "page_summary": self.page_summary,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InteractionGraph":
        return cls(
            nodes=[GraphNode.from_dict(n) for n in data.get("nodes", [])],
            edges=[GraphEdge.from_dict(e) for e in data.get("edges", [])],
            flows=[GraphFlow.from_dict(f) for f in data.get("flows", [])],
            description=data.get("description", ""),
            page_summary=data.get("page_summary", ""),
            last_updated=data.get("last_updated") or utc_now_iso(),
        )


@dataclass
class ActionEntry:
    """One act as seen by the graph: what was done and what the page looked like after."""

    instruction: str
    step_number: int
    image: bytes = field(default=b"", repr=False)
    url_changed: bool = False
    target_url: str | None = None
    queued: bool = False
    returned: bool = False
    flow_id: str = MAIN_FLOW_ID
    success: bool = True
    outcome: str = ""
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def image_name(self) -> str:
        return node_id_for(self.step_number, self.image)

    def to_dict(self) -> dict:
        return {
            "instruction": self.instruction,
            "step_number": self.step_number,
            "image_name": self.image_name,
            "image_data": base64.b64encode(self.image).decode("ascii"),
            "url_changed": self.url_changed,
            "target_url": self.target_url,
            "queued": self.queued,
            "returned": self.returned,
            "flow_id": self.flow_id,
            "success": self.success,
            "outcome": self.outcome,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActionEntry":
        return cls(
            instruction=data.get("instruction", ""),
            step_number=data.get("step_number", 0),
            image=base64.b64decode(data.get("image_data") or ""),
            url_changed=data.get("url_changed", False),
            target_url=data.get("target_url"),
            queued=data.get("queued", False),
            returned=data.get("returned", data.get("queued", False)),
            flow_id=data.get("flow_id") or MAIN_FLOW_ID,
            success=data.get("success", True),
            outcome=data.get("outcome", ""),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )
