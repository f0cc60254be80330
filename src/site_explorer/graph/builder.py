"""
Interaction graph builder.

Derives a page's node/edge/flow graph from its recorded actions. The
build is a pure function of the page store, so rebuilding is idempotent:
node identities carry the step number and never collide.
"""

import base64
import re
from collections import defaultdict

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

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_DIALOG_RE = re.compile(r"\b(dialog|modal|pop-?up|overlay|lightbox)\b", re.IGNORECASE)
_DISMISS_RE = re.compile(r"\b(close|dismiss|cancel|escape|submit)\b", re.IGNORECASE)

NAVIGATE_BACK_ACTION = "navigate_back"


def action_slug(instruction: str, limit: int = 40) -> str:
    """Short snake_case label for an instruction, e.g. 'click_contact_link'."""
    slug = _SLUG_RE.sub("_", instruction.lower()).strip("_")
    return slug[:limit].rstrip("_") or "action"


def classify_flow(start: str, end_nodes: list[str], edges: list[GraphEdge]) -> FlowPattern:
    """
    Classify a flow from its edge topology.

    circular if any end node is the start node, branching if any node has
    more than one outgoing edge, linear otherwise.
    """
    if start in end_nodes:
        return FlowPattern.CIRCULAR
    out_degree: dict[str, int] = defaultdict(int)
    for edge in edges:
        out_degree[edge.source] += 1
    if any(count > 1 for count in out_degree.values()):
        return FlowPattern.BRANCHING
    return FlowPattern.LINEAR


def dialog_state_after(entry: ActionEntry, open_before: bool) -> bool:
    """
    Whether a dialog is open after an act, judged from its wording.

    A failed act changes nothing and landing on another page closes any
    dialog. Otherwise an act that mentions a dialog opens one unless its
    instruction closes it.
    """
    if not entry.success:
        return open_before
    if entry.url_changed:
        return False
    text = f"{entry.instruction} {entry.outcome}"
    if _DISMISS_RE.search(entry.instruction) and (open_before or _DIALOG_RE.search(text)):
        return False
    return open_before or bool(_DIALOG_RE.search(text))


def _flow_name(flow_id: str) -> str:
    if flow_id == MAIN_FLOW_ID:
        return "Main exploration"
    kind = flow_id.split("_", 1)[0]
    return f"{kind.replace('-', ' ').title()} flow"


class InteractionGraphBuilder:
    """
    Builds an InteractionGraph from an initial screenshot and action entries.

    Walk semantics: each act moves the current state to its post-action
    node, except an act that changed the URL outside a sensitive flow,
    after which the browser returned to the source page. That return is
    recorded as a navigate_back edge and the current state is unchanged.
    """

    def build(
        self,
        url: str,
        initial_image: bytes | None,
        actions: list[ActionEntry],
        page_title: str | None = None,
        visible_elements: list[str] | None = None,
        clickable_elements: list[str] | None = None,
    ) -> InteractionGraph:
        """
        Build the graph. visible_elements and clickable_elements describe the
        page as last extracted (headings and link texts) and fill the
        initial node; act nodes add the outcome the driver reported.
        """
        nodes: list[GraphNode] = []
        edges: list[GraphEdge] = []

        page_visible = list(visible_elements or [])
        page_clickable = list(clickable_elements or [])
        start = self._node(
            0, initial_image or b"", f"Initial load of {url}",
            NodeMetadata(
                visible_elements=page_visible,
                clickable_elements=page_clickable,
                page_title=page_title,
            ),
        )
        nodes.append(start)
        current = start.id

        flow_edges: dict[str, list[GraphEdge]] = {}
        flow_order: list[str] = []
        final_node: dict[str, str] = {}
        flow_start: dict[str, str] = {}
        dialog_open = False
        on_page = True

        for entry in sorted(actions, key=lambda a: a.step_number):
            dialog_open = dialog_state_after(entry, dialog_open)
            if entry.url_changed and not entry.returned:
                on_page = False
            node_on_page = on_page and not entry.url_changed
            node = self._node(
                entry.step_number, entry.image, entry.instruction,
                NodeMetadata(
                    visible_elements=[entry.outcome] if entry.outcome else [],
                    clickable_elements=list(page_clickable) if node_on_page else [],
                    dialogs_open=dialog_open,
                    page_title=page_title if node_on_page else None,
                ),
            )
            nodes.append(node)

            if entry.flow_id not in flow_edges:
                flow_edges[entry.flow_id] = []
                flow_order.append(entry.flow_id)
                flow_start[entry.flow_id] = current

            edge = GraphEdge(
                source=current,
                target=node.id,
                action=action_slug(entry.instruction),
                instruction=entry.instruction,
                description=self._describe(entry),
                flow_id=entry.flow_id,
            )
            edges.append(edge)
            flow_edges[entry.flow_id].append(edge)

            if entry.url_changed and entry.returned:
                back = GraphEdge(
                    source=node.id,
                    target=current,
                    action=NAVIGATE_BACK_ACTION,
                    instruction="Return to the source page",
                    description=(
                        f"Returned after queuing {entry.target_url}" if entry.queued
                        else f"Returned from {entry.target_url}"
                    ),
                    flow_id=entry.flow_id,
                )
                edges.append(back)
                flow_edges[entry.flow_id].append(back)
            else:
                current = node.id
            final_node[entry.flow_id] = current

        flows = [
            self._flow(flow_id, flow_start[flow_id], final_node[flow_id], flow_edges[flow_id])
            for flow_id in flow_order
        ]
        by_id = {node.id: node for node in nodes}
        for flow in flows:
            for member in flow.nodes:
                by_id[member].metadata.flows_connected.append(flow.id)

        action_count = len(actions)
        return InteractionGraph(
            nodes=nodes,
            edges=edges,
            flows=flows,
            description=(
                f"{len(nodes)} states connected by {len(edges)} transitions "
                f"across {len(flows)} flow(s)"
            ),
            page_summary=(
                f"{page_title or url}: {action_count} action(s) recorded"
            ),
        )

    def _node(
        self,
        step_number: int,
        image: bytes,
        instruction: str,
        metadata: NodeMetadata,
    ) -> GraphNode:
        return GraphNode(
            id=node_id_for(step_number, image),
            step_number=step_number,
            instruction=instruction,
            image_data=base64.b64encode(image).decode("ascii"),
            metadata=metadata,
        )

    def _describe(self, entry: ActionEntry) -> str:
        if not entry.success:
            return "Action failed; page state unchanged"
        if entry.url_changed and entry.queued:
            return f"Opened {entry.target_url}, queued for separate processing"
        if entry.url_changed and entry.returned:
            return f"Opened {entry.target_url}, not queued (page limit reached)"
        if entry.url_changed:
            return f"Moved to {entry.target_url} inside the flow"
        return "Page updated in place"

    def _flow(
        self,
        flow_id: str,
        start: str,
        final: str,
        edges: list[GraphEdge],
    ) -> GraphFlow:
        members: list[str] = [start]
        for edge in edges:
            for node_id in (edge.source, edge.target):
                if node_id not in members:
                    members.append(node_id)

        sources = {edge.source for edge in edges}
        leaves = [n for n in members if n not in sources]
        end_nodes = list(dict.fromkeys(leaves + [final]))

        pattern = classify_flow(start, end_nodes, edges)
        return GraphFlow(
            id=flow_id,
            name=_flow_name(flow_id),
            description=f"{len(edges)} transition(s), {pattern.value}",
            start_node=start,
            end_nodes=end_nodes,
            nodes=members,
            pattern=pattern,
        )
