"""
Per-page store of graph inputs and the derived interaction graph.

Holds, for each page identity, the initial screenshot, the act entries
the graph is built from, the decision conversation for that page, and
the last built graph. Rebuilds are gated by a per-page in-progress flag:
a rebuild requested while another is running returns the stale graph.
"""

import asyncio
import base64
import copy
from dataclasses import dataclass, field
from typing import Any

from site_explorer.graph.builder import InteractionGraphBuilder
from site_explorer.graph.models import ActionEntry, InteractionGraph
from site_explorer.session.models import utc_now_iso
from site_explorer.transport.events import EventType, ProgressReporter
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PageStore:
    url: str
    url_hash: str
    initial_screenshot: bytes | None = field(default=None, repr=False)
    page_title: str | None = None
    visible_elements: list[str] = field(default_factory=list)
    clickable_elements: list[str] = field(default_factory=list)
    actions: list[ActionEntry] = field(default_factory=list)
    conversation_history: list[dict[str, str]] = field(default_factory=list)
    graph: InteractionGraph | None = None
    last_updated: str = field(default_factory=utc_now_iso)
    is_graph_generation_in_progress: bool = False

    def to_dict(self) -> dict:
        initial = (
            base64.b64encode(self.initial_screenshot).decode("ascii")
            if self.initial_screenshot else None
        )
        return {
            "url": self.url,
            "url_hash": self.url_hash,
            "initial_screenshot": initial,
            "page_title": self.page_title,
            "visible_elements": list(self.visible_elements),
            "clickable_elements": list(self.clickable_elements),
            "action_history": [a.to_dict() for a in self.actions],
            "conversation_history": list(self.conversation_history),
            "graph": self.graph.to_dict() if self.graph else None,
            "last_updated": self.last_updated,
            "is_graph_generation_in_progress": self.is_graph_generation_in_progress,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PageStore":
        initial = data.get("initial_screenshot")
        graph = data.get("graph")
        return cls(
            url=data["url"],
            url_hash=data["url_hash"],
            initial_screenshot=base64.b64decode(initial) if initial else None,
            page_title=data.get("page_title"),
            visible_elements=list(data.get("visible_elements", [])),
            clickable_elements=list(data.get("clickable_elements", [])),
            actions=[ActionEntry.from_dict(a) for a in data.get("action_history", [])],
            conversation_history=list(data.get("conversation_history", [])),
            graph=InteractionGraph.from_dict(graph) if graph else None,
            last_updated=data.get("last_updated") or utc_now_iso(),
            # Stores written before the flag existed load as idle
            is_graph_generation_in_progress=data.get("is_graph_generation_in_progress", False),
        )


class GraphStore:
    """
    Global store of PageStores keyed by page identity.

    Example:
        >>> store = GraphStore(reporter)
        >>> store.ensure_page("example.com_root_1a2b3c4d", "https://example.com", png)
        >>> store.add_action("example.com_root_1a2b3c4d", ActionEntry("click About", 3, image=png))
        >>> store.schedule_regeneration("example.com_root_1a2b3c4d")
        >>> await store.drain()
    """

    def __init__(
        self,
        reporter: ProgressReporter | None = None,
        builder: InteractionGraphBuilder | None = None,
    ) -> None:
        self._pages: dict[str, PageStore] = {}
        self._reporter = reporter or ProgressReporter()
        self._builder = builder or InteractionGraphBuilder()
        self._tasks: set[asyncio.Task] = set()

    def __contains__(self, url_hash: str) -> bool:
        return url_hash in self._pages

    def __len__(self) -> int:
        return len(self._pages)

    def ensure_page(
        self,
        url_hash: str,
        url: str,
        initial_screenshot: bytes | None = None,
    ) -> PageStore:
        store = self._pages.get(url_hash)
        if store is None:
            store = PageStore(url=url, url_hash=url_hash, initial_screenshot=initial_screenshot)
            self._pages[url_hash] = store
        elif store.initial_screenshot is None and initial_screenshot:
            store.initial_screenshot = initial_screenshot
        return store

    def get(self, url_hash: str) -> PageStore | None:
        return self._pages.get(url_hash)

    def add_action(self, url_hash: str, entry: ActionEntry) -> None:
        store = self._pages[url_hash]
        store.actions.append(entry)
        store.last_updated = utc_now_iso()

    def record_page_content(self, url_hash: str, raw: dict) -> None:
        """Keep the title, headings, and link texts of the latest extraction for graph nodes."""
        store = self._pages[url_hash]
        if raw.get("title"):
            store.page_title = raw["title"]
        headings = [h for h in raw.get("headings") or [] if isinstance(h, str) and h]
        if headings:
            store.visible_elements = headings
        links = [
            link["text"] for link in raw.get("links") or []
            if isinstance(link, dict) and link.get("text")
        ]
        if links:
            store.clickable_elements = list(dict.fromkeys(links))

    def add_conversation(self, url_hash: str, role: str, content: str) -> None:
        self._pages[url_hash].conversation_history.append({"role": role, "content": content})

    def conversation(self, url_hash: str) -> list[dict[str, str]]:
        store = self._pages.get(url_hash)
        return [dict(m) for m in store.conversation_history] if store else []

    def graph(self, url_hash: str) -> InteractionGraph | None:
        store = self._pages.get(url_hash)
        return store.graph if store else None

    async def regenerate(self, url_hash: str) -> InteractionGraph | None:
        """
        Rebuild the graph for one page.

        If a rebuild for the page is already running, returns the current
        (possibly stale) graph without starting another.
        """
        store = self._pages.get(url_hash)
        if store is None:
            return None
        if store.is_graph_generation_in_progress:
            logger.debug(f"Graph rebuild already running for {url_hash}; using stale graph")
            return store.graph

        store.is_graph_generation_in_progress = True
        self._reporter.emit(EventType.GRAPH_UPDATING, url_hash=url_hash, url=store.url)
        try:
            actions = copy.deepcopy(store.actions)
            graph = await asyncio.to_thread(
                self._builder.build,
                store.url,
                store.initial_screenshot,
                actions,
                store.page_title,
                list(store.visible_elements),
                list(store.clickable_elements),
            )
            store.graph = graph
            store.last_updated = utc_now_iso()
        finally:
            store.is_graph_generation_in_progress = False

        self._reporter.emit(
            EventType.GRAPH_UPDATED,
            url_hash=url_hash,
            nodes=len(graph.nodes),
            edges=len(graph.edges),
            flows=len(graph.flows),
        )
        return graph

    def schedule_regeneration(self, url_hash: str) -> asyncio.Task:
        """Start a rebuild in the background and keep track of it."""
        task = asyncio.create_task(self._regenerate_logged(url_hash))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _regenerate_logged(self, url_hash: str) -> None:
        try:
            await self.regenerate(url_hash)
        except Exception as e:
            logger.error(f"Graph rebuild failed for {url_hash}: {e}")

    async def drain(self) -> None:
        """Wait for every scheduled rebuild to finish."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def to_dict(self) -> dict[str, Any]:
        return {h: store.to_dict() for h, store in self._pages.items()}

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        reporter: ProgressReporter | None = None,
    ) -> "GraphStore":
        store = cls(reporter)
        for url_hash, page in data.items():
            store._pages[url_hash] = PageStore.from_dict(page)
        return store
