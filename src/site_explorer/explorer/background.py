"""
Background page processing.

In background mode every page discovered by the primary loop is claimed
by its own task, which loads the page, screenshots it, and runs one
extraction pass. Tasks take turns on the shared driver with the primary
loop and put the browser back where they found it. A failure is recorded
on the page it happened on and goes no further.
"""

import asyncio

from site_explorer.config.settings import Settings
from site_explorer.graph.store import GraphStore
from site_explorer.session.flow import FlowTracker
from site_explorer.session.models import ExecutedStep, PageData, ToolName
from site_explorer.session.state import Discovery, SessionState
from site_explorer.tools.executor import ToolExecutor
from site_explorer.transport.events import EventType, ProgressReporter
from site_explorer.utils.logging import get_logger
from site_explorer.utils.metrics import (
    increment_background_failures,
    increment_pages_completed,
    increment_steps_executed,
)

logger = get_logger(__name__)

BACKGROUND_INSTRUCTION = "Extract the main content, headings, and links of this page"


class BackgroundProcessor:
    """
    Tracks in-flight extraction-only tasks.

    At most `background_concurrency` tasks work at once; join() is the
    barrier that must resolve before the session is finalized.
    """

    def __init__(
        self,
        state: SessionState,
        flow: FlowTracker,
        executor: ToolExecutor,
        graph_store: GraphStore,
        settings: Settings,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self.state = state
        self.flow = flow
        self.executor = executor
        self.graph_store = graph_store
        self.settings = settings
        self.reporter = reporter or ProgressReporter()
        self._semaphore = asyncio.Semaphore(settings.explorer.background_concurrency)
        self._tasks: set[asyncio.Task] = set()
        self.failures: dict[str, str] = {}
        self.completed: list[str] = []

    @property
    def in_flight(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def submit(self, discovery: Discovery) -> asyncio.Task:
        """Start a task for a newly discovered page."""
        task = asyncio.create_task(
            self._run(discovery.url_hash), name=f"background:{discovery.url_hash}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Background task scheduled for {discovery.url}")
        return task

    async def join(self) -> None:
        """Wait until every submitted task, including ones submitted meanwhile, has finished."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            logger.info(f"Waiting for {len(pending)} background task(s)")
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self, url_hash: str) -> None:
        async with self._semaphore:
            if not await self.state.claim(url_hash):
                logger.debug(f"{url_hash} was taken before its background task started")
                return
            page = self.state.page(url_hash)
            try:
                await self._process(page)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                note = f"Background processing failed: {e}"
                await self.state.record_failure(url_hash, note)
                self.failures[url_hash] = note
                increment_background_failures()
                self.reporter.emit(
                    EventType.BACKGROUND_FAILED, url=page.url, url_hash=url_hash, error=str(e))
                logger.error(f"Background processing failed for {page.url}: {e}")
                return

        await self.state.mark_completed(url_hash)
        self.completed.append(url_hash)
        increment_pages_completed()
        self.reporter.emit(
            EventType.PAGE_COMPLETED, url=page.url, url_hash=url_hash, background=True)
        logger.info(f"Background processing completed: {page.url}")

    async def _process(self, page: PageData) -> None:
        driver = self.executor.driver
        while True:
            # Never pull the browser away from an active sensitive flow
            await self.flow.wait_until_idle()
            async with self.executor.driver_lock:
                if self.flow.should_suppress_queuing():
                    continue
                return_url = await self.executor.current_url()
                try:
                    await driver.navigate(page.url)
                    image = await self.executor.capture_initial(page.url_hash, self.state.step_counter)
                    raw = await driver.extract(BACKGROUND_INSTRUCTION)
                finally:
                    if return_url:
                        try:
                            await driver.navigate(return_url)
                        except Exception as e:
                            logger.warning(f"Could not restore {return_url} after background work: {e}")
                break

        self.graph_store.ensure_page(page.url_hash, page.url, image)
        step = await self.state.reserve_step()
        stored = await self.executor.store_extraction(page.url_hash, raw, step)
        await self.state.append_step(page.url_hash, ExecutedStep(
            step=step,
            tool_used=ToolName.PAGE_EXTRACT,
            instruction=BACKGROUND_INSTRUCTION,
            success=True,
            result=f"Background extraction v{stored.version}",
        ))
        increment_steps_executed(ToolName.PAGE_EXTRACT.value)
