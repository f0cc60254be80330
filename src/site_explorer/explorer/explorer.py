"""
Exploration driver.

Explorer owns one session from start to finish: it queues the start URL,
feeds pages to the decision loop in priority order, optionally hands
newly discovered pages to background workers, and finalizes and
persists the session.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from site_explorer.browser.driver import AutomationDriver
from site_explorer.config.settings import Settings
from site_explorer.core.exceptions import PersistenceError
from site_explorer.decision.base import DecisionClient
from site_explorer.decision.formatting import ExtractionFormatter
from site_explorer.explorer.background import BackgroundProcessor
from site_explorer.explorer.loop import DecisionLoop, LivenessCheck, PageOutcome
from site_explorer.graph.store import GraphStore
from site_explorer.session.flow import FlowTracker
from site_explorer.session.models import ExplorationSession, PageStatus
from site_explorer.session.state import SessionState
from site_explorer.storage.files import SessionStorage
from site_explorer.tools.executor import ToolExecutor
from site_explorer.transport.events import EventType, ProgressReporter
from site_explorer.transport.input import InputTransport, QueueInputTransport
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)


class SchedulingStrategy(str, Enum):
    SEQUENTIAL = "sequential"
    BACKGROUND = "background"

    @classmethod
    def resolve(cls, setting: str, is_exploratory: bool) -> "SchedulingStrategy":
        """Pick the strategy for a session. "auto" follows the objective kind."""
        if setting == "auto":
            return cls.BACKGROUND if is_exploratory else cls.SEQUENTIAL
        return cls(setting)


class StopReason(str, Enum):
    """Why the primary loop stopped taking pages."""

    QUEUE_EMPTY = "queue_empty"
    OBJECTIVE_ACHIEVED = "objective_achieved"
    MAX_PAGES = "max_pages"
    LIVENESS_LOST = "liveness_lost"


@dataclass
class ExplorationResult:
    """
    Result of a finished exploration.

    `session` is the final snapshot; background failures also appear as
    failure notes on their pages.
    """

    session: ExplorationSession
    strategy: SchedulingStrategy
    stop_reason: StopReason
    outcomes: list[PageOutcome]
    started_at: datetime
    completed_at: datetime
    background_failures: dict[str, str] = field(default_factory=dict)
    session_dir: Path | None = None

    @property
    def session_id(self) -> str:
        return self.session.metadata.session_id

    @property
    def objective_achieved(self) -> bool:
        return self.session.metadata.objective_achieved

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def pages_completed(self) -> int:
        return sum(
            1 for page in self.session.pages.values() if page.status is PageStatus.COMPLETED
        )


class Explorer:
    """
    Runs one exploration session.

    Example:
        >>> explorer = Explorer(
        ...     objective="find the contact page",
        ...     start_url="https://example.com",
        ...     driver=driver,
        ...     decision_client=client,
        ...     settings=settings,
        ... )
        >>> result = await explorer.explore()
        >>> print(result.stop_reason, result.pages_completed)
    """

    def __init__(
        self,
        objective: str,
        start_url: str,
        driver: AutomationDriver,
        decision_client: DecisionClient,
        settings: Settings | None = None,
        is_exploratory: bool = False,
        strategy: SchedulingStrategy | None = None,
        transport: InputTransport | None = None,
        reporter: ProgressReporter | None = None,
        storage: SessionStorage | None = None,
        formatter: ExtractionFormatter | None = None,
        is_alive: LivenessCheck | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.reporter = reporter or ProgressReporter()
        self.storage = storage
        self.decision_client = decision_client
        self.strategy = strategy or SchedulingStrategy.resolve(
            self.settings.explorer.strategy, is_exploratory)
        self._is_alive = is_alive
        self._cancel_requested = False

        self.state = SessionState.start(
            objective, start_url, is_exploratory=is_exploratory, settings=self.settings.explorer)
        self.flow = FlowTracker(self.state)
        self.graph_store = GraphStore(self.reporter)
        self.driver_lock = asyncio.Lock()
        self.decision_history: dict[str, list[dict[str, Any]]] = {}

        self.executor = ToolExecutor(
            state=self.state,
            flow=self.flow,
            driver=driver,
            driver_lock=self.driver_lock,
            graph_store=self.graph_store,
            transport=transport or QueueInputTransport(),
            decision_client=decision_client,
            settings=self.settings,
            formatter=formatter,
            reporter=self.reporter,
            storage=storage,
        )
        self.loop = DecisionLoop(
            state=self.state,
            flow=self.flow,
            executor=self.executor,
            decision_client=decision_client,
            graph_store=self.graph_store,
            settings=self.settings,
            reporter=self.reporter,
            is_alive=self.is_alive,
            decision_history=self.decision_history,
        )
        self.background = BackgroundProcessor(
            state=self.state,
            flow=self.flow,
            executor=self.executor,
            graph_store=self.graph_store,
            settings=self.settings,
            reporter=self.reporter,
        )
        if self.strategy is SchedulingStrategy.BACKGROUND:
            self.executor.on_discovery = self.background.submit

    @property
    def session_id(self) -> str:
        return self.state.session_id

    def is_alive(self) -> bool:
        if self._cancel_requested:
            return False
        return self._is_alive() if self._is_alive is not None else True

    def cancel(self) -> None:
        """Stop issuing decisions. Background work still drains before finalizing."""
        logger.info("Cancellation requested")
        self._cancel_requested = True

    def all_pages_completed(self) -> bool:
        return self.state.all_pages_completed()

    def all_pages_settled(self) -> bool:
        """True when every page is completed or carries a failure note."""
        snapshot = self.state.snapshot()
        return all(
            page.status is PageStatus.COMPLETED or page.failure_note
            for page in snapshot.pages.values()
        )

    async def join(self) -> None:
        """Barrier: wait for all background work and graph rebuilds."""
        await self.background.join()
        await self.graph_store.drain()

    async def explore(self) -> ExplorationResult:
        """Run the session to the end and return its final state."""
        started_at = datetime.now(timezone.utc)
        settings = self.settings.explorer
        start_url = self.state.snapshot().metadata.start_url

        logger.info(
            f"Starting exploration {self.session_id} ({self.strategy.value}) "
            f"from {start_url}: {self.state.objective}"
        )
        await self.state.register_discovery(start_url, priority=settings.start_priority)

        outcomes: list[PageOutcome] = []
        stop_reason = StopReason.QUEUE_EMPTY
        try:
            while True:
                if not self.is_alive():
                    stop_reason = StopReason.LIVENESS_LOST
                    break
                if self.state.objective_achieved and not self.state.is_exploratory:
                    stop_reason = StopReason.OBJECTIVE_ACHIEVED
                    break
                if len(outcomes) >= settings.max_pages:
                    logger.info(f"Reached page limit: {settings.max_pages}")
                    stop_reason = StopReason.MAX_PAGES
                    break

                page = await self.state.dequeue()
                if page is None:
                    logger.debug("Queue empty")
                    break

                outcomes.append(await self.loop.run_page(page))
                self._persist()
        finally:
            result = await self._finalize(started_at, stop_reason, outcomes)

        return result

    async def _finalize(
        self,
        started_at: datetime,
        stop_reason: StopReason,
        outcomes: list[PageOutcome],
    ) -> ExplorationResult:
        # Background tasks wait for flow idle, so the flow goes first
        await self.flow.abandon()
        await self.join()

        if self.strategy is SchedulingStrategy.BACKGROUND and not self.all_pages_completed():
            logger.warning(
                f"{len(self.state.unfinished_pages())} page(s) not completed after background join")

        session = await self.state.finish()
        session_dir = self._persist()
        completed_at = datetime.now(timezone.utc)

        self.reporter.emit(
            EventType.SESSION_COMPLETED,
            session_id=self.session_id,
            stop_reason=stop_reason.value,
            pages=len(session.pages),
            objective_achieved=session.metadata.objective_achieved,
        )
        await self.reporter.flush()
        logger.info(
            f"Exploration finished ({stop_reason.value}): {len(outcomes)} page(s) by the primary "
            f"loop, {len(self.background.completed)} in background, "
            f"{len(self.background.failures)} background failure(s), "
            f"{(completed_at - started_at).total_seconds():.1f}s"
        )
        return ExplorationResult(
            session=session,
            strategy=self.strategy,
            stop_reason=stop_reason,
            outcomes=outcomes,
            started_at=started_at,
            completed_at=completed_at,
            background_failures=dict(self.background.failures),
            session_dir=session_dir,
        )

    def _persist(self) -> Path | None:
        """Write the current session. Failures are logged; memory stays authoritative."""
        if self.storage is None:
            return None
        try:
            self.storage.save_session(
                self.state.snapshot(), mask_secrets=self.settings.input.mask_sensitive)
            self.storage.save_global_store(self.session_id, self.graph_store)
            self.storage.save_decision_history(self.session_id, self.decision_history)
        except PersistenceError as e:
            logger.warning(f"Could not persist session {self.session_id}: {e}")
            return None
        return self.storage.session_dir(self.session_id)
