"""
Session state owner.

SessionState is the single writer for an ExplorationSession. Every
mutation goes through one of its coroutines, which serialize on an
asyncio.Lock; readers take deep-copied snapshots so a decision context
never observes a half-applied update.
"""

import asyncio
import copy
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlparse

from site_explorer.config.settings import ExplorerSettings
from site_explorer.core.exceptions import ExplorationError
from site_explorer.session.models import (
    ActionHistoryEntry,
    ExecutedStep,
    ExplorationSession,
    ExtractionResult,
    FlowContext,
    InputType,
    PageData,
    PageScreenshot,
    PageStatus,
    SessionMetadata,
    SessionPhase,
    UserInputData,
    utc_now_iso,
)
from site_explorer.session.urls import normalize_url, url_hash
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 5


@dataclass(frozen=True)
class Discovery:
    """Outcome of registering a URL."""

    url_hash: str
    url: str
    created: bool
    priority_upgraded: bool = False
    limit_reached: bool = False


def make_session_id(start_url: str, now: datetime | None = None) -> str:
    """
    Build a session id from the start URL's domain and the start time.

    Example:
        >>> make_session_id("https://www.example.com/a", datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        'www-example-com_2024-01-02T03-04-05-000000+00-00'
    """
    now = now or datetime.now(timezone.utc)
    domain = urlparse(start_url).netloc or "session"
    domain = re.sub(r"[^a-zA-Z0-9]+", "-", domain).strip("-").lower()
    stamp = re.sub(r"[:.]", "-", now.isoformat(timespec="microseconds"))
    return f"{domain}_{stamp}"


class SessionState:
    """
    Owns and serializes all mutation of one ExplorationSession.

    Priority convention: lower number is more urgent (1..5); ties are
    broken by discovery order. page_queue is kept sorted by that key.

    Example:
        >>> state = SessionState.start("find contact page", "https://example.com")
        >>> await state.register_discovery("https://example.com", priority=1)
        >>> page = await state.dequeue()
    """

    def __init__(
        self,
        session: ExplorationSession,
        settings: ExplorerSettings | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or ExplorerSettings()
        self._lock = asyncio.Lock()

    @classmethod
    def start(
        cls,
        objective: str,
        start_url: str,
        is_exploratory: bool = False,
        settings: ExplorerSettings | None = None,
    ) -> "SessionState":
        """Create the state for a new session. Nothing is queued yet."""
        metadata = SessionMetadata(
            session_id=make_session_id(start_url),
            objective=objective,
            start_url=start_url,
            is_exploratory=is_exploratory,
        )
        return cls(ExplorationSession(metadata=metadata), settings)

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session.metadata.session_id

    @property
    def objective(self) -> str:
        return self._session.metadata.objective

    @property
    def is_exploratory(self) -> bool:
        return self._session.metadata.is_exploratory

    @property
    def objective_achieved(self) -> bool:
        return self._session.metadata.objective_achieved

    @property
    def step_counter(self) -> int:
        return self._session.global_step_counter

    @property
    def flow_context(self) -> FlowContext:
        return copy.copy(self._session.flow_context)

    @property
    def page_count(self) -> int:
        return len(self._session.pages)

    def canonicalize(self, url: str) -> str:
        return normalize_url(
            url,
            volatile_params=self._settings.volatile_query_params,
            keep_hash_routes=self._settings.keep_hash_routes,
        )

    def identity_of(self, url: str) -> str:
        """Page identity of a raw URL."""
        return url_hash(self.canonicalize(url))

    def snapshot(self) -> ExplorationSession:
        """Deep copy of the whole session, safe to hand to other tasks."""
        return copy.deepcopy(self._session)

    def page(self, page_hash: str) -> PageData:
        """Deep copy of one page record."""
        return copy.deepcopy(self._get_page(page_hash))

    def has_page(self, page_hash: str) -> bool:
        return page_hash in self._session.pages

    def queued_count(self) -> int:
        return len(self._session.page_queue)

    def user_input_keys(self) -> set[str]:
        return set(self._session.user_inputs)

    def user_input_value(self, key: str) -> str | None:
        entry = self._session.user_inputs.get(key)
        return entry.value if entry else None

    def all_pages_completed(self) -> bool:
        """True when every discovered page has status completed."""
        return all(
            page.status is PageStatus.COMPLETED for page in self._session.pages.values()
        )

    def unfinished_pages(self) -> list[str]:
        return [
            h for h, page in self._session.pages.items()
            if page.status is not PageStatus.COMPLETED
        ]

    # -------------------------------------------------------------------------
    # Discovery and queue
    # -------------------------------------------------------------------------

    async def register_discovery(
        self,
        url: str,
        priority: int | None = None,
        source_url: str | None = None,
    ) -> Discovery:
        """
        Register a URL as a page to visit.

        An existing identity is left alone except that its priority is
        raised when the new priority is strictly more urgent. A new identity
        is recorded as queued and inserted into the queue in order, unless
        the session already holds max_pages pages: then nothing is recorded
        and the result carries limit_reached.
        """
        if priority is None:
            priority = self._settings.discovery_priority
        priority = max(MIN_PRIORITY, min(MAX_PRIORITY, int(priority)))

        canonical = self.canonicalize(url)
        page_hash = url_hash(canonical)

        async with self._lock:
            existing = self._session.pages.get(page_hash)
            if existing is not None:
                if priority < existing.priority:
                    logger.debug(
                        f"Priority of {page_hash} raised {existing.priority} -> {priority}")
                    existing.priority = priority
                    if page_hash in self._session.page_queue:
                        self._sort_queue()
                    return Discovery(page_hash, existing.url, created=False, priority_upgraded=True)
                return Discovery(page_hash, existing.url, created=False)

            if len(self._session.pages) >= self._settings.max_pages:
                logger.info(
                    f"Page limit ({self._settings.max_pages}) reached, not queuing: {canonical}")
                return Discovery(page_hash, canonical, created=False, limit_reached=True)

            page = PageData(
                url_hash=page_hash,
                url=canonical,
                priority=priority,
                discovery_order=self._session.next_discovery_order,
                source_url=source_url,
            )
            self._session.next_discovery_order += 1
            self._session.pages[page_hash] = page
            self._session.page_queue.append(page_hash)
            self._sort_queue()
            self._session.metadata.total_pages_discovered = len(self._session.pages)

        logger.info(f"Discovered page (priority={priority}): {canonical}")
        return Discovery(page_hash, canonical, created=True)

    def _sort_queue(self) -> None:
        pages = self._session.pages
        self._session.page_queue.sort(
            key=lambda h: (pages[h].priority, pages[h].discovery_order)
        )

    async def dequeue(self) -> PageData | None:
        """
        Take the most urgent queued page and mark it in progress.

        Returns a copy of the page record, or None when the queue is empty.
        """
        async with self._lock:
            if not self._session.page_queue:
                return None
            page_hash = self._session.page_queue.pop(0)
            page = self._session.pages[page_hash]
            self._set_status(page, PageStatus.IN_PROGRESS)
            self._session.current_page = page_hash
            return copy.deepcopy(page)

    async def claim(self, page_hash: str) -> bool:
        """
        Take a specific page out of the queue and mark it in progress.

        Returns False if the page is no longer queued (someone else took it).
        """
        async with self._lock:
            if page_hash not in self._session.page_queue:
                return False
            self._session.page_queue.remove(page_hash)
            self._set_status(self._get_page(page_hash), PageStatus.IN_PROGRESS)
            return True

    async def mark_completed(self, page_hash: str) -> None:
        async with self._lock:
            page = self._get_page(page_hash)
            self._set_status(page, PageStatus.COMPLETED)
            if page_hash in self._session.page_queue:
                self._session.page_queue.remove(page_hash)
            if self._session.current_page == page_hash:
                self._session.current_page = None

    async def record_failure(self, page_hash: str, note: str) -> None:
        """Attach a failure note to a page without touching its status."""
        async with self._lock:
            self._get_page(page_hash).failure_note = note

    def _set_status(self, page: PageData, status: PageStatus) -> None:
        if status.rank < page.status.rank:
            logger.debug(
                f"Ignoring status regression {page.status.value} -> {status.value} for {page.url_hash}")
            return
        page.status = status

    def _get_page(self, page_hash: str) -> PageData:
        try:
            return self._session.pages[page_hash]
        except KeyError:
            raise ExplorationError(
                "Unknown page identity", details={"url_hash": page_hash}) from None

    # -------------------------------------------------------------------------
    # Steps and page records
    # -------------------------------------------------------------------------

    def peek_next_step(self) -> int:
        """Step number the next reservation will return."""
        return self._session.global_step_counter + 1

    async def reserve_step(self) -> int:
        """Advance the global step counter and return the new step number."""
        async with self._lock:
            self._session.global_step_counter += 1
            return self._session.global_step_counter

    async def append_step(self, page_hash: str, step: ExecutedStep) -> None:
        """
        Append an executed step to a page.

        Raises:
            ExplorationError: If the step number was never reserved or is
                not newer than the page's last recorded step
        """
        async with self._lock:
            page = self._get_page(page_hash)
            if step.step > self._session.global_step_counter:
                raise ExplorationError(
                    "Step number was not reserved",
                    details={"step": step.step, "counter": self._session.global_step_counter},
                )
            if page.last_step_number is not None and step.step <= page.last_step_number:
                raise ExplorationError(
                    "Step number is not newer than the last recorded step",
                    details={"step": step.step, "last": page.last_step_number},
                )
            page.executed_steps.append(step)
            page.last_step_number = step.step
            self._session.metadata.total_actions_executed += 1

    async def append_extraction(
        self,
        page_hash: str,
        raw_data: object,
        formatted_markdown: str,
        step_number: int,
    ) -> ExtractionResult:
        """Write the next extraction version for a page."""
        async with self._lock:
            page = self._get_page(page_hash)
            result = ExtractionResult(
                version=page.current_extraction_version + 1,
                raw_data=copy.deepcopy(raw_data),
                formatted_markdown=formatted_markdown,
                step_number=step_number,
            )
            page.extraction_results.append(result)
            page.current_extraction_version = result.version
            return result

    async def append_screenshot(self, page_hash: str, screenshot: PageScreenshot) -> None:
        async with self._lock:
            self._get_page(page_hash).screenshots.append(screenshot)

    async def record_action(self, entry: ActionHistoryEntry) -> None:
        async with self._lock:
            self._session.action_history.append(entry)

    async def store_user_input(
        self,
        key: str,
        value: str,
        input_type: InputType = InputType.TEXT,
        sensitive: bool = False,
    ) -> None:
        async with self._lock:
            self._session.user_inputs[key] = UserInputData(
                key=key, value=value, type=input_type, sensitive=sensitive)

    async def set_flow_context(self, context: FlowContext) -> None:
        async with self._lock:
            self._session.flow_context = copy.copy(context)

    async def mark_objective_achieved(self, page_hash: str) -> None:
        async with self._lock:
            self._get_page(page_hash).objective_achieved = True
            self._session.metadata.objective_achieved = True

    async def finish(self) -> ExplorationSession:
        """Close the session and return its final snapshot."""
        async with self._lock:
            self._session.metadata.phase = SessionPhase.COMPLETED
            self._session.metadata.end_time = utc_now_iso()
            self._session.current_page = None
            return copy.deepcopy(self._session)
