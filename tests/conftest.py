"""
Shared pytest fixtures for Site Explorer tests.

Provides reusable fixtures for:
- Configuration and settings
- A scripted in-memory browser driver
- Session state, executor, and loop wiring
- Sample data
- Temporary resources
"""

import asyncio
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from site_explorer.browser.driver import ActOutcome
from site_explorer.config import Settings
from site_explorer.core.exceptions import ActionError, ExtractionError, NavigationError
from site_explorer.decision import ScriptedDecisionClient
from site_explorer.explorer import DecisionLoop
from site_explorer.graph import GraphStore
from site_explorer.session import FlowTracker, SessionState
from site_explorer.storage import SessionStorage
from site_explorer.tools import ToolExecutor
from site_explorer.transport import ProgressReporter, QueueInputTransport, UserInputRequest
from site_explorer.utils.logging import reset_logging
from site_explorer.utils.metrics import Metrics

START_URL = "https://example.com/"
CONTACT_URL = "https://example.com/contact"
ABOUT_URL = "https://example.com/about"
LOGIN_URL = "https://example.com/login"
DASHBOARD_URL = "https://example.com/dashboard"


class FakeDriver:
    """
    In-memory stand-in for a browser.

    `transitions` maps an instruction to the URL the browser lands on after
    it; `content` maps a URL to what extract() returns there.
    """

    def __init__(
        self,
        url: str = "about:blank",
        transitions: dict[str, str] | None = None,
        content: dict[str, dict] | None = None,
    ) -> None:
        self.url = url
        self.transitions = dict(transitions or {})
        self.content = dict(content or {})
        self.fail_actions: set[str] = set()
        self.fail_navigation: set[str] = set()
        self.fail_extract = False
        self.actions: list[str] = []
        self.navigations: list[str] = []
        self.waits: list[float] = []
        self._shots = 0

    async def act(self, instruction: str) -> ActOutcome:
        self.actions.append(instruction)
        await asyncio.sleep(0)
        if instruction in self.fail_actions:
            raise ActionError("No element matches the instruction", instruction=instruction)
        target = self.transitions.get(instruction)
        if target:
            self.url = target
        return ActOutcome(success=True, description=f"Performed: {instruction}")

    async def extract(self, instruction: str) -> dict:
        await asyncio.sleep(0)
        if self.fail_extract:
            raise ExtractionError("Extraction failed", url=self.url)
        return dict(self.content.get(self.url) or {"title": f"Page {self.url}", "text": "Hello"})

    async def screenshot(self) -> bytes:
        self._shots += 1
        return f"png:{self.url}:{self._shots}".encode()

    async def current_url(self) -> str:
        return self.url

    async def navigate(self, url: str) -> None:
        self.navigations.append(url)
        await asyncio.sleep(0)
        if url in self.fail_navigation:
            raise NavigationError("HTTP 500 error", url=url)
        self.url = url

    async def wait_for_timeout(self, milliseconds: float) -> None:
        self.waits.append(milliseconds)


class ClosedTransport(QueueInputTransport):
    """Input transport whose connection is gone once its queued answers run out."""

    def __init__(self, fail_on_send: bool = True) -> None:
        super().__init__()
        self.fail_on_send = fail_on_send

    async def send_request(self, request: UserInputRequest) -> None:
        if self.fail_on_send:
            raise ConnectionError("socket closed")

    async def receive(self):
        if self._responses.empty():
            raise ConnectionError("socket closed")
        return await super().receive()


class Harness:
    """Executor and loop wired over one session, the way Explorer wires them."""

    def __init__(
        self,
        settings: Settings,
        driver: FakeDriver,
        client: ScriptedDecisionClient,
        is_exploratory: bool = True,
        storage: SessionStorage | None = None,
    ) -> None:
        self.settings = settings
        self.driver = driver
        self.client = client
        self.reporter = ProgressReporter(keep_history=True)
        self.transport = QueueInputTransport()
        self.state = SessionState.start(
            "find the contact page", START_URL,
            is_exploratory=is_exploratory, settings=settings.explorer)
        self.flow = FlowTracker(self.state)
        self.graph_store = GraphStore(self.reporter)
        self.driver_lock = asyncio.Lock()
        self.executor = ToolExecutor(
            state=self.state,
            flow=self.flow,
            driver=driver,
            driver_lock=self.driver_lock,
            graph_store=self.graph_store,
            transport=self.transport,
            decision_client=client,
            settings=settings,
            reporter=self.reporter,
            storage=storage,
        )
        self.loop = DecisionLoop(
            state=self.state,
            flow=self.flow,
            executor=self.executor,
            decision_client=client,
            graph_store=self.graph_store,
            settings=settings,
            reporter=self.reporter,
        )

    async def open_start_page(self):
        """Queue and dequeue the start page, leaving the browser on it."""
        await self.state.register_discovery(START_URL, priority=1)
        page = await self.state.dequeue()
        self.driver.url = page.url
        self.graph_store.ensure_page(page.url_hash, page.url, b"initial")
        return page


@pytest.fixture(autouse=True)
def reset_global_state():
    """
    Reset process-wide metrics and logging before and after each test.

    This ensures tests are isolated and don't share counters.
    """
    Metrics.reset()
    reset_logging()
    yield
    Metrics.reset()
    reset_logging()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """
    Provide test settings with a temporary session directory.

    Uses short timeouts for fast tests.
    """
    return Settings(
        explorer={
            "max_pages": 5,
            "max_steps_per_page": 5,
            "strategy": "sequential",
            "default_standby_seconds": 0.0,
        },
        input={"timeout_seconds": 0.2},
        storage={"base_dir": str(temp_dir / "sessions")},
    )


@pytest.fixture
def driver() -> FakeDriver:
    """Provide a driver with the example site's navigation wired up."""
    return FakeDriver(
        transitions={
            "click Contact link": CONTACT_URL,
            "click About link": ABOUT_URL,
            "click Login": LOGIN_URL,
            "click Sign in": DASHBOARD_URL,
        },
        content={
            START_URL: {"title": "Example", "text": "Welcome"},
            CONTACT_URL: {"title": "Contact", "text": "Email: contact@example.com"},
            ABOUT_URL: {"title": "About", "text": "About us"},
        },
    )


@pytest.fixture
def storage(test_settings: Settings) -> SessionStorage:
    """Provide session storage under the temporary directory."""
    return SessionStorage(test_settings.storage.base_dir)


@pytest.fixture
def make_harness(test_settings: Settings, driver: FakeDriver):
    """Factory for a Harness; pass decisions and objective results as needed."""

    def factory(
        decisions=None,
        by_url=None,
        objective_results=None,
        is_exploratory: bool = True,
        settings: Settings | None = None,
        storage: SessionStorage | None = None,
    ) -> Harness:
        client = ScriptedDecisionClient(decisions, by_url, objective_results)
        return Harness(
            settings or test_settings, driver, client,
            is_exploratory=is_exploratory, storage=storage)

    return factory


@pytest.fixture
def sample_html() -> str:
    """Provide sample HTML for extraction tests."""
    return """
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <title>Test Page Title</title>
        <style>body { color: red; }</style>
    </head>
    <body>
        <header>
            <nav>
                <a href="/home">Home</a>
                <a href="/products">Products</a>
                <a href="/products">Products again</a>
                <a href="mailto:contact@example.com">Mail us</a>
                <a href="#top">Top</a>
            </nav>
        </header>
        <main>
            <article>
                <h1>Welcome to Our Website</h1>
                <p>This is the main content of our test page.</p>
                <h2>Contact Information</h2>
                <p>Email: contact@example.com</p>
                <script>console.log("tracking");</script>
            </article>
        </main>
        <footer>
            <p>&copy; 2024 Test Company</p>
        </footer>
    </body>
    </html>
    """
