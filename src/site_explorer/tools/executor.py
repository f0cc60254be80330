"""
Tool execution layer.

ToolExecutor runs the four tools a decision can choose. Driver and
extraction failures never escape: they come back as unsuccessful results
so the decision loop can replan. Every call that touches the browser
holds the shared driver lock for its duration.
"""

import asyncio
import re
from typing import Callable

from site_explorer.browser.driver import AutomationDriver
from site_explorer.config.settings import Settings
from site_explorer.core.exceptions import InputTimeoutError, PersistenceError
from site_explorer.decision.base import DecisionClient
from site_explorer.decision.formatting import ExtractionFormatter, MarkdownExtractionFormatter
from site_explorer.graph.models import ActionEntry, MAIN_FLOW_ID
from site_explorer.graph.store import GraphStore
from site_explorer.session.flow import FlowTracker
from site_explorer.session.models import (
    ActionHistoryEntry,
    ExtractionResult,
    PageScreenshot,
    ScreenshotType,
    ToolName,
)
from site_explorer.session.state import Discovery, SessionState
from site_explorer.storage.files import SessionStorage
from site_explorer.tools.results import ActResult, ExtractResult, StandbyResult, UserInputResult
from site_explorer.transport.events import EventType, ProgressReporter
from site_explorer.transport.input import InputRequest, InputTransport, UserInputRequest
from site_explorer.utils.logging import get_logger
from site_explorer.utils.metrics import increment_tool_failures

logger = get_logger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.-]+)\s*\}\}")

DiscoveryListener = Callable[[Discovery], None]


class ToolExecutor:
    """
    Runs act, extract, user_input, and standby for one session.

    Act instructions may reference stored human inputs as {{key}}; the
    placeholder is replaced with the value only on the way to the driver,
    so recorded instructions never contain secrets.

    Args:
        state: Session owner all records are written through
        flow: Sensitive flow tracker deciding whether discoveries are queued
        driver: Browser automation driver
        driver_lock: Lock guarding exclusive use of the driver
        graph_store: Per-page store fed with act entries
        transport: Channel for asking the human for values
        decision_client: Used to judge task objectives after act/extract
        settings: Full settings (explorer, input, storage sections are used)
        formatter: Extraction summary formatter
        reporter: Progress event sink
        storage: Where screenshots are written; None keeps them in memory only
    """

    def __init__(
        self,
        state: SessionState,
        flow: FlowTracker,
        driver: AutomationDriver,
        driver_lock: asyncio.Lock,
        graph_store: GraphStore,
        transport: InputTransport,
        decision_client: DecisionClient,
        settings: Settings,
        formatter: ExtractionFormatter | None = None,
        reporter: ProgressReporter | None = None,
        storage: SessionStorage | None = None,
    ) -> None:
        self.state = state
        self.flow = flow
        self.driver = driver
        self.driver_lock = driver_lock
        self.graph_store = graph_store
        self.transport = transport
        self.decision_client = decision_client
        self.settings = settings
        self.formatter = formatter or MarkdownExtractionFormatter()
        self.reporter = reporter or ProgressReporter()
        self.storage = storage
        self.on_discovery: DiscoveryListener | None = None

    # =========================================================================
    # act
    # =========================================================================

    async def act(self, page_hash: str, instruction: str, step: int) -> ActResult:
        """
        Perform one interaction and work out where it led.

        A URL change inside a sensitive flow leaves the browser on the new
        page without queuing it. Outside a flow the new page is registered
        as a discovery and the browser returns to where it was.
        """
        resolved = self.fill_placeholders(instruction)
        flow_context = self.flow.context
        suppress = self.flow.should_suppress_queuing()

        async with self.driver_lock:
            before_url = await self.current_url(default="")
            try:
                outcome = await self.driver.act(resolved)
                success, description = outcome.success, outcome.description
            except Exception as e:
                # Any driver failure becomes a failed step
                success, description = False, f"Action failed: {e}"
            if not success:
                increment_tool_failures()
                logger.warning(f"Act failed at step {step}: {description}")

            after_url = await self.current_url(default=before_url)
            image = await self._capture(page_hash, step, ScreenshotType.AFTER_ACT)

            source = self.state.canonicalize(before_url) if before_url else before_url
            target = self.state.canonicalize(after_url) if after_url else after_url
            url_changed = bool(target) and target != source

            result = ActResult(
                success=success,
                description=description,
                url_changed=url_changed,
                new_url=target if url_changed else None,
                suppressed=url_changed and suppress,
                screenshot=image,
            )

            if url_changed and not suppress:
                discovery = await self.state.register_discovery(
                    after_url,
                    priority=self.settings.explorer.discovery_priority,
                    source_url=source,
                )
                result.queued = not discovery.limit_reached
                if discovery.created:
                    result.new_urls_discovered.append(discovery.url)
                    self.reporter.emit(
                        EventType.URL_DISCOVERED,
                        url=discovery.url,
                        url_hash=discovery.url_hash,
                        source_url=source,
                        step=step,
                    )
                    if self.on_discovery is not None:
                        self.on_discovery(discovery)
                await self._return_to(before_url)
            elif url_changed:
                logger.info(f"URL changed inside sensitive flow, not queuing: {target}")

        await self.state.record_action(ActionHistoryEntry(
            instruction=instruction,
            source_url=source,
            target_url=target if url_changed else None,
            url_changed=url_changed,
            step_number=step,
            success=success,
        ))

        flow_id = MAIN_FLOW_ID
        if flow_context.is_in_sensitive_flow and flow_context.flow_type is not None:
            kind = flow_context.flow_type.value.replace("_", "-")
            flow_id = f"{kind}_{flow_context.flow_start_step}"
        self.graph_store.add_action(page_hash, ActionEntry(
            instruction=instruction,
            step_number=step,
            image=image,
            url_changed=url_changed,
            target_url=target if url_changed else None,
            queued=result.queued,
            returned=url_changed and not suppress,
            flow_id=flow_id,
            success=success,
            outcome=description,
        ))
        self.graph_store.schedule_regeneration(page_hash)

        if success:
            result.objective_achieved = await self._check_objective(
                page_hash, ToolName.PAGE_ACT, description, image)
        return result

    async def _return_to(self, url: str) -> None:
        if not url:
            return
        try:
            await self.driver.navigate(url)
        except Exception as e:
            logger.warning(f"Could not return to {url}: {e}")

    # =========================================================================
    # extract
    # =========================================================================

    async def extract(self, page_hash: str, instruction: str, step: int) -> ExtractResult:
        """Run an extraction pass and fold it into the page's summary."""
        async with self.driver_lock:
            try:
                raw = await self.driver.extract(self.fill_placeholders(instruction))
            except Exception as e:
                increment_tool_failures()
                logger.warning(f"Extraction failed at step {step}: {e}")
                return ExtractResult(success=False, error=str(e))
            image = await self._screenshot_bytes()

        stored = await self.store_extraction(page_hash, raw, step)
        summary = stored.formatted_markdown
        result = ExtractResult(success=True, version=stored.version, data=raw, summary=summary)
        result.objective_achieved = await self._check_objective(
            page_hash, ToolName.PAGE_EXTRACT, summary, image)
        return result

    async def store_extraction(self, page_hash: str, raw: object, step: int) -> ExtractionResult:
        """Append the next extraction version with its cumulative summary."""
        page = self.state.page(page_hash)
        pending = ExtractionResult(
            version=page.current_extraction_version + 1,
            raw_data=raw,
            formatted_markdown="",
            step_number=step,
        )
        if page.extraction_results:
            previous = page.extraction_results[-1].formatted_markdown
            summary = await self.formatter.merge(page.url, previous, pending)
        else:
            summary = await self.formatter.format(page.url, [pending])

        stored = await self.state.append_extraction(page_hash, raw, summary, step)
        if isinstance(raw, dict) and page_hash in self.graph_store:
            self.graph_store.record_page_content(page_hash, raw)
        return stored

    # =========================================================================
    # user_input
    # =========================================================================

    async def request_user_input(
        self,
        page_hash: str,
        requests: list[InputRequest],
        step: int,
    ) -> UserInputResult:
        """
        Ask the human for the requested values that are not stored yet.

        Each value is stored as soon as it arrives, so a later request only
        asks for what is still missing. A timeout returns what was collected
        so far with all_inputs_collected=False.
        """
        secret_keys = {r.input_key for r in requests if r.is_secret}
        known = self.state.user_input_keys()
        received = {
            r.input_key: self.state.user_input_value(r.input_key) or ""
            for r in requests if r.input_key in known
        }
        missing = [r for r in requests if r.input_key not in known]

        if not requests:
            return UserInputResult(
                success=False, all_inputs_collected=False, error="No inputs requested")
        if not missing:
            logger.debug(f"All requested inputs already stored: {sorted(received)}")
            return UserInputResult(
                success=True,
                all_inputs_collected=True,
                inputs_received=received,
                secret_keys=secret_keys,
            )

        outbound = UserInputRequest(
            user_name=self.settings.input.user_name,
            url_hash=page_hash,
            step_number=step,
            inputs=missing,
        )
        pending = {r.input_key: r for r in missing}
        try:
            await self.transport.send_request(outbound)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._transport_failure(e, pending, received, secret_keys)
        self.reporter.emit(
            EventType.INPUT_REQUESTED,
            url_hash=page_hash,
            step=step,
            keys=outbound.keys,
        )

        try:
            skipped = await self._collect(pending, received)
        except InputTimeoutError as e:
            logger.warning(f"{e.message}: still waiting for {e.details.get('pending_keys')}")
            return UserInputResult(
                success=False,
                all_inputs_collected=False,
                inputs_received=received,
                pending_keys=list(pending),
                secret_keys=secret_keys,
                error=e.message,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._transport_failure(e, pending, received, secret_keys)

        if skipped:
            logger.info(f"Human skipped input request for {list(pending)}")
        return UserInputResult(
            success=True,
            all_inputs_collected=not pending,
            inputs_received=received,
            pending_keys=list(pending),
            skipped=skipped,
            secret_keys=secret_keys,
        )

    def _transport_failure(
        self,
        error: Exception,
        pending: dict[str, InputRequest],
        received: dict[str, str],
        secret_keys: set[str],
    ) -> UserInputResult:
        increment_tool_failures()
        logger.error(f"Input transport failed with {list(pending)} pending: {error}")
        return UserInputResult(
            success=False,
            all_inputs_collected=False,
            inputs_received=received,
            pending_keys=list(pending),
            secret_keys=secret_keys,
            error=f"Input transport failed: {error}",
        )

    async def _collect(self, pending: dict[str, InputRequest], received: dict[str, str]) -> bool:
        """
        Read responses until nothing is pending. Returns True if the human skipped.

        Raises:
            InputTimeoutError: If the timeout elapses with keys still pending
        """
        timeout = self.settings.input.timeout_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise InputTimeoutError(
                    "Timed out waiting for input",
                    pending_keys=list(pending),
                    timeout_seconds=timeout,
                )
            try:
                response = await asyncio.wait_for(self.transport.receive(), timeout=remaining)
            except asyncio.TimeoutError:
                raise InputTimeoutError(
                    "Timed out waiting for input",
                    pending_keys=list(pending),
                    timeout_seconds=timeout,
                ) from None

            arrived = []
            for key, value in response.values.items():
                request = pending.pop(key, None)
                if request is None:
                    continue
                await self.state.store_user_input(key, value, request.input_type, request.sensitive)
                received[key] = value
                arrived.append(key)
            if arrived:
                self.reporter.emit(EventType.INPUT_RECEIVED, keys=arrived, pending=list(pending))
            if response.skipped:
                return True
        return False

    # =========================================================================
    # standby
    # =========================================================================

    async def standby(self, page_hash: str, wait_seconds: float | None, step: int) -> StandbyResult:
        """Wait for the page to settle. Does not count toward the step budget."""
        wait = wait_seconds if wait_seconds is not None else self.settings.explorer.default_standby_seconds
        async with self.driver_lock:
            before = await self._capture(page_hash, step, ScreenshotType.BEFORE_STANDBY)
            try:
                await self.driver.wait_for_timeout(wait * 1000)
            except Exception as e:
                increment_tool_failures()
                return StandbyResult(success=False, wait_time=wait, before_screenshot=before, error=str(e))
            after = await self._capture(page_hash, step, ScreenshotType.AFTER_STANDBY)
        return StandbyResult(success=True, wait_time=wait, before_screenshot=before, after_screenshot=after)

    # =========================================================================
    # Helpers
    # =========================================================================

    def fill_placeholders(self, text: str) -> str:
        """Replace {{key}} with stored human input. Unknown keys are left as is."""
        def replace(match: re.Match) -> str:
            value = self.state.user_input_value(match.group(1))
            return value if value is not None else match.group(0)

        return PLACEHOLDER_RE.sub(replace, text)

    async def capture_initial(self, page_hash: str, step: int) -> bytes:
        """Screenshot a freshly loaded page. Caller holds the driver lock."""
        return await self._capture(page_hash, step, ScreenshotType.INITIAL)

    async def current_url(self, default: str = "") -> str:
        try:
            return await self.driver.current_url()
        except Exception as e:
            logger.warning(f"Could not read current URL: {e}")
            return default

    async def _screenshot_bytes(self) -> bytes:
        try:
            return await self.driver.screenshot()
        except Exception as e:
            logger.warning(f"Screenshot failed: {e}")
            return b""

    async def _capture(self, page_hash: str, step: int, kind: ScreenshotType) -> bytes:
        data = await self._screenshot_bytes()
        screenshot = PageScreenshot(step_number=step, type=kind, data=data)
        if data and self.storage is not None:
            try:
                path = self.storage.save_screenshot(self.state.session_id, page_hash, screenshot)
                screenshot.file_path = str(path) if path else None
            except PersistenceError as e:
                logger.warning(f"Screenshot not saved: {e}")
        await self.state.append_screenshot(page_hash, screenshot)
        return data

    async def _check_objective(
        self,
        page_hash: str,
        tool: ToolName,
        outcome: str,
        image: bytes,
    ) -> bool | None:
        """Ask the decision service about a task objective. None for exploratory sessions."""
        if self.state.is_exploratory:
            return None
        page = self.state.page(page_hash)
        try:
            achieved = await self.decision_client.evaluate_objective(
                self.state.objective, page.url, tool, outcome, image or None)
        except Exception as e:
            logger.warning(f"Objective check failed: {e}")
            return False
        if achieved:
            logger.info(f"Objective achieved on {page.url} after {tool.value}")
            await self.state.mark_objective_achieved(page_hash)
            await self.flow.clear_if_started_at(page_hash)
        return achieved
