"""
Per-page decision loop.

A page moves through AWAITING_DECISION -> EXECUTING -> RECORDING and back
until it reaches PAGE_COMPLETE. Each iteration hands the decision service
a fresh snapshot of the session plus the page's conversation so far.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from site_explorer.config.settings import Settings
from site_explorer.decision.base import DecisionClient
from site_explorer.decision.models import DecisionRequest, DecisionResponse
from site_explorer.graph.store import GraphStore
from site_explorer.session.flow import FlowTracker, FlowTransition
from site_explorer.session.models import ExecutedStep, PageData, ToolName, utc_now_iso
from site_explorer.session.state import SessionState
from site_explorer.tools.executor import ToolExecutor
from site_explorer.tools.results import ActResult, ExtractResult, StandbyResult, UserInputResult
from site_explorer.transport.events import EventType, ProgressReporter
from site_explorer.utils.logging import get_logger, get_logger_with_context
from site_explorer.utils.metrics import (
    increment_pages_completed,
    increment_steps_executed,
    time_decision,
)

logger = get_logger(__name__)

LivenessCheck = Callable[[], bool]


class LoopState(str, Enum):
    AWAITING_DECISION = "awaiting_decision"
    EXECUTING = "executing"
    RECORDING = "recording"
    PAGE_COMPLETE = "page_complete"


class CompletionReason(str, Enum):
    """Why a page left the loop."""

    PAGE_DONE = "page_done"
    OBJECTIVE_ACHIEVED = "objective_achieved"
    BUDGET_EXHAUSTED = "budget_exhausted"
    DECISION_FAILED = "decision_failed"
    FLOW_EXITED = "flow_exited"
    LIVENESS_LOST = "liveness_lost"
    LOAD_FAILED = "load_failed"


@dataclass
class PageOutcome:
    url_hash: str
    url: str
    reason: CompletionReason
    steps_executed: int = 0
    counted_steps: int = 0
    objective_achieved: bool = False


class DecisionLoop:
    """
    Drives one page at a time to completion.

    Args:
        state: Session owner
        flow: Sensitive flow tracker
        executor: Tool execution layer
        decision_client: Decision service
        graph_store: Per-page store holding conversations and graphs
        settings: Full settings
        reporter: Progress event sink
        is_alive: Liveness check consulted before every decision
        decision_history: Shared url_hash -> decisions record, persisted by the caller
    """

    def __init__(
        self,
        state: SessionState,
        flow: FlowTracker,
        executor: ToolExecutor,
        decision_client: DecisionClient,
        graph_store: GraphStore,
        settings: Settings,
        reporter: ProgressReporter | None = None,
        is_alive: LivenessCheck | None = None,
        decision_history: dict[str, list[dict[str, Any]]] | None = None,
    ) -> None:
        self.state = state
        self.flow = flow
        self.executor = executor
        self.decision_client = decision_client
        self.graph_store = graph_store
        self.settings = settings
        self.reporter = reporter or ProgressReporter()
        self.is_alive = is_alive or (lambda: True)
        self.decision_history = decision_history if decision_history is not None else {}

    async def run_page(self, page: PageData) -> PageOutcome:
        """Process one dequeued page until it is complete, then mark it completed."""
        log = get_logger_with_context(__name__, url_hash=page.url_hash)
        outcome = PageOutcome(url_hash=page.url_hash, url=page.url, reason=CompletionReason.PAGE_DONE)

        self.reporter.emit(EventType.PAGE_STARTED, url=page.url, url_hash=page.url_hash)
        log.info(f"Processing page (priority={page.priority}): {page.url}")

        image = await self._load(page, log)
        if image is None:
            outcome.reason = CompletionReason.LOAD_FAILED
            return await self._complete(page, outcome, log)

        max_steps = self.settings.explorer.max_steps_per_page
        loop_state = LoopState.AWAITING_DECISION

        while loop_state is not LoopState.PAGE_COMPLETE:
            if not self.is_alive():
                log.warning("Session is no longer live; stopping page")
                outcome.reason = CompletionReason.LIVENESS_LOST
                break

            # AWAITING_DECISION
            decision = await self._decide(page, image, max_steps - outcome.counted_steps, log)
            if decision is None:
                log.warning("No usable decision; completing page without objective")
                outcome.reason = CompletionReason.DECISION_FAILED
                outcome.objective_achieved = False
                break

            flow_exit_landing = await self._apply_flow_signal(page, decision, log)

            # EXECUTING
            loop_state = LoopState.EXECUTING
            step = await self.state.reserve_step()
            tool = decision.tool_to_use
            result = await self._execute(page, decision, step)

            # RECORDING
            loop_state = LoopState.RECORDING
            await self.state.append_step(page.url_hash, self._to_step(step, decision, result))
            increment_steps_executed(tool.value)
            outcome.steps_executed += 1
            if tool.counts_toward_budget:
                outcome.counted_steps += 1
            image = self._latest_image(result, image)

            self.graph_store.add_conversation(page.url_hash, "user", result.to_message())
            self.reporter.emit(
                EventType.STEP_COMPLETED,
                url_hash=page.url_hash,
                step=step,
                tool=tool.value,
                success=result.success,
            )
            log.info(f"Step {step} {tool.value}: {'ok' if result.success else 'failed'}")

            achieved = getattr(result, "objective_achieved", None)
            if achieved:
                outcome.reason = CompletionReason.OBJECTIVE_ACHIEVED
                outcome.objective_achieved = True
                loop_state = LoopState.PAGE_COMPLETE
            elif decision.is_current_page_execution_completed:
                outcome.reason = CompletionReason.PAGE_DONE
                loop_state = LoopState.PAGE_COMPLETE
            elif flow_exit_landing:
                outcome.reason = CompletionReason.FLOW_EXITED
                loop_state = LoopState.PAGE_COMPLETE
            elif outcome.counted_steps >= max_steps:
                log.info(f"Step budget of {max_steps} exhausted")
                outcome.reason = CompletionReason.BUDGET_EXHAUSTED
                loop_state = LoopState.PAGE_COMPLETE
            else:
                loop_state = LoopState.AWAITING_DECISION

        return await self._complete(page, outcome, log)

    # =========================================================================
    # States
    # =========================================================================

    async def _load(self, page: PageData, log) -> bytes | None:
        """Navigate to the page and take its initial screenshot."""
        async with self.executor.driver_lock:
            try:
                await self.executor.driver.navigate(page.url)
            except Exception as e:
                log.error(f"Failed to load page: {e}")
                await self.state.record_failure(page.url_hash, f"Load failed: {e}")
                return None
            image = await self.executor.capture_initial(page.url_hash, self.state.step_counter)

        self.graph_store.ensure_page(page.url_hash, page.url, image)
        return image

    async def _decide(
        self,
        page: PageData,
        image: bytes,
        remaining_steps: int,
        log,
    ) -> DecisionResponse | None:
        async with self.executor.driver_lock:
            browser_url = await self.executor.current_url(default=page.url)
        request = DecisionRequest.from_snapshot(
            self.state.snapshot(),
            page.url_hash,
            image,
            self.graph_store.conversation(page.url_hash),
            max_pages=self.settings.explorer.max_pages,
            remaining_steps=remaining_steps,
            current_url=browser_url,
        )
        try:
            with time_decision():
                decision = await self.decision_client.decide_next_action(request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Decision service {self.decision_client.name} raised: {e}")
            return None
        if decision is None:
            return None

        log.debug(f"Decision for step {request.step_number}: {decision.tool_to_use.value} - {decision.reasoning}")
        self.graph_store.add_conversation(page.url_hash, "assistant", decision.to_json())
        self.decision_history.setdefault(page.url_hash, []).append({
            "step_number": request.step_number,
            "timestamp": utc_now_iso(),
            "decision": decision.model_dump(mode="json", by_alias=True),
        })
        self.reporter.emit(
            EventType.DECISION_MADE,
            url_hash=page.url_hash,
            step=request.step_number,
            tool=decision.tool_to_use.value,
            reasoning=decision.reasoning,
            next_plan=decision.next_plan,
        )
        return decision

    async def _apply_flow_signal(
        self,
        page: PageData,
        decision: DecisionResponse,
        log,
    ) -> str | None:
        """
        Enter or leave a sensitive flow before the decided tool runs.

        Returns the landing URL when leaving a flow moved the browser off
        this page; the landing page is queued ahead of everything else and
        this page is finished after the current step. The landing page is
        left for the primary loop rather than handed to background workers.
        """
        async with self.executor.driver_lock:
            current_url = await self.executor.current_url(default=page.url)
        transition = await self.flow.apply_signal(
            decision.is_in_sensitive_flow,
            decision.flow_type,
            current_url,
            self.state.peek_next_step(),
        )
        if transition is not FlowTransition.EXITED:
            return None

        if not current_url or self.state.identity_of(current_url) == page.url_hash:
            return None

        discovery = await self.state.register_discovery(
            current_url,
            priority=self.settings.explorer.start_priority,
            source_url=page.url,
        )
        if discovery.limit_reached:
            log.info(f"Flow finished on {discovery.url}; page limit reached, not queued")
        else:
            log.info(f"Flow finished on {discovery.url}; queued it first")
        if discovery.created:
            self.reporter.emit(
                EventType.URL_DISCOVERED,
                url=discovery.url,
                url_hash=discovery.url_hash,
                source_url=page.url,
            )
        return discovery.url

    async def _execute(self, page: PageData, decision: DecisionResponse, step: int):
        params = decision.tool_parameters
        tool = decision.tool_to_use
        if tool is ToolName.PAGE_ACT:
            return await self.executor.act(page.url_hash, params.instruction, step)
        if tool is ToolName.PAGE_EXTRACT:
            return await self.executor.extract(page.url_hash, params.instruction, step)
        if tool is ToolName.USER_INPUT:
            return await self.executor.request_user_input(page.url_hash, params.input_requests(), step)
        return await self.executor.standby(page.url_hash, params.wait_time_seconds, step)

    async def _complete(self, page: PageData, outcome: PageOutcome, log) -> PageOutcome:
        # PAGE_COMPLETE
        if page.url_hash in self.graph_store:
            await self.graph_store.drain()
            try:
                await self.graph_store.regenerate(page.url_hash)
            except Exception as e:
                log.error(f"Final graph rebuild failed: {e}")

        await self.state.mark_completed(page.url_hash)
        increment_pages_completed()
        self.reporter.emit(
            EventType.PAGE_COMPLETED,
            url=page.url,
            url_hash=page.url_hash,
            reason=outcome.reason.value,
            steps=outcome.steps_executed,
            objective_achieved=outcome.objective_achieved,
        )
        log.info(f"Page completed ({outcome.reason.value}, {outcome.steps_executed} steps)")
        return outcome

    # =========================================================================
    # Recording helpers
    # =========================================================================

    @staticmethod
    def _latest_image(result, current: bytes) -> bytes:
        if isinstance(result, ActResult) and result.screenshot:
            return result.screenshot
        if isinstance(result, StandbyResult):
            return result.after_screenshot or result.before_screenshot or current
        return current

    @staticmethod
    def _to_step(step: int, decision: DecisionResponse, result) -> ExecutedStep:
        tool = decision.tool_to_use
        instruction = decision.instruction

        if isinstance(result, ActResult):
            return ExecutedStep(
                step=step,
                tool_used=tool,
                instruction=instruction,
                success=result.success,
                result=result.description,
                url_changed=result.url_changed,
                new_url=result.new_url,
                new_urls_discovered=tuple(result.new_urls_discovered),
                objective_achieved=result.objective_achieved,
            )
        if isinstance(result, ExtractResult):
            text = f"Extraction v{result.version}" if result.success else f"Extraction failed: {result.error}"
            return ExecutedStep(
                step=step,
                tool_used=tool,
                instruction=instruction,
                success=result.success,
                result=text,
                objective_achieved=result.objective_achieved,
            )
        if isinstance(result, UserInputResult):
            requested = [r.input_key for r in decision.tool_parameters.input_requests()]
            if result.skipped:
                text = "Skipped by user"
            elif result.all_inputs_collected:
                text = "All inputs collected"
            else:
                text = result.error or f"Waiting for {', '.join(result.pending_keys)}"
            return ExecutedStep(
                step=step,
                tool_used=tool,
                instruction=instruction or ", ".join(requested),
                success=result.success,
                result=text,
                input_keys=tuple(requested),
                input_values=result.masked_inputs(),
            )
        return ExecutedStep(
            step=step,
            tool_used=tool,
            instruction=instruction,
            success=result.success,
            result=result.error or f"Waited {result.wait_time:g}s",
            wait_time=result.wait_time,
        )
