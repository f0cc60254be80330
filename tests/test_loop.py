"""
Tests for the per-page decision loop.
"""

import pytest

from site_explorer.config import Settings
from site_explorer.explorer import CompletionReason
from site_explorer.session import PageStatus, ScreenshotType, ToolName
from site_explorer.transport import EventType
from site_explorer.utils.metrics import Metrics
from tests.conftest import DASHBOARD_URL, LOGIN_URL, START_URL


def act(instruction: str, **extra) -> dict:
    return {"tool_to_use": "page_act", "tool_parameters": {"instruction": instruction}, **extra}


def extract(instruction: str = "read the page", **extra) -> dict:
    return {"tool_to_use": "page_extract", "tool_parameters": {"instruction": instruction}, **extra}


def standby(seconds: float = 0.0) -> dict:
    return {"tool_to_use": "standby", "tool_parameters": {"waitTimeSeconds": seconds}}


class TestDecisionLoop:
    """Tests for DecisionLoop.run_page."""

    @pytest.mark.asyncio
    async def test_no_decision_completes_page(self, make_harness):
        """A missing decision ends the page without the objective."""
        harness = make_harness(decisions=[])
        page = await harness.open_start_page()

        outcome = await harness.loop.run_page(page)

        assert outcome.reason is CompletionReason.DECISION_FAILED
        assert not outcome.objective_achieved
        assert outcome.steps_executed == 0
        stored = harness.state.page(page.url_hash)
        assert stored.status is PageStatus.COMPLETED
        assert [s.type for s in stored.screenshots] == [ScreenshotType.INITIAL]
        assert len(harness.reporter.events_of(EventType.PAGE_COMPLETED)) == 1

    @pytest.mark.asyncio
    async def test_page_done_flag(self, make_harness):
        """The decision can declare the page finished."""
        harness = make_harness(decisions=[extract(isCurrentPageExecutionCompleted=True), extract()])
        page = await harness.open_start_page()

        outcome = await harness.loop.run_page(page)

        assert outcome.reason is CompletionReason.PAGE_DONE
        assert outcome.steps_executed == 1
        assert harness.client.remaining == 1

    @pytest.mark.asyncio
    async def test_one_latency_sample_per_decision(self, make_harness):
        harness = make_harness(decisions=[extract(), extract(isCurrentPageExecutionCompleted=True)])
        page = await harness.open_start_page()

        await harness.loop.run_page(page)

        metrics = Metrics.get()
        assert metrics.get_latency("decision_latency_ms").count == 2
        assert metrics.get_counter("decisions_requested") == 2

    @pytest.mark.asyncio
    async def test_step_budget(self, make_harness, test_settings: Settings):
        """A page stops after its counted step budget."""
        settings = test_settings.model_copy(deep=True)
        settings.explorer.max_steps_per_page = 2
        harness = make_harness(decisions=[extract(), extract(), extract()], settings=settings)
        page = await harness.open_start_page()

        outcome = await harness.loop.run_page(page)

        assert outcome.reason is CompletionReason.BUDGET_EXHAUSTED
        assert outcome.counted_steps == 2
        assert len(harness.state.page(page.url_hash).executed_steps) == 2

    @pytest.mark.asyncio
    async def test_standby_not_counted(self, make_harness, test_settings: Settings):
        """Standby steps are recorded but do not use the budget."""
        settings = test_settings.model_copy(deep=True)
        settings.explorer.max_steps_per_page = 2
        harness = make_harness(
            decisions=[standby(), standby(), extract(), extract(), extract()],
            settings=settings,
        )
        page = await harness.open_start_page()

        outcome = await harness.loop.run_page(page)

        assert outcome.reason is CompletionReason.BUDGET_EXHAUSTED
        assert outcome.steps_executed == 4
        assert outcome.counted_steps == 2
        tools = [s.tool_used for s in harness.state.page(page.url_hash).executed_steps]
        assert tools == [ToolName.STANDBY, ToolName.STANDBY, ToolName.PAGE_EXTRACT, ToolName.PAGE_EXTRACT]

    @pytest.mark.asyncio
    async def test_steps_numbered_from_global_counter(self, make_harness):
        """Step numbers follow the session counter and the request sees the next one."""
        harness = make_harness(decisions=[extract(), extract()])
        for _ in range(4):
            await harness.state.reserve_step()
        page = await harness.open_start_page()

        await harness.loop.run_page(page)

        steps = [s.step for s in harness.state.page(page.url_hash).executed_steps]
        assert steps == [5, 6]
        assert [r.step_number for r in harness.client.requests] == [5, 6, 7]

    @pytest.mark.asyncio
    async def test_conversation_grows(self, make_harness):
        """Each step adds the decision and its result to the page conversation."""
        harness = make_harness(decisions=[extract()])
        page = await harness.open_start_page()

        await harness.loop.run_page(page)

        conversation = harness.graph_store.conversation(page.url_hash)
        assert [m["role"] for m in conversation] == ["assistant", "user"]
        assert harness.client.requests[1].conversation_history == conversation
        assert Metrics.get().get_counter("decisions_requested") == 2
        assert Metrics.get().get_counter("steps_page_extract") == 1

    @pytest.mark.asyncio
    async def test_objective_achieved_ends_page(self, make_harness):
        """A met objective completes the page at once."""
        harness = make_harness(
            decisions=[act("click Menu button"), extract()],
            objective_results=[True],
            is_exploratory=False,
        )
        page = await harness.open_start_page()

        outcome = await harness.loop.run_page(page)

        assert outcome.reason is CompletionReason.OBJECTIVE_ACHIEVED
        assert outcome.objective_achieved
        assert outcome.steps_executed == 1
        assert harness.state.objective_achieved

    @pytest.mark.asyncio
    async def test_load_failure(self, make_harness):
        """A page that cannot load is completed with a failure note."""
        harness = make_harness(decisions=[extract()])
        harness.driver.fail_navigation.add(START_URL)
        await harness.state.register_discovery(START_URL, priority=1)
        page = await harness.state.dequeue()

        outcome = await harness.loop.run_page(page)

        assert outcome.reason is CompletionReason.LOAD_FAILED
        stored = harness.state.page(page.url_hash)
        assert stored.status is PageStatus.COMPLETED
        assert "Load failed" in stored.failure_note
        assert harness.client.requests == []

    @pytest.mark.asyncio
    async def test_liveness_lost(self, make_harness):
        """A dead session stops asking for decisions."""
        harness = make_harness(decisions=[extract()])
        harness.loop.is_alive = lambda: False
        page = await harness.open_start_page()

        outcome = await harness.loop.run_page(page)

        assert outcome.reason is CompletionReason.LIVENESS_LOST
        assert harness.client.requests == []

    @pytest.mark.asyncio
    async def test_login_flow(self, make_harness):
        """
        Entering a login flow keeps the browser on transient pages, and
        leaving it on another page queues the landing page first.
        """
        harness = make_harness(decisions=[
            act("click Login", isInSensitiveFlow=True, flowType="login"),
            {
                "tool_to_use": "user_input",
                "tool_parameters": {"inputs": [
                    {"inputKey": "email", "inputType": "email"},
                    {"inputKey": "password", "inputType": "password"},
                ]},
            },
            act("fill {{email}} into Email field and {{password}} into Password field"),
            act("click Sign in"),
            extract(isInSensitiveFlow=False),
            extract(),
        ])
        harness.transport.submit({"email": "me@example.com", "password": "hunter2"})
        for _ in range(4):
            await harness.state.reserve_step()
        page = await harness.open_start_page()

        outcome = await harness.loop.run_page(page)
        await harness.graph_store.drain()

        assert outcome.reason is CompletionReason.FLOW_EXITED
        steps = harness.state.page(page.url_hash).executed_steps
        assert [s.step for s in steps] == [5, 6, 7, 8, 9]
        assert steps[1].input_values == {"email": "me@example.com", "password": "********"}
        assert harness.driver.actions[1] == (
            "fill me@example.com into Email field and hunter2 into Password field")

        assert not harness.flow.should_suppress_queuing()
        snapshot = harness.state.snapshot()
        assert harness.state.identity_of(LOGIN_URL) not in snapshot.pages
        dashboard = snapshot.pages[harness.state.identity_of(DASHBOARD_URL)]
        assert dashboard.priority == 1
        assert snapshot.page_queue[0] == dashboard.url_hash

        flow_ids = [a.flow_id for a in harness.graph_store.get(page.url_hash).actions]
        assert flow_ids == ["login_5", "login_5", "login_5"]

        # Inside the flow the decision service sees where the browser is
        request_urls = [r.url for r in harness.client.requests]
        assert request_urls[0] == START_URL
        assert request_urls[1:4] == [LOGIN_URL, LOGIN_URL, LOGIN_URL]
        assert request_urls[4] == DASHBOARD_URL
