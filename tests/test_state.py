"""
Tests for the session state owner.

Tests discovery deduplication, queue ordering, step numbering,
and status transitions.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from site_explorer.config import ExplorerSettings
from site_explorer.core.exceptions import ExplorationError
from site_explorer.session import (
    ExecutedStep,
    InputType,
    PageStatus,
    SessionPhase,
    SessionState,
    ToolName,
    make_session_id,
)


@pytest.fixture
def state() -> SessionState:
    """Provide a fresh task-focused session."""
    return SessionState.start("find the contact page", "https://example.com")


def _step(number: int) -> ExecutedStep:
    return ExecutedStep(step=number, tool_used=ToolName.PAGE_EXTRACT, instruction="read", success=True)


class TestSessionId:
    """Tests for session id construction."""

    def test_session_id_from_domain_and_time(self):
        """Session id combines a slugged domain and a timestamp."""
        now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        session_id = make_session_id("https://www.example.com/a", now)

        assert session_id.startswith("www-example-com_2024-01-02T03-04-05")
        assert ":" not in session_id


class TestDiscovery:
    """Tests for register_discovery."""

    @pytest.mark.asyncio
    async def test_new_url_is_queued(self, state: SessionState):
        """A new URL becomes a queued page."""
        discovery = await state.register_discovery("https://example.com", priority=1)

        assert discovery.created
        assert discovery.url == "https://example.com/"
        page = state.page(discovery.url_hash)
        assert page.status is PageStatus.QUEUED
        assert page.priority == 1
        assert state.queued_count() == 1

    @pytest.mark.asyncio
    async def test_duplicate_identity_not_requeued(self, state: SessionState):
        """Variants of the same URL map to one page."""
        first = await state.register_discovery("https://example.com/contact")
        second = await state.register_discovery("https://EXAMPLE.com/contact/?utm_source=mail")

        assert first.created
        assert not second.created
        assert first.url_hash == second.url_hash
        assert state.page_count == 1
        assert state.queued_count() == 1

    @pytest.mark.asyncio
    async def test_priority_upgraded_only_when_more_urgent(self, state: SessionState):
        """Priority moves toward 1 but never away from it."""
        discovery = await state.register_discovery("https://example.com/a", priority=3)

        lower = await state.register_discovery("https://example.com/a", priority=4)
        assert not lower.priority_upgraded
        assert state.page(discovery.url_hash).priority == 3

        higher = await state.register_discovery("https://example.com/a", priority=2)
        assert higher.priority_upgraded
        assert state.page(discovery.url_hash).priority == 2

    @pytest.mark.asyncio
    async def test_default_priority(self, state: SessionState):
        """Discoveries without a priority use the configured discovery priority."""
        discovery = await state.register_discovery("https://example.com/b")

        assert state.page(discovery.url_hash).priority == 2

    @pytest.mark.asyncio
    async def test_priority_clamped(self, state: SessionState):
        """Out-of-range priorities are clamped to 1..5."""
        discovery = await state.register_discovery("https://example.com/c", priority=9)

        assert state.page(discovery.url_hash).priority == 5

    @pytest.mark.asyncio
    async def test_concurrent_discoveries_deduplicate(self, state: SessionState):
        """Racing registrations of one identity create one page."""
        results = await asyncio.gather(*[
            state.register_discovery("https://example.com/same") for _ in range(10)
        ])

        assert sum(1 for r in results if r.created) == 1
        assert state.page_count == 1

    @pytest.mark.asyncio
    async def test_new_pages_refused_at_limit(self):
        """Once max_pages pages exist, new identities are refused but known ones still upgrade."""
        state = SessionState.start(
            "map the site", "https://example.com", settings=ExplorerSettings(max_pages=2))
        await state.register_discovery("https://example.com", priority=1)
        await state.register_discovery("https://example.com/a", priority=3)

        refused = await state.register_discovery("https://example.com/b")
        upgraded = await state.register_discovery("https://example.com/a", priority=2)

        assert refused.limit_reached
        assert not refused.created
        assert not state.has_page(refused.url_hash)
        assert state.queued_count() == 2
        assert upgraded.priority_upgraded


class TestQueue:
    """Tests for dequeue and claim."""

    @pytest.mark.asyncio
    async def test_dequeue_by_priority_then_order(self, state: SessionState):
        """Lower priority number first, ties in discovery order."""
        await state.register_discovery("https://example.com/b", priority=2)
        await state.register_discovery("https://example.com/c", priority=2)
        await state.register_discovery("https://example.com/a", priority=1)

        order = []
        while (page := await state.dequeue()) is not None:
            order.append(page.url)

        assert order == [
            "https://example.com/a",
            "https://example.com/b",
            "https://example.com/c",
        ]

    @pytest.mark.asyncio
    async def test_upgrade_reorders_queue(self, state: SessionState):
        """A priority upgrade moves a queued page forward."""
        await state.register_discovery("https://example.com/b", priority=2)
        await state.register_discovery("https://example.com/c", priority=3)
        await state.register_discovery("https://example.com/c", priority=1)

        page = await state.dequeue()

        assert page.url == "https://example.com/c"

    @pytest.mark.asyncio
    async def test_dequeue_marks_in_progress(self, state: SessionState):
        """Dequeued page is in progress and current."""
        await state.register_discovery("https://example.com")
        page = await state.dequeue()

        assert page.status is PageStatus.IN_PROGRESS
        assert state.snapshot().current_page == page.url_hash

    @pytest.mark.asyncio
    async def test_dequeue_empty_returns_none(self, state: SessionState):
        """Empty queue yields None."""
        assert await state.dequeue() is None

    @pytest.mark.asyncio
    async def test_claim_only_once(self, state: SessionState):
        """A page can be claimed from the queue once."""
        discovery = await state.register_discovery("https://example.com/x")

        assert await state.claim(discovery.url_hash)
        assert not await state.claim(discovery.url_hash)
        assert await state.dequeue() is None


class TestStatus:
    """Tests for status transitions."""

    @pytest.mark.asyncio
    async def test_status_never_regresses(self, state: SessionState):
        """Completed pages stay completed."""
        discovery = await state.register_discovery("https://example.com")
        await state.dequeue()
        await state.mark_completed(discovery.url_hash)
        await state.claim(discovery.url_hash)

        assert state.page(discovery.url_hash).status is PageStatus.COMPLETED
        assert state.all_pages_completed()

    @pytest.mark.asyncio
    async def test_failure_note_keeps_status(self, state: SessionState):
        """Recording a failure does not change status."""
        discovery = await state.register_discovery("https://example.com")
        await state.claim(discovery.url_hash)
        await state.record_failure(discovery.url_hash, "Load failed")

        page = state.page(discovery.url_hash)
        assert page.failure_note == "Load failed"
        assert page.status is PageStatus.IN_PROGRESS
        assert state.unfinished_pages() == [discovery.url_hash]

    @pytest.mark.asyncio
    async def test_unknown_page_raises(self, state: SessionState):
        """Operations on an unknown identity raise ExplorationError."""
        with pytest.raises(ExplorationError):
            await state.mark_completed("nope")


class TestSteps:
    """Tests for step reservation and recording."""

    @pytest.mark.asyncio
    async def test_reserve_is_monotonic(self, state: SessionState):
        """Concurrent reservations get distinct increasing numbers."""
        steps = await asyncio.gather(*[state.reserve_step() for _ in range(20)])

        assert sorted(steps) == list(range(1, 21))
        assert state.step_counter == 20
        assert state.peek_next_step() == 21

    @pytest.mark.asyncio
    async def test_append_requires_reserved_step(self, state: SessionState):
        """Steps beyond the counter are rejected."""
        discovery = await state.register_discovery("https://example.com")

        with pytest.raises(ExplorationError):
            await state.append_step(discovery.url_hash, _step(1))

    @pytest.mark.asyncio
    async def test_append_requires_increasing_steps(self, state: SessionState):
        """Steps on a page must increase."""
        discovery = await state.register_discovery("https://example.com")
        first = await state.reserve_step()
        second = await state.reserve_step()

        await state.append_step(discovery.url_hash, _step(second))
        with pytest.raises(ExplorationError):
            await state.append_step(discovery.url_hash, _step(first))

        page = state.page(discovery.url_hash)
        assert page.last_step_number == second
        assert len(page.executed_steps) == 1
        assert state.snapshot().metadata.total_actions_executed == 1

    @pytest.mark.asyncio
    async def test_extraction_versions_increase(self, state: SessionState):
        """Each extraction gets the next version."""
        discovery = await state.register_discovery("https://example.com")

        first = await state.append_extraction(discovery.url_hash, {"a": 1}, "# one", 1)
        second = await state.append_extraction(discovery.url_hash, {"b": 2}, "# two", 2)

        assert (first.version, second.version) == (1, 2)
        assert state.page(discovery.url_hash).current_extraction_version == 2


class TestSnapshots:
    """Tests for snapshot isolation and session end."""

    @pytest.mark.asyncio
    async def test_snapshot_is_isolated(self, state: SessionState):
        """Mutating a snapshot does not touch the session."""
        await state.register_discovery("https://example.com")
        snapshot = state.snapshot()
        snapshot.pages.clear()

        assert state.page_count == 1

    @pytest.mark.asyncio
    async def test_user_inputs_stored(self, state: SessionState):
        """Stored inputs are readable by key."""
        await state.store_user_input("password", "hunter2", InputType.PASSWORD)

        assert state.user_input_keys() == {"password"}
        assert state.user_input_value("password") == "hunter2"
        assert state.user_input_value("missing") is None

    @pytest.mark.asyncio
    async def test_finish_closes_session(self, state: SessionState):
        """finish() marks the session completed with an end time."""
        session = await state.finish()

        assert session.metadata.phase is SessionPhase.COMPLETED
        assert session.metadata.end_time is not None
