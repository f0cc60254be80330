"""
Tests for session persistence.
"""

import json
from pathlib import Path

import pytest

from site_explorer.core.exceptions import PersistenceError
from site_explorer.graph import ActionEntry, GraphStore, PageStore
from site_explorer.session import (
    ActionHistoryEntry,
    ExecutedStep,
    InputType,
    PageScreenshot,
    ScreenshotType,
    SessionState,
    ToolName,
)
from site_explorer.storage import SessionStorage, build_page_linkages


async def _populated_state() -> SessionState:
    state = SessionState.start("find the contact page", "https://example.com")
    discovery = await state.register_discovery("https://example.com", priority=1)
    await state.register_discovery("https://example.com/contact", source_url="https://example.com/")
    step = await state.reserve_step()
    await state.append_step(discovery.url_hash, ExecutedStep(
        step=step, tool_used=ToolName.PAGE_ACT, instruction="click Contact link", success=True,
        url_changed=True, new_url="https://example.com/contact",
        new_urls_discovered=("https://example.com/contact",),
    ))
    await state.append_extraction(discovery.url_hash, {"title": "Example"}, "# Example", step)
    await state.record_action(ActionHistoryEntry(
        instruction="click Contact link",
        source_url="https://example.com/",
        target_url="https://example.com/contact",
        url_changed=True,
        step_number=step,
        success=True,
    ))
    await state.store_user_input("email", "me@example.com", InputType.EMAIL)
    await state.store_user_input("password", "hunter2", InputType.PASSWORD)
    return state


class TestSessionStorage:
    """Tests for SessionStorage."""

    @pytest.mark.asyncio
    async def test_round_trip(self, temp_dir: Path):
        """A saved session loads back with the same records."""
        storage = SessionStorage(temp_dir)
        session = (await _populated_state()).snapshot()

        storage.save_session(session, mask_secrets=False)
        restored = storage.load_session(session.metadata.session_id)

        assert restored.to_dict(mask_secrets=False) == session.to_dict(mask_secrets=False)

    @pytest.mark.asyncio
    async def test_secrets_masked_on_disk(self, temp_dir: Path):
        """Password values are masked by default; plain inputs are not."""
        storage = SessionStorage(temp_dir)
        session = (await _populated_state()).snapshot()

        path = storage.save_session(session)
        data = json.loads(path.read_text())

        assert data["user_inputs"]["password"]["value"] == "********"
        assert data["user_inputs"]["email"]["value"] == "me@example.com"
        assert "hunter2" not in path.read_text()

    @pytest.mark.asyncio
    async def test_sensitive_text_masked(self, temp_dir: Path):
        """Text inputs flagged sensitive are masked like passwords."""
        state = SessionState.start("log in", "https://example.com")
        await state.store_user_input("account_number", "12345678", InputType.TEXT, sensitive=True)

        path = SessionStorage(temp_dir).save_session(state.snapshot())

        assert "12345678" not in path.read_text()
        restored = SessionStorage(temp_dir).load_session(state.session_id)
        assert restored.user_inputs["account_number"].sensitive

    @pytest.mark.asyncio
    async def test_page_documents_and_linkages(self, temp_dir: Path):
        """Each page gets its own document and linkages list navigations."""
        storage = SessionStorage(temp_dir)
        session = (await _populated_state()).snapshot()
        session_id = session.metadata.session_id

        storage.save_session(session)

        for url_hash in session.pages:
            assert (storage.page_dir(session_id, url_hash) / "page.json").is_file()
        linkages = json.loads((storage.session_dir(session_id) / "page_linkages.json").read_text())
        assert linkages == build_page_linkages(session.action_history)
        assert linkages[0]["target_url"] == "https://example.com/contact"

    def test_linkages_skip_in_page_actions(self):
        """Actions that kept the URL are not linkages."""
        history = [ActionHistoryEntry("open menu", "https://example.com/", False, 1, True)]

        assert build_page_linkages(history) == []

    def test_save_screenshot(self, temp_dir: Path):
        """Screenshots go under the page's screenshots folder."""
        storage = SessionStorage(temp_dir)
        shot = PageScreenshot(step_number=4, type=ScreenshotType.AFTER_ACT, data=b"png")

        path = storage.save_screenshot("s1", "h1", shot)

        assert path == temp_dir / "s1" / "urls" / "h1" / "screenshots" / "step_4_after_act.png"
        assert path.read_bytes() == b"png"

    def test_screenshots_disabled(self, temp_dir: Path):
        """Nothing is written when screenshots are turned off."""
        storage = SessionStorage(temp_dir, save_screenshots=False)
        shot = PageScreenshot(step_number=1, type=ScreenshotType.INITIAL, data=b"png")

        assert storage.save_screenshot("s1", "h1", shot) is None

    def test_global_store_round_trip(self, temp_dir: Path):
        """The global store reloads with actions and screenshots."""
        storage = SessionStorage(temp_dir)
        store = GraphStore()
        store.ensure_page("h1", "https://example.com/", b"initial")
        store.add_action("h1", ActionEntry("open menu", 1, image=b"after"))
        store.add_conversation("h1", "assistant", '{"tool_to_use": "page_act"}')

        storage.save_global_store("s1", store)
        restored = storage.load_global_store("s1")

        page = restored.get("h1")
        assert page.initial_screenshot == b"initial"
        assert page.actions[0].image == b"after"
        assert page.conversation_history == store.get("h1").conversation_history

    def test_missing_global_store_is_empty(self, temp_dir: Path):
        """A session without a global store loads an empty one."""
        assert len(SessionStorage(temp_dir).load_global_store("nothing")) == 0

    def test_old_page_store_defaults(self):
        """Stores written without the in-progress flag load as idle."""
        page = PageStore.from_dict({"url": "https://example.com/", "url_hash": "h1"})

        assert page.is_graph_generation_in_progress is False
        assert page.actions == []
        assert page.graph is None

    def test_missing_session_raises(self, temp_dir: Path):
        """Loading an unknown session raises PersistenceError."""
        with pytest.raises(PersistenceError):
            SessionStorage(temp_dir).load_session("nothing")

    def test_corrupt_session_raises(self, temp_dir: Path):
        """Unparseable JSON raises PersistenceError."""
        (temp_dir / "broken").mkdir()
        (temp_dir / "broken" / "session.json").write_text("{not json")

        with pytest.raises(PersistenceError):
            SessionStorage(temp_dir).load_session("broken")

    def test_unwritable_location_raises(self, temp_dir: Path):
        """Write failures surface as PersistenceError."""
        blocker = temp_dir / "blocker"
        blocker.write_text("a file, not a directory")
        storage = SessionStorage(blocker)

        with pytest.raises(PersistenceError):
            storage.save_decision_history("s1", {})

    @pytest.mark.asyncio
    async def test_list_sessions(self, temp_dir: Path):
        """Listing returns metadata with page counts and skips broken sessions."""
        storage = SessionStorage(temp_dir)
        session = (await _populated_state()).snapshot()
        storage.save_session(session)
        (temp_dir / "broken").mkdir()
        (temp_dir / "broken" / "session.json").write_text("{not json")

        listed = storage.list_sessions()

        assert [m["session_id"] for m in listed] == [session.metadata.session_id]
        assert listed[0]["page_count"] == 2

    def test_list_sessions_without_directory(self, temp_dir: Path):
        """A missing base directory lists nothing."""
        assert SessionStorage(temp_dir / "absent").list_sessions() == []

    def test_decision_history_round_trip(self, temp_dir: Path):
        storage = SessionStorage(temp_dir)
        history = {"h1": [{"step_number": 1, "decision": {"tool_to_use": "standby"}}]}

        storage.save_decision_history("s1", history)

        assert storage.load_decision_history("s1") == history
        assert storage.load_decision_history("other") == {}
