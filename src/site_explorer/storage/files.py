"""
Session persistence as JSON documents on disk.

Layout under the base directory:

    <session_id>/
        session.json
        global_store.json
        decision_history.json
        page_linkages.json
        urls/<url_hash>/page.json
        urls/<url_hash>/screenshots/step_<n>_<type>.png

Every write replaces the whole document through a temporary file, so a
crash never leaves a half-written JSON file behind. Reads fill in
defaults for fields older documents do not have.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from site_explorer.core.exceptions import PersistenceError
from site_explorer.graph.store import GraphStore
from site_explorer.session.models import (
    ActionHistoryEntry,
    ExplorationSession,
    PageData,
    PageScreenshot,
)
from site_explorer.transport.events import ProgressReporter
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)

SESSION_FILE = "session.json"
GLOBAL_STORE_FILE = "global_store.json"
DECISION_HISTORY_FILE = "decision_history.json"
PAGE_LINKAGES_FILE = "page_linkages.json"


def build_page_linkages(action_history: list[ActionHistoryEntry]) -> list[dict[str, Any]]:
    """Source -> target pairs for every act that changed the URL."""
    return [
        {
            "source_url": entry.source_url,
            "target_url": entry.target_url,
            "instruction": entry.instruction,
            "step_number": entry.step_number,
            "timestamp": entry.timestamp,
        }
        for entry in action_history
        if entry.url_changed and entry.target_url
    ]


class SessionStorage:
    """
    Reads and writes session documents.

    All failures are raised as PersistenceError; callers decide whether
    to log and continue.

    Example:
        >>> storage = SessionStorage(Path("exploration_sessions"))
        >>> storage.save_session(session)
        >>> restored = storage.load_session(session.metadata.session_id)
    """

    def __init__(self, base_dir: Path | str, save_screenshots: bool = True) -> None:
        self.base_dir = Path(base_dir)
        self.save_screenshots = save_screenshots

    def session_dir(self, session_id: str) -> Path:
        return self.base_dir / session_id

    def page_dir(self, session_id: str, url_hash: str) -> Path:
        return self.session_dir(session_id) / "urls" / url_hash

    # -------------------------------------------------------------------------
    # Low-level I/O
    # -------------------------------------------------------------------------

    def _write_json(self, path: Path, data: Any) -> Path:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False, default=str)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {path.name}: {e}", path=str(path)) from e
        return path

    def _read_json(self, path: Path) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise PersistenceError(f"{path.name} not found", path=str(path)) from e
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read {path.name}: {e}", path=str(path)) from e

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def save_screenshot(
        self,
        session_id: str,
        url_hash: str,
        screenshot: PageScreenshot,
    ) -> Path | None:
        """Write a screenshot PNG. Returns None when screenshots are disabled."""
        if not self.save_screenshots or not screenshot.data:
            return None
        path = (
            self.page_dir(session_id, url_hash) / "screenshots"
            / f"step_{screenshot.step_number}_{screenshot.type.value}.png"
        )
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(screenshot.data)
        except OSError as e:
            raise PersistenceError(f"Failed to write screenshot: {e}", path=str(path)) from e
        return path

    def save_page(self, session_id: str, page: PageData) -> Path:
        return self._write_json(self.page_dir(session_id, page.url_hash) / "page.json", page.to_dict())

    def save_session(self, session: ExplorationSession, mask_secrets: bool = True) -> Path:
        """Write session.json, one page.json per page, and page_linkages.json."""
        session_id = session.metadata.session_id
        path = self._write_json(
            self.session_dir(session_id) / SESSION_FILE,
            session.to_dict(mask_secrets=mask_secrets),
        )
        for page in session.pages.values():
            self.save_page(session_id, page)
        self._write_json(
            self.session_dir(session_id) / PAGE_LINKAGES_FILE,
            build_page_linkages(session.action_history),
        )
        logger.debug(f"Saved session {session_id} ({len(session.pages)} pages)")
        return path

    def save_global_store(self, session_id: str, store: GraphStore) -> Path:
        return self._write_json(self.session_dir(session_id) / GLOBAL_STORE_FILE, store.to_dict())

    def save_decision_history(
        self,
        session_id: str,
        history: dict[str, list[dict[str, Any]]],
    ) -> Path:
        return self._write_json(self.session_dir(session_id) / DECISION_HISTORY_FILE, history)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def load_session(self, session_id: str) -> ExplorationSession:
        data = self._read_json(self.session_dir(session_id) / SESSION_FILE)
        try:
            return ExplorationSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(
                f"Invalid session document: {e}",
                path=str(self.session_dir(session_id) / SESSION_FILE),
            ) from e

    def load_global_store(
        self,
        session_id: str,
        reporter: ProgressReporter | None = None,
    ) -> GraphStore:
        """Reload a stored global store. A missing file yields an empty store."""
        path = self.session_dir(session_id) / GLOBAL_STORE_FILE
        if not path.exists():
            return GraphStore(reporter)
        data = self._read_json(path)
        try:
            return GraphStore.from_dict(data, reporter)
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Invalid global store: {e}", path=str(path)) from e

    def load_decision_history(self, session_id: str) -> dict[str, list[dict[str, Any]]]:
        path = self.session_dir(session_id) / DECISION_HISTORY_FILE
        if not path.exists():
            return {}
        return self._read_json(path)

    def list_sessions(self) -> list[dict[str, Any]]:
        """Metadata of every stored session, newest first. Unreadable ones are skipped."""
        if not self.base_dir.exists():
            return []
        sessions = []
        for entry in self.base_dir.iterdir():
            if not (entry / SESSION_FILE).is_file():
                continue
            try:
                data = self._read_json(entry / SESSION_FILE)
            except PersistenceError as e:
                logger.warning(f"Skipping unreadable session {entry.name}: {e}")
                continue
            metadata = dict(data.get("metadata") or {})
            metadata.setdefault("session_id", entry.name)
            metadata["page_count"] = len(data.get("pages") or {})
            sessions.append(metadata)
        sessions.sort(key=lambda m: m.get("start_time") or "", reverse=True)
        return sessions
