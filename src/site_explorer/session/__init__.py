"""
Session state for the Site Explorer.

Provides:
- The exploration data model
- URL canonicalization and page identity
- The serialized session state owner
- Sensitive flow tracking
"""

from site_explorer.session.models import (
    ActionHistoryEntry,
    ExecutedStep,
    ExplorationSession,
    ExtractionResult,
    FlowContext,
    FlowType,
    InputType,
    PageData,
    PageScreenshot,
    PageStatus,
    ScreenshotType,
    SessionMetadata,
    SessionPhase,
    ToolName,
    UserInputData,
    utc_now_iso,
)
from site_explorer.session.urls import normalize_url, url_hash, is_same_page
from site_explorer.session.state import Discovery, SessionState, make_session_id
from site_explorer.session.flow import FlowTracker, FlowTransition

__all__ = [
    "ActionHistoryEntry",
    "ExecutedStep",
    "ExplorationSession",
    "ExtractionResult",
    "FlowContext",
    "FlowType",
    "InputType",
    "PageData",
    "PageScreenshot",
    "PageStatus",
    "ScreenshotType",
    "SessionMetadata",
    "SessionPhase",
    "ToolName",
    "UserInputData",
    "utc_now_iso",
    "normalize_url",
    "url_hash",
    "is_same_page",
    "Discovery",
    "SessionState",
    "make_session_id",
    "FlowTracker",
    "FlowTransition",
]
