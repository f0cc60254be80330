"""
Data model for one exploration run.

Records are plain dataclasses with to_dict()/from_dict() so they can be
written as JSON documents and reloaded. Records that must never change
after they are appended (steps, extraction versions, action history
entries) are frozen.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class PageStatus(str, Enum):
    """Processing status of a page. Only ever moves forward."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    PageStatus.QUEUED: 0,
    PageStatus.IN_PROGRESS: 1,
    PageStatus.COMPLETED: 2,
}


class ToolName(str, Enum):
    """Tools a decision may choose."""

    PAGE_ACT = "page_act"
    PAGE_EXTRACT = "page_extract"
    USER_INPUT = "user_input"
    STANDBY = "standby"

    @property
    def counts_toward_budget(self) -> bool:
        return self is not ToolName.STANDBY


class FlowType(str, Enum):
    """Kinds of sensitive multi-step interaction."""

    LOGIN = "login"
    SIGNUP = "signup"
    VERIFICATION = "verification"
    CHECKOUT = "checkout"
    FORM_SUBMISSION = "form_submission"


class ScreenshotType(str, Enum):
    INITIAL = "initial"
    AFTER_ACT = "after_act"
    BEFORE_STANDBY = "before_standby"
    AFTER_STANDBY = "after_standby"


class SessionPhase(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class InputType(str, Enum):
    """Kinds of value a human can be asked for."""

    TEXT = "text"
    EMAIL = "email"
    PASSWORD = "password"
    URL = "url"
    OTP = "otp"
    PHONE = "phone"
    BOOLEAN = "boolean"

    @property
    def is_secret(self) -> bool:
        return self in (InputType.PASSWORD, InputType.OTP)


@dataclass(frozen=True)
class ExecutedStep:
    """One executed tool call on a page."""

    step: int
    tool_used: ToolName
    instruction: str
    success: bool
    timestamp: str = field(default_factory=utc_now_iso)
    result: str | None = None
    url_changed: bool | None = None
    new_url: str | None = None
    new_urls_discovered: tuple[str, ...] = ()
    objective_achieved: bool | None = None
    input_keys: tuple[str, ...] = ()
    input_values: dict[str, str] = field(default_factory=dict)
    wait_time: float | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "step": self.step,
            "timestamp": self.timestamp,
            "tool_used": self.tool_used.value,
            "instruction": self.instruction,
            "success": self.success,
        }
        optional = {
            "result": self.result,
            "url_changed": self.url_changed,
            "new_url": self.new_url,
            "new_urls_discovered": list(self.new_urls_discovered) or None,
            "objective_achieved": self.objective_achieved,
            "input_keys": list(self.input_keys) or None,
            "input_values": dict(self.input_values) or None,
            "wait_time": self.wait_time,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutedStep":
        return cls(
            step=data["step"],
            timestamp=data.get("timestamp") or utc_now_iso(),
            tool_used=ToolName(data["tool_used"]),
            instruction=data.get("instruction", ""),
            success=data.get("success", False),
            result=data.get("result"),
            url_changed=data.get("url_changed"),
            new_url=data.get("new_url"),
            new_urls_discovered=tuple(data.get("new_urls_discovered") or ()),
            objective_achieved=data.get("objective_achieved"),
            input_keys=tuple(data.get("input_keys") or ()),
            input_values=dict(data.get("input_values") or {}),
            wait_time=data.get("wait_time"),
        )


@dataclass(frozen=True)
class ExtractionResult:
    """One immutable extraction pass over a page."""

    version: int
    raw_data: Any
    formatted_markdown: str
    step_number: int
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "raw_data": self.raw_data,
            "formatted_markdown": self.formatted_markdown,
            "step_number": self.step_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractionResult":
        return cls(
            version=data["version"],
            timestamp=data.get("timestamp") or utc_now_iso(),
            raw_data=data.get("raw_data"),
            formatted_markdown=data.get("formatted_markdown", ""),
            step_number=data.get("step_number", 0),
        )


@dataclass
class PageScreenshot:
    """
    Screenshot taken on a page.

    Image bytes stay in memory for the decision service and the graph
    builder; only the file path is persisted.
    """

    step_number: int
    type: ScreenshotType
    data: bytes = field(default=b"", repr=False)
    file_path: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "step_number": self.step_number,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "file_path": self.file_path,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PageScreenshot":
        return cls(
            step_number=data.get("step_number", 0),
            timestamp=data.get("timestamp") or utc_now_iso(),
            type=ScreenshotType(data.get("type", ScreenshotType.INITIAL.value)),
            file_path=data.get("file_path"),
        )


@dataclass
class PageData:
    """Everything recorded about one page identity."""

    url_hash: str
    url: str
    priority: int
    discovery_order: int
    discovered: str = field(default_factory=utc_now_iso)
    status: PageStatus = PageStatus.QUEUED
    source_url: str | None = None
    executed_steps: list[ExecutedStep] = field(default_factory=list)
    objective_achieved: bool = False
    extraction_results: list[ExtractionResult] = field(default_factory=list)
    screenshots: list[PageScreenshot] = field(default_factory=list)
    current_extraction_version: int = 0
    last_step_number: int | None = None
    failure_note: str | None = None

    @property
    def latest_screenshot(self) -> PageScreenshot | None:
        return self.screenshots[-1] if self.screenshots else None

    def to_dict(self) -> dict:
        return {
            "url_hash": self.url_hash,
            "url": self.url,
            "discovered": self.discovered,
            "status": self.status.value,
            "priority": self.priority,
            "discovery_order": self.discovery_order,
            "source_url": self.source_url,
            "executed_steps": [s.to_dict() for s in self.executed_steps],
            "objective_achieved": self.objective_achieved,
            "extraction_results": [e.to_dict() for e in self.extraction_results],
            "screenshots": [s.to_dict() for s in self.screenshots],
            "current_extraction_version": self.current_extraction_version,
            "last_step_number": self.last_step_number,
            "failure_note": self.failure_note,
        }

    def summary_dict(self) -> dict:
        """Compact view sent to the decision service."""
        return {
            "url": self.url,
            "status": self.status.value,
            "priority": self.priority,
            "steps": len(self.executed_steps),
            "objective_achieved": self.objective_achieved,
            "extraction_versions": self.current_extraction_version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PageData":
        return cls(
            url_hash=data["url_hash"],
            url=data["url"],
            discovered=data.get("discovered") or utc_now_iso(),
            status=PageStatus(data.get("status", PageStatus.QUEUED.value)),
            priority=data.get("priority", 2),
            discovery_order=data.get("discovery_order", 0),
            source_url=data.get("source_url"),
            executed_steps=[ExecutedStep.from_dict(s) for s in data.get("executed_steps", [])],
            objective_achieved=data.get("objective_achieved", False),
            extraction_results=[
                ExtractionResult.from_dict(e) for e in data.get("extraction_results", [])
            ],
            screenshots=[PageScreenshot.from_dict(s) for s in data.get("screenshots", [])],
            current_extraction_version=data.get("current_extraction_version", 0),
            last_step_number=data.get("last_step_number"),
            failure_note=data.get("failure_note"),
        )


@dataclass
class FlowContext:
    """Whether the agent is inside a sensitive multi-step interaction."""

    is_in_sensitive_flow: bool = False
    flow_type: FlowType | None = None
    start_url: str | None = None
    flow_start_step: int | None = None

    def to_dict(self) -> dict:
        return {
            "is_in_sensitive_flow": self.is_in_sensitive_flow,
            "flow_type": self.flow_type.value if self.flow_type else None,
            "start_url": self.start_url,
            "flow_start_step": self.flow_start_step,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FlowContext":
        flow_type = data.get("flow_type")
        return cls(
            is_in_sensitive_flow=data.get("is_in_sensitive_flow", False),
            flow_type=FlowType(flow_type) if flow_type else None,
            start_url=data.get("start_url"),
            flow_start_step=data.get("flow_start_step"),
        )


@dataclass(frozen=True)
class ActionHistoryEntry:
    """One act instruction and where it led."""

    instruction: str
    source_url: str
    url_changed: bool
    step_number: int
    success: bool
    target_url: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "instruction": self.instruction,
            "source_url": self.source_url,
            "target_url": self.target_url,
            "url_changed": self.url_changed,
            "step_number": self.step_number,
            "timestamp": self.timestamp,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActionHistoryEntry":
        return cls(
            instruction=data["instruction"],
            source_url=data["source_url"],
            target_url=data.get("target_url"),
            url_changed=data.get("url_changed", False),
            step_number=data.get("step_number", 0),
            timestamp=data.get("timestamp") or utc_now_iso(),
            success=data.get("success", False),
        )


@dataclass
class UserInputData:
    """A value supplied by the human operator."""

    key: str
    value: str
    type: InputType = InputType.TEXT
    timestamp: str = field(default_factory=utc_now_iso)
    sensitive: bool = False

    @property
    def is_secret(self) -> bool:
        return self.sensitive or self.type.is_secret

    def to_dict(self, mask_secret: bool = False) -> dict:
        value = "********" if mask_secret and self.is_secret else self.value
        return {
            "key": self.key,
            "value": value,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "sensitive": self.sensitive,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserInputData":
        return cls(
            key=data["key"],
            value=data.get("value", ""),
            type=InputType(data.get("type", InputType.TEXT.value)),
            timestamp=data.get("timestamp") or utc_now_iso(),
            sensitive=data.get("sensitive", False),
        )


@dataclass
class SessionMetadata:
    session_id: str
    objective: str
    start_url: str
    start_time: str = field(default_factory=utc_now_iso)
    end_time: str | None = None
    total_pages_discovered: int = 0
    total_actions_executed: int = 0
    objective_achieved: bool = False
    phase: SessionPhase = SessionPhase.ACTIVE
    is_exploratory: bool = False

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "objective": self.objective,
            "start_url": self.start_url,
            "total_pages_discovered": self.total_pages_discovered,
            "total_actions_executed": self.total_actions_executed,
            "objective_achieved": self.objective_achieved,
            "phase": self.phase.value,
            "is_exploratory": self.is_exploratory,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionMetadata":
        return cls(
            session_id=data["session_id"],
            objective=data.get("objective", ""),
            start_url=data.get("start_url", ""),
            start_time=data.get("start_time") or utc_now_iso(),
            end_time=data.get("end_time"),
            total_pages_discovered=data.get("total_pages_discovered", 0),
            total_actions_executed=data.get("total_actions_executed", 0),
            objective_achieved=data.get("objective_achieved", False),
            phase=SessionPhase(data.get("phase", SessionPhase.ACTIVE.value)),
            is_exploratory=data.get("is_exploratory", False),
        )


@dataclass
class ExplorationSession:
    """
    The durable record of one exploration run.

    Only SessionState mutates an ExplorationSession; everyone else works
    on deep-copied snapshots.
    """

    metadata: SessionMetadata
    pages: dict[str, PageData] = field(default_factory=dict)
    page_queue: list[str] = field(default_factory=list)
    current_page: str | None = None
    global_step_counter: int = 0
    user_inputs: dict[str, UserInputData] = field(default_factory=dict)
    flow_context: FlowContext = field(default_factory=FlowContext)
    action_history: list[ActionHistoryEntry] = field(default_factory=list)
    next_discovery_order: int = 0

    def to_dict(self, mask_secrets: bool = True) -> dict:
        return {
            "metadata": self.metadata.to_dict(),
            "pages": {h: p.to_dict() for h, p in self.pages.items()},
            "page_queue": list(self.page_queue),
            "current_page": self.current_page,
            "global_step_counter": self.global_step_counter,
            "user_inputs": {
                k: v.to_dict(mask_secret=mask_secrets) for k, v in self.user_inputs.items()
            },
            "flow_context": self.flow_context.to_dict(),
            "action_history": [a.to_dict() for a in self.action_history],
            "next_discovery_order": self.next_discovery_order,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExplorationSession":
        return cls(
            metadata=SessionMetadata.from_dict(data["metadata"]),
            pages={h: PageData.from_dict(p) for h, p in data.get("pages", {}).items()},
            page_queue=list(data.get("page_queue", [])),
            current_page=data.get("current_page"),
            global_step_counter=data.get("global_step_counter", 0),
            user_inputs={
                k: UserInputData.from_dict(v) for k, v in data.get("user_inputs", {}).items()
            },
            flow_context=FlowContext.from_dict(data.get("flow_context", {})),
            action_history=[
                ActionHistoryEntry.from_dict(a) for a in data.get("action_history", [])
            ],
            next_discovery_order=data.get("next_discovery_order", 0),
        )
