"""
Typed results of the four tools.

Each result renders itself as the short text the decision service reads
back in its conversation history.
"""

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ActResult:
    success: bool
    description: str
    url_changed: bool = False
    new_url: str | None = None
    queued: bool = False
    suppressed: bool = False
    new_urls_discovered: list[str] = field(default_factory=list)
    screenshot: bytes = field(default=b"", repr=False)
    objective_achieved: bool | None = None

    def to_message(self) -> str:
        data: dict[str, Any] = {
            "tool": "page_act",
            "success": self.success,
            "description": self.description,
            "url_changed": self.url_changed,
        }
        if self.url_changed:
            data["new_url"] = self.new_url
            data["queued"] = self.queued
            if self.suppressed:
                data["note"] = "Inside a sensitive flow; stayed on the new page without queuing it"
            elif not self.queued:
                data["note"] = "Page limit reached; new page not queued; returned to the original page"
            else:
                data["note"] = "New page queued for later; returned to the original page"
        if self.objective_achieved is not None:
            data["objective_achieved"] = self.objective_achieved
        return json.dumps(data)


@dataclass
class ExtractResult:
    success: bool
    version: int | None = None
    data: Any = None
    summary: str = ""
    error: str | None = None
    objective_achieved: bool | None = None

    def to_message(self, max_chars: int = 3000) -> str:
        if not self.success:
            return json.dumps({"tool": "page_extract", "success": False, "error": self.error})
        data: dict[str, Any] = {
            "tool": "page_extract",
            "success": True,
            "version": self.version,
            "summary": self.summary[-max_chars:],
        }
        if self.objective_achieved is not None:
            data["objective_achieved"] = self.objective_achieved
        return json.dumps(data)


@dataclass
class UserInputResult:
    """
    Outcome of asking the human for values.

    inputs_received holds the real values for the executor's caller;
    to_message() masks secret ones before they reach the decision service.
    """

    success: bool
    all_inputs_collected: bool
    inputs_received: dict[str, str] = field(default_factory=dict)
    pending_keys: list[str] = field(default_factory=list)
    skipped: bool = False
    secret_keys: set[str] = field(default_factory=set)
    error: str | None = None

    def masked_inputs(self) -> dict[str, str]:
        return {
            k: ("********" if k in self.secret_keys else v)
            for k, v in self.inputs_received.items()
        }

    def to_message(self) -> str:
        data: dict[str, Any] = {
            "tool": "user_input",
            "success": self.success,
            "all_inputs_collected": self.all_inputs_collected,
            "inputs_received": self.masked_inputs(),
        }
        if self.pending_keys:
            data["pending_keys"] = self.pending_keys
        if self.skipped:
            data["skipped"] = True
        if self.error:
            data["error"] = self.error
        return json.dumps(data)


@dataclass
class StandbyResult:
    success: bool
    wait_time: float
    before_screenshot: bytes = field(default=b"", repr=False)
    after_screenshot: bytes = field(default=b"", repr=False)
    error: str | None = None

    def to_message(self) -> str:
        data: dict[str, Any] = {
            "tool": "standby",
            "success": self.success,
            "waited_seconds": self.wait_time,
        }
        if self.error:
            data["error"] = self.error
        return json.dumps(data)


ToolResult = ActResult | ExtractResult | UserInputResult | StandbyResult
