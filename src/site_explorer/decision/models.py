"""
Decision request/response models.

The decision service answers with JSON in the camelCase shape the
prompts describe; DecisionResponse validates it and exposes snake_case
attributes.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from site_explorer.core.exceptions import DecisionParseError
from site_explorer.session.models import ExplorationSession, FlowType, InputType, ToolName
from site_explorer.transport.input import InputRequest

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class ToolParameters(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    instruction: str = ""
    input_key: str | None = Field(default=None, alias="inputKey")
    input_type: InputType | None = Field(default=None, alias="inputType")
    input_prompt: str | None = Field(default=None, alias="inputPrompt")
    sensitive: bool = False
    inputs: list[InputRequest] = Field(default_factory=list)
    wait_time_seconds: float | None = Field(default=None, alias="waitTimeSeconds", ge=0)

    def input_requests(self) -> list[InputRequest]:
        """All requested inputs, folding the single-input fields into the list form."""
        requests = list(self.inputs)
        if self.input_key and all(r.input_key != self.input_key for r in requests):
            requests.insert(0, InputRequest(
                input_key=self.input_key,
                input_type=self.input_type or InputType.TEXT,
                input_prompt=self.input_prompt or self.instruction,
                sensitive=self.sensitive,
            ))
        return requests


class DecisionResponse(BaseModel):
    """The next tool to run and why."""

    model_config = ConfigDict(populate_by_name=True)

    reasoning: str = ""
    tool_to_use: ToolName
    tool_parameters: ToolParameters = Field(default_factory=ToolParameters)
    next_plan: str = ""
    is_current_page_execution_completed: bool = Field(
        default=False, alias="isCurrentPageExecutionCompleted")
    is_in_sensitive_flow: bool | None = Field(default=None, alias="isInSensitiveFlow")
    flow_type: FlowType | None = Field(default=None, alias="flowType")

    @field_validator("flow_type", mode="before")
    @classmethod
    def unknown_flow_type_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and v not in {f.value for f in FlowType}:
            return None
        return v

    @property
    def instruction(self) -> str:
        return self.tool_parameters.instruction

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ObjectiveCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    objective_achieved: bool = Field(default=False, alias="objectiveAchieved")
    reasoning: str = ""


def clean_json_text(text: str) -> str:
    """Strip control characters and markdown code fences around a JSON body."""
    cleaned = _CONTROL_RE.sub("", text).strip()
    cleaned = _FENCE_RE.sub("", cleaned).strip()
    if not cleaned.startswith("{"):
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start != -1 and end > start:
            cleaned = cleaned[start:end + 1]
    return cleaned


def parse_decision(text: str) -> DecisionResponse:
    """
    Parse a decision service reply.

    Raises:
        DecisionParseError: If the reply is not JSON or not a valid decision
    """
    cleaned = clean_json_text(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise DecisionParseError(f"Decision is not valid JSON: {e}", raw_response=text) from e
    try:
        return DecisionResponse.model_validate(payload)
    except ValidationError as e:
        raise DecisionParseError(
            f"Decision failed validation ({e.error_count()} errors)", raw_response=text) from e


def parse_objective_check(text: str) -> ObjectiveCheck:
    cleaned = clean_json_text(text)
    try:
        return ObjectiveCheck.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as e:
        raise DecisionParseError(f"Objective check is invalid: {e}", raw_response=text) from e


@dataclass
class DecisionRequest:
    """Everything the decision service sees for one step."""

    screenshot: bytes
    url: str
    url_hash: str
    objective: str
    step_number: int
    conversation_history: list[dict[str, str]]
    page_queue: list[str]
    pages: dict[str, dict]
    is_exploratory: bool
    max_pages_reached: bool
    user_inputs: dict[str, dict]
    flow_context: dict
    action_history: list[dict]
    remaining_steps: int | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: ExplorationSession,
        url_hash: str,
        screenshot: bytes,
        conversation_history: list[dict[str, str]],
        max_pages: int,
        remaining_steps: int | None = None,
        current_url: str | None = None,
    ) -> "DecisionRequest":
        """
        Build the request for a page from a session snapshot.

        current_url is where the browser actually is; inside a sensitive
        flow it differs from the page being explored.
        """
        page = snapshot.pages[url_hash]
        return cls(
            screenshot=screenshot,
            url=current_url or page.url,
            url_hash=url_hash,
            objective=snapshot.metadata.objective,
            step_number=snapshot.global_step_counter + 1,
            conversation_history=conversation_history,
            page_queue=list(snapshot.page_queue),
            pages={h: p.summary_dict() for h, p in snapshot.pages.items()},
            is_exploratory=snapshot.metadata.is_exploratory,
            max_pages_reached=len(snapshot.pages) >= max_pages,
            user_inputs={
                k: v.to_dict(mask_secret=True) for k, v in snapshot.user_inputs.items()
            },
            flow_context=snapshot.flow_context.to_dict(),
            action_history=[a.to_dict() for a in snapshot.action_history],
            remaining_steps=remaining_steps,
        )
