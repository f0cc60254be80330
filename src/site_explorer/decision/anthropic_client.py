"""
Decision service backed by Anthropic Claude.

Sends the current screenshot plus a rendered text context and expects a
strict JSON decision back. Any API or parse failure is logged and turned
into None, which ends the current page without ending the session.
"""

import base64
import os

from anthropic import APIError, AsyncAnthropic

from site_explorer.config.settings import DecisionSettings
from site_explorer.core.exceptions import ConfigurationError, DecisionParseError
from site_explorer.decision.base import DecisionClient
from site_explorer.decision.models import (
    DecisionRequest,
    DecisionResponse,
    parse_decision,
    parse_objective_check,
)
from site_explorer.decision.prompts import (
    DECISION_SYSTEM_PROMPT,
    OBJECTIVE_CHECK_PROMPT,
    render_decision_prompt,
    render_format_prompt,
)
from site_explorer.session.models import ExtractionResult, ToolName
from site_explorer.utils.logging import get_logger
from site_explorer.utils.metrics import Metrics

logger = get_logger(__name__)


def _image_block(image: bytes) -> dict:
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": "image/png",
            "data": base64.b64encode(image).decode("ascii"),
        },
    }


def _response_text(message) -> str:
    parts = []
    for block in message.content:
        if getattr(block, "type", None) == "text":
            parts.append(getattr(block, "text", ""))
    return "".join(parts)


class AnthropicDecisionClient(DecisionClient):
    """
    Claude-backed decision client.

    Example:
        >>> client = AnthropicDecisionClient.from_settings(settings.decision)
        >>> decision = await client.decide_next_action(request)
    """

    name = "anthropic"

    def __init__(
        self,
        settings: DecisionSettings,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self.settings = settings
        self._client = client

    @classmethod
    def from_settings(cls, settings: DecisionSettings) -> "AnthropicDecisionClient":
        """
        Build a client from settings, reading the API key from the environment.

        Raises:
            ConfigurationError: If the API key environment variable is not set
        """
        api_key = os.getenv(settings.api_key_env_var)
        if not api_key:
            raise ConfigurationError(
                f"Missing API key: set {settings.api_key_env_var}",
                details={"env_var": settings.api_key_env_var},
            )
        client = AsyncAnthropic(
            api_key=api_key,
            timeout=float(settings.timeout_seconds),
            max_retries=settings.max_retries,
        )
        return cls(settings, client)

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            raise ConfigurationError("Anthropic client not configured; use from_settings()")
        return self._client

    async def _complete(self, system: str, content: list[dict], max_tokens: int | None = None) -> str:
        message = await self.client.messages.create(
            model=self.settings.model_name,
            max_tokens=max_tokens or self.settings.max_tokens,
            temperature=self.settings.temperature,
            system=system,
            messages=[{"role": "user", "content": content}],
        )
        return _response_text(message)

    async def decide_next_action(self, request: DecisionRequest) -> DecisionResponse | None:
        content = []
        if request.screenshot:
            content.append(_image_block(request.screenshot))
        content.append({
            "type": "text",
            "text": render_decision_prompt(request, self.settings.history_limit),
        })

        try:
            raw = await self._complete(DECISION_SYSTEM_PROMPT, content)
            decision = parse_decision(raw)
        except APIError as e:
            Metrics.get().increment("decisions_failed")
            logger.error(f"Decision request failed for step {request.step_number}: {e}")
            return None
        except DecisionParseError as e:
            Metrics.get().increment("decisions_failed")
            logger.error(f"Unusable decision for step {request.step_number}: {e}")
            return None

        logger.debug(f"Decision for step {request.step_number}: {decision.tool_to_use.value}")
        return decision

    async def evaluate_objective(
        self,
        objective: str,
        url: str,
        tool: ToolName,
        outcome: str,
        screenshot: bytes | None = None,
    ) -> bool:
        content = []
        if screenshot:
            content.append(_image_block(screenshot))
        content.append({
            "type": "text",
            "text": OBJECTIVE_CHECK_PROMPT.format(
                objective=objective, url=url, tool=tool.value, outcome=outcome),
        })
        try:
            raw = await self._complete("You judge whether a browsing objective is complete.", content, 512)
            return parse_objective_check(raw).objective_achieved
        except (APIError, DecisionParseError) as e:
            logger.warning(f"Objective check failed, assuming not achieved: {e}")
            return False

    async def format_extractions(
        self,
        url: str,
        extractions: list[ExtractionResult],
        previous_summary: str | None = None,
    ) -> str | None:
        prompt = render_format_prompt(url, extractions, previous_summary)
        try:
            text = await self._complete(
                "You write concise markdown summaries of extracted web content.",
                [{"type": "text", "text": prompt}],
            )
        except APIError as e:
            logger.warning(f"Extraction formatting request failed: {e}")
            return None
        return text.strip() or None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
