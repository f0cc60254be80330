"""
Scripted decision client.

Replays a fixed list of decisions, either as one global sequence or per
page URL. Used for dry runs from a YAML replay file and in tests.
"""

from pathlib import Path
from typing import Any

import yaml

from site_explorer.core.exceptions import ConfigurationError
from site_explorer.decision.base import DecisionClient
from site_explorer.decision.models import DecisionRequest, DecisionResponse
from site_explorer.session.models import ToolName
from site_explorer.session.urls import normalize_url
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)

ScriptEntry = DecisionResponse | dict[str, Any] | None


def _coerce(entry: ScriptEntry) -> DecisionResponse | None:
    if entry is None or isinstance(entry, DecisionResponse):
        return entry
    return DecisionResponse.model_validate(entry)


class ScriptedDecisionClient(DecisionClient):
    """
    Decision client that plays back prepared decisions.

    A None entry simulates a failed decision. When a sequence runs out the
    client returns None, which ends the page.

    Args:
        decisions: Global sequence consumed in order across all pages
        by_url: Per-page sequences keyed by URL; take precedence over decisions
        objective_results: Answers for evaluate_objective, consumed in order
            (False once exhausted)

    Example:
        >>> client = ScriptedDecisionClient([
        ...     {"tool_to_use": "page_act", "tool_parameters": {"instruction": "click Contact link"}},
        ... ])
    """

    name = "scripted"

    def __init__(
        self,
        decisions: list[ScriptEntry] | None = None,
        by_url: dict[str, list[ScriptEntry]] | None = None,
        objective_results: list[bool] | None = None,
    ) -> None:
        self._decisions = [_coerce(d) for d in decisions or []]
        self._by_url = {
            normalize_url(url): [_coerce(d) for d in entries]
            for url, entries in (by_url or {}).items()
        }
        self._objective_results = list(objective_results or [])
        self.requests: list[DecisionRequest] = []
        self.objective_checks: list[tuple[ToolName, str]] = []

    @classmethod
    def from_yaml(cls, path: Path | str) -> "ScriptedDecisionClient":
        """
        Load a replay file.

        The file is either a list of decisions or a mapping with any of the
        keys "decisions", "pages" (URL -> list), and "objective_results".

        Raises:
            ConfigurationError: If the file cannot be read or has the wrong shape
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot read replay file: {e}", details={"path": str(path)}) from e

        try:
            if isinstance(content, list):
                return cls(decisions=content)
            if isinstance(content, dict):
                return cls(
                    decisions=content.get("decisions"),
                    by_url=content.get("pages"),
                    objective_results=content.get("objective_results"),
                )
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid decision in replay file: {e}", details={"path": str(path)}) from e

        raise ConfigurationError(
            "Replay file must contain a list or mapping", details={"path": str(path)})

    @property
    def remaining(self) -> int:
        return len(self._decisions) + sum(len(v) for v in self._by_url.values())

    async def decide_next_action(self, request: DecisionRequest) -> DecisionResponse | None:
        self.requests.append(request)
        page_script = self._by_url.get(normalize_url(request.url))
        script = page_script if page_script is not None else self._decisions
        if not script:
            logger.debug(f"No scripted decision left for {request.url}")
            return None
        return script.pop(0)

    async def evaluate_objective(
        self,
        objective: str,
        url: str,
        tool: ToolName,
        outcome: str,
        screenshot: bytes | None = None,
    ) -> bool:
        self.objective_checks.append((tool, outcome))
        if not self._objective_results:
            return False
        return self._objective_results.pop(0)
