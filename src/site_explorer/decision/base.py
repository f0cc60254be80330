"""
Decision service contract.

One interface, one subclass per reasoning backend. Backends hold no
shared mutable state with each other.
"""

from abc import ABC, abstractmethod

from site_explorer.decision.models import DecisionRequest, DecisionResponse
from site_explorer.session.models import ExtractionResult, ToolName


class DecisionClient(ABC):
    """Chooses the next tool for a page and judges objective progress."""

    name = "base"

    @abstractmethod
    async def decide_next_action(self, request: DecisionRequest) -> DecisionResponse | None:
        """
        Return the next decision, or None when the service failed or replied
        with something that is not a valid decision.
        """

    async def evaluate_objective(
        self,
        objective: str,
        url: str,
        tool: ToolName,
        outcome: str,
        screenshot: bytes | None = None,
    ) -> bool:
        """Judge whether a task objective is achieved after a tool ran."""
        return False

    async def format_extractions(
        self,
        url: str,
        extractions: list[ExtractionResult],
        previous_summary: str | None = None,
    ) -> str | None:
        """Summarize extraction passes, or None if this backend does not format."""
        return None

    async def close(self) -> None:
        """Release backend resources."""
