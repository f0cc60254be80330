"""
Extraction summaries.

Each extraction pass on a page is folded into one cumulative markdown
summary. The markdown formatter is deterministic and append-only, so
format([v1]) followed by merge(v2) equals format([v1, v2]).
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Sequence

from site_explorer.decision.base import DecisionClient
from site_explorer.session.models import ExtractionResult
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)


class ExtractionFormatter(ABC):
    @abstractmethod
    async def format(self, url: str, extractions: Sequence[ExtractionResult]) -> str:
        """Summarize all passes from scratch."""

    @abstractmethod
    async def merge(self, url: str, summary: str, extraction: ExtractionResult) -> str:
        """Fold one more pass into an existing summary."""


def _render_value(value: Any) -> str:
    if isinstance(value, dict):
        parts = []
        title = value.get("title")
        if title:
            parts.append(f"**Title:** {title}")
        headings = value.get("headings") or []
        if headings:
            parts.append("**Headings:**\n" + "\n".join(f"- {h}" for h in headings))
        text = value.get("text")
        if text:
            parts.append(str(text))
        links = value.get("links") or []
        if links:
            parts.append("**Links:**\n" + "\n".join(
                f"- [{link.get('text') or link.get('href')}]({link.get('href')})"
                if isinstance(link, dict) else f"- {link}"
                for link in links
            ))
        rest = {
            k: v for k, v in value.items()
            if k not in ("title", "headings", "text", "links")
        }
        if rest:
            parts.append(
                "```json\n" + json.dumps(rest, indent=2, sort_keys=True, default=str) + "\n```"
            )
        return "\n\n".join(parts)
    if isinstance(value, str):
        return value
    return "```json\n" + json.dumps(value, indent=2, sort_keys=True, default=str) + "\n```"


class MarkdownExtractionFormatter(ExtractionFormatter):
    """Deterministic markdown summary, one section per extraction version."""

    def header(self, url: str) -> str:
        return f"# Extracted content: {url}\n"

    def section(self, extraction: ExtractionResult) -> str:
        body = _render_value(extraction.raw_data) or "_No content extracted._"
        return f"\n## Extraction v{extraction.version} (step {extraction.step_number})\n\n{body}\n"

    async def format(self, url: str, extractions: Sequence[ExtractionResult]) -> str:
        ordered = sorted(extractions, key=lambda e: e.version)
        return self.header(url) + "".join(self.section(e) for e in ordered)

    async def merge(self, url: str, summary: str, extraction: ExtractionResult) -> str:
        if not summary:
            return await self.format(url, [extraction])
        return summary + self.section(extraction)


class DecisionServiceFormatter(ExtractionFormatter):
    """
    Lets the decision service write the summary, falling back to the
    markdown formatter whenever it declines or fails.
    """

    def __init__(
        self,
        client: DecisionClient,
        fallback: ExtractionFormatter | None = None,
    ) -> None:
        self._client = client
        self._fallback = fallback or MarkdownExtractionFormatter()

    async def format(self, url: str, extractions: Sequence[ExtractionResult]) -> str:
        summary = await self._ask(url, list(extractions), None)
        return summary if summary else await self._fallback.format(url, extractions)

    async def merge(self, url: str, summary: str, extraction: ExtractionResult) -> str:
        merged = await self._ask(url, [extraction], summary or None)
        return merged if merged else await self._fallback.merge(url, summary, extraction)

    async def _ask(
        self,
        url: str,
        extractions: list[ExtractionResult],
        previous: str | None,
    ) -> str | None:
        try:
            return await self._client.format_extractions(url, extractions, previous)
        except Exception as e:
            logger.warning(f"Extraction formatting via {self._client.name} failed: {e}")
            return None
