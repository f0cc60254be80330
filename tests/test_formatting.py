"""
Tests for extraction summary formatting.
"""

import pytest

from site_explorer.decision import (
    DecisionClient,
    DecisionServiceFormatter,
    MarkdownExtractionFormatter,
)
from site_explorer.session import ExtractionResult

URL = "https://example.com/contact"


def _extraction(version: int, raw) -> ExtractionResult:
    return ExtractionResult(version=version, raw_data=raw, formatted_markdown="", step_number=version + 2)


class _FormattingClient(DecisionClient):
    """Decision client whose formatting answer is fixed."""

    name = "formatting-stub"

    def __init__(self, answer=None, error: Exception | None = None) -> None:
        self.answer = answer
        self.error = error
        self.calls = []

    async def decide_next_action(self, request):
        return None

    async def format_extractions(self, url, extractions, previous_summary=None):
        self.calls.append((url, [e.version for e in extractions], previous_summary))
        if self.error:
            raise self.error
        return self.answer


class TestMarkdownFormatter:
    """Tests for the deterministic markdown formatter."""

    @pytest.mark.asyncio
    async def test_format_renders_structured_fields(self):
        """Title, headings, text, and links are rendered as markdown."""
        formatter = MarkdownExtractionFormatter()
        raw = {
            "title": "Contact",
            "headings": ["Reach us"],
            "text": "Email: contact@example.com",
            "links": [{"href": "https://example.com/", "text": "Home"}],
            "phone": "555-0123",
        }

        summary = await formatter.format(URL, [_extraction(1, raw)])

        assert summary.startswith(f"# Extracted content: {URL}")
        assert "## Extraction v1 (step 3)" in summary
        assert "**Title:** Contact" in summary
        assert "- Reach us" in summary
        assert "- [Home](https://example.com/)" in summary
        assert '"phone": "555-0123"' in summary

    @pytest.mark.asyncio
    async def test_merge_matches_format(self):
        """Merging passes one at a time equals formatting them together."""
        formatter = MarkdownExtractionFormatter()
        first = _extraction(1, {"title": "Contact", "text": "First pass"})
        second = _extraction(2, ["a", "b"])

        incremental = await formatter.merge(URL, await formatter.format(URL, [first]), second)
        together = await formatter.format(URL, [first, second])

        assert incremental == together

    @pytest.mark.asyncio
    async def test_merge_into_empty_summary(self):
        """Merging into nothing formats from scratch."""
        formatter = MarkdownExtractionFormatter()
        extraction = _extraction(1, "plain text")

        assert await formatter.merge(URL, "", extraction) == await formatter.format(URL, [extraction])

    @pytest.mark.asyncio
    async def test_empty_extraction(self):
        """An empty pass still produces a section."""
        summary = await MarkdownExtractionFormatter().format(URL, [_extraction(1, {})])

        assert "_No content extracted._" in summary


class TestDecisionServiceFormatter:
    """Tests for formatting through the decision service."""

    @pytest.mark.asyncio
    async def test_uses_service_answer(self):
        """The service's summary is used when it answers."""
        client = _FormattingClient(answer="# Summary by service")
        formatter = DecisionServiceFormatter(client)

        summary = await formatter.merge(URL, "# Old", _extraction(2, {"text": "new"}))

        assert summary == "# Summary by service"
        assert client.calls == [(URL, [2], "# Old")]

    @pytest.mark.asyncio
    async def test_falls_back_when_declined(self):
        """A None answer falls back to markdown."""
        formatter = DecisionServiceFormatter(_FormattingClient(answer=None))
        extraction = _extraction(1, {"text": "hello"})

        summary = await formatter.format(URL, [extraction])

        assert summary == await MarkdownExtractionFormatter().format(URL, [extraction])

    @pytest.mark.asyncio
    async def test_falls_back_on_error(self):
        """A failing service falls back to markdown."""
        formatter = DecisionServiceFormatter(_FormattingClient(error=RuntimeError("boom")))
        extraction = _extraction(2, {"text": "hello"})

        summary = await formatter.merge(URL, "# Previous\n", extraction)

        assert summary.startswith("# Previous\n")
        assert "## Extraction v2" in summary
