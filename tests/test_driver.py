"""
Tests for the automation driver boundary and HTML extraction.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from site_explorer.browser import AutomationDriver, PlaywrightDriver, extract_page_content
from site_explorer.core.exceptions import ActionError, ExtractionError, NavigationError
from tests.conftest import FakeDriver


class TestExtractPageContent:
    """Tests for extract_page_content."""

    def test_title_and_headings(self, sample_html: str):
        data = extract_page_content(sample_html, "https://example.com/", "summarize")

        assert data["title"] == "Test Page Title"
        assert data["headings"] == ["Welcome to Our Website", "Contact Information"]
        assert data["instruction"] == "summarize"
        assert data["url"] == "https://example.com/"

    def test_text_from_main_without_scripts(self, sample_html: str):
        """Text comes from <main> and excludes script bodies."""
        data = extract_page_content(sample_html, "https://example.com/")

        assert "main content of our test page" in data["text"]
        assert "tracking" not in data["text"]
        assert "Test Company" not in data["text"]

    def test_links_absolute_and_deduplicated(self, sample_html: str):
        """Links are resolved, deduplicated, and skip mailto and fragments."""
        data = extract_page_content(sample_html, "https://example.com/")

        assert [link["href"] for link in data["links"]] == [
            "https://example.com/home",
            "https://example.com/products",
        ]
        assert data["links"][0]["text"] == "Home"

    def test_limits(self, sample_html: str):
        data = extract_page_content(sample_html, "https://example.com/", max_text_chars=10, max_links=1)

        assert len(data["text"]) == 10
        assert len(data["links"]) == 1

    def test_body_fallback(self):
        """Pages without <main> use the body text."""
        data = extract_page_content("<html><body><p>Just a body</p></body></html>", "https://example.com/")

        assert data["text"] == "Just a body"
        assert data["title"] is None


class TestDriverProtocol:
    """Tests for the AutomationDriver protocol."""

    def test_fake_driver_satisfies_protocol(self):
        assert isinstance(FakeDriver(), AutomationDriver)

    def test_playwright_driver_satisfies_protocol(self):
        assert isinstance(PlaywrightDriver(MagicMock()), AutomationDriver)


class TestPlaywrightDriver:
    """Tests for PlaywrightDriver against a mocked page."""

    @pytest.fixture
    def page(self) -> MagicMock:
        page = MagicMock()
        page.url = "https://example.com/"
        page.goto = AsyncMock()
        page.content = AsyncMock(return_value="<html><head><title>Home</title></head><body>Hi</body></html>")
        page.keyboard.press = AsyncMock()
        page.wait_for_load_state = AsyncMock()
        return page

    @pytest.mark.asyncio
    async def test_navigate_http_error(self, page: MagicMock):
        """A 4xx/5xx answer raises NavigationError with the status."""
        page.goto.return_value = MagicMock(status=404)

        with pytest.raises(NavigationError) as exc_info:
            await PlaywrightDriver(page).navigate("https://example.com/missing")

        assert exc_info.value.details["status_code"] == 404

    @pytest.mark.asyncio
    async def test_navigate_failure_wrapped(self, page: MagicMock):
        page.goto.side_effect = RuntimeError("net::ERR_NAME_NOT_RESOLVED")

        with pytest.raises(NavigationError):
            await PlaywrightDriver(page).navigate("https://nowhere.invalid/")

    @pytest.mark.asyncio
    async def test_press_key(self, page: MagicMock):
        outcome = await PlaywrightDriver(page).act("Press Enter")

        page.keyboard.press.assert_awaited_once_with("Enter")
        assert outcome.success

    @pytest.mark.asyncio
    async def test_unknown_instruction(self, page: MagicMock):
        with pytest.raises(ActionError):
            await PlaywrightDriver(page).act("ponder the meaning of the page")

    @pytest.mark.asyncio
    async def test_extract(self, page: MagicMock):
        data = await PlaywrightDriver(page).extract("read")

        assert data["title"] == "Home"
        assert data["text"] == "Hi"

    @pytest.mark.asyncio
    async def test_extract_failure(self, page: MagicMock):
        page.content.side_effect = RuntimeError("Target closed")

        with pytest.raises(ExtractionError):
            await PlaywrightDriver(page).extract("read")
