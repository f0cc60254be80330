"""
Automation driver.

AutomationDriver is the boundary the tool layer talks to. PlaywrightDriver
implements it by mapping short natural-language instructions ("Click the
'About' link", "Type {{email}} into the email field") onto Playwright
locators, and extracts page content with BeautifulSoup.
"""

import re
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.async_api import Locator, Page

from site_explorer.config.settings import BrowserSettings
from site_explorer.core.exceptions import ActionError, ExtractionError, NavigationError
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ActOutcome:
    success: bool
    description: str


@runtime_checkable
class AutomationDriver(Protocol):
    """Browser operations the exploration needs. Implementations raise on failure."""

    async def act(self, instruction: str) -> ActOutcome: ...

    async def extract(self, instruction: str) -> dict[str, Any]: ...

    async def screenshot(self) -> bytes: ...

    async def current_url(self) -> str: ...

    async def navigate(self, url: str) -> None: ...

    async def wait_for_timeout(self, milliseconds: float) -> None: ...


_QUOTED = r"['\"‘’“”]"
_ARTICLE = r"(?:the\s+)?"
_ELEMENT_WORDS = r"(?:\s+(?:link|button|tab|menu item|item|option|icon|field|input|box|checkbox))?"

_NAVIGATE_RE = re.compile(r"^(?:navigate|go)\s+to\s+(?P<url>\S+)$", re.I)
_BACK_RE = re.compile(r"^(?:go|navigate)\s+back$", re.I)
_CLICK_RE = re.compile(rf"^(?P<verb>double[\s-]?click|click|tap|hover(?:\s+over)?|check|uncheck)\s+(?:on\s+)?{_ARTICLE}(?P<target>.+?){_ELEMENT_WORDS}$", re.I)
_FILL_RE = re.compile(
    rf"{_QUOTED}?(?P<text>[^'\"‘’“”]+?){_QUOTED}?\s+into\s+{_ARTICLE}(?P<field>.+?)"
    rf"(?:\s+(?:field|input|box|textbox))?(?=\s+and\s+|$)",
    re.I,
)
_SELECT_RE = re.compile(rf"^select\s+{_QUOTED}?(?P<option>.+?){_QUOTED}?\s+(?:in|from)\s+{_ARTICLE}(?P<field>.+?)(?:\s+(?:dropdown|menu|field|select))?$", re.I)
_PRESS_RE = re.compile(r"^press\s+(?:the\s+)?(?P<key>[\w+]+)(?:\s+key)?$", re.I)
_SCROLL_RE = re.compile(r"^scroll\s+(?:(?P<direction>down|up)|to\s+(?:the\s+)?(?P<edge>bottom|top)|to\s+(?P<target>.+?))(?:\s+of the page)?$", re.I)


def _strip_quotes(value: str) -> str:
    return re.sub(rf"^{_QUOTED}|{_QUOTED}$", "", value.strip()).strip()


class PlaywrightDriver:
    """
    AutomationDriver over one Playwright page.

    Example:
        >>> driver = PlaywrightDriver(manager.page, settings.browser)
        >>> outcome = await driver.act("Click the 'Contact' link")
    """

    def __init__(self, page: Page, settings: BrowserSettings | None = None) -> None:
        self.page = page
        self.settings = settings or BrowserSettings()

    async def act(self, instruction: str) -> ActOutcome:
        """
        Perform one instruction.

        Raises:
            ActionError: If the instruction is not understood or no element matches
        """
        text = instruction.strip().rstrip(".")
        try:
            description = await self._dispatch(text)
        except ActionError:
            raise
        except Exception as e:
            raise ActionError(f"Action failed: {e}", instruction=instruction) from e

        await self._settle()
        return ActOutcome(success=True, description=description)

    async def _dispatch(self, text: str) -> str:
        if match := _NAVIGATE_RE.match(text):
            await self.navigate(match["url"])
            return f"Navigated to {match['url']}"

        if _BACK_RE.match(text):
            await self.page.go_back()
            return "Went back"

        if match := _PRESS_RE.match(text):
            await self.page.keyboard.press(match["key"])
            return f"Pressed {match['key']}"

        if match := _SCROLL_RE.match(text):
            return await self._scroll(match)

        if match := _SELECT_RE.match(text):
            field = await self._resolve_field(_strip_quotes(match["field"]))
            await field.select_option(label=_strip_quotes(match["option"]))
            return f"Selected {match['option']} in {match['field']}"

        if re.match(r"^(?:type|enter|fill|input)\b", text, re.I):
            body = re.sub(r"^(?:type|enter|fill(?:\s+in)?|input)\s+", "", text, flags=re.I)
            fills = list(_FILL_RE.finditer(body))
            if not fills:
                raise ActionError("Could not find 'TEXT into FIELD' in instruction", instruction=text)
            for fill in fills:
                field = await self._resolve_field(_strip_quotes(fill["field"]))
                await field.fill(fill["text"])
            return f"Filled {len(fills)} field(s)"

        if match := _CLICK_RE.match(text):
            verb = match["verb"].lower()
            target = await self._resolve_clickable(_strip_quotes(match["target"]))
            if verb.startswith("double"):
                await target.dblclick()
            elif verb.startswith("hover"):
                await target.hover()
            elif verb == "check":
                await target.check()
            elif verb == "uncheck":
                await target.uncheck()
            else:
                await target.click()
            return f"{match['verb'].capitalize()}ed {match['target']}".replace("eed ", "ed ")

        raise ActionError("Instruction not understood", instruction=text)

    async def _scroll(self, match: re.Match) -> str:
        if match["direction"]:
            delta = self.settings.viewport_height * (1 if match["direction"].lower() == "down" else -1)
            await self.page.mouse.wheel(0, delta)
            return f"Scrolled {match['direction'].lower()}"
        if match["edge"]:
            script = (
                "window.scrollTo(0, document.body.scrollHeight)"
                if match["edge"].lower() == "bottom" else "window.scrollTo(0, 0)"
            )
            await self.page.evaluate(script)
            return f"Scrolled to {match['edge'].lower()}"
        target = await self._resolve_clickable(_strip_quotes(match["target"]))
        await target.scroll_into_view_if_needed()
        return f"Scrolled to {match['target']}"

    async def _first_visible(self, candidates: list[Locator], what: str) -> Locator:
        for locator in candidates:
            count = await locator.count()
            for index in range(min(count, 5)):
                item = locator.nth(index)
                if await item.is_visible():
                    return item
        raise ActionError(f"No visible element matches {what!r}")

    async def _resolve_clickable(self, name: str) -> Locator:
        page = self.page
        pattern = re.compile(re.escape(name), re.I)
        return await self._first_visible(
            [
                page.get_by_role("link", name=pattern),
                page.get_by_role("button", name=pattern),
                page.get_by_role("tab", name=pattern),
                page.get_by_role("menuitem", name=pattern),
                page.get_by_role("checkbox", name=pattern),
                page.get_by_label(pattern),
                page.get_by_text(pattern),
            ],
            name,
        )

    async def _resolve_field(self, name: str) -> Locator:
        page = self.page
        pattern = re.compile(re.escape(name), re.I)
        slug = re.sub(r"[^a-z0-9]+", "", name.lower())
        return await self._first_visible(
            [
                page.get_by_label(pattern),
                page.get_by_placeholder(pattern),
                page.get_by_role("textbox", name=pattern),
                page.get_by_role("combobox", name=pattern),
                page.locator(f"input[name*='{slug}' i], textarea[name*='{slug}' i], select[name*='{slug}' i]"),
                page.locator(f"input[type='{slug}']"),
            ],
            name,
        )

    async def _settle(self) -> None:
        try:
            await self.page.wait_for_load_state(
                "domcontentloaded", timeout=self.settings.settle_timeout_ms or None)
        except Exception:
            # Pages that keep loading are still usable
            logger.debug("Page did not settle before timeout, continuing")

    async def extract(self, instruction: str) -> dict[str, Any]:
        """
        Extract title, headings, visible text, and links from the page.

        Raises:
            ExtractionError: If the page content cannot be read
        """
        try:
            html = await self.page.content()
        except Exception as e:
            raise ExtractionError(f"Could not read page content: {e}", url=self.page.url) from e

        return extract_page_content(html, self.page.url, instruction)

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(full_page=False)

    async def current_url(self) -> str:
        return self.page.url

    async def navigate(self, url: str) -> None:
        """
        Raises:
            NavigationError: If navigation fails or the server answers >= 400
        """
        try:
            response = await self.page.goto(url, wait_until="domcontentloaded")
        except Exception as e:
            raise NavigationError(f"Navigation failed: {e}", url=url) from e
        if response is not None and response.status >= 400:
            raise NavigationError(
                f"HTTP {response.status} error",
                url=url,
                details={"status_code": response.status},
            )

    async def wait_for_timeout(self, milliseconds: float) -> None:
        await self.page.wait_for_timeout(milliseconds)


def extract_page_content(
    html: str,
    base_url: str,
    instruction: str = "",
    max_text_chars: int = 4000,
    max_links: int = 100,
) -> dict[str, Any]:
    """Parse HTML into the structure stored as an extraction's raw data."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style", "noscript", "template", "svg"]):
        tag.decompose()

    title = soup.title.get_text(strip=True) if soup.title else None
    headings = [
        h.get_text(" ", strip=True)
        for h in soup.find_all(["h1", "h2", "h3"])
        if h.get_text(strip=True)
    ]

    root = soup.find("main") or soup.body or soup
    text = " ".join(root.get_text(" ", strip=True).split())[:max_text_chars]

    links: list[dict[str, str]] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("javascript:", "mailto:", "tel:", "#")):
            continue
        absolute = urljoin(base_url, href)
        if absolute in seen:
            continue
        seen.add(absolute)
        links.append({"href": absolute, "text": anchor.get_text(" ", strip=True)[:120]})
        if len(links) >= max_links:
            break

    return {
        "instruction": instruction,
        "url": base_url,
        "title": title,
        "headings": headings,
        "text": text,
        "links": links,
    }
