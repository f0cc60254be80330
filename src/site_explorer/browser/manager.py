"""
Playwright lifecycle for an exploration session.

One browser, one context, one page: the exploration and its background
tasks share the page and take turns through the page lock.
"""

from contextlib import AsyncExitStack

from playwright.async_api import Page, async_playwright

from site_explorer.config.settings import BrowserSettings
from site_explorer.core.exceptions import BrowserError
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)


class BrowserManager:
    """
    Owns the Playwright driver process, the browser and the exploration page.

    Example:
        >>> async with BrowserManager(settings.browser) as manager:
        ...     driver = PlaywrightDriver(manager.page, settings.browser)
    """

    def __init__(self, settings: BrowserSettings) -> None:
        self.settings = settings
        self._stack: AsyncExitStack | None = None
        self._page: Page | None = None

    def _context_options(self) -> dict:
        options: dict = {
            "viewport": {"width": self.settings.viewport_width, "height": self.settings.viewport_height},
            "ignore_https_errors": self.settings.ignore_https_errors,
        }
        if self.settings.user_agent:
            options["user_agent"] = self.settings.user_agent
        return options

    async def start(self) -> Page:
        """
        Launch the browser and open the exploration page.

        Raises:
            BrowserError: If the browser fails to launch
        """
        if self._page is not None:
            return self._page

        logger.info(
            f"Launching {self.settings.browser_type} (headless={self.settings.headless})")
        stack = AsyncExitStack()
        try:
            playwright = await stack.enter_async_context(async_playwright())
            launcher = getattr(playwright, self.settings.browser_type)
            browser = await launcher.launch(headless=self.settings.headless)
            stack.push_async_callback(browser.close)

            context = await browser.new_context(**self._context_options())
            stack.push_async_callback(context.close)
            context.set_default_timeout(self.settings.timeout_ms)
            context.set_default_navigation_timeout(self.settings.navigation_timeout_ms)

            self._page = await context.new_page()
        except Exception as e:
            await stack.aclose()
            raise BrowserError(
                f"Failed to launch browser: {e}",
                details={"browser_type": self.settings.browser_type},
            ) from e

        self._stack = stack
        return self._page

    @property
    def page(self) -> Page:
        if self._page is None:
            raise BrowserError("Browser not started. Call start() first.")
        return self._page

    async def stop(self) -> None:
        """Close page, context, browser and driver in reverse order. Idempotent."""
        stack, self._stack, self._page = self._stack, None, None
        if stack is None:
            return
        try:
            await stack.aclose()
        except Exception as e:
            logger.warning(f"Error while closing browser: {e}")
        logger.info("Browser stopped")

    async def __aenter__(self) -> "BrowserManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
