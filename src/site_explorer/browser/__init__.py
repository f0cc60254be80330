"""
Browser module for the Site Explorer.

Provides Playwright lifecycle management and the automation driver the
tool layer acts through.
"""

from site_explorer.browser.manager import BrowserManager
from site_explorer.browser.driver import (
    ActOutcome,
    AutomationDriver,
    PlaywrightDriver,
    extract_page_content,
)

__all__ = [
    "BrowserManager",
    "ActOutcome",
    "AutomationDriver",
    "PlaywrightDriver",
    "extract_page_content",
]
