"""
Site Explorer - autonomous, decision-driven exploration of web applications.

A decision service looks at the current page and picks one of four tools
(act, extract, ask a human, wait) until the objective is met, while new
pages found along the way are deduplicated, queued, and explored in turn.
"""

from site_explorer.config import Settings, load_config
from site_explorer.utils.logging import setup_logging, get_logger
from site_explorer.core.exceptions import SiteExplorerError
from site_explorer.session import SessionState, normalize_url, url_hash
from site_explorer.explorer import Explorer, ExplorationResult, SchedulingStrategy

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "load_config",
    "setup_logging",
    "get_logger",
    "SiteExplorerError",
    "SessionState",
    "normalize_url",
    "url_hash",
    "Explorer",
    "ExplorationResult",
    "SchedulingStrategy",
]
