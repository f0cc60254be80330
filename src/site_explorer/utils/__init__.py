"""
Utilities module for the Site Explorer.

Provides logging setup and in-memory metrics.
"""

from site_explorer.utils.logging import (
    setup_logging,
    get_logger,
    get_logger_with_context,
    reset_logging,
)
from site_explorer.utils.metrics import (
    Metrics,
    LatencyStats,
    increment_steps_executed,
    increment_tool_failures,
    increment_pages_completed,
    increment_background_failures,
    time_decision,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "get_logger_with_context",
    "reset_logging",
    # Metrics
    "Metrics",
    "LatencyStats",
    "increment_steps_executed",
    "increment_tool_failures",
    "increment_pages_completed",
    "increment_background_failures",
    "time_decision",
]
