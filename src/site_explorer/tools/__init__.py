"""
Tool execution layer for the Site Explorer.

The four tools a decision can choose: act, extract, user_input, standby.
"""

from site_explorer.tools.results import (
    ActResult,
    ExtractResult,
    StandbyResult,
    ToolResult,
    UserInputResult,
)
from site_explorer.tools.executor import ToolExecutor

__all__ = [
    "ActResult",
    "ExtractResult",
    "StandbyResult",
    "ToolResult",
    "UserInputResult",
    "ToolExecutor",
]
