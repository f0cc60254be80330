"""
Exploration engine for the Site Explorer.

DecisionLoop drives a single page; Explorer schedules pages across a
session, sequentially or with background extraction.
"""

from site_explorer.explorer.loop import (
    CompletionReason,
    DecisionLoop,
    LoopState,
    PageOutcome,
)
from site_explorer.explorer.background import BackgroundProcessor
from site_explorer.explorer.explorer import (
    ExplorationResult,
    Explorer,
    SchedulingStrategy,
    StopReason,
)

__all__ = [
    "CompletionReason",
    "DecisionLoop",
    "LoopState",
    "PageOutcome",
    "BackgroundProcessor",
    "ExplorationResult",
    "Explorer",
    "SchedulingStrategy",
    "StopReason",
]
