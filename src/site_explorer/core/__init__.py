"""
Core module for the Site Explorer.

Contains the exception hierarchy used throughout the application.
"""

from site_explorer.core.exceptions import (
    SiteExplorerError,
    ConfigurationError,
    BrowserError,
    NavigationError,
    ActionError,
    ExtractionError,
    DecisionError,
    DecisionParseError,
    InputError,
    InputTimeoutError,
    StorageError,
    PersistenceError,
    ExplorationError,
)

__all__ = [
    # Base
    "SiteExplorerError",
    "ConfigurationError",
    # Browser
    "BrowserError",
    "NavigationError",
    "ActionError",
    "ExtractionError",
    # Decision
    "DecisionError",
    "DecisionParseError",
    # Input
    "InputError",
    "InputTimeoutError",
    # Storage
    "StorageError",
    "PersistenceError",
    # Exploration
    "ExplorationError",
]
