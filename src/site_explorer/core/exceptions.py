"""
Custom exceptions for the Site Explorer.

Provides a hierarchy of exceptions for precise error handling across
all subsystems. All exceptions inherit from SiteExplorerError.

Exception Hierarchy:
    SiteExplorerError (base)
    ├── ConfigurationError
    ├── BrowserError
    │   ├── NavigationError
    │   ├── ActionError
    │   └── ExtractionError
    ├── DecisionError
    │   └── DecisionParseError
    ├── InputError
    │   └── InputTimeoutError
    ├── StorageError
    │   └── PersistenceError
    └── ExplorationError
"""

from typing import Any


class SiteExplorerError(Exception):
    """
    Base exception for all Site Explorer errors.

    Attributes:
        message: Human-readable error description
        details: Optional dictionary with additional context
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(
                f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, details={self.details!r})"


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(SiteExplorerError):
    """
    Error in configuration loading or validation.

    Raised when:
    - Configuration file is malformed
    - Required settings or credentials are missing
    - Setting values fail validation

    This is the only error class that is fatal to the process.
    """

    pass


# =============================================================================
# Browser Errors
# =============================================================================


class BrowserError(SiteExplorerError):
    """
    Base error for browser/Playwright operations.

    Raised for general browser-related failures not covered by
    more specific subclasses.
    """

    pass


class NavigationError(BrowserError):
    """Error during page navigation, including HTTP error statuses."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if url:
            details["url"] = url
        super().__init__(message, details)
        self.url = url


class ActionError(BrowserError):
    """
    Error performing an instruction against the page.

    Raised when:
    - The instruction cannot be parsed
    - No element matches the described locator
    - The interaction times out
    """

    def __init__(
        self,
        message: str,
        instruction: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if instruction:
            details["instruction"] = instruction
        super().__init__(message, details)
        self.instruction = instruction


class ExtractionError(BrowserError):
    """Error extracting structured content from the current page."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if url:
            details["url"] = url
        super().__init__(message, details)
        self.url = url


# =============================================================================
# Decision Service Errors
# =============================================================================


class DecisionError(SiteExplorerError):
    """
    Base error for the external decision service.

    Decision failures end the current page; they never end the session.
    """

    pass


class DecisionParseError(DecisionError):
    """
    Decision service returned a response that is not a valid decision.

    Attributes:
        raw_response: Response text that failed to parse (truncated)
    """

    def __init__(
        self,
        message: str,
        raw_response: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if raw_response:
            details["raw_response"] = raw_response[:200]
        super().__init__(message, details)
        self.raw_response = raw_response


# =============================================================================
# Human Input Errors
# =============================================================================


class InputError(SiteExplorerError):
    """Base error for the human input transport."""

    pass


class InputTimeoutError(InputError):
    """
    No answer arrived before the input timeout elapsed.

    Attributes:
        pending_keys: Keys that were still unanswered
    """

    def __init__(
        self,
        message: str,
        pending_keys: list[str] | None = None,
        timeout_seconds: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if pending_keys:
            details["pending_keys"] = pending_keys
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, details)
        self.pending_keys = pending_keys or []
        self.timeout_seconds = timeout_seconds


# =============================================================================
# Storage Errors
# =============================================================================


class StorageError(SiteExplorerError):
    """Base error for storage operations."""

    pass


class PersistenceError(StorageError):
    """
    Error writing or reading a session document.

    Callers log and continue; in-memory state stays authoritative.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if path:
            details["path"] = path
        super().__init__(message, details)
        self.path = path


# =============================================================================
# Exploration Errors
# =============================================================================


class ExplorationError(SiteExplorerError):
    """Error in exploration driver bookkeeping, such as an unknown page identity."""

    pass
