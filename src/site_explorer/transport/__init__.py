"""
Transport module for the Site Explorer.

Human input requests and live progress events.
"""

from site_explorer.transport.events import EventType, ProgressEvent, ProgressReporter
from site_explorer.transport.input import (
    ConsoleInputTransport,
    InputRequest,
    InputResponse,
    InputTransport,
    QueueInputTransport,
    UserInputRequest,
)

__all__ = [
    "EventType",
    "ProgressEvent",
    "ProgressReporter",
    "ConsoleInputTransport",
    "InputRequest",
    "InputResponse",
    "InputTransport",
    "QueueInputTransport",
    "UserInputRequest",
]
