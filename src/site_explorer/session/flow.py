"""
Sensitive flow tracking.

Login, signup, verification, and checkout flows pass through many
transient URLs (OTP screens, redirects). While a flow is active the act
tool stays on whatever page the flow leads to and does not queue it.
Entering and leaving a flow is driven only by decision signals.
"""

import asyncio
from enum import Enum

from site_explorer.session.models import FlowContext, FlowType
from site_explorer.session.state import SessionState
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)


class FlowTransition(str, Enum):
    NONE = "none"
    ENTERED = "entered"
    EXITED = "exited"


class FlowTracker:
    """Reads and updates the session's flow context through SessionState."""

    def __init__(self, state: SessionState) -> None:
        self._state = state
        self._idle = asyncio.Event()
        if not state.flow_context.is_in_sensitive_flow:
            self._idle.set()

    @property
    def context(self) -> FlowContext:
        return self._state.flow_context

    def should_suppress_queuing(self) -> bool:
        return self._state.flow_context.is_in_sensitive_flow

    async def enter(
        self,
        flow_type: FlowType | None,
        at_url: str,
        at_step: int,
    ) -> None:
        context = FlowContext(
            is_in_sensitive_flow=True,
            flow_type=flow_type or FlowType.LOGIN,
            start_url=at_url,
            flow_start_step=at_step,
        )
        await self._state.set_flow_context(context)
        self._idle.clear()
        logger.info(f"Entered {context.flow_type.value} flow at step {at_step}: {at_url}")

    async def exit(self) -> None:
        previous = self._state.flow_context
        await self._state.set_flow_context(FlowContext())
        self._idle.set()
        if previous.is_in_sensitive_flow:
            logger.info(
                f"Left {previous.flow_type.value if previous.flow_type else 'sensitive'} flow "
                f"started at step {previous.flow_start_step}")

    async def apply_signal(
        self,
        in_flow: bool | None,
        flow_type: FlowType | None,
        url: str,
        step: int,
    ) -> FlowTransition:
        """
        Apply a decision's flow signal.

        None means the decision said nothing and the context is unchanged.
        A repeated entry signal keeps the original start point.
        """
        active = self.should_suppress_queuing()
        if in_flow is True and not active:
            await self.enter(flow_type, url, step)
            return FlowTransition.ENTERED
        if in_flow is False and active:
            await self.exit()
            return FlowTransition.EXITED
        return FlowTransition.NONE

    async def clear_if_started_at(self, page_hash: str) -> bool:
        """Leave the flow when the objective was achieved on the page that started it."""
        context = self._state.flow_context
        if not context.is_in_sensitive_flow or context.start_url is None:
            return False
        if self._state.identity_of(context.start_url) != page_hash:
            return False
        await self.exit()
        return True

    async def abandon(self) -> None:
        """End any active flow at session end. Not a failure."""
        if self.should_suppress_queuing():
            logger.info("Session ended inside a sensitive flow; abandoning it")
            await self.exit()

    async def wait_until_idle(self) -> None:
        """Block until no sensitive flow is active."""
        await self._idle.wait()
