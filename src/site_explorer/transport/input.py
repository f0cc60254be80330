"""
Human input transport.

The tool layer sends one UserInputRequest describing the values it needs
and then reads InputResponse messages until every key is answered, the
human skips, or the timeout elapses. A response may carry only some of
the keys, so a human can answer one field at a time.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace

from pydantic import BaseModel, ConfigDict, Field
from rich.console import Console
from rich.prompt import Confirm, Prompt

from site_explorer.session.models import InputType, utc_now_iso
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)

SKIP_WORD = "skip"


class InputRequest(BaseModel):
    """One value the decision service wants from the human."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    input_key: str = Field(alias="inputKey", min_length=1)
    input_type: InputType = Field(default=InputType.TEXT, alias="inputType")
    input_prompt: str = Field(default="", alias="inputPrompt")
    sensitive: bool = False

    @property
    def is_secret(self) -> bool:
        return self.sensitive or self.input_type.is_secret


@dataclass
class UserInputRequest:
    """Outbound request sent to the human."""

    user_name: str
    url_hash: str
    step_number: int
    inputs: list[InputRequest]
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def keys(self) -> list[str]:
        return [r.input_key for r in self.inputs]

    def to_dict(self) -> dict:
        return {
            "user_name": self.user_name,
            "url_hash": self.url_hash,
            "step_number": self.step_number,
            "inputs": [r.model_dump(by_alias=True, mode="json") for r in self.inputs],
            "timestamp": self.timestamp,
        }


@dataclass
class InputResponse:
    """Inbound answer keyed by input key. May be partial."""

    values: dict[str, str] = field(default_factory=dict)
    skipped: bool = False


class InputTransport(ABC):
    """Request/response contract between the tool layer and a human."""

    @abstractmethod
    async def send_request(self, request: UserInputRequest) -> None:
        """Deliver a request to the human."""

    @abstractmethod
    async def receive(self) -> InputResponse:
        """Wait for the next answer. The caller applies its own timeout."""


class QueueInputTransport(InputTransport):
    """
    In-process transport backed by asyncio queues.

    Whatever drives the human side reads `requests` and calls submit().

    Example:
        >>> transport = QueueInputTransport()
        >>> transport.submit({"email": "me@example.com"})
    """

    def __init__(self) -> None:
        self.requests: asyncio.Queue[UserInputRequest] = asyncio.Queue()
        self._responses: asyncio.Queue[InputResponse] = asyncio.Queue()
        self.sent: list[UserInputRequest] = []

    async def send_request(self, request: UserInputRequest) -> None:
        self.sent.append(request)
        await self.requests.put(request)

    async def receive(self) -> InputResponse:
        return await self._responses.get()

    def submit(self, values: dict[str, str] | None = None, skipped: bool = False) -> None:
        self._responses.put_nowait(InputResponse(values=dict(values or {}), skipped=skipped))


class ConsoleInputTransport(InputTransport):
    """
    Asks for values on the terminal with rich prompts.

    Prompts run in one worker thread at a time so the event loop keeps
    serving background tasks while the human types. Each answer is handed
    back as soon as it is typed, so a timeout keeps the fields already
    answered. A request sent while an earlier prompt still waits on the
    terminal is started once that prompt returns, without the fields the
    answer covered. Typing "skip" skips the request.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()
        self._responses: asyncio.Queue[InputResponse | BaseException] = asyncio.Queue()
        self._current: UserInputRequest | None = None
        self._serving: UserInputRequest | None = None
        self._worker: asyncio.Future | None = None

    @property
    def prompting(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def send_request(self, request: UserInputRequest) -> None:
        self._current = request
        self._console.print(
            f"\n[bold yellow]Input needed[/bold yellow] for step {request.step_number} "
            f"[dim]({request.url_hash})[/dim] - type '{SKIP_WORD}' to skip"
        )
        if self.prompting:
            logger.debug("Previous prompt still open; request starts when it returns")
            return
        self._start(request)

    async def receive(self) -> InputResponse:
        item = await self._responses.get()
        if isinstance(item, BaseException):
            raise item
        return item

    def _start(self, request: UserInputRequest) -> None:
        loop = asyncio.get_running_loop()
        self._serving = request
        self._worker = asyncio.ensure_future(asyncio.to_thread(self._prompt_all, request, loop))
        self._worker.add_done_callback(self._on_worker_done)

    def _on_worker_done(self, worker: asyncio.Future) -> None:
        if worker.cancelled():
            return
        error = worker.exception()
        if error is not None:
            logger.warning(f"Console prompt failed: {error!r}")
            self._responses.put_nowait(error)
            return

        current = self._current
        if current is None or current is self._serving:
            return
        answered = worker.result()
        remaining = [item for item in current.inputs if item.input_key not in answered]
        if remaining:
            self._current = replace(current, inputs=remaining)
            self._start(self._current)

    def _prompt_all(self, request: UserInputRequest, loop: asyncio.AbstractEventLoop) -> set[str]:
        answered: set[str] = set()

        def push(response: InputResponse) -> None:
            loop.call_soon_threadsafe(self._responses.put_nowait, response)

        for item in request.inputs:
            if self._current is not request:
                break
            label = item.input_prompt or item.input_key
            if item.input_type is InputType.BOOLEAN:
                answer = "true" if Confirm.ask(label, console=self._console) else "false"
            else:
                answer = Prompt.ask(label, console=self._console, password=item.is_secret)
                if answer.strip().lower() == SKIP_WORD:
                    if self._current is request:
                        push(InputResponse(skipped=True))
                    break
            push(InputResponse(values={item.input_key: answer}))
            answered.add(item.input_key)
        return answered
