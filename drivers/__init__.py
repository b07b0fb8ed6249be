import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, ClassVar, Generic, TypeVar

from pydantic import BaseModel

import services.logger as log
from services.message import Event, MessageTarget, Platform

T = TypeVar("T", bound=BaseModel)

Handler = Callable[..., Awaitable[None]]
Builder = Callable[..., Awaitable[Event | None]]

l = log.get_logger()


class BaseDriver(ABC, Generic[T]):
    """Abstract base class for the platform session handles.

    A driver owns one long-lived connection.  Native events arriving on it
    are fanned out to the handlers registered with ``subscribe``; each native
    event is delivered in its own task so a slow handler only delays that
    one event.
    """

    platform: ClassVar[Platform]

    def __init__(self, config: T):
        self.config: T = config
        self._listeners: dict[str, list[Handler]] = {}
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    async def start(self):
        """Connect, authenticate and begin listening.
        Runs until the connection is closed."""

    @abstractmethod
    async def close(self):
        """Close the connection."""

    # ------------------------------------------------------------------
    # Native event fan-out
    # ------------------------------------------------------------------

    def subscribe(self, native_event: str, handler: Handler) -> None:
        self._listeners.setdefault(native_event, []).append(handler)

    async def deliver(self, native_event: str, *args: Any) -> None:
        """Run every handler subscribed to *native_event*, in order."""
        for handler in self._listeners.get(native_event, ()):
            await handler(*args)

    def _dispatch(self, native_event: str, *args: Any) -> None:
        if native_event not in self._listeners:
            return
        task = asyncio.create_task(
            self.deliver(native_event, *args),
            name=f"{self.platform.value}/{native_event}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            l.error(f"{self.platform.value} handler '{task.get_name()}' failed: {exc!r}")

    @abstractmethod
    def normalizers(self) -> dict[str, Builder]:
        """Map each supported native event name to a builder that turns the
        native arguments into an ``Event`` (or ``None`` to drop it)."""

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @abstractmethod
    async def send_message(
        self,
        channel_id: str,
        content: str,
        embed: Any = None,
        reply_to: MessageTarget | None = None,
    ) -> Any:
        """Post a message into *channel_id*; *embed* is already native."""

    @abstractmethod
    async def edit_message(
        self, channel_id: str, message_id: str, content: str, embed: Any = None
    ) -> Any:
        """Edit a message.  A non-None *embed* replaces the embed list."""

    @abstractmethod
    async def delete_message(self, channel_id: str, message_id: str) -> None:
        """Delete a message."""
