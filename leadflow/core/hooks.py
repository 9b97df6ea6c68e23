"""Run callbacks and the event channel.

Typed event dataclasses, the ``RunCallbacks`` container for synchronous
caller callbacks, and ``EventChannel`` for consumers that prefer to
``async for`` over run events instead of polling ``get_state()``.

``_fire_callback`` catches and logs callback errors so observability
failures never crash a run.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from ..schemas.state import LogEntry, RunStatus, StepStatus
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CHANNEL_SIZE = 1000


# ---------------------------------------------------------------------------
# Event dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LogEvent:
    """A run log entry was written."""

    entry: LogEntry


@dataclass(frozen=True)
class ProgressEvent:
    """A batch finished; ``percent`` is progress within the current step."""

    step_id: str
    percent: int
    message: str = ""


@dataclass(frozen=True)
class StatusEvent:
    """Step statuses changed."""

    step_status: dict[str, StepStatus]


@dataclass(frozen=True)
class RunStateEvent:
    """The overall run status or cursor changed."""

    status: RunStatus
    current_step_index: int
    total_steps: int


RunEvent = Union[LogEvent, ProgressEvent, StatusEvent, RunStateEvent]


# ---------------------------------------------------------------------------
# Callbacks container
# ---------------------------------------------------------------------------


@dataclass
class RunCallbacks:
    """Caller-supplied callbacks, invoked synchronously at batch and step
    boundaries.

    All fields are optional. Callback errors are caught and logged; they
    never crash the run.
    """

    log_callback: Optional[Callable[[LogEntry], Any]] = None
    progress_callback: Optional[Callable[[int, str], Any]] = None
    status_callback: Optional[Callable[[dict[str, StepStatus]], Any]] = None


def _fire_callback(callback: Optional[Callable], *args: Any) -> None:
    """Call *callback* with *args*.  Silently catches errors."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.warning("Callback %s raised an exception", callback, exc_info=True)


# ---------------------------------------------------------------------------
# Event channel
# ---------------------------------------------------------------------------


_CLOSED = object()


class EventChannel:
    """Bounded queue of ``RunEvent`` objects for one subscriber.

    Publishing never blocks: when the queue holds ``maxsize`` events the
    oldest one is discarded and counted in ``dropped``. ``maxsize=0`` means
    unbounded. Iteration ends once the channel is closed and drained::

        channel = orchestrator.subscribe()
        async for event in channel:
            ...
    """

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: RunEvent) -> None:
        if self._closed:
            return
        self._make_room()
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._make_room()
            self._queue.put_nowait(_CLOSED)

    def _make_room(self) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1:
                logger.warning("Event channel full; dropping oldest events")

    async def get(self) -> Optional[RunEvent]:
        """Next event, or None once the channel is closed and empty."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the marker for later readers.
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def drain(self) -> list[RunEvent]:
        """Pending events, without waiting."""
        events: list[RunEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    def __aiter__(self) -> EventChannel:
        return self

    async def __anext__(self) -> RunEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


@dataclass
class EventBus:
    """Fans events out to every open channel."""

    channels: list[EventChannel] = field(default_factory=list)

    def subscribe(self, maxsize: int = DEFAULT_CHANNEL_SIZE) -> EventChannel:
        channel = EventChannel(maxsize)
        self.channels.append(channel)
        return channel

    def unsubscribe(self, channel: EventChannel) -> None:
        if channel in self.channels:
            self.channels.remove(channel)
        channel.close()

    def publish(self, event: RunEvent) -> None:
        for channel in self.channels:
            channel.publish(event)

    def close_all(self) -> None:
        for channel in self.channels:
            channel.close()
        self.channels.clear()
