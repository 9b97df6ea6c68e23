"""Tests for run callbacks, event dataclasses and the event channel."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from leadflow.core.hooks import (
    EventBus,
    EventChannel,
    LogEvent,
    ProgressEvent,
    RunCallbacks,
    RunStateEvent,
    StatusEvent,
    _fire_callback,
)
from leadflow.schemas.state import LogEntry, RunStatus, StepStatus

# ---------------------------------------------------------------------------
# _fire_callback unit tests
# ---------------------------------------------------------------------------


class TestFireCallback:
    def test_none_callback_is_noop(self):
        _fire_callback(None, "event")  # Should not raise

    def test_callback_called_with_args(self):
        mock = MagicMock()
        _fire_callback(mock, 40, "enrich: processed 10/25 rows")
        mock.assert_called_once_with(40, "enrich: processed 10/25 rows")

    def test_exception_caught_and_logged(self, caplog):
        def bad_callback(*args):
            raise ValueError("callback error")

        with caplog.at_level(logging.WARNING):
            _fire_callback(bad_callback, "event")

        assert "raised an exception" in caplog.text


# ---------------------------------------------------------------------------
# Event dataclasses
# ---------------------------------------------------------------------------


class TestEventDataclasses:
    def test_events_are_frozen(self):
        event = ProgressEvent(step_id="enrich", percent=40)
        with pytest.raises(AttributeError):
            event.percent = 50  # type: ignore[misc]

    def test_fields(self):
        entry = LogEntry(timestamp="2026-01-01T00:00:00+00:00", message="hi")
        assert LogEvent(entry=entry).entry.message == "hi"
        assert StatusEvent(step_status={"a": StepStatus()}).step_status["a"].message == ""
        state = RunStateEvent(status=RunStatus.IDLE, current_step_index=0, total_steps=2)
        assert state.total_steps == 2

    def test_callbacks_default_to_none(self):
        callbacks = RunCallbacks()
        assert callbacks.log_callback is None
        assert callbacks.progress_callback is None
        assert callbacks.status_callback is None


# ---------------------------------------------------------------------------
# EventChannel / EventBus
# ---------------------------------------------------------------------------


class TestEventChannel:
    @pytest.mark.asyncio
    async def test_iterates_until_closed(self):
        channel = EventChannel()
        channel.publish(ProgressEvent(step_id="a", percent=50))
        channel.publish(ProgressEvent(step_id="a", percent=100))
        channel.close()

        events = [event async for event in channel]

        assert [e.percent for e in events] == [50, 100]

    @pytest.mark.asyncio
    async def test_get_after_close_returns_none(self):
        channel = EventChannel()
        channel.close()
        assert await channel.get() is None
        assert await channel.get() is None

    @pytest.mark.asyncio
    async def test_consumer_waits_for_events(self):
        channel = EventChannel()

        async def producer():
            await asyncio.sleep(0)
            channel.publish(ProgressEvent(step_id="a", percent=10))
            channel.close()

        task = asyncio.create_task(producer())
        first = await channel.get()
        await task

        assert first.percent == 10

    @pytest.mark.asyncio
    async def test_publish_after_close_ignored(self):
        channel = EventChannel()
        channel.close()
        channel.publish(ProgressEvent(step_id="a", percent=10))
        assert channel.drain() == []

    @pytest.mark.asyncio
    async def test_drain(self):
        channel = EventChannel()
        channel.publish(ProgressEvent(step_id="a", percent=10))
        channel.publish(ProgressEvent(step_id="a", percent=20))

        assert len(channel.drain()) == 2
        assert channel.drain() == []

    @pytest.mark.asyncio
    async def test_full_channel_drops_oldest(self, caplog):
        channel = EventChannel(maxsize=2)
        with caplog.at_level(logging.WARNING):
            for percent in (10, 20, 30):
                channel.publish(ProgressEvent(step_id="a", percent=percent))

        assert [e.percent for e in channel.drain()] == [20, 30]
        assert channel.dropped == 1
        assert "dropping oldest" in caplog.text

    @pytest.mark.asyncio
    async def test_close_on_full_channel_still_ends_iteration(self):
        channel = EventChannel(maxsize=2)
        for percent in (10, 20):
            channel.publish(ProgressEvent(step_id="a", percent=percent))
        channel.close()

        events = [event async for event in channel]

        assert [e.percent for e in events] == [20]
        assert channel.dropped == 1

    @pytest.mark.asyncio
    async def test_zero_maxsize_is_unbounded(self):
        channel = EventChannel(maxsize=0)
        for percent in range(50):
            channel.publish(ProgressEvent(step_id="a", percent=percent))

        assert len(channel.drain()) == 50
        assert channel.dropped == 0


class TestEventBus:
    @pytest.mark.asyncio
    async def test_fan_out(self):
        bus = EventBus()
        first, second = bus.subscribe(), bus.subscribe()
        event = ProgressEvent(step_id="a", percent=10)

        bus.publish(event)

        assert first.drain() == [event]
        assert second.drain() == [event]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        channel = bus.subscribe()
        bus.unsubscribe(channel)
        bus.publish(ProgressEvent(step_id="a", percent=10))

        assert channel.closed
        assert channel.drain() == []

    @pytest.mark.asyncio
    async def test_close_all(self):
        bus = EventBus()
        channel = bus.subscribe()
        bus.close_all()

        assert channel.closed
        assert bus.channels == []

    @pytest.mark.asyncio
    async def test_subscribe_with_maxsize(self):
        bus = EventBus()
        channel = bus.subscribe(maxsize=1)
        bus.publish(ProgressEvent(step_id="a", percent=10))
        bus.publish(ProgressEvent(step_id="a", percent=20))

        assert [e.percent for e in channel.drain()] == [20]
        assert channel.dropped == 1
