import asyncio
import random

import pytest

from thinking_relay.domain.streaming.dispatcher import CoalescingDispatcher, DispatchState
from thinking_relay.domain.streaming.message_sink import MessageSink


@pytest.fixture
def content():
    return {"text": "v0"}


@pytest.fixture
def dispatcher(vloop, transport, diagnostics, metrics, content):
    sink = MessageSink(transport, "chat-1", diagnostics=diagnostics, metrics=metrics)
    return CoalescingDispatcher(lambda: content["text"], sink, interval=0.8, loop=vloop)


class TestCoalescingDispatcher:

    @pytest.mark.asyncio
    async def test_first_trigger_delivers_immediately(self, dispatcher, vloop, transport):
        dispatcher.trigger_update()
        assert dispatcher.state == DispatchState.IN_FLIGHT

        await vloop.settle()

        assert transport.ops == ["create"]
        assert transport.calls[0]["at"] == 0
        assert dispatcher.state == DispatchState.IDLE
        assert dispatcher.last_attempt_at == 0

    @pytest.mark.asyncio
    async def test_same_tick_triggers_start_one_flight(self, dispatcher, vloop, transport):
        dispatcher.trigger_update()
        dispatcher.trigger_update()
        dispatcher.trigger_update()

        await vloop.settle()

        assert transport.ops == ["create"]
        assert transport.max_outstanding == 1

    @pytest.mark.asyncio
    async def test_early_trigger_is_scheduled_for_remaining_wait(self, dispatcher, vloop, transport, content):
        dispatcher.trigger_update()
        await vloop.advance(0.3)

        content["text"] = "v1"
        dispatcher.trigger_update()

        assert dispatcher.state == DispatchState.SCHEDULED
        assert vloop.pending_timers[0].when == pytest.approx(0.8)

        await vloop.advance(0.49)
        assert transport.ops == ["create"]

        await vloop.advance(0.02)
        assert transport.ops == ["create", "edit"]
        assert transport.calls[1]["at"] == pytest.approx(0.8)
        assert transport.calls[1]["text"] == "v1"

    @pytest.mark.asyncio
    async def test_trigger_during_flight_coalesces(self, dispatcher, vloop, transport, content):
        transport.gate = asyncio.Event()
        dispatcher.trigger_update()
        await vloop.settle()
        assert dispatcher.state == DispatchState.IN_FLIGHT

        content["text"] = "v1"
        dispatcher.trigger_update()
        content["text"] = "v2"
        dispatcher.trigger_update()
        assert dispatcher.state == DispatchState.IN_FLIGHT_COALESCED

        # Nothing more is sent while the flight is still running
        await vloop.advance(0.5)
        assert transport.ops == ["create"]

        transport.gate.set()
        await vloop.settle()
        assert dispatcher.state == DispatchState.SCHEDULED

        await vloop.advance(0.35)

        assert transport.texts == ["v0", "v2"]
        assert transport.calls[1]["at"] == pytest.approx(0.8)
        assert transport.max_outstanding == 1

    @pytest.mark.asyncio
    async def test_flush_bypasses_interval(self, dispatcher, vloop, transport, content):
        dispatcher.trigger_update()
        await vloop.settle()

        content["text"] = "v1"
        dispatcher.trigger_update()
        assert dispatcher.state == DispatchState.SCHEDULED

        await dispatcher.flush()

        assert transport.texts == ["v0", "v1"]
        assert dispatcher.state == DispatchState.IDLE

        await vloop.advance(2)
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_flush_with_unchanged_content_makes_no_call(self, dispatcher, vloop, transport):
        dispatcher.trigger_update()
        await vloop.settle()

        await dispatcher.flush()

        assert transport.ops == ["create"]

    @pytest.mark.asyncio
    async def test_flush_during_flight_is_coalesced(self, dispatcher, vloop, transport, content):
        transport.gate = asyncio.Event()
        dispatcher.trigger_update()
        await vloop.settle()

        content["text"] = "v1"
        await dispatcher.flush()
        assert transport.max_outstanding == 1
        assert dispatcher.state == DispatchState.IN_FLIGHT_COALESCED

        transport.gate.set()
        await vloop.advance(1)

        assert transport.texts == ["v0", "v1"]

    @pytest.mark.asyncio
    async def test_update_after_flush_waits_full_interval(self, dispatcher, vloop, transport, content):
        dispatcher.trigger_update()
        await vloop.settle()

        await vloop.advance(0.1)
        content["text"] = "v1"
        dispatcher.trigger_update()
        transport.gate = asyncio.Event()
        flushing = asyncio.ensure_future(dispatcher.flush())
        await vloop.settle()
        assert dispatcher.last_attempt_at == pytest.approx(0.1)

        await vloop.advance(0.02)
        content["text"] = "v2"
        dispatcher.trigger_update()
        transport.gate.set()
        await flushing

        await vloop.advance(0.7)
        assert transport.texts == ["v0", "v1"]

        await vloop.advance(0.1)
        assert transport.texts == ["v0", "v1", "v2"]
        assert transport.calls[2]["at"] - transport.calls[1]["at"] >= 0.8 - 1e-9

    @pytest.mark.asyncio
    async def test_stop_cancels_timer(self, dispatcher, vloop, transport, content):
        dispatcher.trigger_update()
        await vloop.settle()
        content["text"] = "v1"
        dispatcher.trigger_update()

        dispatcher.stop()

        assert vloop.pending_timers == []
        assert dispatcher.state == DispatchState.STOPPED

        dispatcher.trigger_update()
        await dispatcher.flush()
        await vloop.advance(5)
        assert transport.ops == ["create"]

    @pytest.mark.asyncio
    async def test_failed_delivery_still_spaces_retry(self, dispatcher, vloop, transport, content):
        transport.fail_next = 1
        dispatcher.trigger_update()
        await vloop.settle()

        dispatcher.trigger_update()
        await vloop.advance(0.5)
        assert transport.ops == ["create"]

        await vloop.advance(0.35)
        assert transport.ops == ["create", "create"]
        assert dispatcher.sink.message_id is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(8))
    async def test_spacing_and_single_flight_under_random_load(self, dispatcher, vloop, transport, content, seed):
        rng = random.Random(seed)
        flushes = []
        flushed_calls = set()

        for step in range(200):
            action = rng.random()
            if action < 0.5:
                content["text"] = f"v{step}"
                dispatcher.trigger_update()
            elif action < 0.6 and transport.gate is None:
                transport.gate = asyncio.Event()
            elif action < 0.7 and transport.gate is not None:
                transport.gate.set()
                transport.gate = None
            elif action < 0.8:
                content["text"] = f"f{step}"
                before = len(transport.calls)
                immediate = not dispatcher.in_flight
                flushes.append(asyncio.ensure_future(dispatcher.flush()))
                await vloop.settle()
                if immediate and len(transport.calls) > before:
                    flushed_calls.add(before)
            await vloop.advance(rng.choice([0, 0.01, 0.05, 0.2, 0.5]))

        if transport.gate is not None:
            transport.gate.set()
            transport.gate = None
        await vloop.advance(5)
        await asyncio.gather(*flushes)

        starts = [call["at"] for call in transport.calls]
        # Only explicit flushes may follow the previous call early
        gaps = [
            starts[i] - starts[i - 1]
            for i in range(1, len(starts))
            if i not in flushed_calls
        ]
        assert all(gap >= 0.8 - 1e-9 for gap in gaps)
        assert transport.max_outstanding == 1
        # The latest state always ends up displayed
        assert transport.texts[-1] == content["text"]
