import asyncio
from typing import Any, Dict, List, Optional

import pytest

from thinking_relay.domain.models.delivery_state import MessageOptions
from thinking_relay.domain.models.display_config import ThinkingConfig, ToolDisplayConfig
from thinking_relay.domain.streaming.message_sink import MessageTransport, TransportError
from thinking_relay.domain.streaming.thinking_updater import create_thinking_updater
from thinking_relay.infrastructure.observability.logging import MetricsCollector


class VirtualTimer:
    """Timer handle returned by VirtualLoop.call_later"""

    def __init__(self, when: float, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class VirtualLoop:
    """Event loop facade with a manually advanced clock.

    Timers only fire from advance(); tasks run on the real running loop.
    """

    def __init__(self, start: float = 0.0):
        self.now = start
        self.timers: List[VirtualTimer] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback, *args) -> VirtualTimer:
        timer = VirtualTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    def create_task(self, coro):
        return asyncio.get_running_loop().create_task(coro)

    @property
    def pending_timers(self) -> List[VirtualTimer]:
        return [t for t in self.timers if not t.cancelled]

    async def settle(self):
        """Let ready tasks run to their next suspension point"""
        for _ in range(20):
            await asyncio.sleep(0)

    async def advance(self, seconds: float):
        """Move the clock forward, firing due timers in order"""
        target = self.now + seconds
        await self.settle()
        while True:
            due = [t for t in self.pending_timers if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback(*timer.args)
            await self.settle()
        self.now = target
        await self.settle()


class RecordingTransport(MessageTransport):
    """In-memory transport recording every call with its virtual start time"""

    def __init__(self, loop: Optional[VirtualLoop] = None):
        self.loop = loop
        self.calls: List[Dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.fail_next = 0
        self.outstanding = 0
        self.max_outstanding = 0
        self._next_id = 100

    @property
    def ops(self) -> List[str]:
        return [call["op"] for call in self.calls]

    @property
    def texts(self) -> List[str]:
        return [call["text"] for call in self.calls if "text" in call]

    async def _enter(self, op: str, **fields):
        self.outstanding += 1
        self.max_outstanding = max(self.max_outstanding, self.outstanding)
        self.calls.append({"op": op, "at": self.loop.time() if self.loop else None, **fields})
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.fail_next:
                self.fail_next -= 1
                raise TransportError(f"{op} failed")
        finally:
            self.outstanding -= 1

    async def create(self, target: str, text: str, options: MessageOptions):
        await self._enter("create", target=target, text=text, options=options)
        self._next_id += 1
        return self._next_id

    async def edit(self, target: str, message_id, text: str, options: MessageOptions) -> bool:
        await self._enter("edit", target=target, message_id=message_id, text=text)
        return True

    async def remove(self, target: str, message_id) -> bool:
        await self._enter("remove", target=target, message_id=message_id)
        return True


class RecordingDiagnostics:
    """Diagnostics recorder keeping events in memory"""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def record(self, event: str, level: str = "debug", **fields: Any) -> None:
        self.events.append({"event": event, "level": level, **fields})

    def names(self) -> List[str]:
        return [e["event"] for e in self.events]


@pytest.fixture
def vloop():
    return VirtualLoop()


@pytest.fixture
def transport(vloop):
    return RecordingTransport(vloop)


@pytest.fixture
def diagnostics():
    return RecordingDiagnostics()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def make_updater(vloop, transport, diagnostics):
    def _make(interval_ms: int = 800, tool_display: Optional[ToolDisplayConfig] = None, **thinking):
        return create_thinking_updater(
            transport,
            "chat-1",
            thinking_config=ThinkingConfig(update_interval_ms=interval_ms, **thinking),
            tool_display=tool_display,
            loop=vloop,
            diagnostics=diagnostics
        )
    return _make
