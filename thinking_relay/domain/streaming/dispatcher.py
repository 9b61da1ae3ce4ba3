"""
Coalescing update dispatcher.

Mutations arrive faster than the transport allows message updates. The
dispatcher turns every mutation into a request for an update cycle and
decides, per request, whether to deliver now, arm a timer for later, or
fold the request into a cycle already owed:

    IDLE ----------------> IN_FLIGHT  (interval elapsed, no timer)
    IDLE ----------------> SCHEDULED  (too early: timer armed)
    SCHEDULED --timer----> IN_FLIGHT
    IN_FLIGHT --trigger--> IN_FLIGHT_COALESCED
    IN_FLIGHT ---done----> IDLE
    IN_FLIGHT_COALESCED --done--> SCHEDULED or IN_FLIGHT

At most one delivery runs at a time and successive transport calls are at
least one interval apart. The event loop is injected so the clock can be
virtual in tests.
"""

from typing import Any, Callable, Optional, Set
import asyncio
from enum import Enum
import structlog

from thinking_relay.domain.models.delivery_state import DeliveryOutcome
from .message_sink import MessageSink

logger = structlog.get_logger(__name__)


class DispatchState(str, Enum):
    """Scheduling state of a dispatcher"""
    IDLE = "idle"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"
    IN_FLIGHT_COALESCED = "in_flight_coalesced"
    STOPPED = "stopped"


class CoalescingDispatcher:
    """Rate-limited, single-flight delivery of the latest rendered state"""

    def __init__(
        self,
        render: Callable[[], str],
        sink: MessageSink,
        interval: float,
        loop: Optional[Any] = None
    ):
        self.render = render
        self.sink = sink
        self.interval = interval
        self._loop = loop
        self._timer: Optional[asyncio.TimerHandle] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._coalesced = False
        self._stopped = False
        self._last_attempt_at: Optional[float] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self):
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def in_flight(self) -> bool:
        return not self._idle.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def state(self) -> DispatchState:
        if self._stopped:
            return DispatchState.STOPPED
        if self.in_flight:
            return DispatchState.IN_FLIGHT_COALESCED if self._coalesced else DispatchState.IN_FLIGHT
        if self._timer is not None:
            return DispatchState.SCHEDULED
        return DispatchState.IDLE

    @property
    def last_attempt_at(self) -> Optional[float]:
        """Loop time at which the last transport call started"""
        return self._last_attempt_at

    def trigger_update(self) -> None:
        """Request an update cycle after a state mutation"""

        if self._stopped:
            return

        if self.in_flight:
            self._coalesced = True
            self._schedule()
            return

        if self._timer is None and self._interval_elapsed():
            self._begin_cycle()
            return

        self._schedule()

    async def flush(self) -> None:
        """Deliver now, ignoring the interval but never overlapping a flight"""

        if self._stopped:
            return

        self._cancel_timer()

        if self.in_flight:
            self._coalesced = True
            return

        self._idle.clear()
        await self._deliver()

    def stop(self) -> None:
        """Cancel any pending cycle and refuse further scheduling"""

        self._stopped = True
        self._coalesced = False
        self._cancel_timer()

    async def wait_idle(self) -> None:
        """Wait until no delivery is running"""

        await self._idle.wait()

    def _elapsed(self) -> float:
        if self._last_attempt_at is None:
            return float("inf")
        return self.loop.time() - self._last_attempt_at

    def _interval_elapsed(self) -> bool:
        return self._elapsed() >= self.interval

    def _schedule(self) -> None:
        if self._timer is not None or self._stopped:
            return

        delay = max(0.0, self.interval - self._elapsed())
        self._timer = self.loop.call_later(delay, self._on_timer)
        logger.debug("Update scheduled", target=self.sink.target, delay=delay)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None

        if self._stopped:
            return

        if self.in_flight:
            self._coalesced = True
            return

        self._begin_cycle()

    def _begin_cycle(self) -> None:
        # Claim the flight before the task runs so a second trigger in the
        # same loop iteration sees IN_FLIGHT
        self._idle.clear()
        task = self.loop.create_task(self._deliver())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self) -> None:
        """Run one delivery cycle; the flight must already be claimed"""

        try:
            if not self._stopped:
                # Timers armed while the call runs measure from its start
                previous = self._last_attempt_at
                self._last_attempt_at = self.loop.time()
                outcome = await self.sink.send(self.render())
                if outcome == DeliveryOutcome.SKIPPED:
                    self._last_attempt_at = previous
        finally:
            self._idle.set()

        if self._coalesced:
            self._coalesced = False
            self._schedule()
