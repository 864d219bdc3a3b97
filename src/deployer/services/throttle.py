"""Rate limiting for high-frequency progress events."""

import asyncio
import logging
import time
from typing import Callable, Optional

from deployer.models.events import StageEvent

EventSink = Callable[[StageEvent], None]


def monotonic_ms() -> int:
    """Monotonic clock in whole milliseconds."""
    return time.monotonic_ns() // 1_000_000


class ProgressThrottle:
    """Coalesces progress events into a lower-frequency sink.

    An event is forwarded immediately when its stage differs from the last
    forwarded one, when progress moved by at least ``min_change_percent``,
    or when ``min_interval_ms`` passed since the last forward. Anything else
    is parked as the pending event and a timer forwards the latest pending
    event ``min_interval_ms`` later.

    Callers must ``flush()`` after the last event of a sequence so a parked
    terminal event is never lost. One instance serves one device run and is
    driven from the event loop thread (deferred delivery uses
    ``loop.call_later``).
    """

    def __init__(
        self,
        fn: EventSink,
        min_interval_ms: float = 100,
        min_change_percent: float = 1,
        clock: Callable[[], float] = monotonic_ms,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize throttle.

        Args:
            fn: Sink receiving forwarded events
            min_interval_ms: Minimum spacing between forwarded events
            min_change_percent: Progress jump that bypasses the interval
            clock: Monotonic clock in milliseconds (injectable for tests)
            loop: Loop for deferred delivery (running loop if None)
        """
        self.logger = logging.getLogger("deployer.throttle")
        self._fn = fn
        self.min_interval_ms = min_interval_ms
        self.min_interval = min_interval_ms / 1000.0
        self.min_change_percent = min_change_percent
        self._clock = clock
        self._loop = loop

        self._last_call_time: Optional[float] = None
        self._last_progress: float = -1.0
        self._last_stage: Optional[str] = None
        self._pending: Optional[StageEvent] = None
        self._timer: Optional[asyncio.TimerHandle] = None

        self.forwarded = 0

    @property
    def pending(self) -> Optional[StageEvent]:
        return self._pending

    def __call__(self, event: StageEvent) -> None:
        now = self._clock()
        progress_delta = abs(event.progress - self._last_progress)
        stage_changed = event.stage != self._last_stage
        time_elapsed = (
            self._last_call_time is None
            or now - self._last_call_time >= self.min_interval_ms
        )

        if stage_changed or progress_delta >= self.min_change_percent or time_elapsed:
            self._cancel_timer()
            self._pending = None
            self._forward(event, now)
            return

        self._pending = event
        if self._timer is None:
            loop = self._loop or asyncio.get_running_loop()
            self._timer = loop.call_later(self.min_interval, self._on_timer)

    def flush(self) -> None:
        """Forward the pending event, if any, and disarm the timer."""
        self._cancel_timer()
        if self._pending is not None:
            event = self._pending
            self._pending = None
            self._forward(event, self._clock())

    def _on_timer(self) -> None:
        self._timer = None
        if self._pending is not None:
            event = self._pending
            self._pending = None
            self._forward(event, self._clock())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _forward(self, event: StageEvent, now: float) -> None:
        self._last_call_time = now
        self._last_progress = event.progress
        self._last_stage = event.stage
        self.forwarded += 1
        self.logger.debug(
            f"Forward {event.device_path}: stage={event.stage.value}, "
            f"progress={event.progress:.1f}%"
        )
        self._fn(event)


def create_progress_throttle(
    fn: EventSink,
    min_interval_ms: float = 100,
    min_change_percent: float = 1,
) -> ProgressThrottle:
    """Wrap ``fn`` in a ProgressThrottle with the given limits."""
    return ProgressThrottle(
        fn, min_interval_ms=min_interval_ms, min_change_percent=min_change_percent
    )
