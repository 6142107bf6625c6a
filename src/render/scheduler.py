"""Refresh-driven frame scheduler.

Callbacks requested with request_frame() run once, on the next tick, in
request order. A callback that requests another frame while a tick is
running lands on the following tick, so a self-rescheduling render runs
exactly once per tick.
"""

import itertools
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)

FrameCallback = Callable[[float], None]

DEFAULT_REFRESH_HZ = 60.0


class FrameScheduler:
    def __init__(
        self,
        refresh_hz: float = DEFAULT_REFRESH_HZ,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.refresh_hz = max(1.0, min(240.0, float(refresh_hz)))
        self._clock = clock
        self._sleep = sleep
        self._ids = itertools.count(1)
        self._pending: dict[int, FrameCallback] = {}
        self.ticks = 0

    @property
    def interval_s(self) -> float:
        return 1.0 / self.refresh_hz

    @property
    def pending(self) -> int:
        return len(self._pending)

    def request_frame(self, callback: FrameCallback) -> int:
        """Queue callback for the next tick. Returns a handle for cancel_frame()."""
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel_frame(self, handle: int | None) -> None:
        """Drop a queued callback. Unknown or already-fired handles are ignored."""
        if handle is not None:
            self._pending.pop(handle, None)

    def tick(self, timestamp: float | None = None) -> int:
        """Fire every callback queued before this tick. Returns how many ran.

        A callback cancelled by an earlier callback in the same tick does not run.
        """
        if timestamp is None:
            timestamp = self._clock()
        self.ticks += 1
        due = list(self._pending)
        fired = 0
        for handle in due:
            callback = self._pending.pop(handle, None)
            if callback is None:
                continue
            callback(timestamp)
            fired += 1
        return fired

    def run(
        self,
        keep_running: Callable[[], bool],
        pump: Callable[[], None] | None = None,
    ) -> None:
        """Tick at the refresh rate until keep_running() returns False.

        pump runs after every tick on the same thread (window events,
        control polling).
        """
        interval = self.interval_s
        next_tick = self._clock()
        while keep_running():
            self.tick()
            if pump is not None:
                pump()
            next_tick += interval
            delay = next_tick - self._clock()
            if delay > 0:
                self._sleep(delay)
            else:
                # Fell behind; don't try to catch up with a burst of ticks
                next_tick = self._clock()
