"""Render loop — one dithered frame per refresh tick.

Each tick pulls the latest frame, sizes the surface to the current display,
renders with the current parameter snapshot and reschedules itself.
Ticks without a ready frame are no-ops. A failing tick is logged and
reported, and the next tick runs as normal; only a surface failure halts
the loop.
"""

import logging
import time
from collections import deque
from enum import Enum
from typing import Callable

import numpy as np
import sentry_sdk

from capture.source import FrameSource
from controls.params import ParameterStore
from dither.bayer import BAYER_4X4
from dither.engine import render
from dither.geometry import surface_size
from render.scheduler import FrameScheduler
from render.surface import OutputSurface, SurfaceUnavailable

logger = logging.getLogger(__name__)

# Render time per tick above which a warning is logged (milliseconds)
TICK_WARN_MS = 100

# While ticks keep failing, log one error per this many ticks
FAILURE_LOG_EVERY = 60

TIMING_WINDOW = 120


class LoopState(Enum):
    IDLE = "idle"
    RUNNING = "running"


def _capture_with_context(e: Exception, extra: dict):
    """Capture exception to Sentry with render context and fingerprint dedup."""
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("component", "render_loop")
        scope.fingerprint = ["render-tick", type(e).__name__]
        scope.set_context("render", extra)
        sentry_sdk.capture_exception(e, scope=scope)


class RenderLoop:
    """Drives the dither engine from a FrameScheduler.

    Args:
        source:       Frame source; started by the caller, stopped by stop().
        surface:      Output surface owned by this loop.
        params:       Parameter store, read once per tick.
        scheduler:    Refresh-tick scheduler.
        display_size: Returns the current logical (width, height) of the display.
        device_pixel_ratio: Physical pixels per logical pixel.
        matrix:       Bayer rank matrix.
    """

    def __init__(
        self,
        source: FrameSource,
        surface: OutputSurface,
        params: ParameterStore,
        scheduler: FrameScheduler,
        display_size: Callable[[], tuple[int, int]],
        device_pixel_ratio: float = 1.0,
        matrix: np.ndarray = BAYER_4X4,
    ):
        self.source = source
        self.surface = surface
        self.params = params
        self.scheduler = scheduler
        self.display_size = display_size
        self.device_pixel_ratio = device_pixel_ratio
        self.matrix = matrix

        self._state = LoopState.IDLE
        self._handle: int | None = None
        self._active = False
        self._last_dims: tuple[int, int] | None = None

        self.frames_rendered = 0
        self.ticks_skipped = 0
        self.ticks_failed = 0
        self.consecutive_failures = 0
        self.last_error: Exception | None = None
        self._timing: deque = deque(maxlen=TIMING_WINDOW)

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def active(self) -> bool:
        """True while ticks are being scheduled (start() called, not stopped or halted)."""
        return self._active

    def start(self) -> None:
        """Begin scheduling ticks. The loop stays IDLE until the source is ready."""
        if self._active:
            return
        self._active = True
        self._schedule()
        logger.info("Render loop started")

    def stop(self) -> None:
        """Cancel the pending tick and release the frame source. Idempotent."""
        was_active = self._active
        self._active = False
        self.scheduler.cancel_frame(self._handle)
        self._handle = None
        self._state = LoopState.IDLE
        self.source.stop()
        if was_active:
            logger.info(
                "Render loop stopped after %d frames (%d skipped, %d failed)",
                self.frames_rendered,
                self.ticks_skipped,
                self.ticks_failed,
            )

    def _schedule(self) -> None:
        self._handle = self.scheduler.request_frame(self._tick)

    def _tick(self, timestamp: float) -> None:
        self._handle = None
        if not self._active:
            return

        try:
            self.render_once()
        except SurfaceUnavailable as e:
            self.last_error = e
            self.ticks_failed += 1
            _capture_with_context(e, self._context())
            logger.error("Output surface unavailable, halting render loop: %s", e)
            self._active = False
            self._state = LoopState.IDLE
            return
        except Exception as e:
            self._record_failure(e)
        else:
            self.consecutive_failures = 0

        if self._active:
            self._schedule()

    def render_once(self) -> bool:
        """Render one frame into the surface. Returns False for a no-op tick."""
        dims = self.source.native_dimensions()
        self._last_dims = dims
        if dims is None or dims[0] <= 0 or dims[1] <= 0:
            self._state = LoopState.IDLE
            self.ticks_skipped += 1
            return False
        frame = self.source.current_frame()
        if frame is None:
            self.ticks_skipped += 1
            return False

        if self._state is LoopState.IDLE:
            logger.info("Frame source ready (%dx%d), rendering", dims[0], dims[1])
        self._state = LoopState.RUNNING

        width, height = surface_size(*self.display_size(), self.device_pixel_ratio)
        self.surface.resize(width, height)
        snapshot = self.params.snapshot()

        t0 = time.monotonic()
        raster = render(
            frame, width, height, snapshot.cell_size, snapshot.threshold, self.matrix
        )
        self.surface.blit(raster)
        elapsed_ms = (time.monotonic() - t0) * 1000

        self._timing.append(elapsed_ms)
        self.frames_rendered += 1
        if elapsed_ms > TICK_WARN_MS:
            logger.warning(
                "Render took %.0fms (>%dms) at %dx%d, cell %d",
                elapsed_ms,
                TICK_WARN_MS,
                width,
                height,
                snapshot.cell_size,
                extra={"component": "render_loop", "threshold": snapshot.threshold},
            )
        return True

    def _record_failure(self, e: Exception) -> None:
        self.last_error = e
        self.ticks_failed += 1
        self.consecutive_failures += 1
        _capture_with_context(e, self._context())
        if self.consecutive_failures == 1:
            logger.error(
                "Render tick failed: %s",
                type(e).__name__,
                extra={"component": "render_loop", "surface": list(self.surface.size)},
            )
        elif self.consecutive_failures % FAILURE_LOG_EVERY == 0:
            logger.error(
                "Render failed %d ticks in a row: %s",
                self.consecutive_failures,
                type(e).__name__,
            )
        logger.debug("Render tick exception detail: %s", e)

    def _context(self) -> dict:
        return {
            "frames_rendered": self.frames_rendered,
            "surface": list(self.surface.size),
            "native": list(self._last_dims or (0, 0)),
            "params": self.params.snapshot().to_dict(),
        }

    def get_stats(self) -> dict:
        """Counters and p50/p95/max render time over the recent window."""
        s = sorted(self._timing)
        return {
            "state": self._state.value,
            "active": self._active,
            "frames_rendered": self.frames_rendered,
            "ticks_skipped": self.ticks_skipped,
            "ticks_failed": self.ticks_failed,
            "p50_ms": s[len(s) // 2] if s else 0,
            "p95_ms": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
            "max_ms": max(s) if s else 0,
            "samples": len(s),
        }
