"""OpenCV window shell: presents the surface, routes input, owns teardown."""

import logging

import cv2
import numpy as np
import sentry_sdk

from capture.export import CaptureExporter
from capture.source import DeviceUnavailable, FrameSource, open_source
from config import AppConfig
from controls.input import THRESHOLD_STEPS, SliderInput, make_adapter
from controls.params import CELL_SIZE_MAX, CELL_SIZE_MIN, ParameterStore
from controls.server import ControlServer
from dither.geometry import surface_size
from render.loop import RenderLoop
from render.scheduler import FrameScheduler
from render.surface import OutputSurface, SurfaceUnavailable

logger = logging.getLogger(__name__)

WINDOW_NAME = "dithercam"
CELL_TRACKBAR = "Cell"
THRESHOLD_TRACKBAR = "Threshold"

KEY_ESC = 27
QUIT_KEYS = {ord("q"), KEY_ESC}
CAPTURE_KEYS = {ord("c"), ord(" ")}
OVERLAY_KEY = ord("o")


def overlay_text(cell_size: int, threshold: float) -> list[str]:
    return [f"Grid: {cell_size}px", f"Threshold: {threshold:.2f}"]


class DitherCamApp:
    """Wires source, render loop, controls and capture into one window.

    Args:
        config: Application configuration.
        source: Frame source; built from config.source when omitted.
    """

    def __init__(self, config: AppConfig, source: FrameSource | None = None):
        self.config = config
        self.store = ParameterStore()
        self.surface = OutputSurface()
        self.scheduler = FrameScheduler(refresh_hz=config.refresh_hz)
        self.source = source or open_source(
            config.source, config.device, config.width, config.height
        )
        self.loop = RenderLoop(
            self.source,
            self.surface,
            self.store,
            self.scheduler,
            display_size=self.display_size,
            device_pixel_ratio=config.device_pixel_ratio,
        )
        self.exporter = CaptureExporter(config.capture_dir, config.capture_format)
        self.input = make_adapter(config.control, self.store)
        self.server = None
        self._running = False
        self._window_open = False

    # --- window ---

    def open_window(self) -> None:
        cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)
        cv2.resizeWindow(WINDOW_NAME, self.config.width, self.config.height)
        cv2.setMouseCallback(WINDOW_NAME, self.on_mouse)
        if isinstance(self.input, SliderInput):
            self._create_trackbars()
        self._window_open = True

    def _create_trackbars(self) -> None:
        cell_pos, threshold_pos = SliderInput.positions(self.store.snapshot())
        cv2.createTrackbar(
            CELL_TRACKBAR, WINDOW_NAME, cell_pos, CELL_SIZE_MAX, self.input.on_cell_position
        )
        cv2.setTrackbarMin(CELL_TRACKBAR, WINDOW_NAME, CELL_SIZE_MIN)
        cv2.createTrackbar(
            THRESHOLD_TRACKBAR,
            WINDOW_NAME,
            threshold_pos,
            THRESHOLD_STEPS,
            self.input.on_threshold_position,
        )

    def display_size(self) -> tuple[int, int]:
        """Logical size of the window's image area, or the configured size."""
        if self._window_open:
            try:
                _, _, w, h = cv2.getWindowImageRect(WINDOW_NAME)
            except cv2.error:
                w = h = -1
            if w > 0 and h > 0:
                return w, h
        return self.config.width, self.config.height

    def pointer_bounds(self) -> tuple[int, int]:
        """Coordinate space of mouse events: the presented surface."""
        if self.surface.width > 0 and self.surface.height > 0:
            return self.surface.size
        return surface_size(*self.display_size(), self.config.device_pixel_ratio)

    # --- input ---

    def on_mouse(self, event, x, y, flags, param) -> None:
        width, height = self.pointer_bounds()
        if event == cv2.EVENT_LBUTTONDOWN:
            self.input.on_pointer_down(x, y, width, height)
        elif event == cv2.EVENT_MOUSEMOVE:
            self.input.on_pointer_move(x, y, width, height)

    def handle_key(self, key: int) -> None:
        if key < 0:
            return
        key &= 0xFF
        if key in QUIT_KEYS:
            self.quit()
        elif key in CAPTURE_KEYS:
            try:
                self.capture()
            except (OSError, ValueError, SurfaceUnavailable) as e:
                logger.error("Capture failed: %s", e)
        elif key == OVERLAY_KEY:
            self.input.overlay_visible = not self.input.overlay_visible

    def capture(self) -> str:
        """Save the current surface contents. Returns the written path."""
        return str(self.exporter.capture(self.surface))

    def quit(self) -> None:
        self._running = False

    # --- presentation ---

    def present_frame(self) -> np.ndarray:
        """BGR image for the window, with the overlay drawn on the copy only."""
        if self.surface.width == 0 or self.surface.height == 0:
            w, h = surface_size(*self.display_size(), self.config.device_pixel_ratio)
            return np.zeros((max(h, 1), max(w, 1), 3), dtype=np.uint8)

        image = cv2.cvtColor(self.surface.read_pixels(), cv2.COLOR_RGBA2BGR)
        if self.input.overlay_visible:
            params = self.store.snapshot()
            for i, line in enumerate(overlay_text(params.cell_size, params.threshold)):
                cv2.putText(
                    image,
                    line,
                    (10, 24 + i * 22),
                    cv2.FONT_HERSHEY_SIMPLEX,
                    0.6,
                    (255, 255, 255),
                    1,
                    cv2.LINE_AA,
                )
        return image

    def pump(self) -> None:
        """Per-tick housekeeping: present, poll the control socket, handle keys."""
        if self.server is not None:
            self.server.poll()
        if not self._window_open:
            return
        cv2.imshow(WINDOW_NAME, self.present_frame())
        self.handle_key(cv2.waitKey(1))
        if cv2.getWindowProperty(WINDOW_NAME, cv2.WND_PROP_VISIBLE) < 1:
            logger.info("Window closed")
            self.quit()

    def keep_running(self) -> bool:
        return self._running

    # --- lifecycle ---

    def enable_remote(self):
        self.server = ControlServer(
            self.store,
            capture=self.capture,
            stats=self.loop.get_stats,
            pointer_bounds=self.pointer_bounds,
            on_shutdown=self.quit,
        )
        logger.info("Remote control listening on port %d", self.server.port)
        return self.server

    def start(self) -> None:
        """Open the source and start ticking. A missing device leaves the loop idle."""
        try:
            self.source.start()
        except DeviceUnavailable as e:
            sentry_sdk.capture_exception(e)
            logger.error(
                "Frame source unavailable: %s",
                e,
                extra={"component": "app", "source": self.config.source},
            )
        self.loop.start()
        self._running = True

    def run(self) -> None:
        self.open_window()
        self.start()
        try:
            self.scheduler.run(self.keep_running, pump=self.pump)
        finally:
            self.teardown()

    def teardown(self) -> None:
        self._running = False
        self.loop.stop()
        if self.server is not None:
            self.server.close()
            self.server = None
        if self._window_open:
            cv2.destroyAllWindows()
            self._window_open = False
