"""Frame sources — camera, video file and still image.

Every source hands out only its most recent frame. current_frame() and
native_dimensions() never wait for new data: they return None until the
source has something to show.
"""

import logging
import math
import threading
import time
from pathlib import Path
from typing import Callable

import av
import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from security import IMAGE_EXTENSIONS, validate_source_file

logger = logging.getLogger(__name__)

# Grabber back-off after a failed camera read (seconds)
READ_RETRY_S = 0.01

# Longest the grabber thread gets to finish on stop() (seconds)
STOP_JOIN_TIMEOUT_S = 2.0

# Most frames a video source decodes in one pull to catch up with the clock
MAX_CATCHUP_FRAMES = 4


class DeviceUnavailable(RuntimeError):
    """The source could not be opened (no device, permission denied, bad file)."""


class FrameSource:
    """Interface shared by all frame sources."""

    def start(self) -> None:
        raise NotImplementedError

    def current_frame(self) -> np.ndarray | None:
        raise NotImplementedError

    def native_dimensions(self) -> tuple[int, int] | None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    @property
    def is_ready(self) -> bool:
        dims = self.native_dimensions()
        return dims is not None and dims[0] > 0 and dims[1] > 0


class StillSource(FrameSource):
    """A single fixed image, from an array or an image file."""

    def __init__(self, image: np.ndarray | str | Path):
        self._image_arg = image
        self._frame: np.ndarray | None = None

    def start(self) -> None:
        if self._frame is not None:
            return
        if isinstance(self._image_arg, np.ndarray):
            self._frame = self._image_arg
            return
        errors = validate_source_file(str(self._image_arg))
        if errors:
            raise DeviceUnavailable("; ".join(errors))
        try:
            with Image.open(self._image_arg) as img:
                self._frame = np.array(img.convert("RGBA"))
        except (OSError, UnidentifiedImageError) as e:
            raise DeviceUnavailable(f"could not load image: {type(e).__name__}") from e
        logger.info("Still source loaded: %dx%d", *self.native_dimensions())

    def current_frame(self) -> np.ndarray | None:
        return self._frame

    def native_dimensions(self) -> tuple[int, int] | None:
        if self._frame is None:
            return None
        h, w = self._frame.shape[:2]
        return w, h

    def stop(self) -> None:
        if self._frame is not None and not isinstance(self._image_arg, np.ndarray):
            self._frame = None


class CameraSource(FrameSource):
    """OpenCV camera capture with a background grabber thread.

    The grabber keeps only the latest frame (converted to RGBA); the render
    thread reads it without blocking.
    """

    def __init__(
        self,
        device: int = 0,
        width: int | None = None,
        height: int | None = None,
    ):
        self.device = device
        self.requested_size = (width, height)
        self._cap = None
        self._lock = threading.Lock()
        self._latest: np.ndarray | None = None
        self._dims: tuple[int, int] | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.frames_grabbed = 0

    def start(self) -> None:
        """Open the device and start grabbing.

        Raises:
            DeviceUnavailable: If the device cannot be opened.
        """
        if self._thread is not None:
            return
        cap = cv2.VideoCapture(self.device)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"camera {self.device} could not be opened")

        req_w, req_h = self.requested_size
        if req_w:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, req_w)
        if req_h:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, req_h)

        self._cap = cap
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._grab_loop,
            args=(cap, self._stop_event),
            name="CameraGrabber",
            daemon=True,
        )
        self._thread.start()
        logger.info("Camera %d opened", self.device)

    def _grab_loop(self, cap, stop_event: threading.Event) -> None:
        # Only this thread touches cap after start; it releases it on exit.
        try:
            while not stop_event.is_set():
                ok, frame = cap.read()
                if not ok or frame is None:
                    time.sleep(READ_RETRY_S)
                    continue
                rgba = cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)
                h, w = rgba.shape[:2]
                with self._lock:
                    if stop_event.is_set():
                        break
                    self._latest = rgba
                    self._dims = (w, h)
                self.frames_grabbed += 1
        finally:
            cap.release()
            logger.info("Camera %d released", self.device)

    def current_frame(self) -> np.ndarray | None:
        with self._lock:
            return self._latest

    def native_dimensions(self) -> tuple[int, int] | None:
        with self._lock:
            return self._dims

    def stop(self) -> None:
        """Stop grabbing and drop the last frame. Safe to call repeatedly.

        The device is released by the grabber thread once its current read
        returns.
        """
        with self._lock:
            self._stop_event.set()
            self._latest = None
            self._dims = None
        if self._thread is not None:
            self._thread.join(timeout=STOP_JOIN_TIMEOUT_S)
            if self._thread.is_alive():
                logger.warning(
                    "Camera %d read still blocked after %.1fs; releasing when it returns",
                    self.device,
                    STOP_JOIN_TIMEOUT_S,
                )
            self._thread = None
        self._cap = None


class VideoFileSource(FrameSource):
    """Plays a video file via PyAV as if it were a live feed, looping at the end.

    The frame shown is derived from wall-clock time since start:
    floor(elapsed * fps). Each pull decodes sequentially up to that frame,
    at most MAX_CATCHUP_FRAMES at a time; a source that falls behind keeps
    showing slightly older frames rather than stalling the render loop.
    """

    def __init__(self, path: str | Path, clock: Callable[[], float] = time.monotonic):
        self.path = str(path)
        self._clock = clock
        self.container = None
        self.stream = None
        self.fps = 30.0
        self.width = 0
        self.height = 0
        self._decoder = None
        self._start_time = 0.0
        self._last_index = -1
        self._latest: np.ndarray | None = None

    def start(self) -> None:
        """Open the file.

        Raises:
            DeviceUnavailable: If the file cannot be opened or has no video stream.
        """
        if self.container is not None:
            return
        errors = validate_source_file(self.path)
        if errors:
            raise DeviceUnavailable("; ".join(errors))
        try:
            container = av.open(self.path)
        except (av.error.FFmpegError, OSError) as e:
            raise DeviceUnavailable(f"could not open video: {type(e).__name__}") from e
        if not container.streams.video:
            container.close()
            raise DeviceUnavailable("file has no video stream")

        self.container = container
        self.stream = container.streams.video[0]
        self.stream.thread_type = "AUTO"
        rate = self.stream.average_rate
        self.fps = float(rate) if rate else 30.0
        self.width = self.stream.width
        self.height = self.stream.height
        self._rewind()
        logger.info(
            "Video source opened: %dx%d @ %.2f fps", self.width, self.height, self.fps
        )

    def _rewind(self) -> None:
        if self._last_index >= 0:
            self.container.seek(0, stream=self.stream)
        self._decoder = self.container.decode(video=0)
        self._start_time = self._clock()
        self._last_index = -1

    def _decode_next(self) -> np.ndarray | None:
        try:
            frame = next(self._decoder)
        except StopIteration:
            return None
        self._last_index += 1
        return frame.to_ndarray(format="rgba")

    def current_frame(self) -> np.ndarray | None:
        if self.container is None:
            return None
        target = math.floor((self._clock() - self._start_time) * self.fps)
        decoded = 0
        while self._last_index < target and decoded < MAX_CATCHUP_FRAMES:
            frame = self._decode_next()
            if frame is None:
                if self._last_index < 0:
                    # Empty stream; nothing will ever decode
                    break
                self._rewind()
                target = 0
                continue
            self._latest = frame
            decoded += 1
        if self._last_index < target:
            # Re-anchor so the backlog does not grow without bound
            self._start_time = self._clock() - (self._last_index + 1) / self.fps
        return self._latest

    def native_dimensions(self) -> tuple[int, int] | None:
        if self.container is None or self.width <= 0 or self.height <= 0:
            return None
        return self.width, self.height

    def stop(self) -> None:
        if self.container is not None:
            self.container.close()
            self.container = None
            self.stream = None
            self._decoder = None
            self._latest = None
            self._last_index = -1
            logger.info("Video source closed")


def open_source(
    spec: str, device: int = 0, width: int | None = None, height: int | None = None
) -> FrameSource:
    """Build a source from a CLI-style spec: "camera", an image path or a video path."""
    if spec == "camera":
        return CameraSource(device, width, height)
    suffix = Path(spec).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return StillSource(spec)
    return VideoFileSource(spec)
