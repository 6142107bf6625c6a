"""Tests for frame sources."""

import threading
import time

import numpy as np
import pytest
from PIL import Image

import capture.source as source_mod
from capture.source import (
    CameraSource,
    DeviceUnavailable,
    StillSource,
    VideoFileSource,
    open_source,
)


# --- StillSource ---


def test_still_source_from_array(gray_frame):
    frame = gray_frame(10, 32, 16)
    src = StillSource(frame)
    assert src.native_dimensions() is None
    assert not src.is_ready
    src.start()
    assert src.native_dimensions() == (32, 16)
    assert src.current_frame() is frame
    src.stop()
    assert src.current_frame() is frame


def test_still_source_from_file(tmp_path):
    path = tmp_path / "still.png"
    Image.new("RGB", (20, 10), (255, 0, 0)).save(path)
    src = StillSource(path)
    src.start()
    frame = src.current_frame()
    assert frame.shape == (10, 20, 4)
    assert frame[0, 0].tolist() == [255, 0, 0, 255]
    src.stop()
    assert src.current_frame() is None


def test_still_source_bad_file(tmp_path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")
    with pytest.raises(DeviceUnavailable):
        StillSource(path).start()


# --- CameraSource ---


class FakeCapture:
    instances = []

    def __init__(self, device, opened=True):
        self.device = device
        self.opened = opened
        self.released = False
        self.props = {}
        FakeCapture.instances.append(self)

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        time.sleep(0.001)
        frame = np.zeros((6, 8, 3), dtype=np.uint8)
        frame[..., 0] = 255  # BGR blue
        return True, frame

    def release(self):
        self.released = True


@pytest.fixture
def fake_capture(monkeypatch):
    FakeCapture.instances = []
    monkeypatch.setattr(source_mod.cv2, "VideoCapture", FakeCapture)
    return FakeCapture


def _wait_ready(src, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if src.is_ready:
            return True
        time.sleep(0.005)
    return False


def test_camera_delivers_latest_rgba_frame(fake_capture):
    src = CameraSource(device=1, width=640, height=480)
    src.start()
    try:
        assert _wait_ready(src)
        frame = src.current_frame()
        assert frame.shape == (6, 8, 4)
        assert frame[0, 0].tolist() == [0, 0, 255, 255]
        assert src.native_dimensions() == (8, 6)
        cap = fake_capture.instances[0]
        assert cap.device == 1
        assert cap.props[source_mod.cv2.CAP_PROP_FRAME_WIDTH] == 640
    finally:
        src.stop()


def test_camera_stop_releases_device(fake_capture):
    src = CameraSource()
    src.start()
    assert _wait_ready(src)
    src.stop()
    src.stop()
    assert fake_capture.instances[0].released
    assert src.current_frame() is None
    assert src.native_dimensions() is None


def test_camera_slow_read_outlasting_stop(monkeypatch):
    class SlowCapture(FakeCapture):
        def __init__(self, device):
            super().__init__(device)
            self.reading = False
            self.released_during_read = False
            self.first_read = threading.Event()

        def read(self):
            self.reading = True
            self.first_read.set()
            time.sleep(0.3)
            self.reading = False
            return super().read()

        def release(self):
            self.released_during_read = self.reading
            super().release()

    FakeCapture.instances = []
    monkeypatch.setattr(source_mod.cv2, "VideoCapture", SlowCapture)
    monkeypatch.setattr(source_mod, "STOP_JOIN_TIMEOUT_S", 0.05)

    src = CameraSource()
    src.start()
    cap = FakeCapture.instances[0]
    assert cap.first_read.wait(1.0)
    thread = src._thread
    src.stop()
    assert thread.is_alive()

    thread.join(timeout=2.0)
    assert cap.released
    assert not cap.released_during_read
    assert src.current_frame() is None
    assert src.native_dimensions() is None
    assert not src.is_ready


def test_camera_unavailable(monkeypatch):
    monkeypatch.setattr(
        source_mod.cv2, "VideoCapture", lambda device: FakeCapture(device, opened=False)
    )
    src = CameraSource()
    with pytest.raises(DeviceUnavailable):
        src.start()
    src.stop()


# --- VideoFileSource ---


def test_video_source_metadata(synthetic_video_path, fake_clock):
    src = VideoFileSource(synthetic_video_path, clock=fake_clock)
    assert src.native_dimensions() is None
    src.start()
    assert src.native_dimensions() == (64, 48)
    assert src.fps == pytest.approx(10.0)
    src.stop()


def test_video_source_follows_clock(synthetic_video_path, fake_clock):
    src = VideoFileSource(synthetic_video_path, clock=fake_clock)
    src.start()
    first = src.current_frame()
    assert first.shape == (48, 64, 4)
    assert src.current_frame() is first  # no time passed

    fake_clock.advance(0.35)
    later = src.current_frame()
    assert later[:, :, 0].mean() > first[:, :, 0].mean()
    src.stop()


def test_video_source_loops(synthetic_video_path, fake_clock):
    src = VideoFileSource(synthetic_video_path, clock=fake_clock)
    src.start()
    first_red = src.current_frame()[:, :, 0].mean()
    for _ in range(30):
        fake_clock.advance(0.1)
        assert src.current_frame() is not None
    frame = src.current_frame()
    assert frame.shape == (48, 64, 4)
    # After wrapping, an early frame is shown again at some point
    seen_early = False
    for _ in range(12):
        fake_clock.advance(0.1)
        if abs(src.current_frame()[:, :, 0].mean() - first_red) < 10:
            seen_early = True
    assert seen_early
    src.stop()


def test_video_source_missing_file(home_tmp_path):
    with pytest.raises(DeviceUnavailable):
        VideoFileSource(home_tmp_path / "missing.mp4").start()


def test_video_source_not_a_video(home_tmp_path):
    path = home_tmp_path / "junk.mp4"
    path.write_bytes(b"\x00" * 64)
    with pytest.raises(DeviceUnavailable):
        VideoFileSource(path).start()


def test_video_source_stop_is_idempotent(synthetic_video_path):
    src = VideoFileSource(synthetic_video_path)
    src.start()
    src.stop()
    src.stop()
    assert src.current_frame() is None


# --- open_source ---


def test_open_source_dispatch():
    assert isinstance(open_source("camera", device=2), CameraSource)
    assert isinstance(open_source("/tmp/photo.JPG"), StillSource)
    assert isinstance(open_source("/tmp/clip.mov"), VideoFileSource)
