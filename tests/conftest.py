import shutil
import uuid
from pathlib import Path

import numpy as np
import pytest

from controls.params import ParameterStore
from controls.server import ControlServer


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def gray_frame():
    """Factory for uniform RGBA frames: gray_frame(value, width, height)."""

    def _make(value: int, width: int = 64, height: int = 48) -> np.ndarray:
        frame = np.full((height, width, 4), value, dtype=np.uint8)
        frame[:, :, 3] = 255
        return frame

    return _make


@pytest.fixture
def noise_frame():
    rng = np.random.default_rng(1234)
    return rng.integers(0, 256, size=(120, 160, 4), dtype=np.uint8)


@pytest.fixture
def home_tmp_path():
    """tmp_path equivalent under ~/ (system temp dirs can fall under blocked prefixes)."""
    base = Path.home() / ".cache" / "dithercam" / "test-tmp"
    base.mkdir(parents=True, exist_ok=True)
    d = base / f"test_{uuid.uuid4().hex[:8]}"
    d.mkdir()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(scope="session")
def synthetic_video_path(tmp_path_factory):
    """A 1s 64x48 video at 10 fps whose red channel ramps up frame by frame."""
    import av

    path = tmp_path_factory.mktemp("video") / "ramp.mp4"
    container = av.open(str(path), mode="w")
    stream = container.add_stream("libx264", rate=10)
    stream.width = 64
    stream.height = 48
    stream.pix_fmt = "yuv420p"
    for i in range(10):
        frame = np.zeros((48, 64, 3), dtype=np.uint8)
        frame[:, :, 0] = 20 + i * 20
        frame[:, :, 1] = 128
        vf = av.VideoFrame.from_ndarray(frame, format="rgb24")
        for pkt in stream.encode(vf):
            container.mux(pkt)
    for pkt in stream.encode():
        container.mux(pkt)
    container.close()
    return str(path)


@pytest.fixture
def store():
    return ParameterStore()


@pytest.fixture
def control_server(store):
    """ControlServer bound to a random local port; closed after the test."""
    srv = ControlServer(store)
    yield srv
    srv.close()
