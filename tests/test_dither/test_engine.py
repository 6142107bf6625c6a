"""Tests for the ordered-dither engine."""

import numpy as np
import pytest

from dither.bayer import BAYER_4X4
from dither.engine import (
    DARK,
    LIGHT,
    compose_cover,
    dither_buffer,
    light_cells,
    render,
    sample_cells,
)

pytestmark = pytest.mark.smoke


def _is_light(raster):
    return (raster == LIGHT).all(axis=-1)


def _is_dark(raster):
    return (raster == DARK).all(axis=-1)


def test_render_is_deterministic(noise_frame):
    a = render(noise_frame, 200, 150, 4, 0.1)
    b = render(noise_frame, 200, 150, 4, 0.1)
    np.testing.assert_array_equal(a, b)


@pytest.mark.parametrize("cell_size", range(2, 17))
def test_output_is_two_tone(noise_frame, cell_size):
    out = render(noise_frame, 123, 77, cell_size, 0.0)
    assert out.shape == (77, 123, 4)
    assert out.dtype == np.uint8
    assert (_is_light(out) | _is_dark(out)).all()


@pytest.mark.parametrize("cell_size", [2, 3, 5, 8, 16])
def test_cells_are_uniform_and_clipped(noise_frame, cell_size):
    width, height = 50, 37
    out = render(noise_frame, width, height, cell_size, 0.0)
    for y0 in range(0, height, cell_size):
        for x0 in range(0, width, cell_size):
            cell = out[y0 : y0 + cell_size, x0 : x0 + cell_size]
            assert (cell == cell[0, 0]).all()


def test_end_to_end_uniform_gray(gray_frame):
    """640x480 gray 128 onto 800x600, cell 8: light exactly where the rank is <= 8."""
    frame = gray_frame(128, 640, 480)
    out = render(frame, 800, 600, 8, 0.0)
    assert out.shape == (600, 800, 4)

    light = _is_light(out)
    for y0 in range(0, 600, 8):
        for x0 in range(0, 800, 8):
            expected = BAYER_4X4[y0 % 4, x0 % 4] <= 8
            assert light[y0, x0] == expected
            assert (light[y0 : y0 + 8, x0 : x0 + 8] == expected).all()


@pytest.mark.parametrize("cell", [3, 5, 7])
@pytest.mark.parametrize("k", range(17))
def test_uniform_gray_lights_k_of_16(gray_frame, cell, k):
    """Odd cell sizes walk every rank over 4x4 cells, so k/16 of them light."""
    size = 4 * cell
    value = min(255, (255 * k) // 16)
    out = render(gray_frame(value, size, size), size, size, cell, 0.0)
    assert int(_is_light(out)[::cell, ::cell].sum()) == k


@pytest.mark.parametrize("cell", [3, 5, 7])
def test_rank_le_8_is_light_at_mid_gray(gray_frame, cell):
    size = 4 * cell
    out = render(gray_frame(128, size, size), size, size, cell, 0.0)
    origins = np.arange(4) * cell
    expected = BAYER_4X4[np.ix_(origins % 4, origins % 4)] <= 8
    np.testing.assert_array_equal(_is_light(out)[::cell, ::cell], expected)


def test_threshold_max_is_all_dark(gray_frame):
    out = render(gray_frame(255), 64, 48, 2, 1.0)
    assert _is_dark(out).all()


def test_threshold_min_is_all_light(gray_frame):
    out = render(gray_frame(0), 64, 48, 2, -1.0)
    assert _is_light(out).all()


def test_higher_threshold_never_adds_light(noise_frame):
    low = _is_light(render(noise_frame, 96, 96, 3, -0.2))
    high = _is_light(render(noise_frame, 96, 96, 3, 0.3))
    assert not (high & ~low).any()


def test_compose_cover_has_no_letterbox():
    white = np.full((480, 640, 4), 255, dtype=np.uint8)
    for ow, oh in [(801, 599), (599, 801), (1000, 100), (100, 1000), (333, 333)]:
        composed = compose_cover(white, ow, oh)
        assert composed.shape == (oh, ow, 4)
        assert (composed[:, :, :3] == 255).all(), (ow, oh)


def test_compose_cover_crops_centered():
    frame = np.zeros((50, 100, 4), dtype=np.uint8)
    frame[:, :, 0] = np.arange(100, dtype=np.uint8)[None, :]
    frame[:, :, 3] = 255
    composed = compose_cover(frame, 50, 50)
    assert composed[0, 0, 0] == 25
    assert composed[0, 49, 0] == 74


def test_empty_frame_renders_dark(gray_frame):
    out = render(np.zeros((0, 0, 4), dtype=np.uint8), 16, 16, 4, 0.0)
    assert _is_dark(out).all()


def test_zero_output_size(noise_frame):
    assert render(noise_frame, 0, 10, 4, 0.0).shape == (10, 0, 4)
    assert render(noise_frame, -5, -5, 4, 0.0).shape == (0, 0, 4)


def test_rgb_and_rgba_input_agree(noise_frame):
    rgba = noise_frame.copy()
    rgba[:, :, 3] = 255
    np.testing.assert_array_equal(
        render(rgba, 80, 60, 4, 0.0), render(rgba[:, :, :3], 80, 60, 4, 0.0)
    )


def test_truncated_buffer_reads_black():
    width, height = 8, 8
    full = np.full(width * height * 4, 255, dtype=np.uint8)
    truncated = full[: width * 4 * 4].tobytes()  # first four rows only
    out = dither_buffer(truncated, width, height, 2, 0.0)
    assert _is_light(out[:4]).all()
    assert _is_dark(out[4:]).all()


def test_tiny_buffer_is_all_dark():
    out = dither_buffer(b"\xff\xff", 4, 4, 2, 0.0)
    assert _is_dark(out).all()


def test_sample_cells_reads_top_left_pixel():
    pixels = np.zeros((4, 4, 4), dtype=np.uint8)
    pixels[0, 0, :3] = (30, 60, 90)
    pixels[1, 1, :3] = 255  # inside the cell, not sampled
    xs, ys, gray = sample_cells(pixels, 4, 4, 4)
    assert xs.tolist() == [0]
    assert ys.tolist() == [0]
    assert gray[0, 0] == pytest.approx(60.0)


def test_light_cells_uses_raster_coordinates():
    xs = np.array([0, 1, 2, 3])
    ys = np.array([0])
    gray = np.full((1, 4), 128.0)
    mask = light_cells(gray, xs, ys, 0.0)
    assert mask.tolist() == [[True, True, True, False]]


def test_render_into_out(noise_frame):
    out = np.zeros((30, 40, 4), dtype=np.uint8)
    result = render(noise_frame, 40, 30, 4, 0.0, out=out)
    assert result is out
    np.testing.assert_array_equal(out, render(noise_frame, 40, 30, 4, 0.0))


def test_render_out_shape_mismatch(noise_frame):
    with pytest.raises(ValueError):
        render(noise_frame, 40, 30, 4, 0.0, out=np.zeros((10, 10, 4), dtype=np.uint8))
