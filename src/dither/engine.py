"""Ordered-dither engine — camera frame to two-tone cell raster.

Pipeline per frame:
1. Cover-fit the frame onto a black RGBA raster the size of the output.
2. Sample one pixel at each cell origin and average its RGB to a gray level.
3. Compare gray/255 against 0.5 + Bayer bias + threshold, where the bias is
   looked up with the cell origin's raster coordinates.
4. Paint each cell flat white (light) or blue (dark), clipped at the edges.

Sampling a single pixel per cell (not a block average) is the documented
behavior. Inputs are assumed pre-clamped by the control layer:
cell_size in [2, 16], threshold in [-1, 1].
"""

import numpy as np

from dither.bayer import BAYER_4X4, bias_table
from dither.compose import blank_canvas, draw_scaled
from dither.geometry import cover_fit

LIGHT = np.array([255, 255, 255, 255], dtype=np.uint8)
DARK = np.array([0, 0, 255, 255], dtype=np.uint8)

# Bytes per pixel in flat raster buffers (RGBA).
CHANNELS = 4


def compose_cover(frame: np.ndarray, out_w: int, out_h: int) -> np.ndarray:
    """Scale frame to cover out_w x out_h, centered, on an opaque black raster."""
    canvas = blank_canvas(out_w, out_h)
    native_h, native_w = frame.shape[:2]
    if native_w == 0 or native_h == 0 or out_w == 0 or out_h == 0:
        return canvas
    fit = cover_fit(native_w, native_h, out_w, out_h)
    draw_scaled(canvas, frame, fit.offset_x, fit.offset_y, fit.scaled_w, fit.scaled_h)
    return canvas


def cell_origins(width: int, height: int, cell_size: int) -> tuple[np.ndarray, np.ndarray]:
    """Cell origin coordinates (xs, ys), stepping by cell_size from 0."""
    step = max(1, int(cell_size))
    return (
        np.arange(0, width, step, dtype=np.int64),
        np.arange(0, height, step, dtype=np.int64),
    )


def sample_cells(
    pixels, width: int, height: int, cell_size: int
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Gray level (R+G+B)/3 at each cell origin of a flat RGBA buffer.

    Returns (xs, ys, gray) with gray shaped (len(ys), len(xs)). Origins whose
    RGB bytes lie past the end of the buffer read as black.
    """
    if isinstance(pixels, (bytes, bytearray, memoryview)):
        flat = np.frombuffer(pixels, dtype=np.uint8)
    else:
        flat = np.asarray(pixels, dtype=np.uint8).reshape(-1)
    xs, ys = cell_origins(width, height, cell_size)
    idx = (ys[:, None] * width + xs[None, :]) * CHANNELS
    valid = idx + 2 < flat.size
    safe = np.where(valid, idx, 0)

    if flat.size < 3:
        return xs, ys, np.zeros(idx.shape, dtype=np.float64)

    rgb_sum = (
        flat[safe].astype(np.float64)
        + flat[safe + 1].astype(np.float64)
        + flat[safe + 2].astype(np.float64)
    )
    gray = np.where(valid, rgb_sum / 3.0, 0.0)
    return xs, ys, gray


def light_cells(
    gray: np.ndarray,
    xs: np.ndarray,
    ys: np.ndarray,
    threshold: float,
    matrix: np.ndarray | None = None,
) -> np.ndarray:
    """Boolean (len(ys), len(xs)) mask of cells that render light."""
    table = bias_table(matrix)
    rows, cols = table.shape
    bias = table[np.ix_(ys % rows, xs % cols)]
    return (gray / 255.0) > (0.5 + bias + threshold)


def fill_cells(mask: np.ndarray, width: int, height: int, cell_size: int) -> np.ndarray:
    """Expand a cell mask to a width x height RGBA raster of LIGHT/DARK."""
    step = max(1, int(cell_size))
    expanded = np.repeat(np.repeat(mask, step, axis=0), step, axis=1)
    expanded = expanded[:height, :width]
    return np.where(expanded[:, :, None], LIGHT, DARK).astype(np.uint8)


def dither_buffer(
    pixels,
    width: int,
    height: int,
    cell_size: int,
    threshold: float,
    matrix: np.ndarray | None = None,
) -> np.ndarray:
    """Dither a flat RGBA pixel buffer of the given dimensions.

    The buffer may be shorter than width * height * 4 (truncated or corrupt
    input); missing samples count as black.
    """
    if width <= 0 or height <= 0:
        return np.zeros((max(height, 0), max(width, 0), CHANNELS), dtype=np.uint8)
    xs, ys, gray = sample_cells(pixels, width, height, cell_size)
    mask = light_cells(gray, xs, ys, threshold, matrix)
    return fill_cells(mask, width, height, cell_size)


def render(
    frame: np.ndarray,
    output_width: int,
    output_height: int,
    cell_size: int,
    threshold: float,
    matrix: np.ndarray | None = BAYER_4X4,
    out: np.ndarray | None = None,
) -> np.ndarray:
    """Render one dithered output raster from a raw frame.

    Args:
        frame:         Source frame (H, W, 3|4) or (H, W) uint8; native size
                       is its shape.
        output_width:  Output raster width in pixels.
        output_height: Output raster height in pixels.
        cell_size:     Cell edge in pixels.
        threshold:     Brightness bias added to every cell's cutoff.
        matrix:        Rank matrix; defaults to BAYER_4X4.
        out:           Optional (output_height, output_width, 4) uint8 array
                       to write the result into.

    Returns:
        The (output_height, output_width, 4) uint8 RGBA raster (``out`` when given).
    """
    output_width, output_height = max(0, int(output_width)), max(0, int(output_height))
    composed = compose_cover(frame, output_width, output_height)
    result = dither_buffer(
        composed, output_width, output_height, cell_size, threshold, matrix
    )
    if out is not None:
        if out.shape != result.shape:
            raise ValueError(f"out has shape {out.shape}, expected {result.shape}")
        np.copyto(out, result)
        return out
    return result
