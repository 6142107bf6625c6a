"""Raster compositing — scaled draws onto RGBA canvases."""

import math

import cv2
import numpy as np

BLACK = (0, 0, 0, 255)


def to_rgba(frame: np.ndarray) -> np.ndarray:
    """Return frame as an (H, W, 4) uint8 RGBA array.

    Accepts grayscale (H, W), RGB (H, W, 3) and RGBA (H, W, 4) input.
    RGBA uint8 input is returned as-is (no copy).
    """
    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)
    if frame.ndim == 2:
        return cv2.cvtColor(np.ascontiguousarray(frame), cv2.COLOR_GRAY2RGBA)
    if frame.ndim == 3 and frame.shape[2] == 3:
        return cv2.cvtColor(np.ascontiguousarray(frame), cv2.COLOR_RGB2RGBA)
    if frame.ndim == 3 and frame.shape[2] == 4:
        return frame
    raise ValueError(f"unsupported frame shape {frame.shape}")


def blank_canvas(width: int, height: int, color=BLACK) -> np.ndarray:
    canvas = np.empty((height, width, 4), dtype=np.uint8)
    canvas[:, :] = color
    return canvas


def _round(v: float) -> int:
    return math.floor(v + 0.5)


def draw_scaled(
    canvas: np.ndarray,
    image: np.ndarray,
    dst_x: float,
    dst_y: float,
    dst_w: float,
    dst_h: float,
    src_rect: tuple[int, int, int, int] | None = None,
) -> None:
    """Draw image (or its src_rect region) scaled to dst_w x dst_h at (dst_x, dst_y).

    Destination coordinates may be negative or extend past the canvas; the
    draw is clipped to the canvas bounds. Bilinear resampling.
    """
    src = to_rgba(image)
    if src_rect is not None:
        sx, sy, sw, sh = src_rect
        sx0, sy0 = max(0, sx), max(0, sy)
        sx1 = min(src.shape[1], sx + sw)
        sy1 = min(src.shape[0], sy + sh)
        if sx1 <= sx0 or sy1 <= sy0:
            return
        src = src[sy0:sy1, sx0:sx1]

    tw, th = _round(dst_w), _round(dst_h)
    if tw <= 0 or th <= 0 or src.size == 0:
        return

    if (tw, th) != (src.shape[1], src.shape[0]):
        src = cv2.resize(
            np.ascontiguousarray(src), (tw, th), interpolation=cv2.INTER_LINEAR
        )

    canvas_h, canvas_w = canvas.shape[:2]
    x0, y0 = _round(dst_x), _round(dst_y)
    cx0, cy0 = max(x0, 0), max(y0, 0)
    cx1, cy1 = min(x0 + tw, canvas_w), min(y0 + th, canvas_h)
    if cx1 <= cx0 or cy1 <= cy0:
        return

    canvas[cy0:cy1, cx0:cx1] = src[cy0 - y0 : cy1 - y0, cx0 - x0 : cx1 - x0]
