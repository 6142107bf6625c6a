"""Cover-fit scaling and surface sizing.

Shared by the live render path and capture so both crop the source the
same way.
"""

import math
from typing import NamedTuple


class CoverFit(NamedTuple):
    scale: float
    offset_x: float
    offset_y: float
    scaled_w: float
    scaled_h: float


def cover_fit(native_w: int, native_h: int, out_w: int, out_h: int) -> CoverFit:
    """Scale and center a native frame so it covers the whole output.

    The scaled frame matches the output on one axis and overflows (never
    underflows) on the other; the overflow is split evenly so offsets are
    zero or negative.

    Raises:
        ValueError: If either native dimension is not positive.
    """
    if native_w <= 0 or native_h <= 0:
        raise ValueError(f"native dimensions must be positive, got {native_w}x{native_h}")

    scale = max(out_w / native_w, out_h / native_h)
    scaled_w = native_w * scale
    scaled_h = native_h * scale
    return CoverFit(
        scale=scale,
        offset_x=(out_w - scaled_w) / 2,
        offset_y=(out_h - scaled_h) / 2,
        scaled_w=scaled_w,
        scaled_h=scaled_h,
    )


def surface_size(
    logical_w: float, logical_h: float, device_pixel_ratio: float = 1.0
) -> tuple[int, int]:
    """Raster size for a display area: logical size times pixel ratio, truncated."""
    ratio = device_pixel_ratio if device_pixel_ratio > 0 else 1.0
    width = max(0, math.floor(logical_w * ratio))
    height = max(0, math.floor(logical_h * ratio))
    return width, height
