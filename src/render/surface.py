"""Output surface — the RGBA raster the render loop draws into.

Behaves like a 2-D canvas: resizing to new dimensions clears it, draws are
clipped to its bounds, and it can be read back or encoded as an image.
"""

import io
import logging

import numpy as np
from PIL import Image

from dither.compose import BLACK, draw_scaled

logger = logging.getLogger(__name__)

# Largest edge a surface may take (same order as browser canvas limits)
MAX_SURFACE_DIM = 16384


class SurfaceUnavailable(RuntimeError):
    """The surface could not be allocated, drawn or encoded."""


class OutputSurface:
    def __init__(self, width: int = 0, height: int = 0):
        self._pixels = np.zeros((0, 0, 4), dtype=np.uint8)
        self.resize(width, height)

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def resize(self, width: int, height: int) -> bool:
        """Match the surface to width x height. Returns True if it changed.

        A size change clears the contents to transparent black, as a canvas
        does; resizing to the current size is a no-op.

        Raises:
            SurfaceUnavailable: For negative or oversized dimensions, or if
                the raster cannot be allocated.
        """
        width, height = int(width), int(height)
        if width < 0 or height < 0:
            raise SurfaceUnavailable(f"invalid surface size {width}x{height}")
        if width > MAX_SURFACE_DIM or height > MAX_SURFACE_DIM:
            raise SurfaceUnavailable(
                f"surface {width}x{height} exceeds maximum edge {MAX_SURFACE_DIM}"
            )
        if (width, height) == self.size:
            return False
        try:
            self._pixels = np.zeros((height, width, 4), dtype=np.uint8)
        except MemoryError as e:
            raise SurfaceUnavailable(
                f"could not allocate {width}x{height} surface"
            ) from e
        logger.debug("Surface resized to %dx%d", width, height)
        return True

    def clear(self, color: tuple[int, int, int, int] = BLACK) -> None:
        self._pixels[:, :] = color

    def draw_scaled_region(
        self,
        image: np.ndarray,
        dst_origin: tuple[float, float],
        dst_size: tuple[float, float],
        src_origin: tuple[int, int] | None = None,
        src_size: tuple[int, int] | None = None,
    ) -> None:
        """Draw image, or its src_origin/src_size region, scaled into dst."""
        src_rect = None
        if src_origin is not None or src_size is not None:
            sx, sy = src_origin or (0, 0)
            sw, sh = src_size or (image.shape[1] - sx, image.shape[0] - sy)
            src_rect = (sx, sy, sw, sh)
        draw_scaled(
            self._pixels,
            image,
            dst_origin[0],
            dst_origin[1],
            dst_size[0],
            dst_size[1],
            src_rect=src_rect,
        )

    def blit(self, raster: np.ndarray) -> None:
        """Copy a full-surface RGBA raster onto the surface."""
        if raster.shape != self._pixels.shape:
            raise ValueError(
                f"raster shape {raster.shape} does not match surface {self._pixels.shape}"
            )
        np.copyto(self._pixels, raster)

    def read_pixels(self) -> np.ndarray:
        """Copy of the current (H, W, 4) RGBA contents."""
        return self._pixels.copy()

    def export_image(self, fmt: str = "PNG") -> bytes:
        """Encode the current contents (PNG by default).

        Raises:
            SurfaceUnavailable: If the surface is empty or encoding fails.
        """
        if self.width == 0 or self.height == 0:
            raise SurfaceUnavailable("cannot export an empty surface")
        fmt = fmt.upper()
        pixels = self._pixels
        if fmt in ("JPEG", "JPG"):
            # JPEG is RGB only
            fmt = "JPEG"
            img = Image.fromarray(pixels[:, :, :3].copy())
        else:
            img = Image.fromarray(pixels.copy())
        buf = io.BytesIO()
        try:
            img.save(buf, format=fmt)
        except (KeyError, OSError, ValueError) as e:
            raise SurfaceUnavailable(f"could not encode surface as {fmt}") from e
        return buf.getvalue()
