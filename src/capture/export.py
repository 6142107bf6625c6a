"""Capture export — save the on-screen surface as an image file."""

import datetime
import logging
from pathlib import Path

import sentry_sdk

from render.surface import OutputSurface
from security import ALLOWED_CAPTURE_FORMATS, validate_capture_dir, validate_capture_format

logger = logging.getLogger(__name__)

CAPTURE_PREFIX = "dithercam"


def capture_filename(now: datetime.datetime | None = None, fmt: str = "PNG") -> str:
    """Timestamped capture file name, e.g. dithercam-2024-05-01T12-30-00.000Z.png.

    ISO-8601 UTC with millisecond precision; colons become dashes so the
    name is valid on every filesystem.
    """
    if now is None:
        now = datetime.datetime.now(tz=datetime.timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    stamp = now.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    stamp += f".{now.microsecond // 1000:03d}Z"
    ext = ALLOWED_CAPTURE_FORMATS.get(fmt.upper(), "." + fmt.lower())
    return f"{CAPTURE_PREFIX}-{stamp}{ext}"


class CaptureExporter:
    """Writes the exact current contents of an OutputSurface to disk.

    Nothing is re-rendered: the file holds what the surface held at the
    moment capture() was called.
    """

    def __init__(self, directory: str | Path, fmt: str = "PNG"):
        errors = validate_capture_format(fmt)
        if errors:
            raise ValueError("; ".join(errors))
        self.directory = Path(directory).expanduser()
        self.fmt = fmt.upper()
        self.last_path: Path | None = None
        self.count = 0

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def capture(self, surface: OutputSurface, now: datetime.datetime | None = None) -> Path:
        """Encode the surface and write it to the capture directory.

        Raises:
            ValueError: If the capture directory fails validation.
            SurfaceUnavailable: If the surface is empty or cannot be encoded.
        """
        errors = validate_capture_dir(str(self.directory), must_exist=False)
        if not errors:
            self.ensure_directory()
            errors = validate_capture_dir(str(self.directory))
        if errors:
            raise ValueError("; ".join(errors))

        data = surface.export_image(self.fmt)
        base = self.directory / capture_filename(now, self.fmt)
        path = base
        n = 1
        while path.exists():
            path = base.with_name(f"{base.stem}-{n}{base.suffix}")
            n += 1

        try:
            path.write_bytes(data)
        except OSError as e:
            sentry_sdk.capture_exception(e)
            logger.error("Capture write failed: %s", type(e).__name__)
            raise

        self.last_path = path
        self.count += 1
        logger.info(
            "Captured %dx%d frame to %s (%d bytes)",
            surface.width,
            surface.height,
            path.name,
            len(data),
        )
        return path
