"""Application configuration — environment defaults, overridden by CLI flags."""

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path

from controls.input import ADAPTERS
from render.scheduler import DEFAULT_REFRESH_HZ

ENV_PREFIX = "DITHERCAM_"


def _default_capture_dir() -> str:
    return str(Path.home() / "Pictures" / "dithercam")


@dataclass(frozen=True)
class AppConfig:
    source: str = "camera"
    device: int = 0
    width: int = 1280
    height: int = 720
    device_pixel_ratio: float = 1.0
    capture_dir: str = dataclasses.field(default_factory=_default_capture_dir)
    capture_format: str = "PNG"
    control: str = "gesture"
    remote: bool = False
    refresh_hz: float = DEFAULT_REFRESH_HZ
    log_level: str = ""  # empty: APP_LOG_LEVEL, else INFO

    def __post_init__(self):
        if self.control not in ADAPTERS:
            raise ValueError(
                f"control must be one of {sorted(ADAPTERS)}, got '{self.control}'"
            )
        if self.device_pixel_ratio <= 0:
            raise ValueError("device_pixel_ratio must be positive")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("window size must be positive")

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "AppConfig":
        """Build from DITHERCAM_* variables (e.g. DITHERCAM_DEVICE=1)."""
        env = os.environ if environ is None else environ
        values = {}
        for f in dataclasses.fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _parse(f.type, raw, f.name)
        return cls(**values)

    def with_overrides(self, **overrides) -> "AppConfig":
        """Copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes)


def _parse(type_name, raw: str, name: str):
    type_name = type_name if isinstance(type_name, str) else type_name.__name__
    try:
        if type_name == "int":
            return int(raw)
        if type_name == "float":
            return float(raw)
        if type_name == "bool":
            return raw.strip().lower() in ("1", "true", "yes", "on")
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name.upper()}: invalid {type_name} '{raw}'") from None
    return raw
