"""Render parameters — schema, clamping and the shared parameter store."""

import logging
import math
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CELL_SIZE_MIN = 2
CELL_SIZE_MAX = 16
THRESHOLD_MIN = -1.0
THRESHOLD_MAX = 1.0

PARAMS: dict = {
    "cell_size": {
        "type": "int",
        "min": CELL_SIZE_MIN,
        "max": CELL_SIZE_MAX,
        "default": 4,
        "label": "Grid",
        "curve": "linear",
        "unit": "px",
        "description": "Edge length of one dither cell in output pixels",
    },
    "threshold": {
        "type": "float",
        "min": THRESHOLD_MIN,
        "max": THRESHOLD_MAX,
        "default": 0.0,
        "label": "Threshold",
        "curve": "linear",
        "unit": "",
        "description": "Brightness bias; higher values turn more cells dark",
    },
}


@dataclass(frozen=True)
class RenderParameters:
    cell_size: int = PARAMS["cell_size"]["default"]
    threshold: float = PARAMS["threshold"]["default"]

    def to_dict(self) -> dict:
        return {"cell_size": self.cell_size, "threshold": self.threshold}


def _is_finite(value) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def clamp_cell_size(value: float) -> int:
    """Floor to an int and clamp to [CELL_SIZE_MIN, CELL_SIZE_MAX]."""
    return max(CELL_SIZE_MIN, min(CELL_SIZE_MAX, math.floor(float(value))))


def clamp_threshold(value: float) -> float:
    return max(THRESHOLD_MIN, min(THRESHOLD_MAX, float(value)))


_CLAMPS = {"cell_size": clamp_cell_size, "threshold": clamp_threshold}


def coerce_params(raw: dict) -> dict:
    """Clamp known parameters from raw input.

    Unknown keys and non-numeric, NaN or infinite values are dropped so the
    current value stays in effect.
    """
    coerced = {}
    for key, value in raw.items():
        clamp = _CLAMPS.get(key)
        if clamp is None:
            logger.debug("Ignoring unknown parameter %s", key)
            continue
        if isinstance(value, bool) or not _is_finite(value):
            logger.debug("Ignoring non-finite value for %s", key)
            continue
        coerced[key] = clamp(value)
    return coerced


class ParameterStore:
    """Holds the current RenderParameters snapshot.

    Writers replace the whole immutable snapshot; readers take one
    snapshot per render tick. Last write wins.
    """

    def __init__(self, initial: RenderParameters | None = None):
        self._current = initial or RenderParameters()
        self._write_lock = threading.Lock()
        self.revision = 0

    def snapshot(self) -> RenderParameters:
        return self._current

    def update(self, **raw) -> RenderParameters:
        """Apply clamped values for cell_size and/or threshold; returns the new snapshot."""
        values = coerce_params(raw)
        with self._write_lock:
            if values:
                current = self._current.to_dict()
                current.update(values)
                self._current = RenderParameters(**current)
                self.revision += 1
            return self._current
