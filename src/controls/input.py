"""Input adapters that turn UI events into parameter writes.

Two interchangeable strategies feed the same ParameterStore:

- PointerGestureInput: pointer position over the output drives both knobs.
  x maps linearly to threshold (left = -1, right = 1); y maps inversely to
  cell size (top = largest cells, bottom = smallest).
- SliderInput: one trackbar per parameter.

Clamping happens here, never in the dither engine.
"""

import math

from controls.params import (
    CELL_SIZE_MAX,
    CELL_SIZE_MIN,
    THRESHOLD_MAX,
    THRESHOLD_MIN,
    ParameterStore,
    RenderParameters,
    clamp_cell_size,
    clamp_threshold,
)

# Trackbar resolution for the threshold slider (positions 0..THRESHOLD_STEPS)
THRESHOLD_STEPS = 200


def gesture_to_params(x: float, y: float, width: float, height: float) -> tuple[int, float]:
    """Map a pointer position inside width x height to (cell_size, threshold).

    Raises:
        ValueError: If the bounds are empty.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"pointer bounds must be non-empty, got {width}x{height}")
    threshold = (x / width) * 2 - 1
    span = CELL_SIZE_MAX - CELL_SIZE_MIN
    cell_size = math.floor(((height - y) / height) * span + CELL_SIZE_MIN)
    return clamp_cell_size(cell_size), clamp_threshold(threshold)


class InputAdapter:
    """Base for input strategies writing into a ParameterStore."""

    name = "base"

    def __init__(self, store: ParameterStore):
        self.store = store
        self.overlay_visible = False

    def on_pointer_down(self, x: float, y: float, width: float, height: float) -> None:
        self.overlay_visible = True

    def on_pointer_move(
        self, x: float, y: float, width: float, height: float
    ) -> RenderParameters | None:
        return None


class PointerGestureInput(InputAdapter):
    name = "gesture"

    def on_pointer_move(
        self, x: float, y: float, width: float, height: float
    ) -> RenderParameters | None:
        """Update both parameters from a pointer position. Empty bounds are ignored."""
        if width <= 0 or height <= 0:
            return None
        cell_size, threshold = gesture_to_params(x, y, width, height)
        return self.store.update(cell_size=cell_size, threshold=threshold)


class SliderInput(InputAdapter):
    name = "slider"

    def set_cell_size(self, value: float) -> RenderParameters:
        return self.store.update(cell_size=value)

    def set_threshold(self, value: float) -> RenderParameters:
        return self.store.update(threshold=value)

    def on_cell_position(self, position: int) -> RenderParameters:
        return self.set_cell_size(position)

    def on_threshold_position(self, position: int) -> RenderParameters:
        """Trackbar position 0..THRESHOLD_STEPS -> threshold -1..1."""
        span = THRESHOLD_MAX - THRESHOLD_MIN
        return self.set_threshold(THRESHOLD_MIN + (position / THRESHOLD_STEPS) * span)

    @staticmethod
    def positions(params: RenderParameters) -> tuple[int, int]:
        """Trackbar positions (cell, threshold) for a parameter snapshot."""
        span = THRESHOLD_MAX - THRESHOLD_MIN
        threshold_pos = round((params.threshold - THRESHOLD_MIN) / span * THRESHOLD_STEPS)
        return params.cell_size, threshold_pos


ADAPTERS = {
    PointerGestureInput.name: PointerGestureInput,
    SliderInput.name: SliderInput,
}


def make_adapter(name: str, store: ParameterStore) -> InputAdapter:
    try:
        return ADAPTERS[name](store)
    except KeyError:
        raise ValueError(
            f"unknown control mode '{name}'. Available: {sorted(ADAPTERS)}"
        ) from None
