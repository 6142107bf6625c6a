"""Bayer threshold matrix for ordered dithering."""

import numpy as np

# 4x4 ordered-dither ranks, 0..15, each used once.
BAYER_4X4 = np.array(
    [
        [0, 8, 2, 10],
        [12, 4, 14, 6],
        [3, 11, 1, 9],
        [15, 7, 13, 5],
    ],
    dtype=np.int64,
)
BAYER_4X4.setflags(write=False)

# Bias used when the matrix has no usable entries (middle of the rank range).
NEUTRAL_BIAS = 0.0


def bias_table(matrix: np.ndarray | None = None) -> np.ndarray:
    """Normalize a rank matrix to threshold biases.

    Each rank r becomes r / N - 0.5 where N is the number of entries, so the
    standard 4x4 table spans [-0.5, 0.4375]. A missing, empty or non-2-D
    matrix yields a single neutral entry instead of raising.
    """
    if matrix is None:
        matrix = BAYER_4X4
    table = np.asarray(matrix, dtype=np.float64)
    if table.ndim != 2 or table.size == 0:
        return np.full((1, 1), NEUTRAL_BIAS, dtype=np.float64)
    return table / table.size - 0.5
