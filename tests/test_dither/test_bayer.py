"""Tests for the Bayer rank matrix and bias table."""

import numpy as np
import pytest

from dither.bayer import BAYER_4X4, NEUTRAL_BIAS, bias_table

pytestmark = pytest.mark.smoke


def test_matrix_is_a_permutation_of_ranks():
    assert sorted(BAYER_4X4.ravel().tolist()) == list(range(16))


def test_matrix_is_read_only():
    with pytest.raises(ValueError):
        BAYER_4X4[0, 0] = 1


def test_bias_range():
    table = bias_table()
    assert table.min() == -0.5
    assert table.max() == pytest.approx(15 / 16 - 0.5)


def test_bias_follows_ranks():
    table = bias_table()
    assert table[0, 0] == -0.5
    assert table[0, 1] == 8 / 16 - 0.5
    assert table[1, 2] == 14 / 16 - 0.5


def test_empty_matrix_is_neutral():
    table = bias_table(np.zeros((0, 0)))
    assert table.shape == (1, 1)
    assert table[0, 0] == NEUTRAL_BIAS


def test_non_2d_matrix_is_neutral():
    table = bias_table(np.arange(4))
    assert table.shape == (1, 1)
    assert table[0, 0] == NEUTRAL_BIAS


def test_custom_2x2_matrix():
    table = bias_table(np.array([[0, 2], [3, 1]]))
    np.testing.assert_allclose(table, [[-0.5, 0.0], [0.25, -0.25]])
