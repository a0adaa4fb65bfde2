"""
test_matrix.py
~~~~~~~~~~~~~~

Unit tests for ResizableMatrix row and column primitives.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from brainlib.errors import ShapeError
from brainlib.matrix import ResizableMatrix


@pytest.fixture
def matrix():
    """A 2x3 matrix with distinct entries."""
    return ResizableMatrix([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])


@pytest.mark.unit
class TestResizableMatrix:
    """Test the structural primitives."""

    def test_rejects_non_2d(self):
        """Test that a 1-D array is rejected."""
        with pytest.raises(ShapeError):
            ResizableMatrix([1.0, 2.0])

    def test_insert_rows_at_start(self, matrix):
        """Test that inserted rows are zero and precede the old rows."""
        matrix.insert_rows(0, 2)
        assert matrix.shape == (4, 3)
        assert np.array_equal(matrix.values[:2], np.zeros((2, 3)))
        assert np.array_equal(matrix.values[2:], [[1, 2, 3], [4, 5, 6]])

    def test_insert_columns_at_end(self, matrix):
        """Test inserting columns after the last column."""
        matrix.insert_columns(3, 1, fill=7.0)
        assert matrix.shape == (2, 4)
        assert np.array_equal(matrix.values[:, 3], [7.0, 7.0])

    def test_delete_rows_and_columns(self, matrix):
        """Test that deletion removes exactly the requested span."""
        matrix.delete_columns(0, 2)
        assert np.array_equal(matrix.values, [[3.0], [6.0]])
        matrix.delete_rows(1, 1)
        assert np.array_equal(matrix.values, [[3.0]])

    def test_delete_out_of_range_raises(self, matrix):
        """Test that deleting past the end raises ShapeError."""
        with pytest.raises(ShapeError):
            matrix.delete_rows(1, 2)
        with pytest.raises(ShapeError):
            matrix.delete_columns(-1, 1)
        assert matrix.shape == (2, 3)

    def test_insert_out_of_range_raises(self, matrix):
        """Test that inserting beyond the last index raises ShapeError."""
        with pytest.raises(ShapeError):
            matrix.insert_rows(3, 1)

    def test_take_rows_repeats(self, matrix):
        """Test that take_rows can duplicate rows."""
        matrix.take_rows([0, 0, 1, 1])
        assert np.array_equal(
            matrix.values, [[1, 2, 3], [1, 2, 3], [4, 5, 6], [4, 5, 6]]
        )

    def test_take_columns_with_divisor(self, matrix):
        """Test that take_columns divides the taken columns."""
        matrix.take_columns([0, 0, 2], divisor=2.0)
        assert np.array_equal(matrix.values, [[0.5, 0.5, 1.5], [2.0, 2.0, 3.0]])

    def test_copy_is_independent(self, matrix):
        """Test that a copy does not share memory."""
        clone = matrix.copy()
        clone.values[0, 0] = 100.0
        assert matrix.values[0, 0] == 1.0
