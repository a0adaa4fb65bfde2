"""
matrix.py
~~~~~~~~~

Resizable 2-D float matrix used for every parameter array.

Structural edits go through explicit row and column primitives so the
shape bookkeeping lives in one place instead of in caller-side index
arithmetic. Each primitive replaces the backing array in a single
assignment, so a matrix is never observed half-resized.
"""

from typing import Sequence, Tuple

import numpy as np

from brainlib.errors import ShapeError


class ResizableMatrix:
    """
    A dense float64 matrix that can grow and shrink along both axes.

    The backing numpy array is exposed as `values` and may be updated in
    place (e.g. `m.values -= step`); only the primitives below change its
    shape.
    """

    def __init__(self, values):
        array = np.array(values, dtype=float)
        if array.ndim != 2:
            raise ShapeError(
                f"ResizableMatrix needs a 2-D array, got shape {array.shape}"
            )
        self.values = array

    @classmethod
    def zeros(cls, rows: int, columns: int) -> 'ResizableMatrix':
        return cls(np.zeros((rows, columns)))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def rows(self) -> int:
        return self.values.shape[0]

    @property
    def columns(self) -> int:
        return self.values.shape[1]

    def copy(self) -> 'ResizableMatrix':
        return ResizableMatrix(self.values.copy())

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self.values
        return self.values.astype(dtype)

    def __repr__(self) -> str:
        return f"ResizableMatrix(shape={self.shape})"

    # ------------------------------------------------------------------
    # Structural primitives
    # ------------------------------------------------------------------

    def _check_index(self, index: int, limit: int, axis: str) -> None:
        if not 0 <= index <= limit:
            raise ShapeError(
                f"{axis} index {index} out of range for matrix {self.shape}"
            )

    def _check_span(self, index: int, count: int, limit: int, axis: str) -> None:
        if count < 0 or index < 0 or index + count > limit:
            raise ShapeError(
                f"Cannot delete {count} {axis}s at {index} from matrix "
                f"{self.shape}"
            )

    def insert_rows(self, index: int, count: int, fill: float = 0.0) -> None:
        """Insert `count` rows filled with `fill` before row `index`."""
        self._check_index(index, self.rows, 'row')
        block = np.full((count, self.columns), fill, dtype=float)
        self.values = np.concatenate(
            [self.values[:index], block, self.values[index:]], axis=0
        )

    def insert_columns(self, index: int, count: int, fill: float = 0.0) -> None:
        """Insert `count` columns filled with `fill` before column `index`."""
        self._check_index(index, self.columns, 'column')
        block = np.full((self.rows, count), fill, dtype=float)
        self.values = np.concatenate(
            [self.values[:, :index], block, self.values[:, index:]], axis=1
        )

    def delete_rows(self, index: int, count: int) -> None:
        """Remove rows [index, index + count)."""
        self._check_span(index, count, self.rows, 'row')
        self.values = np.delete(self.values, slice(index, index + count), axis=0)

    def delete_columns(self, index: int, count: int) -> None:
        """Remove columns [index, index + count)."""
        self._check_span(index, count, self.columns, 'column')
        self.values = np.delete(
            self.values, slice(index, index + count), axis=1
        )

    def take_rows(self, indices: Sequence[int]) -> None:
        """Rebuild the matrix from the given rows, repeats allowed."""
        self.values = self.values[np.asarray(indices, dtype=int), :]

    def take_columns(self, indices: Sequence[int], divisor: float = 1.0) -> None:
        """Rebuild the matrix from the given columns, repeats allowed."""
        self.values = self.values[:, np.asarray(indices, dtype=int)] / divisor
