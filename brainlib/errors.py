"""
errors.py
~~~~~~~~~

Exception hierarchy raised by the network core.

Every error is raised at the call that violates a constraint and is never
suppressed inside the library. The API server is the only layer that
catches them and turns them into HTTP responses.
"""

from typing import Optional


class BrainError(ValueError):
    """Base class for all errors raised by brainlib."""


class ConstructionError(BrainError):
    """Invalid or absent layer specification."""


class ShapeError(BrainError):
    """A vector, matrix or layer index does not match the configured widths."""


class ConfigurationError(BrainError):
    """Invalid training configuration or illegal session transition."""


class MissingDataSourceError(BrainError):
    """Training was requested without a bound example supplier."""


class CorruptFileError(BrainError):
    """
    A network file could not be decoded.

    Carries enough location detail to find the bad record: the synapse
    layer (matrix), the neuron row and the token column, whichever apply.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        matrix: Optional[int] = None,
        row: Optional[int] = None,
        column: Optional[int] = None
    ):
        self.path = path
        self.matrix = matrix
        self.row = row
        self.column = column
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        location = []
        if self.path is not None:
            location.append(f"file={self.path}")
        if self.matrix is not None:
            location.append(f"matrix={self.matrix}")
        if self.row is not None:
            location.append(f"row={self.row}")
        if self.column is not None:
            location.append(f"column={self.column}")
        if not location:
            return message
        return f"{message} ({', '.join(location)})"


class MissingFileError(CorruptFileError):
    """The network file does not exist."""
