"""
parameters.py
~~~~~~~~~~~~~

Storage for the weights and biases of a layered network.

A ParameterStore holds one weight matrix of shape
(layer_counts[l + 1], layer_counts[l]) and one bias column of shape
(layer_counts[l + 1], 1) per synapse layer l. The same class is used for
gradient accumulators and momentum buffers, which must keep exactly the
shapes of the parameters they belong to.
"""

from typing import List, Optional, Sequence

import numpy as np

from brainlib.errors import ConstructionError, ShapeError
from brainlib.matrix import ResizableMatrix


def _layer_width(index: int, value) -> int:
    if isinstance(value, float) and not value.is_integer():
        raise ConstructionError(
            f"Layer {index} width must be a whole number, got {value!r}"
        )
    return int(value)


def validate_layer_counts(layer_counts: Sequence[int]) -> List[int]:
    """
    Check a layer specification and return it as a list of ints.

    Raises:
        ConstructionError: If there are fewer than two layers or any
            width is below one or not a whole number
    """
    if layer_counts is None:
        raise ConstructionError("layer_counts must not be None")
    counts = [_layer_width(i, c) for i, c in enumerate(layer_counts)]
    if len(counts) < 2:
        raise ConstructionError(
            f"A network needs at least an input and an output layer, "
            f"got {counts}"
        )
    for i, count in enumerate(counts):
        if count < 1:
            raise ConstructionError(
                f"Layer {i} must have at least one neuron, got {count}"
            )
    return counts


class ParameterStore:
    """
    Per-layer weight matrices and bias vectors plus the layer widths.

    Attributes:
        layer_counts: Neuron count of every layer, input first
        weights: One ResizableMatrix per synapse layer
        biases: One single-column ResizableMatrix per synapse layer
    """

    def __init__(
        self,
        layer_counts: Sequence[int],
        weights: Sequence[ResizableMatrix],
        biases: Sequence[ResizableMatrix]
    ):
        self.layer_counts = validate_layer_counts(layer_counts)
        self.weights = list(weights)
        self.biases = list(biases)
        self.check_consistency()

    @classmethod
    def random(
        cls,
        layer_counts: Sequence[int],
        rng: Optional[np.random.Generator] = None
    ) -> 'ParameterStore':
        """Build a store with standard normal weights and biases."""
        counts = validate_layer_counts(layer_counts)
        rng = rng if rng is not None else np.random.default_rng()
        weights = []
        biases = []
        for l in range(len(counts) - 1):
            weights.append(ResizableMatrix(
                rng.standard_normal((counts[l + 1], counts[l]))
            ))
            biases.append(ResizableMatrix(
                rng.standard_normal((counts[l + 1], 1))
            ))
        return cls(counts, weights, biases)

    @classmethod
    def zeros(cls, layer_counts: Sequence[int]) -> 'ParameterStore':
        """Build a store of zero arrays, e.g. for momentum buffers."""
        counts = validate_layer_counts(layer_counts)
        weights = [
            ResizableMatrix.zeros(counts[l + 1], counts[l])
            for l in range(len(counts) - 1)
        ]
        biases = [
            ResizableMatrix.zeros(counts[l + 1], 1)
            for l in range(len(counts) - 1)
        ]
        return cls(counts, weights, biases)

    @classmethod
    def from_arrays(
        cls,
        weights: Sequence[np.ndarray],
        biases: Sequence[np.ndarray]
    ) -> 'ParameterStore':
        """Build a store from literal arrays, inferring the layer widths."""
        if len(weights) == 0 or len(weights) != len(biases):
            raise ConstructionError(
                f"Need matching non-empty weight and bias lists, got "
                f"{len(weights)} and {len(biases)}"
            )
        w = [ResizableMatrix(np.atleast_2d(np.asarray(m, dtype=float)))
             for m in weights]
        b = [ResizableMatrix(np.asarray(v, dtype=float).reshape(-1, 1))
             for v in biases]
        counts = [w[0].columns] + [m.rows for m in w]
        return cls(counts, w, b)

    # ------------------------------------------------------------------
    # Shape information
    # ------------------------------------------------------------------

    @property
    def synapse_layer_count(self) -> int:
        return len(self.layer_counts) - 1

    @property
    def input_count(self) -> int:
        return self.layer_counts[0]

    @property
    def output_count(self) -> int:
        return self.layer_counts[-1]

    def weight_shape(self, layer: int):
        return (self.layer_counts[layer + 1], self.layer_counts[layer])

    def bias_shape(self, layer: int):
        return (self.layer_counts[layer + 1], 1)

    def check_consistency(self) -> None:
        """
        Verify that every array shape follows from layer_counts.

        Raises:
            ShapeError: On any mismatch
        """
        expected = self.synapse_layer_count
        if len(self.weights) != expected or len(self.biases) != expected:
            raise ShapeError(
                f"Expected {expected} synapse layers for {self.layer_counts}, "
                f"got {len(self.weights)} weight and {len(self.biases)} "
                f"bias arrays"
            )
        for l in range(expected):
            if self.weights[l].shape != self.weight_shape(l):
                raise ShapeError(
                    f"Weight matrix {l} has shape {self.weights[l].shape}, "
                    f"expected {self.weight_shape(l)}"
                )
            if self.biases[l].shape != self.bias_shape(l):
                raise ShapeError(
                    f"Bias vector {l} has shape {self.biases[l].shape}, "
                    f"expected {self.bias_shape(l)}"
                )

    # ------------------------------------------------------------------
    # Array access
    # ------------------------------------------------------------------

    def weight_arrays(self) -> List[np.ndarray]:
        return [m.values for m in self.weights]

    def bias_arrays(self) -> List[np.ndarray]:
        return [m.values for m in self.biases]

    def fill(self, value: float = 0.0) -> None:
        """Overwrite every array in place."""
        for m in self.weights + self.biases:
            m.values.fill(value)

    def copy(self) -> 'ParameterStore':
        """Deep copy; the result shares no arrays with this store."""
        return ParameterStore(
            list(self.layer_counts),
            [m.copy() for m in self.weights],
            [m.copy() for m in self.biases]
        )

    def slice(self, from_layer: int, layer_count: int) -> 'ParameterStore':
        """
        Deep copy of synapse layers [from_layer, from_layer + layer_count).

        Raises:
            ShapeError: If the range does not fit inside this store
        """
        if layer_count < 1 or from_layer < 0 or \
                from_layer + layer_count > self.synapse_layer_count:
            raise ShapeError(
                f"Cannot take {layer_count} synapse layers from layer "
                f"{from_layer} of a {self.synapse_layer_count}-layer store"
            )
        end = from_layer + layer_count
        return ParameterStore(
            self.layer_counts[from_layer:end + 1],
            [m.copy() for m in self.weights[from_layer:end]],
            [m.copy() for m in self.biases[from_layer:end]]
        )

    def parameter_count(self) -> int:
        return int(sum(m.values.size for m in self.weights + self.biases))

    def __repr__(self) -> str:
        return f"ParameterStore(layer_counts={self.layer_counts})"
