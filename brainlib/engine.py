"""
engine.py
~~~~~~~~~

Forward evaluation and backpropagation for a layered network.

Notation: neuron layer i holds the raw values z_i and activated values
a_i, with a_0 the input. Synapse layer l connects neuron layer l to
neuron layer l + 1:

    z_{l+1} = W_l a_l + b_l,    a_{l+1} = f(z_{l+1}, l + 1)

For the loss E = sum((a_L - t)^2) the error at the output pre-activation
is delta_L = 2 (a_L - t) * f'(z_L), and for the hidden layers

    delta_i = (W_i^T delta_{i+1}) * f'(z_i)        i = L-1 .. 1

which gives dE/dW_l = delta_{l+1} a_l^T and dE/db_l = delta_{l+1}.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from brainlib.activations import NeuronActivation
from brainlib.errors import ShapeError
from brainlib.parameters import ParameterStore


def as_column(vector, expected: int, label: str) -> np.ndarray:
    """
    Convert a 1-D vector or (n, 1) column to a float column.

    Raises:
        ShapeError: If the vector does not hold exactly `expected` entries
    """
    if vector is None:
        raise ShapeError(f"{label} vector must not be None")
    array = np.asarray(vector, dtype=float)
    if array.ndim == 2 and array.shape[1] != 1:
        raise ShapeError(
            f"{label} must be a vector or a single column, got shape "
            f"{array.shape}"
        )
    if array.ndim > 2 or array.size != expected:
        raise ShapeError(
            f"{label} has {array.size} entries, expected {expected}"
        )
    return array.reshape(expected, 1)


@dataclass
class ForwardState:
    """
    Per-layer values of one forward pass.

    raw[i], active[i] and (in training mode) derived[i] belong to neuron
    layer i. raw[0] and active[0] are the input; derived[0] is None.
    """
    raw: List[np.ndarray]
    active: List[np.ndarray]
    derived: Optional[List[Optional[np.ndarray]]] = None

    @property
    def output(self) -> np.ndarray:
        return self.active[-1]


@dataclass
class GradientResult:
    """Gradients of one example, shallowest synapse layer first."""
    weight_grads: List[np.ndarray]
    bias_grads: List[np.ndarray]
    loss: float

    def scaled(self, factor: float) -> 'GradientResult':
        return GradientResult(
            [g * factor for g in self.weight_grads],
            [g * factor for g in self.bias_grads],
            self.loss
        )


class ForwardEngine:
    """Computes neuron values layer by layer. Only reads parameters."""

    def __init__(self, store: ParameterStore, activation: NeuronActivation):
        self.store = store
        self.activation = activation

    def run(self, input_vector, training: bool = False) -> ForwardState:
        """
        Run a forward pass and keep every intermediate value.

        Args:
            input_vector: Input of layer_counts[0] entries
            training: Also evaluate the activation derivative per layer

        Returns:
            ForwardState with raw, activated and optionally derived values
        """
        a = as_column(input_vector, self.store.input_count, 'input')
        raw = [a]
        active = [a]
        derived = [None] if training else None
        weights = self.store.weights
        biases = self.store.biases
        for i in range(1, len(self.store.layer_counts)):
            z = weights[i - 1].values @ active[i - 1] + biases[i - 1].values
            raw.append(z)
            active.append(self.activation.activate(z, i))
            if training:
                derived.append(self.activation.derive(z, i))
        return ForwardState(raw, active, derived)

    def evaluate(self, input_vector) -> np.ndarray:
        """Return the output layer as a 1-D vector."""
        return self.run(input_vector).output[:, 0].copy()


class BackpropEngine:
    """
    Computes the sum-of-squared-errors gradient for a single example.

    Writes only to freshly allocated gradient arrays; the parameter store
    is never modified.
    """

    def __init__(self, forward: ForwardEngine):
        self.forward = forward

    @property
    def store(self) -> ParameterStore:
        return self.forward.store

    def compute_gradients(self, input_vector, target_vector) -> GradientResult:
        """
        Backpropagate the error of one input/target pair.

        Args:
            input_vector: Input of layer_counts[0] entries
            target_vector: Expected output of layer_counts[-1] entries

        Returns:
            GradientResult with one weight and one bias gradient per
            synapse layer and the example's sum of squared errors

        Raises:
            ShapeError: If either vector has the wrong length
        """
        store = self.store
        target = as_column(target_vector, store.output_count, 'target')
        state = self.forward.run(input_vector, training=True)

        L = store.synapse_layer_count
        error = state.active[L] - target
        loss = float(np.sum(error * error))

        weight_grads: List[Optional[np.ndarray]] = [None] * L
        bias_grads: List[Optional[np.ndarray]] = [None] * L

        delta = 2.0 * error * state.derived[L]
        for l in range(L - 1, -1, -1):
            # delta is the error at neuron layer l + 1's pre-activation
            weight_grads[l] = delta @ state.active[l].T
            bias_grads[l] = delta.copy()
            if l > 0:
                delta = (store.weights[l].values.T @ delta) * state.derived[l]

        return GradientResult(weight_grads, bias_grads, loss)

    def loss(self, input_vector, target_vector) -> float:
        """Sum of squared errors of one example without gradients."""
        target = as_column(
            target_vector, self.store.output_count, 'target'
        )
        output = self.forward.run(input_vector).output
        return float(np.sum((output - target) ** 2))
