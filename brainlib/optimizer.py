"""
optimizer.py
~~~~~~~~~~~~

Momentum gradient descent.

For every parameter array p with averaged gradient g:

    m <- g / accuracy + m * momentum
    p <- p - m

The momentum buffers m are a ParameterStore registered with the network
as a companion, so topology edits resize them together with the
parameters.
"""

import logging
from typing import Sequence

import numpy as np

from brainlib.errors import ConfigurationError, ShapeError
from brainlib.parameters import ParameterStore

logger = logging.getLogger(__name__)


def check_gradient_shapes(
    store: ParameterStore,
    weight_grads: Sequence[np.ndarray],
    bias_grads: Sequence[np.ndarray]
) -> None:
    """
    Make sure gradient lists match the store before anything is written.

    Raises:
        ShapeError: On a count or shape mismatch
    """
    expected = store.synapse_layer_count
    if len(weight_grads) != expected or len(bias_grads) != expected:
        raise ShapeError(
            f"Expected {expected} weight and bias gradients, got "
            f"{len(weight_grads)} and {len(bias_grads)}"
        )
    for l in range(expected):
        if np.shape(weight_grads[l]) != store.weight_shape(l):
            raise ShapeError(
                f"Weight gradient {l} has shape {np.shape(weight_grads[l])}, "
                f"expected {store.weight_shape(l)}"
            )
        if np.shape(bias_grads[l]) != store.bias_shape(l):
            raise ShapeError(
                f"Bias gradient {l} has shape {np.shape(bias_grads[l])}, "
                f"expected {store.bias_shape(l)}"
            )


class MomentumOptimizer:
    """
    Blends each new gradient with the previous step and applies it.

    Args:
        network: Network whose parameters are updated
        accuracy: Learning-rate divisor, must be > 0. Higher values move
            closer to the minimum at the cost of learning speed
        momentum: How much of the previous step is carried over, >= 0
    """

    def __init__(self, network, accuracy: float = 10.0, momentum: float = 0.1):
        self.network = network
        self.accuracy = accuracy
        self.momentum = momentum
        self.buffers = ParameterStore.zeros(network.layer_counts)
        network.register_companion(self.buffers)

    @property
    def accuracy(self) -> float:
        return self._accuracy

    @accuracy.setter
    def accuracy(self, value: float) -> None:
        if value is None or not value > 0:
            raise ConfigurationError(
                f"accuracy must be greater than zero, got {value}"
            )
        self._accuracy = float(value)

    @property
    def momentum(self) -> float:
        return self._momentum

    @momentum.setter
    def momentum(self, value: float) -> None:
        if value is None or not value >= 0:
            raise ConfigurationError(
                f"momentum cannot be lower than zero, got {value}"
            )
        self._momentum = float(value)

    def step(
        self,
        weight_grads: Sequence[np.ndarray],
        bias_grads: Sequence[np.ndarray]
    ) -> None:
        """
        Apply one momentum update from already averaged gradients.

        Raises:
            ShapeError: If the gradients do not match the parameters
        """
        check_gradient_shapes(self.buffers, weight_grads, bias_grads)
        pairs = list(zip(self.buffers.weights, weight_grads)) + \
            list(zip(self.buffers.biases, bias_grads))
        for buffer, grad in pairs:
            buffer.values *= self._momentum
            buffer.values += np.asarray(grad, dtype=float) / self._accuracy
        self.network.apply_gradients(
            self.buffers.weight_arrays(), self.buffers.bias_arrays()
        )

    def reset(self) -> None:
        """Forget all accumulated momentum."""
        self.buffers.fill(0.0)
        logger.debug("Momentum buffers reset")

    def detach(self) -> None:
        """Stop following topology edits of the network."""
        self.network.unregister_companion(self.buffers)
