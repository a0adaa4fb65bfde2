"""
activations.py
~~~~~~~~~~~~~~

Neuron activation functions and their derivatives.

Each activation maps a column of raw (pre-activation) neuron values to
activated values, and provides the derivative evaluated at the same raw
values. Both receive the index of the neuron layer being processed so a
network can use different functions at different depths.
"""

from typing import Dict, Optional, Union

import numpy as np

from brainlib.errors import ConfigurationError


class NeuronActivation:
    """Base class for elementwise activations."""

    name = 'base'

    def activate(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        raise NotImplementedError

    def derive(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class RawActivation(NeuronActivation):
    """No activation at all. The derivative is always 1."""

    name = 'raw'

    def activate(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        return np.array(neurons, dtype=float)

    def derive(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        return np.ones_like(neurons, dtype=float)


class LogisticActivation(NeuronActivation):
    """
    Logistic (sigmoid) activation, squeezing values into (0, 1).

    Computed through tanh so large negative inputs do not overflow exp.
    """

    name = 'logistic'

    def activate(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        return 0.5 * (1.0 + np.tanh(0.5 * neurons))

    def derive(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        s = self.activate(neurons, layer)
        return s * (1.0 - s)


class SechActivation(NeuronActivation):
    """Hyperbolic secant: a bell curve with f(0) = 1 decaying to 0."""

    name = 'sech'

    def activate(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        return 1.0 / np.cosh(neurons)

    def derive(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        return -np.tanh(neurons) / np.cosh(neurons)


class TanhActivation(NeuronActivation):
    """Hyperbolic tangent. The derivative is sech squared."""

    name = 'tanh'

    def activate(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        return np.tanh(neurons)

    def derive(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        sech = 1.0 / np.cosh(neurons)
        return sech * sech


ACTIVATIONS = {
    RawActivation.name: RawActivation,
    LogisticActivation.name: LogisticActivation,
    SechActivation.name: SechActivation,
    TanhActivation.name: TanhActivation,
}


def get_activation(
    activation: Union[str, NeuronActivation, None]
) -> NeuronActivation:
    """
    Resolve an activation name or instance.

    Args:
        activation: One of 'raw', 'logistic', 'sech', 'tanh', an
            activation instance, or None for the default (logistic)

    Returns:
        NeuronActivation instance

    Raises:
        ConfigurationError: If the name is unknown
    """
    if activation is None:
        return LogisticActivation()
    if isinstance(activation, NeuronActivation):
        return activation
    if isinstance(activation, str):
        key = activation.strip().lower()
        if key in ACTIVATIONS:
            return ACTIVATIONS[key]()
    raise ConfigurationError(
        f"Unknown activation {activation!r}, expected one of "
        f"{sorted(ACTIVATIONS)}"
    )


class LayerwiseActivation(NeuronActivation):
    """
    Dispatches to a different activation per neuron layer.

    Example:
        >>> act = LayerwiseActivation('logistic', {2: 'raw'})
        >>> net = Network(1, [4], 1, activation=act)  # linear output layer
    """

    name = 'layerwise'

    def __init__(
        self,
        default: Union[str, NeuronActivation, None] = None,
        overrides: Optional[Dict[int, Union[str, NeuronActivation]]] = None
    ):
        self.default = get_activation(default)
        self.overrides = {
            int(layer): get_activation(act)
            for layer, act in (overrides or {}).items()
        }

    def _for_layer(self, layer: int) -> NeuronActivation:
        return self.overrides.get(layer, self.default)

    def activate(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        return self._for_layer(layer).activate(neurons, layer)

    def derive(self, neurons: np.ndarray, layer: int) -> np.ndarray:
        return self._for_layer(layer).derive(neurons, layer)

    def __repr__(self) -> str:
        return (
            f"LayerwiseActivation(default={self.default!r}, "
            f"overrides={self.overrides!r})"
        )


# Input normalization helpers, applied to raw data before evaluation.
_NORMALIZERS = {
    'raw': lambda values: np.array(values, dtype=float),
    'logistic': lambda values: 0.5 * (1.0 + np.tanh(0.5 * values)),
    'sech': lambda values: 1.0 / np.cosh(values),
}


def normalize_input(values, method: str = 'raw') -> np.ndarray:
    """
    Normalize an input vector before it is fed to a network.

    Args:
        values: Array-like of raw input values
        method: 'raw' (copy), 'logistic' or 'sech'

    Returns:
        New float array with the same shape as values
    """
    if method not in _NORMALIZERS:
        raise ConfigurationError(
            f"Unknown normalization {method!r}, expected one of "
            f"{sorted(_NORMALIZERS)}"
        )
    return _NORMALIZERS[method](np.asarray(values, dtype=float))
