"""
network.py
~~~~~~~~~~

The Network class: a linear stack of dense layers.

A Network owns one ParameterStore and one activation. It evaluates
inputs, computes gradients of the sum of squared errors, applies
parameter updates, changes the width of its layers and reads/writes the
`.brain` text format.

Example:
    >>> net = Network(1, [4, 8], 1, activation='tanh')
    >>> net.evaluate([0.25]).shape
    (1,)
    >>> result = net.compute_gradients([0.25], [0.5])
    >>> net.apply_gradients([g * 0.1 for g in result.weight_grads],
    ...                     [g * 0.1 for g in result.bias_grads])
"""

import logging
import os
from typing import List, Optional, Sequence, Union

import numpy as np

from brainlib import persistence
from brainlib.activations import NeuronActivation, get_activation
from brainlib.engine import BackpropEngine, ForwardEngine, ForwardState, GradientResult
from brainlib.errors import ConstructionError
from brainlib.optimizer import check_gradient_shapes
from brainlib.parameters import ParameterStore
from brainlib.topology import TopologyMutator

logger = logging.getLogger(__name__)

ActivationSpec = Union[str, NeuronActivation, None]


class Network:
    """
    Feed-forward network with manual backpropagation.

    Args:
        input_count: Number of input neurons
        hidden_counts: Width of each hidden layer, may be empty
        output_count: Number of output neurons
        activation: Activation name ('raw', 'logistic', 'sech', 'tanh')
            or instance; logistic by default
        rng: Optional numpy Generator used for the normal initialization

    Raises:
        ConstructionError: If hidden_counts is None or any count is < 1
    """

    def __init__(
        self,
        input_count: int,
        hidden_counts: Optional[Sequence[int]],
        output_count: int,
        activation: ActivationSpec = None,
        rng: Optional[np.random.Generator] = None
    ):
        if hidden_counts is None:
            raise ConstructionError("hidden_counts must not be None")
        layer_counts = [input_count] + list(hidden_counts) + [output_count]
        self._setup(ParameterStore.random(layer_counts, rng), activation)
        logger.debug(f"Created network {self.layer_counts}")

    def _setup(self, store: ParameterStore, activation: ActivationSpec) -> None:
        self.store = store
        self._companions: List[ParameterStore] = []
        self._activation = get_activation(activation)
        self._forward = ForwardEngine(self.store, self._activation)
        self._backprop = BackpropEngine(self._forward)
        self._mutator = TopologyMutator(self.store, self._companions)

    # ------------------------------------------------------------------
    # Alternative constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_store(cls, store: ParameterStore,
                   activation: ActivationSpec = None) -> 'Network':
        """Wrap an existing store. The store is used, not copied."""
        net = cls.__new__(cls)
        net._setup(store, activation)
        return net

    @classmethod
    def from_layer_counts(
        cls,
        layer_counts: Sequence[int],
        activation: ActivationSpec = None,
        rng: Optional[np.random.Generator] = None
    ) -> 'Network':
        """Build a random network from a full list of layer widths."""
        return cls.from_store(ParameterStore.random(layer_counts, rng), activation)

    @classmethod
    def from_arrays(
        cls,
        weights: Sequence[np.ndarray],
        biases: Sequence[np.ndarray],
        activation: ActivationSpec = None
    ) -> 'Network':
        """Build a network from literal weight matrices and bias vectors."""
        return cls.from_store(ParameterStore.from_arrays(weights, biases), activation)

    @classmethod
    def from_file(cls, path: str, activation: ActivationSpec = None) -> 'Network':
        """
        Load a network saved with save_to_file.

        Raises:
            MissingFileError: If the file does not exist
            CorruptFileError: If the file cannot be decoded
        """
        return cls.from_store(persistence.read_store(path), activation)

    # ------------------------------------------------------------------
    # Shape information
    # ------------------------------------------------------------------

    @property
    def layer_counts(self) -> List[int]:
        return list(self.store.layer_counts)

    @property
    def sizes(self) -> List[int]:
        return self.layer_counts

    @property
    def input_count(self) -> int:
        return self.store.input_count

    @property
    def output_count(self) -> int:
        return self.store.output_count

    @property
    def synapse_layer_count(self) -> int:
        return self.store.synapse_layer_count

    @property
    def weights(self) -> List[np.ndarray]:
        return self.store.weight_arrays()

    @property
    def biases(self) -> List[np.ndarray]:
        return self.store.bias_arrays()

    @property
    def activation(self) -> NeuronActivation:
        return self._activation

    @activation.setter
    def activation(self, value: ActivationSpec) -> None:
        self._activation = get_activation(value)
        self._forward.activation = self._activation

    # ------------------------------------------------------------------
    # Companion stores
    # ------------------------------------------------------------------

    def register_companion(self, store: ParameterStore) -> None:
        """
        Make `store` follow every topology edit of this network.

        Raises:
            ConstructionError: If the store's layer counts differ
        """
        if store.layer_counts != self.store.layer_counts:
            raise ConstructionError(
                f"Companion store {store.layer_counts} does not match "
                f"network {self.store.layer_counts}"
            )
        self._companions.append(store)

    def unregister_companion(self, store: ParameterStore) -> None:
        self._companions[:] = [s for s in self._companions if s is not store]

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def evaluate(self, input_vector) -> np.ndarray:
        """
        Compute the network output for one input.

        Args:
            input_vector: layer_counts[0] values, 1-D or a single column

        Returns:
            1-D array of layer_counts[-1] values

        Raises:
            ShapeError: If the input has the wrong length
        """
        return self._forward.evaluate(input_vector)

    def forward_state(self, input_vector, training: bool = False) -> ForwardState:
        """Forward pass keeping every layer's raw and activated values."""
        return self._forward.run(input_vector, training=training)

    def compute_gradients(self, input_vector, target_vector) -> GradientResult:
        """
        Gradient of the sum of squared errors for one example.

        Raises:
            ShapeError: If the input or target has the wrong length
        """
        return self._backprop.compute_gradients(input_vector, target_vector)

    def loss(self, input_vector, target_vector) -> float:
        return self._backprop.loss(input_vector, target_vector)

    def apply_gradients(
        self,
        weight_grads: Sequence[np.ndarray],
        bias_grads: Sequence[np.ndarray]
    ) -> None:
        """
        Subtract the given arrays from the weights and biases.

        Raises:
            ShapeError: If any array does not match its parameter; nothing
                is modified in that case
        """
        check_gradient_shapes(self.store, weight_grads, bias_grads)
        for l in range(self.synapse_layer_count):
            self.store.weights[l].values -= weight_grads[l]
            self.store.biases[l].values -= bias_grads[l]

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    def expand_layer(self, layer: int, delta: int) -> bool:
        """Insert `delta` inert neurons at the start of neuron layer `layer`."""
        return self._mutator.expand_layer(layer, delta)

    def shrink_layer(self, layer: int, delta: int) -> bool:
        """Remove the first `delta` neurons of neuron layer `layer`."""
        return self._mutator.shrink_layer(layer, delta)

    def stretch_layer(self, layer: int, factor: int, group_width: int = 1) -> bool:
        """Replicate each group of `group_width` neurons `factor` times."""
        return self._mutator.stretch_layer(layer, factor, group_width)

    # ------------------------------------------------------------------
    # Copies and persistence
    # ------------------------------------------------------------------

    def clone_core(self) -> 'Network':
        """Deep copy of the parameters and activation, without companions."""
        return Network.from_store(self.store.copy(), self._activation)

    def extract_subnetwork(self, from_layer: int, layer_count: int) -> 'Network':
        """
        Deep copy of `layer_count` consecutive synapse layers.

        The result maps neuron layer `from_layer` to neuron layer
        `from_layer + layer_count`. Its layer indices restart at 0, so a
        LayerwiseActivation is not shifted along with it.

        Raises:
            ShapeError: If the range does not fit in this network
        """
        return Network.from_store(
            self.store.slice(from_layer, layer_count), self._activation
        )

    def save_to_file(self, directory: str, name: str, mode: str = 'plain',
                     key: Optional[int] = None) -> str:
        """
        Write the network to `<directory>/<name>.brain`.

        Args:
            directory: Target directory, created if missing
            name: File name without suffix
            mode: 'plain' or 'legacy'
            key: Legacy key override, mostly for tests

        Returns:
            Path of the written file
        """
        if directory:
            os.makedirs(directory, exist_ok=True)
        path = persistence.file_path(directory, name)
        return persistence.write_store(self.store, path, mode, key)

    def __repr__(self) -> str:
        return (
            f"Network(layer_counts={self.layer_counts}, "
            f"activation={self._activation!r})"
        )
