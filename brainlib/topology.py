"""
topology.py
~~~~~~~~~~~

Structural width edits on one neuron layer of a network.

Every edit touches at most two synapse layers: the one feeding into the
neuron layer (its weight rows and bias rows) and the one the layer feeds
into (its weight columns). The same edit is applied to the parameter store
and to every companion store (momentum buffers, gradient accumulators),
and layer_counts are updated last, so callers never see a store whose
arrays and widths disagree.
"""

import logging
from typing import Iterable, List

import numpy as np

from brainlib.errors import ShapeError
from brainlib.parameters import ParameterStore

logger = logging.getLogger(__name__)


class TopologyMutator:
    """
    Widens, narrows and duplicates neuron layers while keeping what the
    network has learned for the neurons that remain.

    Args:
        store: Parameter store to edit
        companions: Stores that must follow every edit of `store`
    """

    def __init__(self, store: ParameterStore, companions: Iterable[ParameterStore] = ()):
        self.store = store
        self.companions = companions

    def _stores(self) -> List[ParameterStore]:
        return [self.store] + list(self.companions)

    def _check_layer(self, layer: int) -> None:
        last = len(self.store.layer_counts) - 1
        if not 0 <= layer <= last:
            raise ShapeError(
                f"Neuron layer {layer} does not exist, valid range is 0..{last}"
            )

    def expand_layer(self, layer: int, delta: int) -> bool:
        """
        Insert `delta` inert neurons at the start of neuron layer `layer`.

        The new neurons get zero inbound weights and biases and zero
        outbound weights, so they do not change the network's output.

        Returns:
            True if the topology changed, False for delta < 1
        """
        self._check_layer(layer)
        if delta < 1:
            return False
        for store in self._stores():
            if layer > 0:
                store.weights[layer - 1].insert_rows(0, delta)
                store.biases[layer - 1].insert_rows(0, delta)
            if layer < store.synapse_layer_count:
                store.weights[layer].insert_columns(0, delta)
            store.layer_counts[layer] += delta
        logger.info(
            f"Expanded layer {layer} by {delta}: {self.store.layer_counts}"
        )
        return True

    def shrink_layer(self, layer: int, delta: int) -> bool:
        """
        Remove the first `delta` neurons of neuron layer `layer`.

        This is the exact inverse of expand_layer: the neurons' inbound
        weight rows, bias rows and outbound weight columns are deleted.

        Returns:
            True if the topology changed, False for delta < 1

        Raises:
            ShapeError: If the layer would be left without neurons
        """
        self._check_layer(layer)
        if delta < 1:
            return False
        width = self.store.layer_counts[layer]
        if delta >= width:
            raise ShapeError(
                f"Cannot remove {delta} neurons from layer {layer} of "
                f"width {width}, at least one must remain"
            )
        for store in self._stores():
            if layer > 0:
                store.weights[layer - 1].delete_rows(0, delta)
                store.biases[layer - 1].delete_rows(0, delta)
            if layer < store.synapse_layer_count:
                store.weights[layer].delete_columns(0, delta)
            store.layer_counts[layer] -= delta
        logger.info(
            f"Shrank layer {layer} by {delta}: {self.store.layer_counts}"
        )
        return True

    def stretch_layer(self, layer: int, factor: int, group_width: int = 1) -> bool:
        """
        Replicate every group of `group_width` neurons `factor` times.

        Groups keep their order and each is repeated in place, so a layer
        [g0, g1] stretched by 2 becomes [g0, g0, g1, g1]. Replicas copy the
        inbound weights and biases; the outbound weights of every replica
        are divided by `factor`, so the network computes the same function
        right after the edit and the copies can then diverge in training.

        Returns:
            True if the topology changed, False if factor < 2 or the layer
            width is not a multiple of group_width
        """
        self._check_layer(layer)
        width = self.store.layer_counts[layer]
        if factor < 2 or group_width < 1 or width % group_width != 0:
            return False
        groups = np.arange(width).reshape(-1, group_width)
        indices = np.repeat(groups, factor, axis=0).ravel()
        for store in self._stores():
            if layer > 0:
                store.weights[layer - 1].take_rows(indices)
                store.biases[layer - 1].take_rows(indices)
            if layer < store.synapse_layer_count:
                store.weights[layer].take_columns(indices, divisor=factor)
            store.layer_counts[layer] = width * factor
        logger.info(
            f"Stretched layer {layer} by {factor} in groups of {group_width}: "
            f"{self.store.layer_counts}"
        )
        return True
