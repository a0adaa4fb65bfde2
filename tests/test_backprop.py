"""
test_backprop.py
~~~~~~~~~~~~~~~~

Gradient checks: backpropagated gradients against central finite
differences of the sum of squared errors.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from brainlib.errors import ShapeError
from brainlib.network import Network

EPSILON = 1e-5


def numeric_gradient(net, array, x, t):
    """Central differences of net.loss with respect to every entry of array."""
    grad = np.zeros_like(array)
    for index in np.ndindex(array.shape):
        original = array[index]
        array[index] = original + EPSILON
        plus = net.loss(x, t)
        array[index] = original - EPSILON
        minus = net.loss(x, t)
        array[index] = original
        grad[index] = (plus - minus) / (2 * EPSILON)
    return grad


@pytest.fixture(params=['raw', 'logistic', 'sech', 'tanh'])
def activation(request):
    return request.param


@pytest.mark.unit
class TestFiniteDifferences:
    """Compare analytic gradients with numeric ones."""

    @pytest.mark.parametrize('layer_counts', [[2, 3, 2], [3, 4, 5, 4, 2]])
    def test_gradients_match(self, layer_counts, activation):
        """Test every weight and bias gradient against finite differences."""
        rng = np.random.default_rng(42)
        net = Network.from_layer_counts(layer_counts, activation, rng=rng)
        # Keep pre-activations in a range where sech/logistic are not flat
        for w in net.weights:
            w *= 0.5
        x = rng.uniform(-1, 1, layer_counts[0])
        t = rng.uniform(0, 1, layer_counts[-1])

        result = net.compute_gradients(x, t)

        for l in range(net.synapse_layer_count):
            expected_w = numeric_gradient(net, net.weights[l], x, t)
            expected_b = numeric_gradient(net, net.biases[l], x, t)
            np.testing.assert_allclose(
                result.weight_grads[l], expected_w, rtol=1e-4, atol=1e-6
            )
            np.testing.assert_allclose(
                result.bias_grads[l], expected_b, rtol=1e-4, atol=1e-6
            )

    def test_loss_is_sum_of_squared_errors(self):
        """Test that the reported loss is sum((output - target)^2)."""
        net = Network(2, [3], 2, rng=np.random.default_rng(3))
        x = [0.5, -0.5]
        t = [1.0, 0.0]
        output = net.evaluate(x)
        expected = float(np.sum((output - np.array(t)) ** 2))
        assert net.compute_gradients(x, t).loss == pytest.approx(expected)
        assert net.loss(x, t) == pytest.approx(expected)


@pytest.mark.unit
class TestGradientShapes:
    """Test gradient shapes and input validation."""

    def test_gradient_shapes_match_parameters(self):
        """Test one weight and bias gradient per synapse layer."""
        net = Network(3, [4, 2], 1)
        result = net.compute_gradients([0.0, 1.0, 2.0], [0.5])
        assert len(result.weight_grads) == 3
        for g, w in zip(result.weight_grads, net.weights):
            assert g.shape == w.shape
        for g, b in zip(result.bias_grads, net.biases):
            assert g.shape == b.shape

    def test_wrong_target_length_raises(self):
        """Test that a target of the wrong length raises ShapeError."""
        net = Network(2, [2], 2)
        with pytest.raises(ShapeError):
            net.compute_gradients([0.0, 1.0], [0.5])

    def test_gradients_do_not_modify_parameters(self):
        """Test that computing gradients leaves the parameters untouched."""
        net = Network(2, [3], 1, rng=np.random.default_rng(11))
        before = [w.copy() for w in net.weights]
        net.compute_gradients([1.0, 2.0], [0.0])
        for a, b in zip(before, net.weights):
            assert np.array_equal(a, b)
