"""
network.py
==========
Multilayer feedforward classifier trained by online backpropagation.

Layer layout (``units_per_layer = [256, 10, 10]``):

  layer 0:  256 input units  + 1 bias unit   → weights (257 × 10)
  layer 1:   10 hidden units + 1 bias unit   → weights  (11 × 10)
  layer 2:   10 output units (no bias)

Row ``k`` of ``weights[i]`` is the outgoing-weight vector of unit ``k`` in
layer ``i``; column ``j`` feeds non-bias unit ``j`` of layer ``i + 1``. The
bias unit is always the last row and its output is pinned to 1.0.

Per-unit scratch values (output, weighted sum, error) live in one numpy
buffer per layer rather than on unit objects. ``Unit`` is a read-through view.
"""

import copy
import numbers
from collections import namedtuple
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple

import numpy as np

from .config import WEIGHT_INIT_SCALE
from .errors import ConfigurationError


# ===========================================================================
# Activation functions
# ===========================================================================
class Activation(Enum):
    SIGMOID = 1
    RELU = 2

    @classmethod
    def parse(cls, value):
        """Accept an Activation, its name ('sigmoid' / 'relu') or its number (1 / 2)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        if isinstance(value, numbers.Integral) and not isinstance(value, (bool, np.bool_)):
            try:
                return cls(int(value))
            except ValueError:
                pass
        raise ConfigurationError(
            f"Unsupported activation function {value!r}; expected 'sigmoid' or 'relu'")

    def apply(self, x):
        if self is Activation.SIGMOID:
            return 1.0 / (1.0 + np.exp(-np.clip(x, -500.0, 500.0)))
        return np.maximum(x, 0.0)

    def derivative(self, x):
        """Derivative evaluated at the cached weighted sum ``x``."""
        if self is Activation.SIGMOID:
            s = self.apply(x)
            return s * (1.0 - s)
        return (np.asarray(x) > 0).astype(np.float64)


def whole_number(value, what):
    """``value`` as an int; fractional or non-numeric values are rejected, not truncated."""
    try:
        as_int = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ConfigurationError(f"{what} must be an integer, got {value!r}") from None
    if isinstance(value, (bool, np.bool_)) or as_int != value:
        raise ConfigurationError(f"{what} must be an integer, got {value!r}")
    return as_int


# ===========================================================================
# Topology records
# ===========================================================================
class LayerShape(namedtuple("LayerShape", ["real_units", "has_bias"])):
    """Width of one layer: real (trainable-target) units plus an optional bias slot."""
    __slots__ = ()

    @property
    def width(self):
        return self.real_units + (1 if self.has_bias else 0)


@dataclass(frozen=True)
class TrainingInstance:
    input: Tuple[float, ...]
    label: int


class Unit:
    """View of one neuron inside a Network's buffers."""

    def __init__(self, network, layer, index):
        self._network = network
        self.layer = layer
        self.index = index

    @property
    def is_bias(self):
        shape = self._network.shapes[self.layer]
        return shape.has_bias and self.index == shape.real_units

    @property
    def output(self):
        return float(self._network.outputs[self.layer][self.index])

    @property
    def weighted_sum(self):
        return float(self._network.weighted_sums[self.layer][self.index])

    @property
    def error(self):
        return float(self._network.errors[self.layer][self.index])

    @property
    def outgoing_weights(self):
        # Writable view into the weight matrix; empty for output units
        if self.layer == len(self._network.weights):
            return np.zeros(0)
        return self._network.weights[self.layer][self.index]

    def __repr__(self):
        kind = "bias" if self.is_bias else "unit"
        return f"<{kind} layer={self.layer} index={self.index} output={self.output:.5f}>"


# ===========================================================================
# Network
# ===========================================================================
class Network:
    """Feedforward network with one trailing bias unit on every non-output layer."""

    def __init__(self, units_per_layer: Sequence[int], activation="sigmoid",
                 rng=None, init_scale: float = WEIGHT_INIT_SCALE):
        sizes = [whole_number(n, "Layer width") for n in units_per_layer]
        if len(sizes) < 2:
            raise ConfigurationError(
                f"Need at least an input and an output layer, got {list(units_per_layer)}")
        if any(n <= 0 for n in sizes):
            raise ConfigurationError(f"Layer widths must be positive, got {sizes}")

        self.activation = Activation.parse(activation)
        self.rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)

        last = len(sizes) - 1
        self.shapes = [LayerShape(n, i != last) for i, n in enumerate(sizes)]

        self.outputs = [np.zeros(s.width) for s in self.shapes]
        self.weighted_sums = [np.zeros(s.width) for s in self.shapes]
        self.errors = [np.zeros(s.width) for s in self.shapes]
        for shape, out in zip(self.shapes, self.outputs):
            if shape.has_bias:
                out[-1] = 1.0

        # Every source unit (bias included) feeds every non-bias unit of the next layer
        self.weights = [
            self.rng.uniform(-init_scale, init_scale, size=(src.width, dst.real_units))
            for src, dst in zip(self.shapes[:-1], self.shapes[1:])
        ]

    # ---- topology ----------------------------------------------------------
    @property
    def units_per_layer(self):
        return [s.real_units for s in self.shapes]

    @property
    def num_layers(self):
        return len(self.shapes)

    @property
    def num_weights(self):
        return sum(w.size for w in self.weights)

    def unit(self, layer, index):
        if not 0 <= layer < self.num_layers:
            raise IndexError(f"Layer {layer} out of range (0..{self.num_layers - 1})")
        if not 0 <= index < self.shapes[layer].width:
            raise IndexError(f"Unit {index} out of range for layer {layer} "
                             f"(width {self.shapes[layer].width})")
        return Unit(self, layer, index)

    def layer(self, layer):
        return [self.unit(layer, k) for k in range(self.shapes[layer].width)]

    def copy(self):
        """Independent clone: weights, buffers and generator state are all duplicated."""
        return copy.deepcopy(self)

    # ---- inference ---------------------------------------------------------
    def _check_input(self, inputs):
        x = np.asarray(inputs, dtype=np.float64)
        n_in = self.shapes[0].real_units
        if x.shape != (n_in,):
            raise ConfigurationError(
                f"Input has shape {x.shape}, input layer expects ({n_in},)")
        return x

    def propagate_forward(self, inputs):
        """Set every unit's output and weighted sum for one input vector.

        Returns the output layer's activations (a view into the buffer).
        """
        x = self._check_input(inputs)
        self.outputs[0][:x.size] = x
        for i in range(1, self.num_layers):
            n = self.shapes[i].real_units
            z = self.outputs[i - 1] @ self.weights[i - 1]
            self.weighted_sums[i][:n] = z
            self.outputs[i][:n] = self.activation.apply(z)
        return self.outputs[-1]

    def classify(self, inputs):
        """Index of the strongest output unit; ties go to the lowest index."""
        return int(np.argmax(self.propagate_forward(inputs)))

    def evaluate(self, inputs, labels):
        """Fraction of instances classified correctly."""
        if len(inputs) != len(labels):
            raise ConfigurationError(
                f"{len(inputs)} inputs but {len(labels)} labels")
        if len(inputs) == 0:
            raise ConfigurationError("Cannot evaluate on an empty instance set")
        correct = sum(self.classify(x) == whole_number(y, "Label") for x, y in zip(inputs, labels))
        return correct / len(inputs)

    # ---- training ----------------------------------------------------------
    def _backpropagate(self, label):
        """Compute the error term of every non-input, non-bias unit.

        Convention: error = f'(z) * (target - output); weights then move by
        +lr * output * error.
        """
        for e in self.errors:
            e.fill(0.0)

        n_out = self.shapes[-1].real_units
        target = np.zeros(n_out)
        target[label] = 1.0
        out = self.outputs[-1]
        self.errors[-1][:] = self.activation.derivative(self.weighted_sums[-1]) * (target - out)

        for i in range(self.num_layers - 2, 0, -1):
            n = self.shapes[i].real_units
            m = self.shapes[i + 1].real_units
            downstream = self.weights[i][:n] @ self.errors[i + 1][:m]
            self.errors[i][:n] = self.activation.derivative(self.weighted_sums[i][:n]) * downstream

        return 0.5 * float(np.sum((target - out) ** 2))

    def _update_weights(self, learning_rate):
        for i, w in enumerate(self.weights):
            m = self.shapes[i + 1].real_units
            w += learning_rate * np.outer(self.outputs[i], self.errors[i + 1][:m])

    def train(self, inputs, labels, learning_rate, num_epochs, verbose=False):
        """Online (per-instance) gradient descent over ``num_epochs`` passes.

        Returns the mean squared error of each epoch, measured on the forward
        pass that preceded each update.
        """
        if not learning_rate > 0:
            raise ConfigurationError(f"Learning rate must be positive, got {learning_rate}")
        num_epochs = whole_number(num_epochs, "Epoch count")
        if num_epochs <= 0:
            raise ConfigurationError(f"Epoch count must be positive, got {num_epochs}")
        if len(inputs) != len(labels):
            raise ConfigurationError(f"{len(inputs)} inputs but {len(labels)} labels")

        n_out = self.shapes[-1].real_units
        xs = [self._check_input(x) for x in inputs]
        ys = [whole_number(y, "Label") for y in labels]
        for y in ys:
            if not 0 <= y < n_out:
                raise ConfigurationError(f"Label {y} out of range for {n_out} output units")

        history = []
        for epoch in range(num_epochs):
            total_loss = 0.0
            for x, y in zip(xs, ys):
                self.propagate_forward(x)
                total_loss += self._backpropagate(y)
                self._update_weights(learning_rate)
            loss = total_loss / max(len(xs), 1)
            history.append(loss)
            if verbose:
                print(f"Epoch {epoch+1}/{num_epochs}, Loss: {loss:.4f}")
        return history

    def train_instances(self, instances: Sequence[TrainingInstance], learning_rate,
                        num_epochs, verbose=False):
        return self.train([i.input for i in instances], [i.label for i in instances],
                          learning_rate, num_epochs, verbose=verbose)

    def __repr__(self):
        arch = " → ".join(str(n) for n in self.units_per_layer)
        return f"Network({arch}, {self.activation.name.lower()}, {self.num_weights} weights)"
