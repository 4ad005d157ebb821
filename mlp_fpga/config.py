"""
config.py
=========
Shared constants and the training configuration surface.

The bitstream length doubles as the fixed-point scale of the weight memory
image: a weight w is stored as round(w * BITSTREAM_LENGTH) in a HEX_DIGITS wide
two's-complement field.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .errors import ConfigurationError

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
BITSTREAM_LENGTH      = 1024          # bits per stochastic number (last bit = sign)
HEX_DIGITS            = 3             # width of the memory-image field
FIELD_BITS            = 4 * HEX_DIGITS
WEIGHT_INIT_SCALE     = 0.01          # initial weights drawn from [-scale, +scale)
NUM_EPOCHS            = 125
LEARNING_RATE         = 0.1
LAYER_SIZES           = [256, 10, 10]  # semeion digits: 16x16 input → 10 → 10
FIRMWARE_FILENAME     = "weights.txt"
MEMORY_IMAGE_FILENAME = "weights.dat"


@dataclass
class TrainingConfig:
    """Everything needed to build and train one network."""
    units_per_layer: List[int] = field(default_factory=lambda: list(LAYER_SIZES))
    activation: str = "sigmoid"
    learning_rate: float = LEARNING_RATE
    num_epochs: int = NUM_EPOCHS
    bitstream_length: int = BITSTREAM_LENGTH
    init_scale: float = WEIGHT_INIT_SCALE
    seed: Optional[int] = None

    def validate(self):
        # network.py imports this module
        from .network import Activation, whole_number

        if len(self.units_per_layer) < 2:
            raise ConfigurationError(
                f"Need at least an input and an output layer, got {self.units_per_layer}")
        if any(whole_number(n, "Layer width") <= 0 for n in self.units_per_layer):
            raise ConfigurationError(
                f"Layer widths must be positive, got {self.units_per_layer}")
        Activation.parse(self.activation)
        if not self.learning_rate > 0:
            raise ConfigurationError(f"Learning rate must be positive, got {self.learning_rate}")
        if whole_number(self.num_epochs, "Epoch count") <= 0:
            raise ConfigurationError(f"Epoch count must be positive, got {self.num_epochs}")
        if whole_number(self.bitstream_length, "Bitstream length") < 2:
            raise ConfigurationError(
                f"Bitstream needs a sign bit and at least one magnitude bit, "
                f"got length {self.bitstream_length}")
        if not self.init_scale > 0:
            raise ConfigurationError(f"Init scale must be positive, got {self.init_scale}")
        return self

    def build_network(self):
        from .network import Network

        self.validate()
        return Network(self.units_per_layer, self.activation,
                       rng=self.seed, init_scale=self.init_scale)

    def build_arithmetic(self):
        """Stochastic emulator sized to ``bitstream_length`` and seeded like the network."""
        from .stochastic import StochasticArithmetic

        self.validate()
        return StochasticArithmetic(self.bitstream_length, rng=self.seed)

    def train(self, network, inputs, labels, verbose=False):
        """Run ``network.train`` with this config's learning rate and epoch count."""
        self.validate()
        return network.train(inputs, labels, self.learning_rate, self.num_epochs,
                             verbose=verbose)
