"""Backprop-trained MLP with stochastic-arithmetic emulation and FPGA/MCU weight export."""

from .config import BITSTREAM_LENGTH, TrainingConfig
from .errors import ConfigurationError, MLPError, WeightExportError
from .network import Activation, LayerShape, Network, TrainingInstance, Unit
from .stochastic import StochasticArithmetic, bitstream_length_sweep, smallest_sufficient_length
from .weight_export import (Device, firmware_lines, from_fixed_point_hex, memory_image_lines,
                            parse_memory_image, to_fixed_point_hex, write_firmware_weights,
                            write_memory_image, write_weights)

__all__ = [
    "BITSTREAM_LENGTH",
    "TrainingConfig",
    "MLPError",
    "ConfigurationError",
    "WeightExportError",
    "Activation",
    "LayerShape",
    "Network",
    "TrainingInstance",
    "Unit",
    "StochasticArithmetic",
    "bitstream_length_sweep",
    "smallest_sufficient_length",
    "Device",
    "firmware_lines",
    "memory_image_lines",
    "to_fixed_point_hex",
    "from_fixed_point_hex",
    "parse_memory_image",
    "write_firmware_weights",
    "write_memory_image",
    "write_weights",
]
