"""Exceptions raised by the training engine, the stochastic emulator and the exporters."""


class MLPError(Exception):
    """Base class for every error raised by mlp_fpga."""


class ConfigurationError(MLPError, ValueError):
    """Bad topology, hyperparameter, input shape or out-of-range operand.

    Unrecoverable for the current run: callers should fix the configuration
    rather than retry.
    """


class WeightExportError(MLPError, OSError):
    """Writing an exported weight file failed. The network is left untouched."""
