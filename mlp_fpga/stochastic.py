"""
stochastic.py
=============
Software emulation of stochastic-computing arithmetic.

A stochastic number of length L is a boolean array: bits 0 .. L-2 hold the
magnitude as a density of ones (|x| ≈ ones / (L-1)), bit L-1 is the sign.

  multiply : AND of the magnitude bits, XOR of the sign bits
  sum      : per-bit multiplexer that majority-votes over randomly selected
             inputs; the decoded result is the mean, scaled back by n

The emulator is not wired into Network. It is used to decide how long the
hardware bitstreams must be before committing to an arithmetic unit.
"""

import math
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from .config import BITSTREAM_LENGTH
from .errors import ConfigurationError
from .network import whole_number


class StochasticArithmetic:
    """Encode/decode and arithmetic on fixed-length bitstreams.

    Args:
        bitstream_length: Total bits per number, sign bit included.
        rng: ``np.random.Generator`` or seed. Every random permutation and
            multiplexer selection is drawn from it, so a seeded instance is
            fully reproducible.
    """

    def __init__(self, bitstream_length: int = BITSTREAM_LENGTH, rng=None):
        length = whole_number(bitstream_length, "Bitstream length")
        if length < 2:
            raise ConfigurationError(
                f"Bitstream needs a sign bit and at least one magnitude bit, "
                f"got length {bitstream_length}")
        self.length = length
        self.rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)

    @property
    def magnitude_bits(self):
        return self.length - 1

    # ---- conversion --------------------------------------------------------
    def encode(self, x: float) -> np.ndarray:
        """Real number in [-1, 1] → bitstream with a uniformly shuffled magnitude."""
        x = float(x)
        if not -1.0 <= x <= 1.0:
            raise ConfigurationError(f"Cannot encode {x}: stochastic numbers lie in [-1, 1]")
        num_true = int(round(abs(x) * self.magnitude_bits))
        magnitude = np.zeros(self.magnitude_bits, dtype=bool)
        magnitude[:num_true] = True
        self.rng.shuffle(magnitude)
        return np.append(magnitude, x < 0)

    @staticmethod
    def decode(bitstream) -> float:
        """Bitstream (any length ≥ 2) → real number. The sign bit is not counted."""
        bits = np.asarray(bitstream, dtype=bool)
        if bits.ndim != 1 or bits.size < 2:
            raise ConfigurationError(
                f"A bitstream is a 1-D array of at least 2 bits, got shape {bits.shape}")
        magnitude = np.count_nonzero(bits[:-1]) / (bits.size - 1)
        return -magnitude if bits[-1] else magnitude

    # ---- arithmetic --------------------------------------------------------
    @staticmethod
    def multiply_bitstreams(a, b) -> np.ndarray:
        a = np.asarray(a, dtype=bool)
        b = np.asarray(b, dtype=bool)
        if a.shape != b.shape:
            raise ConfigurationError(f"Bitstream lengths differ: {a.shape} vs {b.shape}")
        return np.append(a[:-1] & b[:-1], a[-1] ^ b[-1])

    @staticmethod
    def _prescale(x):
        """Shift left until 2|x| >= 1; AND-gate products are only accurate above 0.5."""
        shifts = 0
        while 2 * abs(x) < 1:
            x *= 2
            shifts += 1
        return x, shifts

    def multiply(self, x: float, y: float) -> float:
        x, y = float(x), float(y)
        for v in (x, y):
            if not -1.0 <= v <= 1.0:
                raise ConfigurationError(f"Cannot multiply {v}: operands must lie in [-1, 1]")
        if x == 0.0 or y == 0.0:
            return 0.0

        x, x_shifts = self._prescale(x)
        y, y_shifts = self._prescale(y)
        product = self.decode(self.multiply_bitstreams(self.encode(x), self.encode(y)))

        # Arithmetic shift right to undo the pre-scaling
        return math.ldexp(product, -(x_shifts + y_shifts))

    def sum(self, values: Sequence[float], samples: int = 1) -> float:
        """Multiplexer adder: each output bit is the majority of ``samples`` picks.

        Ties (even ``samples`` split evenly) resolve to a one.
        """
        values = [float(v) for v in values]
        if not values:
            raise ConfigurationError("Cannot sum an empty sequence")
        samples = whole_number(samples, "samples")
        if samples < 1:
            raise ConfigurationError(f"samples must be at least 1, got {samples}")

        streams = np.stack([self.encode(v) for v in values])           # (n, L)
        picks = self.rng.integers(0, len(values), size=(self.length, samples))
        positions = np.arange(self.length)[:, None]
        votes = streams[picks, positions].sum(axis=1)                  # (L,)
        result = 2 * votes >= samples
        return self.decode(result) * len(values)


# ===========================================================================
# Bitstream length selection
# ===========================================================================
def bitstream_length_sweep(pairs: Iterable[Tuple[float, float]],
                           lengths: Sequence[int] = (64, 128, 256, 512, 1024, 2048),
                           trials: int = 10, rng=None,
                           verbose: bool = False) -> Dict[int, float]:
    """Mean relative error of ``multiply`` for each candidate bitstream length.

    Pairs whose exact product is zero are skipped since relative error is
    undefined for them.
    """
    pairs = [(float(a), float(b)) for a, b in pairs if a * b != 0]
    if not pairs:
        raise ConfigurationError("Need at least one operand pair with a non-zero product")
    trials = whole_number(trials, "trials")
    if trials < 1:
        raise ConfigurationError(f"trials must be at least 1, got {trials}")
    rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)

    results = {}
    for length in lengths:
        sc = StochasticArithmetic(length, rng=rng)
        errors = [abs(sc.multiply(a, b) - a * b) / abs(a * b)
                  for a, b in pairs for _ in range(trials)]
        results[sc.length] = float(np.mean(errors))
        if verbose:
            print(f"  L={sc.length:<6d} mean relative error = {results[sc.length]*100:.3f}%")
    return results


def smallest_sufficient_length(sweep: Dict[int, float], tolerance: float) -> Optional[int]:
    """Shortest length whose mean relative error is within ``tolerance``, or None."""
    passing = [length for length, err in sweep.items() if err <= tolerance]
    return min(passing) if passing else None
