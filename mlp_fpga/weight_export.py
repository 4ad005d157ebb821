"""
weight_export.py
================
Serialize a trained Network for the two hardware targets.

  weights.txt  (MCU)   C initializers, pasted into the firmware source
                         weights[<src layer>][<dest node>][<src node>] = <float>;
  weights.dat  (FPGA)  memory image for the HDL simulator
                         @<address> 0x<3 hex digits>  // <weight, 5 decimals>

Both files walk layer 0→1, 1→2, …, last hidden→output; inside a layer pair
they go destination node by destination node, listing every source node
(bias last). Addresses in weights.dat start at 0 and have no gaps.

Fixed-point field: round(w * BITSTREAM_LENGTH) as a 12-bit two's-complement
number. Values outside [-2048, 2047] (|w| ≳ 2.0) are saturated by default;
overflow="wrap" keeps only the low 12 bits, matching the legacy exporter.
"""

import numbers
import re
from collections import namedtuple
from enum import Enum
from pathlib import Path

from .config import (BITSTREAM_LENGTH, FIRMWARE_FILENAME, HEX_DIGITS,
                     MEMORY_IMAGE_FILENAME)
from .errors import ConfigurationError, WeightExportError

# field: raw hex digits, value: field decoded at the image scale, weight: comment value
MemoryWord = namedtuple("MemoryWord", ["address", "field", "value", "weight"])

_MEMORY_LINE = re.compile(r"^@(\d+)\s+0x([0-9a-fA-F]+)\s*//\s*(\S+)\s*$")


class Device(Enum):
    MCU = 1
    FPGA = 2
    BOTH = 3

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        if isinstance(value, numbers.Integral) and not isinstance(value, bool):
            try:
                return cls(int(value))
            except ValueError:
                pass
        raise ConfigurationError(f"Invalid device {value!r}; expected mcu, fpga or both")


# ---------------------------------------------------------------------------
# Fixed-point helpers
# ---------------------------------------------------------------------------
def to_fixed_point_hex(value, scale=BITSTREAM_LENGTH, digits=HEX_DIGITS, overflow="saturate"):
    """float → ``digits``-wide two's-complement hex string (lower case, no prefix)."""
    bits = 4 * digits
    lo, hi = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    fixed = int(round(value * scale))
    if overflow == "saturate":
        fixed = min(max(fixed, lo), hi)
    elif overflow != "wrap":
        raise ConfigurationError(f"overflow must be 'saturate' or 'wrap', got {overflow!r}")
    return format(fixed & ((1 << bits) - 1), f"0{digits}x")


def from_fixed_point_hex(field, scale=BITSTREAM_LENGTH, digits=HEX_DIGITS):
    """Inverse of to_fixed_point_hex for in-range values."""
    bits = 4 * digits
    raw = int(field[2:] if field.lower().startswith("0x") else field, 16)
    if raw >= 1 << (bits - 1):
        raw -= 1 << bits
    return raw / scale


def count_out_of_range(network, scale=BITSTREAM_LENGTH, digits=HEX_DIGITS):
    """Number of weights that do not fit the fixed-point field."""
    bits = 4 * digits
    lo, hi = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    return sum(1 for _, _, _, w in _iter_weights(network)
               if not lo <= round(w * scale) <= hi)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def _iter_weights(network):
    """Yield (dest layer, dest node, src node, weight) in export order."""
    for i in range(1, network.num_layers):
        w = network.weights[i - 1]
        for j in range(network.shapes[i].real_units):
            for k in range(network.shapes[i - 1].width):
                yield i, j, k, float(w[k, j])


def _with_headers(network, render):
    """Interleave '// Weights …' comment headers with rendered weight lines."""
    lines = []
    last_layer = last_node = None
    for i, j, k, weight in _iter_weights(network):
        if i != last_layer:
            lines.append(f"// Weights from layer {i - 1} to layer {i}")
            last_layer, last_node = i, None
        if j != last_node:
            lines.extend(render.node_break(i, j, last_node))
            lines.append(f"// Weights feeding into layer {i}, node {j}")
            last_node = j
        lines.append(render(i, j, k, weight))
    return lines


class _FirmwareLine:
    def node_break(self, layer, node, previous):
        # One blank line separates consecutive nodes in the firmware listing
        return [""] if previous is not None else []

    def __call__(self, layer, node, src, weight):
        return f"weights[{layer - 1}][{node}][{src}] = {weight!r};"


class _MemoryLine:
    def __init__(self, scale, digits, overflow):
        self.scale, self.digits, self.overflow = scale, digits, overflow
        self.address = 0

    def node_break(self, layer, node, previous):
        return []

    def __call__(self, layer, node, src, weight):
        field = to_fixed_point_hex(weight, self.scale, self.digits, self.overflow)
        line = f"@{self.address} 0x{field}  // {weight:.5f}"
        self.address += 1
        return line


def firmware_lines(network):
    lines = _with_headers(network, _FirmwareLine())
    # The header-per-layer lines also end a node block
    out = []
    for line in lines:
        if line.startswith("// Weights from layer") and out and out[-1] != "":
            out.append("")
        out.append(line)
    return out


def memory_image_lines(network, scale=BITSTREAM_LENGTH, digits=HEX_DIGITS, overflow="saturate"):
    if overflow not in ("saturate", "wrap"):
        raise ConfigurationError(f"overflow must be 'saturate' or 'wrap', got {overflow!r}")
    return _with_headers(network, _MemoryLine(scale, digits, overflow))


def parse_memory_image(text, scale=BITSTREAM_LENGTH, digits=HEX_DIGITS):
    """Read back the weight records of a memory image, ignoring comment lines.

    Each field must be exactly ``digits`` hex digits wide; its ``value`` is the
    field decoded at ``scale``, which is what the hardware sees.
    """
    words = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("//"):
            continue
        m = _MEMORY_LINE.match(line)
        if m is None:
            raise ConfigurationError(f"Malformed memory-image line: {line!r}")
        field = m.group(2)
        if len(field) != digits:
            raise ConfigurationError(
                f"Field 0x{field} is {len(field)} hex digits wide, expected {digits}: {line!r}")
        words.append(MemoryWord(int(m.group(1)), field,
                                from_fixed_point_hex(field, scale, digits), float(m.group(3))))
    return words


# ---------------------------------------------------------------------------
# File output
# ---------------------------------------------------------------------------
def _write_lines(path, lines, verbose, entries):
    path = Path(path)
    try:
        with open(path, "w") as f:
            f.write("\n".join(lines) + "\n")
    except OSError as exc:
        raise WeightExportError(f"Cannot write {path}: {exc}") from exc
    if verbose:
        print(f"Generated {path}  ({entries} entries)")
    return path


def write_firmware_weights(network, path=FIRMWARE_FILENAME, verbose=False):
    lines = firmware_lines(network)
    return _write_lines(path, lines, verbose, network.num_weights)


def write_memory_image(network, path=MEMORY_IMAGE_FILENAME, scale=BITSTREAM_LENGTH,
                       digits=HEX_DIGITS, overflow="saturate", verbose=False):
    lines = memory_image_lines(network, scale, digits, overflow)
    if verbose:
        clipped = count_out_of_range(network, scale, digits)
        if clipped:
            action = "saturated" if overflow == "saturate" else "wrapped"
            print(f"  ⚠️  {clipped} weights exceed the {4 * digits}-bit field and were {action}")
    return _write_lines(path, lines, verbose, network.num_weights)


def write_weights(network, device=Device.BOTH, out_dir=".", verbose=False, **memory_kwargs):
    """Write weights.txt, weights.dat or both into ``out_dir``; returns the paths written."""
    device = Device.parse(device)
    out_dir = Path(out_dir)
    written = []
    if device in (Device.MCU, Device.BOTH):
        written.append(write_firmware_weights(network, out_dir / FIRMWARE_FILENAME, verbose))
    if device in (Device.FPGA, Device.BOTH):
        written.append(write_memory_image(network, out_dir / MEMORY_IMAGE_FILENAME,
                                          verbose=verbose, **memory_kwargs))
    return written
