# tests/test_weight_export.py
"""
Unit tests for the MCU / FPGA weight exporters.

Tests cover:
    - 12-bit two's-complement fields, saturation and legacy wrapping
    - Export order, headers and contiguous addresses
    - Round trip of the memory image back to weights
    - File output and I/O failures
"""

import numpy as np
import pytest

from mlp_fpga import (ConfigurationError, Device, Network, WeightExportError,
                      firmware_lines, from_fixed_point_hex, memory_image_lines,
                      parse_memory_image, to_fixed_point_hex, write_weights)
from mlp_fpga.weight_export import count_out_of_range, write_memory_image


@pytest.fixture
def net():
    return Network([2, 2, 2], rng=0, init_scale=0.5)


def weight_lines(lines):
    return [l for l in lines if l and not l.startswith("//")]


class TestFixedPoint:
    """Quantized field encoding."""

    @pytest.mark.parametrize("value,field", [
        (0.0, "000"),
        (1 / 1024, "001"),
        (-1 / 1024, "fff"),
        (0.5, "200"),
        (-0.25, "f00"),
        (2047 / 1024, "7ff"),
        (-2.0, "800"),
    ])
    def test_in_range(self, value, field):
        assert to_fixed_point_hex(value) == field
        assert from_fixed_point_hex(field) == pytest.approx(value)
        assert from_fixed_point_hex("0x" + field) == pytest.approx(value)

    def test_saturates_by_default(self):
        assert to_fixed_point_hex(3.0) == "7ff"
        assert to_fixed_point_hex(-3.0) == "800"

    def test_wrap_keeps_low_bits(self):
        # 3.0 * 1024 = 0xc00; the legacy exporter kept the last three hex digits
        assert to_fixed_point_hex(3.0, overflow="wrap") == "c00"
        assert to_fixed_point_hex(-2.5, overflow="wrap") == format(-2560 & 0xFFF, "03x")

    def test_bad_overflow_mode(self):
        with pytest.raises(ConfigurationError):
            to_fixed_point_hex(0.1, overflow="clip")

    def test_quantization_error_bound(self):
        for w in np.linspace(-1.99, 1.99, 101):
            assert abs(from_fixed_point_hex(to_fixed_point_hex(w)) - w) <= 0.5 / 1024 + 1e-12


class TestMemoryImage:
    """weights.dat layout."""

    def test_addresses_are_contiguous(self, net):
        words = parse_memory_image("\n".join(memory_image_lines(net)))
        assert [w.address for w in words] == list(range(net.num_weights))

    def test_export_order(self, net):
        words = parse_memory_image("\n".join(memory_image_lines(net)))
        expected = [net.weights[i - 1][k, j]
                    for i in (1, 2)
                    for j in range(2)
                    for k in range(3)]
        for word, w in zip(words, expected):
            assert word.weight == pytest.approx(w, abs=1e-5)

    def test_headers(self, net):
        lines = memory_image_lines(net)
        assert lines[0] == "// Weights from layer 0 to layer 1"
        assert lines[1] == "// Weights feeding into layer 1, node 0"
        assert "// Weights from layer 1 to layer 2" in lines
        assert "// Weights feeding into layer 2, node 1" in lines

    def test_line_shape(self, net):
        w = net.weights[0][0, 0]
        first = weight_lines(memory_image_lines(net))[0]
        assert first == f"@0 0x{to_fixed_point_hex(w)}  // {w:.5f}"

    def test_round_trip(self, net):
        net.train([[0.2, 0.9], [0.8, 0.1]], [0, 1], learning_rate=0.5, num_epochs=50)
        words = parse_memory_image("\n".join(memory_image_lines(net)))
        flat = [net.weights[i - 1][k, j]
                for i in range(1, net.num_layers)
                for j in range(net.shapes[i].real_units)
                for k in range(net.shapes[i - 1].width)]
        for word, w in zip(words, flat):
            assert abs(word.weight - w) <= 1 / 1024
            if abs(w) < 2047 / 1024:
                assert abs(word.value - w) <= 0.5 / 1024 + 1e-12

    def test_large_weights(self, net):
        net.weights[0][0, 0] = 5.0
        net.weights[1][2, 1] = -4.0
        assert count_out_of_range(net) == 2
        fields = [w.field for w in parse_memory_image("\n".join(memory_image_lines(net)))]
        assert fields[0] == "7ff"
        assert fields[-1] == "800"
        wrapped = parse_memory_image("\n".join(memory_image_lines(net, overflow="wrap")))
        assert wrapped[0].field == format(5 * 1024 & 0xFFF, "03x")

    def test_decoded_values(self, net):
        words = parse_memory_image("\n".join(memory_image_lines(net)))
        for word in words:
            assert word.value == from_fixed_point_hex(word.field)
            assert abs(word.value - word.weight) <= 0.5 / 1024 + 1e-5

    def test_custom_scale_and_width(self, net):
        text = "\n".join(memory_image_lines(net, scale=256, digits=4))
        words = parse_memory_image(text, scale=256, digits=4)
        assert all(len(w.field) == 4 for w in words)
        for word in words:
            assert word.value == from_fixed_point_hex(word.field, 256, 4)
            assert abs(word.value - word.weight) <= 0.5 / 256 + 1e-5

    def test_field_width_mismatch(self, net):
        text = "\n".join(memory_image_lines(net))
        with pytest.raises(ConfigurationError):
            parse_memory_image(text, digits=4)
        with pytest.raises(ConfigurationError):
            parse_memory_image("@0 0x0a  // 0.01")

    def test_malformed_line(self):
        with pytest.raises(ConfigurationError):
            parse_memory_image("@0 zzz // 1.0")


class TestFirmware:
    """weights.txt layout."""

    def test_assignments(self, net):
        lines = firmware_lines(net)
        assigns = weight_lines(lines)
        assert len(assigns) == net.num_weights
        assert assigns[0] == f"weights[0][0][0] = {float(net.weights[0][0, 0])!r};"
        assert assigns[2] == f"weights[0][0][2] = {float(net.weights[0][2, 0])!r};"
        assert assigns[-1] == f"weights[1][1][2] = {float(net.weights[1][2, 1])!r};"

    def test_values_survive_text(self, net):
        for line in weight_lines(firmware_lines(net)):
            lhs, rhs = line.rstrip(";").split(" = ")
            i, j, k = (int(t) for t in lhs[len("weights["):-1].split("]["))
            assert float(rhs) == net.weights[i][k, j]

    def test_blank_line_between_nodes(self, net):
        lines = firmware_lines(net)
        assert lines[-1] != ""
        idx = lines.index("// Weights feeding into layer 1, node 1")
        assert lines[idx - 1] == ""
        idx = lines.index("// Weights from layer 1 to layer 2")
        assert lines[idx - 1] == ""


class TestFiles:
    """Writing weights.txt / weights.dat."""

    def test_write_both(self, net, tmp_path):
        paths = write_weights(net, "both", out_dir=tmp_path)
        assert [p.name for p in paths] == ["weights.txt", "weights.dat"]
        words = parse_memory_image((tmp_path / "weights.dat").read_text())
        assert len(words) == net.num_weights

    @pytest.mark.parametrize("device,names", [
        (Device.MCU, ["weights.txt"]),
        (Device.FPGA, ["weights.dat"]),
        (3, ["weights.txt", "weights.dat"]),
    ])
    def test_device_selection(self, net, tmp_path, device, names):
        paths = write_weights(net, device, out_dir=tmp_path)
        assert sorted(p.name for p in paths) == sorted(names)
        assert sorted(p.name for p in tmp_path.iterdir()) == sorted(names)

    def test_device_from_numpy_integer(self, net, tmp_path):
        assert Device.parse(np.int64(2)) is Device.FPGA
        paths = write_weights(net, np.int32(1), out_dir=tmp_path)
        assert [p.name for p in paths] == ["weights.txt"]
        with pytest.raises(ConfigurationError):
            Device.parse(True)

    def test_invalid_device(self, net, tmp_path):
        with pytest.raises(ConfigurationError):
            write_weights(net, "gpu", out_dir=tmp_path)

    def test_io_failure_leaves_network_untouched(self, net, tmp_path):
        before = [w.copy() for w in net.weights]
        with pytest.raises(WeightExportError):
            write_weights(net, Device.BOTH, out_dir=tmp_path / "missing" / "dir")
        for w, b in zip(net.weights, before):
            np.testing.assert_array_equal(w, b)

    def test_verbose_reports_saturation(self, net, tmp_path, capsys):
        net.weights[0][0, 0] = 9.0
        write_memory_image(net, tmp_path / "weights.dat", verbose=True)
        out = capsys.readouterr().out
        assert "1 weights exceed the 12-bit field and were saturated" in out
        assert "Generated" in out
