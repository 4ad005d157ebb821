"""
verify.py
=========
Software-inference cross-check of a trained Network against PyTorch.

The network's weights are copied into an ``nn.Sequential`` of Linear layers
(bias row → Linear bias) with the same activation after every layer, then
both models classify the same inputs. A mismatch means the exported weight
layout or the hand-written forward pass is wrong; run this before handing
weights.dat to the HDL simulator.
"""

from dataclasses import dataclass

import numpy as np
import torch
import torch.nn as nn

from .errors import ConfigurationError
from .network import Activation


@dataclass
class VerificationReport:
    total: int
    agreed: int
    max_output_diff: float

    @property
    def agreement(self):
        return self.agreed / self.total if self.total else 0.0

    @property
    def ok(self):
        return self.agreed == self.total


def to_torch_module(network):
    """Mirror ``network`` as a float64 nn.Sequential (Linear + activation per layer)."""
    layers = []
    for i, w in enumerate(network.weights):
        n_src = network.shapes[i].real_units
        n_dst = network.shapes[i + 1].real_units
        fc = nn.Linear(n_src, n_dst).double()
        with torch.no_grad():
            fc.weight.copy_(torch.from_numpy(np.ascontiguousarray(w[:n_src].T)))
            fc.bias.copy_(torch.from_numpy(np.ascontiguousarray(w[n_src])))
        layers.append(fc)
        layers.append(nn.Sigmoid() if network.activation is Activation.SIGMOID else nn.ReLU())
    model = nn.Sequential(*layers)
    model.eval()
    return model


def torch_classify(model, inputs):
    with torch.no_grad():
        x = torch.as_tensor(np.asarray(inputs, dtype=np.float64))
        if x.dim() == 1:
            x = x.unsqueeze(0)
        return model(x).argmax(dim=1).tolist()


def verify_against_torch(network, inputs, verbose=False):
    """Classify ``inputs`` with both implementations and compare."""
    if len(inputs) == 0:
        raise ConfigurationError("Need at least one input to verify against")
    model = to_torch_module(network)
    x = np.asarray(inputs, dtype=np.float64)
    with torch.no_grad():
        reference = model(torch.from_numpy(x)).numpy()

    agreed = 0
    max_diff = 0.0
    for row, ref in zip(x, reference):
        out = network.propagate_forward(row).copy()
        max_diff = max(max_diff, float(np.max(np.abs(out - ref))))
        # torch.argmax and np.argmax both return the first maximum
        agreed += int(np.argmax(out) == int(np.argmax(ref)))

    report = VerificationReport(total=len(x), agreed=agreed, max_output_diff=max_diff)
    if verbose:
        print(f"Software verification: {report.agreed}/{report.total} classifications agree, "
              f"max output difference {report.max_output_diff:.2e}")
    return report
