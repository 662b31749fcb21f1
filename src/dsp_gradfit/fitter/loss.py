"""Per-frame loss functions and their gradients.

For a frame with learnable output s(p) and ground truth s_gt, the residual is
delta = s(p) - s_gt. The backend supplies ds/dp_k on the derivative channels,
so the chain rule gives

    dL/dp_k = dL/ddelta * ds/dp_k

and each loss only needs to provide dL/ddelta.
"""

from __future__ import annotations

import abc

import numpy as np

from dsp_gradfit.fitter.errors import ConfigurationError


class LossFunction(abc.ABC):
    """Abstract scalar loss of the residual between two samples."""

    name: str = ""

    @staticmethod
    def residual(observed: float, target: float) -> float:
        """Return delta = observed - target."""
        return float(observed) - float(target)

    @abc.abstractmethod
    def loss(self, delta: float) -> float:
        """Return the non-negative loss for a residual."""

    @abc.abstractmethod
    def gradient(self, derivatives: np.ndarray, delta: float) -> np.ndarray:
        """Map raw partial derivatives ds/dp_k to loss gradients dL/dp_k."""

    def __call__(self, observed: float, target: float) -> float:
        """Evaluate the loss of observed against target."""
        return self.loss(self.residual(observed, target))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class L1Loss(LossFunction):
    """Absolute error |delta|."""

    name = "l1"

    def loss(self, delta: float) -> float:
        """Return |delta|."""
        return abs(delta)

    def gradient(self, derivatives: np.ndarray, delta: float) -> np.ndarray:
        """Return d_k * sign(delta), exactly zero when delta is zero."""
        derivatives = np.asarray(derivatives, dtype=float)
        if delta == 0.0:
            return np.zeros_like(derivatives)
        return derivatives * delta / abs(delta)


class L2Loss(LossFunction):
    """Squared error delta**2."""

    name = "l2"

    def loss(self, delta: float) -> float:
        """Return delta**2."""
        return delta**2

    def gradient(self, derivatives: np.ndarray, delta: float) -> np.ndarray:
        """Return 2 * d_k * delta."""
        return 2.0 * np.asarray(derivatives, dtype=float) * delta


LOSS_REGISTRY: dict[str, type[LossFunction]] = {
    "l1": L1Loss,
    "l2": L2Loss,
}


def make_loss_function(name: str) -> LossFunction:
    """Instantiate the loss function registered under name."""
    try:
        loss_cls = LOSS_REGISTRY[name]
    except KeyError:
        msg = f"Unknown loss function {name!r}."
        raise ConfigurationError(msg) from None
    return loss_cls()


__all__ = [
    "LOSS_REGISTRY",
    "L1Loss",
    "L2Loss",
    "LossFunction",
    "make_loss_function",
]
