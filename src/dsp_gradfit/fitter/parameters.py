"""Ordered registry of the learnable parameters of a transform."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from dsp_gradfit.fitter.errors import ConfigurationError

if TYPE_CHECKING:
    from dsp_gradfit.fitter.graph import Transform

# Channels 0 and 1 carry the ground-truth and learnable outputs.
FIRST_DERIVATIVE_CHANNEL: int = 2


@dataclass
class Parameter:
    """A learnable parameter with its current value and last gradient."""

    address: str
    value: float
    gradient: float = 0.0

    @property
    def label(self) -> str:
        """Short name: the last component of the address path."""
        return self.address.rsplit("/", 1)[-1]


class ParameterRegistry:
    """Insertion-ordered mapping from address to Parameter.

    The order is fixed at construction. The k-th parameter reads its
    partial derivative from output channel FIRST_DERIVATIVE_CHANNEL + k.
    """

    def __init__(self, parameters: Iterable[Parameter]) -> None:
        """Build the registry, rejecting duplicate addresses."""
        self._params: dict[str, Parameter] = {}
        for param in parameters:
            if param.address in self._params:
                msg = f"Duplicate parameter address: {param.address!r}"
                raise ConfigurationError(msg)
            self._params[param.address] = param

    @classmethod
    def from_transform(cls, transform: Transform) -> ParameterRegistry:
        """Enumerate the learnable parameters a transform exposes."""
        return cls(
            Parameter(address=str(address), value=float(value))
            for address, value in transform.parameters()
        )

    def __len__(self) -> int:
        return len(self._params)

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._params.values())

    def __contains__(self, address: object) -> bool:
        return address in self._params

    def __getitem__(self, address: str) -> Parameter:
        return self._params[address]

    @property
    def addresses(self) -> list[str]:
        """Parameter addresses in registry order."""
        return list(self._params)

    @property
    def labels(self) -> list[str]:
        """Short parameter labels in registry order."""
        return [p.label for p in self._params.values()]

    def values(self) -> np.ndarray:
        """Current values as a vector in registry order."""
        return np.array([p.value for p in self._params.values()], dtype=float)

    def gradients(self) -> np.ndarray:
        """Stored gradients as a vector in registry order."""
        return np.array([p.gradient for p in self._params.values()], dtype=float)

    def as_dict(self) -> dict[str, float]:
        """Current values keyed by address."""
        return {address: p.value for address, p in self._params.items()}

    def channel_of(self, address: str) -> int:
        """Output channel holding the derivative for the given address."""
        for k, name in enumerate(self._params):
            if name == address:
                return FIRST_DERIVATIVE_CHANNEL + k
        raise KeyError(address)

    def derivative_slice(self) -> slice:
        """Slice selecting the derivative channels of an output frame."""
        return slice(FIRST_DERIVATIVE_CHANNEL, FIRST_DERIVATIVE_CHANNEL + len(self))

    def set_gradients(self, gradients: np.ndarray) -> None:
        """Store one gradient per parameter, in registry order."""
        if len(gradients) != len(self._params):
            msg = (
                f"Expected {len(self._params)} gradients, got {len(gradients)}."
            )
            raise ValueError(msg)
        for param, grad in zip(self._params.values(), gradients, strict=True):
            param.gradient = float(grad)

    def step(self, learning_rate: float, transform: Transform) -> None:
        """Apply value -= learning_rate * gradient and push values out.

        The transform is the single source of truth for parameter state, so
        every new value is written back immediately.
        """
        for param in self._params.values():
            param.value -= learning_rate * param.gradient
            transform.set_parameter(param.address, param.value)


__all__ = [
    "FIRST_DERIVATIVE_CHANNEL",
    "Parameter",
    "ParameterRegistry",
]
