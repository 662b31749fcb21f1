"""Contract between the fitter and the signal-processing backend.

The backend compiles transform descriptions, differentiates them, composes
them and renders audio blocks. The fitter never does any of that itself; it
only relies on the channel layout of the composed graph:

    channel 0          ground-truth output   s_o(p_hat)
    channel 1          learnable output      s_o(p)
    channels 2 .. 2+N  partial derivatives   ds_o/dp_k, in parameter order
"""

from __future__ import annotations

import importlib
import inspect
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np

from dsp_gradfit.fitter.errors import BackendError, ChannelLayoutError
from dsp_gradfit.fitter.parameters import FIRST_DERIVATIVE_CHANNEL

logger = logging.getLogger(__name__)

GROUND_TRUTH_CHANNEL: int = 0
LEARNABLE_CHANNEL: int = 1


@runtime_checkable
class Transform(Protocol):
    """An executable, possibly parameterised, signal-processing unit."""

    def clone(self) -> Transform:
        """Return an independent instance sharing no mutable state."""
        ...

    def parameters(self) -> Sequence[tuple[str, float]]:
        """Return (address, current value) for every exposed parameter."""
        ...

    def set_parameter(self, address: str, value: float) -> None:
        """Set the parameter at address."""
        ...

    def get_parameter(self, address: str) -> float:
        """Return the parameter at address."""
        ...

    def num_outputs(self) -> int:
        """Return the number of output channels."""
        ...


@runtime_checkable
class GraphBackend(Protocol):
    """Compiler, composer and renderer for transforms."""

    def compile(self, path: str, *, differentiate: bool = False) -> Transform:
        """Compile the description at path.

        With differentiate=True the result outputs one partial derivative
        channel per parameter instead of the signal itself.
        """
        ...

    def sequence(self, first: Transform, second: Transform) -> Transform:
        """Feed the outputs of first into the inputs of second."""
        ...

    def parallel(self, first: Transform, second: Transform) -> Transform:
        """Run both transforms on the same input and stack their outputs."""
        ...

    def render(self, transform: Transform, block_size: int) -> np.ndarray:
        """Render one block, shaped (num_outputs, block_size)."""
        ...


@dataclass
class FittingGraph:
    """The composed process plus the branches it was built from."""

    process: Transform
    ground_truth: Transform
    adjustable: Transform
    differentiated: Transform


def build_fitting_graph(
    backend: GraphBackend,
    input_path: str,
    ground_truth_path: str,
    differentiable_path: str,
) -> FittingGraph:
    """Compile and compose the three-branch graph used for fitting.

    Each branch is fed by its own clone of the input stage so that the
    branches never share signal state.
    """
    input_stage = backend.compile(input_path)
    ground_truth = backend.compile(ground_truth_path)
    adjustable = backend.compile(differentiable_path)
    differentiated = backend.compile(differentiable_path, differentiate=True)

    process = backend.parallel(
        backend.sequence(input_stage.clone(), ground_truth),
        backend.parallel(
            backend.sequence(input_stage.clone(), adjustable),
            backend.sequence(input_stage.clone(), differentiated),
        ),
    )
    logger.debug(
        "Composed fitting graph with %d output channels",
        process.num_outputs(),
    )
    return FittingGraph(
        process=process,
        ground_truth=ground_truth,
        adjustable=adjustable,
        differentiated=differentiated,
    )


def expected_channel_count(num_params: int) -> int:
    """Width of an output frame for num_params learnable parameters."""
    return FIRST_DERIVATIVE_CHANNEL + int(num_params)


def validate_channel_layout(num_channels: int, num_params: int) -> None:
    """Fail fast when the graph width does not match the parameter count."""
    expected = expected_channel_count(num_params)
    if int(num_channels) != expected:
        msg = (
            f"Composed graph has {num_channels} output channels but "
            f"{num_params} learnable parameters require {expected} "
            "(ground truth, learnable output, one derivative per parameter)."
        )
        raise ChannelLayoutError(msg)


def load_backend(spec: str) -> GraphBackend:
    """Import a backend from a "package.module:attribute" path.

    Classes and other zero-argument factories are called; any other
    attribute is used as the backend object itself.
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        msg = f"Backend must look like 'package.module:attribute', got {spec!r}."
        raise BackendError(msg)

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        msg = f"Could not import backend module {module_name!r}: {e}"
        raise BackendError(msg) from e

    try:
        target = getattr(module, attr)
    except AttributeError:
        msg = f"Backend module {module_name!r} has no attribute {attr!r}."
        raise BackendError(msg) from None

    if inspect.isclass(target) or inspect.isfunction(target):
        backend = target()
    else:
        backend = target
    if not isinstance(backend, GraphBackend):
        msg = f"{spec!r} does not provide compile/sequence/parallel/render."
        raise BackendError(msg)
    logger.debug("Loaded backend %s", spec)
    return backend


__all__ = [
    "GROUND_TRUTH_CHANNEL",
    "LEARNABLE_CHANNEL",
    "FittingGraph",
    "GraphBackend",
    "Transform",
    "build_fitting_graph",
    "expected_channel_count",
    "load_backend",
    "validate_channel_layout",
]
