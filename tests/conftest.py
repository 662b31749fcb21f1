"""In-memory stand-ins for the signal-processing backend."""

from __future__ import annotations

import copy
import math
from collections.abc import Callable

import numpy as np
import pytest

from dsp_gradfit.fitter.config import FitConfig
from dsp_gradfit.fitter.graph import FittingGraph

GAIN_ADDRESS = "/target/gain"


class FakeTransform:
    """A leaf transform computing outputs = fn(inputs, params, t).

    t counts the samples this instance has produced, so clones that are fed
    independently keep independent time.
    """

    def __init__(
        self,
        fn: Callable[[list[float], dict[str, float], int], list[float]],
        num_outputs: int,
        params: dict[str, float] | None = None,
    ) -> None:
        self.fn = fn
        self._num_outputs = num_outputs
        self.params = dict(params or {})
        self.t = 0

    def clone(self) -> FakeTransform:
        return copy.deepcopy(self)

    def parameters(self) -> list[tuple[str, float]]:
        return list(self.params.items())

    def set_parameter(self, address: str, value: float) -> None:
        if address in self.params:
            self.params[address] = float(value)

    def get_parameter(self, address: str) -> float:
        return self.params[address]

    def num_outputs(self) -> int:
        return self._num_outputs

    def tick(self, inputs: list[float]) -> list[float]:
        out = self.fn(inputs, self.params, self.t)
        self.t += 1
        return list(out)


class FakeComposite:
    """Sequential or parallel combination of two transforms."""

    def __init__(self, kind: str, first, second) -> None:
        self.kind = kind
        self.first = first
        self.second = second

    def clone(self) -> FakeComposite:
        return copy.deepcopy(self)

    def parameters(self) -> list[tuple[str, float]]:
        seen: dict[str, float] = {}
        for child in (self.first, self.second):
            for address, value in child.parameters():
                seen.setdefault(address, value)
        return list(seen.items())

    def set_parameter(self, address: str, value: float) -> None:
        self.first.set_parameter(address, value)
        self.second.set_parameter(address, value)

    def get_parameter(self, address: str) -> float:
        return dict(self.parameters())[address]

    def num_outputs(self) -> int:
        if self.kind == "sequence":
            return self.second.num_outputs()
        return self.first.num_outputs() + self.second.num_outputs()

    def tick(self, inputs: list[float]) -> list[float]:
        if self.kind == "sequence":
            return self.second.tick(self.first.tick(inputs))
        return self.first.tick(inputs) + self.second.tick(inputs)


class FakeBackend:
    """Compiles paths from a table of prototypes and renders by ticking."""

    def __init__(self, library: dict[tuple[str, bool], FakeTransform]) -> None:
        self.library = library
        self.compiled: list[tuple[str, bool]] = []
        self.renders = 0

    def compile(self, path: str, *, differentiate: bool = False) -> FakeTransform:
        self.compiled.append((path, differentiate))
        return copy.deepcopy(self.library[(path, differentiate)])

    def sequence(self, first, second) -> FakeComposite:
        return FakeComposite("sequence", first, second)

    def parallel(self, first, second) -> FakeComposite:
        return FakeComposite("parallel", first, second)

    def render(self, transform, block_size: int) -> np.ndarray:
        self.renders += 1
        frames = [transform.tick([]) for _ in range(block_size)]
        return np.asarray(frames, dtype=float).T


def sine_input(frequency: float = 0.05) -> FakeTransform:
    return FakeTransform(
        lambda _inputs, _params, t: [math.sin(2.0 * math.pi * frequency * t)],
        num_outputs=1,
    )


def gain_library(
    target: float = 0.8,
    initial: float = 0.2,
    derivative_outputs: int = 1,
) -> dict[tuple[str, bool], FakeTransform]:
    """Transforms for fitting y = gain * x against y = target * x."""
    return {
        ("input.dsp", False): sine_input(),
        ("gt.dsp", False): FakeTransform(
            lambda inputs, _params, _t: [target * inputs[0]],
            num_outputs=1,
        ),
        ("target.dsp", False): FakeTransform(
            lambda inputs, params, _t: [params[GAIN_ADDRESS] * inputs[0]],
            num_outputs=1,
            params={GAIN_ADDRESS: initial},
        ),
        # d(gain * x)/d(gain) = x
        ("target.dsp", True): FakeTransform(
            lambda inputs, _params, _t: [inputs[0]] * derivative_outputs,
            num_outputs=derivative_outputs,
            params={GAIN_ADDRESS: initial},
        ),
    }


class ScriptedProcess:
    """A composed graph whose frames come from a script.

    frame_fn(render_index, frame_index, params) returns one output frame.
    params is a snapshot taken when the block is rendered.
    """

    def __init__(
        self,
        params: dict[str, float],
        frame_fn: Callable[[int, int, dict[str, float]], list[float]],
        num_outputs: int | None = None,
    ) -> None:
        self.params = dict(params)
        self.frame_fn = frame_fn
        self._num_outputs = 2 + len(params) if num_outputs is None else num_outputs
        self.renders = 0
        self.set_calls: list[tuple[int, str, float]] = []

    def clone(self) -> ScriptedProcess:
        return copy.deepcopy(self)

    def parameters(self) -> list[tuple[str, float]]:
        return list(self.params.items())

    def set_parameter(self, address: str, value: float) -> None:
        self.params[address] = float(value)
        self.set_calls.append((self.renders, address, float(value)))

    def get_parameter(self, address: str) -> float:
        return self.params[address]

    def num_outputs(self) -> int:
        return self._num_outputs

    def render_block(self, block_size: int) -> np.ndarray:
        snapshot = dict(self.params)
        frames = [self.frame_fn(self.renders, f, snapshot) for f in range(block_size)]
        self.renders += 1
        return np.asarray(frames, dtype=float).T


class ScriptedBackend:
    """Backend that only renders an already composed ScriptedProcess."""

    def compile(self, path: str, *, differentiate: bool = False):
        raise AssertionError("graph is supplied directly")

    def sequence(self, first, second):
        raise AssertionError("graph is supplied directly")

    def parallel(self, first, second):
        raise AssertionError("graph is supplied directly")

    def render(self, transform: ScriptedProcess, block_size: int) -> np.ndarray:
        return transform.render_block(block_size)


def scripted_graph(process: ScriptedProcess) -> FittingGraph:
    return FittingGraph(
        process=process,
        ground_truth=process,
        adjustable=process,
        differentiated=process,
    )


@pytest.fixture
def gain_backend() -> FakeBackend:
    return FakeBackend(gain_library())


@pytest.fixture
def gain_config() -> FitConfig:
    return FitConfig(
        input_path="input.dsp",
        ground_truth_path="gt.dsp",
        differentiable_path="target.dsp",
        loss_function="l2",
        learning_rate=0.1,
        sensitivity=1e-7,
        num_iterations=2000,
        block_size=1,
    )
