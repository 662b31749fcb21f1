"""Streaming gradient-descent loop over rendered output frames."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from dsp_gradfit.fitter.config import LOG_INTERVAL, FitConfig, FitResult, FitStatus
from dsp_gradfit.fitter.errors import ChannelLayoutError
from dsp_gradfit.fitter.graph import (
    GROUND_TRUTH_CHANNEL,
    LEARNABLE_CHANNEL,
    FittingGraph,
    GraphBackend,
    Transform,
    build_fitting_graph,
    expected_channel_count,
    validate_channel_layout,
)
from dsp_gradfit.fitter.loss import make_loss_function
from dsp_gradfit.fitter.parameters import ParameterRegistry
from dsp_gradfit.fitter.report import FrameReport, Reporter

logger = logging.getLogger(__name__)


@dataclass
class OptimizerState:
    """Mutable loop state, updated once per processed frame."""

    iteration: int = 0
    stable_frame_count: int = 0
    current_loss: float = float("nan")
    frames_processed: int = 0
    status: FitStatus = FitStatus.RUNNING


class FitRunner:
    """Manages the fitting loop.

    Every iteration renders one block with the parameter values current at
    that time, then walks its frames in order. Frames whose loss exceeds the
    sensitivity update the parameters immediately, but the remaining frames
    of the block were already rendered with the old values; the new values
    only show up in the next block.
    """

    def __init__(
        self,
        config: FitConfig,
        backend: GraphBackend,
        graph: FittingGraph | None = None,
        reporters: Iterable[Reporter] = (),
    ) -> None:
        """Compose the graph (unless given) and register the adjustable parameters."""
        self.config = config
        self.backend = backend
        if graph is None:
            graph = build_fitting_graph(
                backend,
                config.input_path,
                config.ground_truth_path,
                config.differentiable_path,
            )
        self.graph = graph
        self.loss_function = make_loss_function(config.loss_function)
        self.registry = ParameterRegistry.from_transform(self.graph.adjustable)
        validate_channel_layout(self.graph.process.num_outputs(), len(self.registry))
        self.reporters = list(reporters)
        self.state = OptimizerState()

        # History tracking
        self.loss_history: list[float] = []
        self.trajectory = [self.registry.values()]

    @property
    def process(self) -> Transform:
        """The composed graph the parameters are pushed into."""
        return self.graph.process

    def _render_block(self) -> np.ndarray:
        block = np.asarray(
            self.backend.render(self.process, self.config.block_size),
            dtype=float,
        )
        expected = (expected_channel_count(len(self.registry)), self.config.block_size)
        if block.shape != expected:
            msg = f"Rendered block has shape {block.shape}; expected {expected}."
            raise ChannelLayoutError(msg)
        return block

    def process_frame(
        self,
        iteration: int,
        frame: int,
        column: np.ndarray,
    ) -> FrameReport:
        """Run one optimizer step on a single output frame."""
        state = self.state
        ground_truth = float(column[GROUND_TRUTH_CHANNEL])
        learnable = float(column[LEARNABLE_CHANNEL])
        derivatives = column[self.registry.derivative_slice()]

        # 1. Loss (the residual is reused by the gradient)
        delta = self.loss_function.residual(learnable, ground_truth)
        loss = self.loss_function.loss(delta)
        state.current_loss = loss

        # 2. Update or hold
        updated = loss > self.config.sensitivity
        if updated:
            state.stable_frame_count = 0
            self.registry.set_gradients(self.loss_function.gradient(derivatives, delta))
            self.registry.step(self.config.learning_rate, self.process)
        else:
            state.stable_frame_count += 1

        state.frames_processed += 1
        self.loss_history.append(loss)
        values = self.registry.values()
        self.trajectory.append(values)

        return FrameReport(
            iteration=iteration,
            frame=frame,
            ground_truth=ground_truth,
            learnable=learnable,
            loss=loss,
            updated=updated,
            derivatives=np.array(derivatives, dtype=float),
            gradients=self.registry.gradients(),
            values=values,
        )

    def _emit(self, report: FrameReport) -> None:
        for reporter in self.reporters:
            reporter.frame(report)

    def run(self) -> FitResult:
        """Run gradient descent until convergence or the iteration budget."""
        start_time = time.time()
        state = self.state
        for reporter in self.reporters:
            reporter.start(self.registry)

        for iteration in range(1, self.config.num_iterations + 1):
            state.iteration = iteration
            block = self._render_block()

            for frame in range(block.shape[1]):
                report = self.process_frame(iteration, frame, block[:, frame])
                self._emit(report)

                if state.frames_processed % LOG_INTERVAL == 0:
                    logger.debug(
                        "Iteration %d, frame %d: loss=%.6g",
                        iteration,
                        frame,
                        state.current_loss,
                    )

                if state.stable_frame_count > self.config.patience:
                    state.status = FitStatus.CONVERGED
                    break

            if state.status is FitStatus.CONVERGED:
                break
        else:
            state.status = FitStatus.EXHAUSTED

        logger.info(
            "Fit %s after %d iterations (%d frames), loss=%.6g",
            state.status.value,
            state.iteration,
            state.frames_processed,
            state.current_loss,
        )
        result = self._collect_results(start_time)
        for reporter in self.reporters:
            reporter.finish(result)
        return result

    def _collect_results(self, start_time: float) -> FitResult:
        """Package results."""
        return FitResult(
            config=self.config,
            status=self.state.status,
            iterations=self.state.iteration,
            frames_processed=self.state.frames_processed,
            final_loss=self.state.current_loss,
            final_params=self.registry.as_dict(),
            loss_history=np.array(self.loss_history, dtype=float),
            trajectory=np.array(self.trajectory, dtype=float).reshape(
                len(self.trajectory),
                len(self.registry),
            ),
            elapsed_time=time.time() - start_time,
            addresses=self.registry.addresses,
        )


__all__ = ["FitRunner", "OptimizerState"]
