"""Configuration and data models for gradient-descent fitting."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

import numpy as np

from dsp_gradfit.fitter.errors import ConfigurationError
from dsp_gradfit.fitter.loss import LOSS_REGISTRY

# --- Constants ---
# Consecutive sub-threshold frames tolerated before the run is declared
# converged; convergence happens on frame PATIENCE + 1.
PATIENCE: int = 20
DEFAULT_LOSS_FUNCTION: str = "l2"
DEFAULT_LEARNING_RATE: float = 0.1
DEFAULT_SENSITIVITY: float = 1e-7
DEFAULT_NUM_ITERATIONS: int = 1000
# Frames per rendered block; one frame keeps every update visible to the next frame.
DEFAULT_BLOCK_SIZE: int = 1
DEFAULT_CSV_PATH: str = "loss.csv"
LOG_INTERVAL: int = 100


class FitStatus(enum.Enum):
    """States of the optimizer loop."""

    RUNNING = "running"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        """Whether the loop stops in this state."""
        return self is not FitStatus.RUNNING


@dataclass
class FitConfig:
    """Configuration for one fitting run.

    - input_path / ground_truth_path / differentiable_path: transform
      descriptions handed to the backend compiler.
    - loss_function: "l1" or "l2", fixed for the whole run.
    - learning_rate: step size alpha of the update value -= alpha * gradient.
    - sensitivity: convergence threshold epsilon on the per-frame loss.
    - num_iterations: number of blocks rendered at most.
    - block_size: frames per rendered block.
    - patience: sub-threshold frames tolerated before converging.
    """

    input_path: str = ""
    ground_truth_path: str = ""
    differentiable_path: str = ""

    loss_function: str = DEFAULT_LOSS_FUNCTION
    learning_rate: float = DEFAULT_LEARNING_RATE
    sensitivity: float = DEFAULT_SENSITIVITY

    num_iterations: int = DEFAULT_NUM_ITERATIONS
    block_size: int = DEFAULT_BLOCK_SIZE
    patience: int = PATIENCE

    @property
    def max_frames(self) -> int:
        """Upper bound on the number of frames a run can process."""
        return self.num_iterations * self.block_size

    def __post_init__(self) -> None:
        """Reject settings the optimizer loop cannot run with."""
        if self.loss_function not in LOSS_REGISTRY:
            msg = (
                f"Unknown loss function {self.loss_function!r}; "
                f"expected one of {', '.join(LOSS_REGISTRY)}."
            )
            raise ConfigurationError(msg)
        if self.num_iterations <= 0:
            msg = f"num_iterations must be positive, got {self.num_iterations}."
            raise ConfigurationError(msg)
        if self.block_size <= 0:
            msg = f"block_size must be positive, got {self.block_size}."
            raise ConfigurationError(msg)
        if self.sensitivity < 0.0:
            msg = f"sensitivity must be non-negative, got {self.sensitivity}."
            raise ConfigurationError(msg)
        if self.patience < 0:
            msg = f"patience must be non-negative, got {self.patience}."
            raise ConfigurationError(msg)
        self.learning_rate = float(self.learning_rate)
        self.sensitivity = float(self.sensitivity)


@dataclass
class FitResult:
    """Container for the outcome of a fitting run."""

    config: FitConfig
    status: FitStatus
    iterations: int
    frames_processed: int
    final_loss: float
    final_params: dict[str, float]
    loss_history: np.ndarray
    # Row 0 holds the initial values, row f + 1 the values after frame f.
    trajectory: np.ndarray
    elapsed_time: float = 0.0
    addresses: list[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        """Whether the run stopped on the patience criterion."""
        return self.status is FitStatus.CONVERGED
