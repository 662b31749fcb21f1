"""Shared utilities for analysis scripts."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    import matplotlib.pyplot as plt


# ----- plotting -----


@dataclass(slots=True)
class Line:
    """Data class representing a line to be plotted."""

    t: Sequence[int]
    y: Sequence[float]
    label: str
    linestyle: str = "-"
    linewidth: float = 1.5
    alpha: float = 1.0


def plot_many(
    ax: plt.Axes,
    *lines: Line,
    y_label: str | None = None,
    legend_ncol: int = 2,
) -> None:
    """Plot multiple lines on a single axes."""
    for ln in lines:
        ax.plot(
            ln.t,
            ln.y,
            label=ln.label,
            linestyle=ln.linestyle,
            linewidth=ln.linewidth,
            alpha=ln.alpha,
        )
    if y_label:
        ax.set_ylabel(y_label)
    ax.grid(visible=True, alpha=0.3)
    if lines:
        ax.legend(ncol=legend_ncol)


# ----- loss logs -----


@dataclass(slots=True)
class LossLog:
    """Columns of a fitter CSV log, one entry per processed frame."""

    iteration: np.ndarray
    loss: np.ndarray
    labels: list[str]
    gradients: np.ndarray  # shape (frames, num_params)
    values: np.ndarray  # shape (frames, num_params)

    @property
    def num_frames(self) -> int:
        """Number of processed frames in the log."""
        return int(self.loss.size)


def parse_header(header: Sequence[str]) -> list[str]:
    """Return the parameter labels of a fitter CSV header."""
    if list(header[:2]) != ["iteration", "loss"] or len(header) % 2 != 0:
        msg = f"Not a fitter loss log header: {list(header)!r}"
        raise ValueError(msg)
    labels: list[str] = []
    for grad_col, value_col in zip(header[2::2], header[3::2], strict=True):
        if grad_col != f"gradient_{value_col}":
            msg = f"Mismatched columns {grad_col!r} and {value_col!r}"
            raise ValueError(msg)
        labels.append(value_col)
    return labels


def load_loss_log(path: str | Path) -> LossLog:
    """Read a CSV log written by the fitter."""
    with Path(path).open(newline="", encoding="utf-8") as fh:
        reader = csv.reader(fh)
        try:
            header = next(reader)
        except StopIteration:
            msg = f"{path} is empty"
            raise ValueError(msg) from None
        labels = parse_header(header)
        rows = [[float(x) for x in row] for row in reader if row]

    data = np.asarray(rows, dtype=float).reshape(len(rows), len(header))
    return LossLog(
        iteration=data[:, 0].astype(int),
        loss=data[:, 1],
        labels=labels,
        gradients=data[:, 2::2],
        values=data[:, 3::2],
    )


__all__ = [
    "Line",
    "LossLog",
    "load_loss_log",
    "parse_header",
    "plot_many",
]
