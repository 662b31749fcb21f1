"""Per-frame reporting: CSV loss log and human-readable trace."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from typing import TYPE_CHECKING, TextIO

import numpy as np

if TYPE_CHECKING:
    from dsp_gradfit.fitter.config import FitResult
    from dsp_gradfit.fitter.parameters import ParameterRegistry

# --- Trace layout ---
ITERATION_WIDTH: int = 5
LABEL_WIDTH: int = 14
NUMBER_WIDTH: int = 16
PARAM_WIDTH: int = 12
TRACE_PRECISION: int = 10


@dataclass(frozen=True)
class FrameReport:
    """State of the fit after one processed frame.

    gradients and values are snapshots of the registry after the frame.
    When updated is False they are whatever was stored before, i.e. the
    gradients from the last frame that exceeded the sensitivity.
    """

    iteration: int
    frame: int
    ground_truth: float
    learnable: float
    loss: float
    updated: bool
    derivatives: np.ndarray
    gradients: np.ndarray
    values: np.ndarray


class Reporter:
    """Receives the stream of frame reports of a run.

    Subclasses override the hooks they need; the defaults do nothing.
    """

    def start(self, registry: ParameterRegistry) -> None:
        """Called once before the first frame."""

    def frame(self, report: FrameReport) -> None:
        """Called after every processed frame."""

    def finish(self, result: FitResult) -> None:
        """Called once after the loop terminates."""


def csv_header(labels: list[str]) -> list[str]:
    """Column names: iteration, loss, then (gradient, value) per parameter."""
    header = ["iteration", "loss"]
    for label in labels:
        header.extend([f"gradient_{label}", label])
    return header


def _fmt(value: float) -> str:
    # Six significant digits.
    return f"{float(value):g}"


class CsvReporter(Reporter):
    """Writes one CSV row per processed frame."""

    def __init__(self, stream: TextIO) -> None:
        """Wrap an open text stream; the caller owns and closes it."""
        self.stream = stream
        self._writer = csv.writer(stream, lineterminator="\n")
        self.rows_written = 0

    def start(self, registry: ParameterRegistry) -> None:
        """Write the header row."""
        self._writer.writerow(csv_header(registry.labels))

    def frame(self, report: FrameReport) -> None:
        """Write one row for the frame."""
        row = [str(report.iteration), _fmt(report.loss)]
        for grad, value in zip(report.gradients, report.values, strict=True):
            row.extend([_fmt(grad), _fmt(value)])
        self._writer.writerow(row)
        self.rows_written += 1

    def finish(self, result: FitResult) -> None:  # noqa: ARG002 - hook signature
        """Flush the stream."""
        self.stream.flush()


class TraceReporter(Reporter):
    """Writes a fixed-width text trace of every processed frame."""

    def __init__(self, stream: TextIO) -> None:
        """Wrap an open text stream such as sys.stdout."""
        self.stream = stream
        self._labels: list[str] = []

    def start(self, registry: ParameterRegistry) -> None:
        """Remember the parameter labels."""
        self._labels = registry.labels

    @staticmethod
    def _num(value: float) -> str:
        return f"{float(value):>{NUMBER_WIDTH}.{TRACE_PRECISION}f}"

    @staticmethod
    def _tag(text: str) -> str:
        return f"{text:>{LABEL_WIDTH}}"

    def format_frame(self, report: FrameReport) -> str:
        """Render a frame as text; updates add one line per parameter."""
        lines = [
            f"{report.iteration:>{ITERATION_WIDTH}}"
            f"{self._tag('Sig GT: ')}{self._num(report.ground_truth)}"
            f"{self._tag('Sig Learn: ')}{self._num(report.learnable)}"
            f"{self._tag('Loss: ')}{self._num(report.loss)}",
        ]
        if report.updated:
            for label, deriv, grad, value in zip(
                self._labels,
                report.derivatives,
                report.gradients,
                report.values,
                strict=True,
            ):
                lines.append(
                    f"{'.':>{ITERATION_WIDTH}}{label:>{PARAM_WIDTH}}:"
                    f"{self._tag('ds/dp: ')}{self._num(deriv)}"
                    f"{self._tag('Grad: ')}{self._num(grad)}"
                    f"{self._tag('Value: ')}{self._num(value)}",
                )
        return "\n".join(lines)

    def frame(self, report: FrameReport) -> None:
        """Write the formatted frame."""
        self.stream.write(self.format_frame(report) + "\n")

    def finish(self, result: FitResult) -> None:  # noqa: ARG002 - hook signature
        """Flush the stream."""
        self.stream.flush()


__all__ = [
    "CsvReporter",
    "FrameReport",
    "Reporter",
    "TraceReporter",
    "csv_header",
]
