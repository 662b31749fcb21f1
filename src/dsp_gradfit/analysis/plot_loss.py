"""Plot the loss and parameter trajectories of a fitting run.

Reads the CSV log written by ``dsp-gradfit`` and draws, against the processed
frame index,

- the per-frame loss (log scale),
- every parameter value,
- every stored gradient.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import matplotlib.pyplot as plt
import numpy as np

from .common import Line, load_loss_log, plot_many

if TYPE_CHECKING:
    from collections.abc import Sequence

    from matplotlib.figure import Figure

    from .common import LossLog

logger = logging.getLogger(__name__)

# Loss floor on the log axis; frames with zero loss would otherwise vanish.
LOSS_FLOOR: float = 1e-16
MAX_LEGEND_PARAMS: int = 10


def plot_loss_log(log: LossLog, *, title: str | None = None) -> Figure:
    """Build a three-panel figure for a loss log."""
    frames = np.arange(1, log.num_frames + 1)
    fig, axs = plt.subplots(3, 1, figsize=(10, 10), sharex=True)

    plot_many(
        axs[0],
        Line(frames, np.maximum(log.loss, LOSS_FLOOR), "loss"),
        y_label="loss",
        legend_ncol=1,
    )
    axs[0].set_yscale("log")
    axs[0].set_title("Per-frame loss (log scale)")

    value_lines = [
        Line(
            frames,
            log.values[:, k],
            label if k < MAX_LEGEND_PARAMS else "_nolegend_",
        )
        for k, label in enumerate(log.labels)
    ]
    plot_many(axs[1], *value_lines, y_label="value")
    axs[1].set_title(f"Parameter values (count: {len(log.labels)})")

    grad_lines = [
        Line(
            frames,
            log.gradients[:, k],
            f"gradient_{label}" if k < MAX_LEGEND_PARAMS else "_nolegend_",
            alpha=0.8,
        )
        for k, label in enumerate(log.labels)
    ]
    plot_many(axs[2], *grad_lines, y_label="gradient")
    axs[2].set_title("Stored gradients")
    axs[2].set_xlabel("Frames processed")

    if title:
        fig.suptitle(title)
    fig.tight_layout()
    return fig


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dsp-gradfit-plot",
        description="Plot the loss log written by dsp-gradfit.",
    )
    parser.add_argument("csv", type=Path, help="Loss log (e.g. loss.csv).")
    parser.add_argument(
        "--save",
        type=Path,
        default=None,
        help="Write the figure to this file instead of showing it.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Plot a loss log given on the command line."""
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)
    args = _build_parser().parse_args(argv)

    log = load_loss_log(args.csv)
    logger.info(
        "Loaded %d frames, %d parameters from %s",
        log.num_frames,
        len(log.labels),
        args.csv,
    )
    if log.num_frames == 0:
        logger.warning("Nothing to plot in %s", args.csv)
        return 1

    fig = plot_loss_log(log, title=f"Fit log: {args.csv.name}")
    if args.save is not None:
        fig.savefig(args.save)
        logger.info("Saved figure to %s", args.save)
        plt.close(fig)
    else:
        plt.show()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
