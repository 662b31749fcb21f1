"""Command-line entry point for fitting a differentiable transform."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn, TextIO

from dsp_gradfit.fitter.config import (
    DEFAULT_BLOCK_SIZE,
    DEFAULT_CSV_PATH,
    DEFAULT_LEARNING_RATE,
    DEFAULT_LOSS_FUNCTION,
    DEFAULT_NUM_ITERATIONS,
    DEFAULT_SENSITIVITY,
    FitConfig,
)
from dsp_gradfit.fitter.errors import BackendError, FitError
from dsp_gradfit.fitter.graph import load_backend
from dsp_gradfit.fitter.loss import LOSS_REGISTRY
from dsp_gradfit.fitter.report import CsvReporter, TraceReporter
from dsp_gradfit.fitter.runner import FitRunner

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dsp_gradfit.fitter.graph import GraphBackend

logger = logging.getLogger(__name__)

BACKEND_ENV_VAR: str = "DSP_GRADFIT_BACKEND"
MISSING_FILES_MESSAGE: str = (
    "Please provide input, ground truth, and differentiable files."
)


class _FitArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with exit status 1."""

    def error(self, message: str) -> NoReturn:
        """Print usage and the message, then exit with status 1."""
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _configure_logging(*, verbose: bool = False) -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.StreamHandler(sys.stderr)],
        )


def resolve_loss_function(token: str | None) -> str:
    """Map a command-line token to a loss name.

    Unrecognised tokens keep the default loss.
    """
    if token in LOSS_REGISTRY:
        return token
    if token:
        logger.debug(
            "Ignoring unknown loss function %r, using %s",
            token,
            DEFAULT_LOSS_FUNCTION,
        )
    return DEFAULT_LOSS_FUNCTION


def _build_parser() -> argparse.ArgumentParser:
    parser = _FitArgumentParser(
        prog="dsp-gradfit",
        description=(
            "Fit the parameters of a differentiable transform so that its "
            "output matches a ground-truth transform driven by the same input."
        ),
    )
    files = parser.add_argument_group("transforms")
    files.add_argument("--input", metavar="FILE", help="Input transform.")
    files.add_argument("--gt", metavar="FILE", help="Ground-truth transform.")
    files.add_argument(
        "--diff",
        metavar="FILE",
        help="Differentiable transform whose parameters are fitted.",
    )
    parser.add_argument(
        "-lf",
        "--lossfunction",
        metavar="LOSS",
        default=DEFAULT_LOSS_FUNCTION,
        help=(
            f"Loss function: {' or '.join(LOSS_REGISTRY)} "
            f"(default: {DEFAULT_LOSS_FUNCTION})."
        ),
    )
    parser.add_argument(
        "-lr",
        "--learningrate",
        type=float,
        default=DEFAULT_LEARNING_RATE,
        help=f"Gradient-descent step size (default: {DEFAULT_LEARNING_RATE}).",
    )
    parser.add_argument(
        "--sensitivity",
        type=float,
        default=DEFAULT_SENSITIVITY,
        help=(
            "Loss threshold below which a frame counts as converged "
            f"(default: {DEFAULT_SENSITIVITY})."
        ),
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=DEFAULT_NUM_ITERATIONS,
        help=f"Maximum number of rendered blocks (default: {DEFAULT_NUM_ITERATIONS}).",
    )
    parser.add_argument(
        "--block-size",
        type=int,
        default=DEFAULT_BLOCK_SIZE,
        help=f"Frames per rendered block (default: {DEFAULT_BLOCK_SIZE}).",
    )
    parser.add_argument(
        "--csv",
        type=Path,
        default=Path(DEFAULT_CSV_PATH),
        help=f"Where to write the per-frame loss log (default: {DEFAULT_CSV_PATH}).",
    )
    parser.add_argument(
        "--backend",
        default=os.environ.get(BACKEND_ENV_VAR),
        metavar="MODULE:ATTR",
        help=(
            "Signal-processing backend to compile, compose and render "
            f"transforms (default: ${BACKEND_ENV_VAR})."
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug messages.",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> FitConfig:
    """Build a FitConfig from parsed command-line arguments."""
    return FitConfig(
        input_path=args.input,
        ground_truth_path=args.gt,
        differentiable_path=args.diff,
        loss_function=resolve_loss_function(args.lossfunction),
        learning_rate=args.learningrate,
        sensitivity=args.sensitivity,
        num_iterations=args.iterations,
        block_size=args.block_size,
    )


def run_fit(
    config: FitConfig,
    backend: GraphBackend,
    csv_path: Path,
    trace_stream: TextIO | None = None,
) -> int:
    """Run one fit, writing the CSV log and the trace. Returns an exit code."""
    logger.info("Learning rate: %g", config.learning_rate)
    logger.info("Sensitivity: %g", config.sensitivity)
    logger.info("Loss function: %s", config.loss_function)

    with csv_path.open("w", encoding="utf-8", newline="") as csv_file:
        runner = FitRunner(
            config,
            backend,
            reporters=[
                CsvReporter(csv_file),
                TraceReporter(trace_stream or sys.stdout),
            ],
        )
        for param in runner.registry:
            logger.info(
                "Learnable parameter: %s, value: %g",
                param.address,
                param.value,
            )
        result = runner.run()

    logger.info("\n--- Fit Summary ---")
    logger.info("Status: %s", result.status.value)
    logger.info(
        "Frames processed: %d (%d iterations) in %.2f seconds",
        result.frames_processed,
        result.iterations,
        result.elapsed_time,
    )
    logger.info("Final loss: %.6g", result.final_loss)
    for address, value in result.final_params.items():
        logger.info("Final %s = %.6g", address, value)
    logger.info("Loss log written to %s", csv_path)
    return 0


def main(
    argv: Sequence[str] | None = None,
    *,
    backend: GraphBackend | None = None,
) -> int:
    """Run the main entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(verbose=args.verbose)

    if not (args.input and args.gt and args.diff):
        parser.error(MISSING_FILES_MESSAGE)

    try:
        config = config_from_args(args)
        if backend is None:
            if not args.backend:
                msg = (
                    "No backend configured; pass --backend MODULE:ATTR or set "
                    f"{BACKEND_ENV_VAR}."
                )
                raise BackendError(msg)
            backend = load_backend(args.backend)
        return run_fit(config, backend, args.csv)
    except FitError as e:
        logger.error("Fit failed: %s", e)  # noqa: TRY400
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
