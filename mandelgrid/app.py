"""
Command-line application for mandelgrid.

Contains the ChartApp class which handles:
- Building the run settings (bundled defaults, --config file, flags)
- Running the parallel evaluation
- Printing the ASCII chart, or reporting the failure and exiting non-zero
"""

import argparse
import logging
import sys
import time

from .chart import print_chart
from .compute import warmup_jit
from .errors import AllocationFailure, ConfigError, EvaluationError
from .evaluator import SUBSTRATES
from .logging_config import setup_logging
from .settings import Settings, parse_float


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_EVALUATION_FAILED = 1
EXIT_BAD_CONFIG = 2


class ChartApp:
    """
    One evaluate-and-print run.

    Evaluation either fills every slot or fails; a failed run prints nothing
    to stdout.
    """

    def __init__(self, settings, stdout=None, stderr=None, warmup=False, stats=False):
        """
        Initialize the application.

        Args:
            settings: Validated Settings
            stdout: Stream for the chart (default sys.stdout)
            stderr: Stream for --stats output (default sys.stderr)
            warmup: Compile the JIT kernels before timing the evaluation
            stats: Report stable count and elapsed time after the chart
        """
        self.settings = settings
        self.stdout = stdout if stdout is not None else sys.stdout
        self.stderr = stderr if stderr is not None else sys.stderr
        self.warmup = warmup
        self.stats = stats

    def run(self):
        """Evaluate the grid and print the chart. Returns the exit code."""
        grid = self.settings.grid()
        evaluator = self.settings.evaluator()

        if self.warmup:
            logger.info("Compiling kernels (first run only)...")
            warmup_jit()

        started = time.perf_counter()
        try:
            buffer = evaluator.evaluate(grid, self.settings.iterations)
        except AllocationFailure as e:
            logger.error("Out of memory: %s", e)
            return EXIT_EVALUATION_FAILED
        except EvaluationError as e:
            logger.error("Evaluation failed: %s", e)
            return EXIT_EVALUATION_FAILED
        elapsed = time.perf_counter() - started

        print_chart(buffer, self.stdout)
        if self.stats:
            self.stderr.write(
                f"{buffer.count_stable()}/{len(buffer)} stable points, "
                f"{elapsed:.3f}s ({self.settings.substrate}, {evaluator.workers} workers)\n"
            )
        return EXIT_OK


def build_parser():
    parser = argparse.ArgumentParser(
        prog="mandelgrid",
        description="Print an ASCII chart of the Mandelbrot set, evaluated in parallel",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mandelgrid                                  # 63x100 window, 2000 iterations
  mandelgrid --rows 40 --columns 120          # Different resolution
  mandelgrid --workers 8 --substrate numba    # Numba parallel-for
  mandelgrid --config my_settings.json --stats
        """,
    )
    parser.add_argument("--config", metavar="PATH", help="JSON settings file layered over the defaults")
    parser.add_argument("--rows", type=int, help="Samples along the imaginary axis (default: 63)")
    parser.add_argument("--columns", type=int, help="Samples along the real axis (default: 100)")
    parser.add_argument("--real-min", type=parse_float, help="Left edge of the window (default: -2.0)")
    parser.add_argument("--real-max", type=parse_float, help="Right edge of the window (default: 0.5)")
    parser.add_argument("--imag-min", type=parse_float, help="Bottom edge of the window (default: -1.5)")
    parser.add_argument("--imag-max", type=parse_float, help="Top edge of the window (default: 1.5)")
    parser.add_argument("--iterations", type=int, help="Iteration budget per point (default: 2000)")
    parser.add_argument("--workers", type=int, help="Worker threads (default: CPU count)")
    parser.add_argument("--substrate", choices=SUBSTRATES, help="Execution substrate (default: threads)")
    parser.add_argument("--chunk-size", type=int, help="Cells per unit of work (default: 1)")
    parser.add_argument("--early-exit", action=argparse.BooleanOptionalAction, default=None,
                        help="Stop iterating a point once |z| > 2 (same chart, faster);"
                             " --no-early-exit overrides a config file")
    parser.add_argument("--warmup", action="store_true", help="Compile the kernels before evaluating")
    parser.add_argument("--stats", action="store_true", help="Print a summary line to stderr")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug")
    parser.add_argument("--log-file", metavar="PATH", help="Also write the log to this file")
    return parser


def settings_from_args(args):
    """Layer bundled defaults, the --config file and flags into Settings."""
    settings = Settings.load(args.config)
    return settings.merged({
        "rows": args.rows,
        "columns": args.columns,
        "real_min": args.real_min,
        "real_max": args.real_max,
        "imag_min": args.imag_min,
        "imag_max": args.imag_max,
        "iterations": args.iterations,
        "workers": args.workers,
        "substrate": args.substrate,
        "chunk_size": args.chunk_size,
        "early_exit": args.early_exit,
    }).validate()


def main(argv=None, stdout=None, stderr=None):
    """
    Entry point. Returns the process exit code.

    Args:
        argv: Arguments (default sys.argv[1:])
        stdout, stderr: Output streams (default sys.stdout / sys.stderr)
    """
    args = build_parser().parse_args(argv)
    setup_logging(verbosity=args.verbose, log_file=args.log_file)

    try:
        settings = settings_from_args(args)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_BAD_CONFIG
    logger.info("Settings: %s", settings.describe())

    app = ChartApp(settings, stdout=stdout, stderr=stderr, warmup=args.warmup, stats=args.stats)
    return app.run()


def run(argv=None):
    """Run the command-line tool and exit the process with its exit code."""
    try:
        code = main(argv)
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)
