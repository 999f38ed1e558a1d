"""
mandelgrid

Parallel evaluation of Mandelbrot set membership over a rectangular sampling
of the complex plane, with Numba JIT-compiled kernels and an ASCII chart.

Quick Start:
    from mandelgrid import Grid, ParallelEvaluator, render_chart
    buffer = ParallelEvaluator(workers=4).evaluate(Grid.default(), 2000)
    print(render_chart(buffer), end="")

Or from command line:
    python -m mandelgrid

Package Structure:
    - plane.py: Grid window and (row, column) -> coordinate mapping
    - compute.py: JIT-compiled stability kernels
    - buffer.py: Write-once result buffer
    - evaluator.py: Parallel evaluation engine (thread pool / numba prange)
    - chart.py: ASCII rendering of a finished buffer
    - settings.py: settings.json defaults and overrides
    - app.py: Command-line application
"""

from .app import main, run, ChartApp
from .buffer import ResultBuffer
from .chart import render_chart, print_chart
from .compute import DEFAULT_ITERATIONS, is_stable, is_stable_early_exit
from .errors import (
    MandelgridError,
    ConfigError,
    OutOfRange,
    EvaluationError,
    AllocationFailure,
    SchedulingFailure,
    KernelFailure,
    IncompleteResult,
)
from .evaluator import ParallelEvaluator, Evaluation, EvaluationState, Task, partition, evaluate
from .plane import Grid, coordinate_at
from .settings import Settings

__version__ = "1.0.0"
__all__ = [
    "main",
    "run",
    "ChartApp",
    "ResultBuffer",
    "render_chart",
    "print_chart",
    "DEFAULT_ITERATIONS",
    "is_stable",
    "is_stable_early_exit",
    "MandelgridError",
    "ConfigError",
    "OutOfRange",
    "EvaluationError",
    "AllocationFailure",
    "SchedulingFailure",
    "KernelFailure",
    "IncompleteResult",
    "ParallelEvaluator",
    "Evaluation",
    "EvaluationState",
    "Task",
    "partition",
    "evaluate",
    "Grid",
    "coordinate_at",
    "Settings",
]
