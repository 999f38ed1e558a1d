"""
Parallel evaluation engine.

ParallelEvaluator fans out one unit of work per grid cell (or per chunk of
consecutive cells), runs the units on an execution substrate acquired for the
duration of a single evaluate() call, and blocks until every unit has written
its slot of the result buffer.

Slot ownership comes from the partition, not from locking: the flattened index
row * columns + column is a bijection over [0, rows*columns), and partition()
hands each index to exactly one Task. After the completion barrier the buffer's
write counters are checked, the buffer is sealed and ownership passes to the
caller.

Two substrates are available:
- "threads": a ThreadPoolExecutor; the JIT kernels release the GIL so the
  workers really run in parallel
- "numba": a single prange parallel-for over the flattened index range, with
  numba's thread count set to the requested worker count for the call
"""

import enum
import logging
import numbers
import os
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass

import numba

from .buffer import ResultBuffer
from .compute import DEFAULT_ITERATIONS, evaluate_flat, is_stable, is_stable_early_exit
from .errors import ConfigError, IncompleteResult, KernelFailure, SchedulingFailure


logger = logging.getLogger(__name__)

SUBSTRATES = ("threads", "numba")


class EvaluationState(enum.Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    AWAITING_COMPLETION = "awaiting_completion"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    EvaluationState.IDLE: {EvaluationState.DISPATCHING},
    EvaluationState.DISPATCHING: {EvaluationState.AWAITING_COMPLETION, EvaluationState.FAILED},
    EvaluationState.AWAITING_COMPLETION: {EvaluationState.DONE, EvaluationState.FAILED},
    EvaluationState.DONE: set(),
    EvaluationState.FAILED: set(),
}


@dataclass(frozen=True)
class Task:
    """One cell to evaluate: its slot index, position and coordinate."""

    index: int
    row: int
    column: int
    coordinate: complex


def partition(grid, chunk_size=1):
    """
    Split a grid into chunks of consecutive Tasks.

    Every flattened index in [0, grid.size) appears in exactly one Task of
    exactly one chunk, in row-major order.

    Args:
        grid: Grid to cover
        chunk_size: Maximum number of Tasks per chunk (the last may be shorter)

    Yields:
        Lists of Task
    """
    _check_chunk_size(chunk_size)
    chunk = []
    for index, row, column, coordinate in grid.coordinates():
        chunk.append(Task(index, row, column, coordinate))
        if len(chunk) == chunk_size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def _run_chunk(tasks, kernel, iterations, buffer):
    """Unit of work: evaluate each task and write its own slot."""
    for task in tasks:
        try:
            outcome = kernel(task.coordinate, iterations)
        except Exception as e:
            raise KernelFailure(
                f"unit {task.index} (row {task.row}, column {task.column}, "
                f"c={task.coordinate}) failed: {e}",
                index=task.index,
            ) from e
        buffer.write(task.index, bool(outcome))


class ThreadSubstrate:
    """Thread pool that lives for one evaluate() call."""

    name = "threads"

    def __init__(self, workers):
        self.workers = workers
        self._pool = None

    def __enter__(self):
        try:
            self._pool = ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="mandelgrid"
            )
        except (TypeError, ValueError, RuntimeError) as e:
            raise SchedulingFailure(f"cannot start thread pool with {self.workers!r} workers: {e}") from e
        logger.debug("Started thread pool with %d workers", self.workers)
        return self

    def __exit__(self, exc_type, exc, tb):
        # On failure, queued units are dropped; running ones finish their slot
        self._pool.shutdown(wait=True, cancel_futures=exc_type is not None)
        self._pool = None
        logger.debug("Thread pool shut down")
        return False

    def run(self, grid, iterations, buffer, kernel, chunk_size, on_dispatched):
        futures = []
        for chunk in partition(grid, chunk_size):
            try:
                futures.append(self._pool.submit(_run_chunk, chunk, kernel, iterations, buffer))
            except RuntimeError as e:
                raise SchedulingFailure(f"cannot submit unit {chunk[0].index}: {e}") from e
        on_dispatched(len(futures))

        # Completion barrier: returns early on the first failed unit
        done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
        for future in done:
            error = future.exception()
            if error is None:
                continue
            for pending in not_done:
                pending.cancel()
            if isinstance(error, KernelFailure):
                raise error
            raise KernelFailure(f"unit failed: {error}") from error


class NumbaSubstrate:
    """Numba prange parallel-for, with the thread count scoped to one call."""

    name = "numba"

    def __init__(self, workers):
        self.workers = workers
        self._previous = None

    def __enter__(self):
        limit = numba.config.NUMBA_NUM_THREADS
        workers = self.workers
        if isinstance(workers, int) and workers > limit:
            logger.warning("Requested %d workers, numba allows at most %d", workers, limit)
            workers = limit
        self._previous = numba.get_num_threads()
        try:
            numba.set_num_threads(workers)
        except (TypeError, ValueError) as e:
            raise SchedulingFailure(f"cannot set numba thread count to {self.workers!r}: {e}") from e
        logger.debug("Numba parallel-for using %d threads", workers)
        return self

    def __exit__(self, exc_type, exc, tb):
        numba.set_num_threads(self._previous)
        return False

    def run(self, grid, iterations, buffer, early_exit, on_dispatched):
        values, writes = buffer.storage()
        on_dispatched(1)
        try:
            evaluate_flat(
                grid.real_min, grid.real_step, grid.imag_min, grid.imag_step,
                grid.rows, grid.columns, iterations, early_exit, values, writes
            )
        except Exception as e:
            raise KernelFailure(f"parallel-for kernel failed: {e}") from e


class Evaluation:
    """
    State of a single evaluate() call.

    Each call owns its Evaluation, so overlapping calls on one evaluator never
    see each other's transitions.
    """

    def __init__(self, grid, iterations):
        self.grid = grid
        self.iterations = iterations
        self.state = EvaluationState.IDLE
        self.lock = threading.Lock()

    def transition(self, state):
        with self.lock:
            if state not in _TRANSITIONS[self.state]:
                raise SchedulingFailure(
                    f"invalid evaluation transition {self.state.value} -> {state.value}"
                )
            logger.debug("Evaluation state %s -> %s", self.state.value, state.value)
            self.state = state


class ParallelEvaluator:
    """
    Evaluates every cell of a Grid in parallel.

    Usage:
        evaluator = ParallelEvaluator(workers=4)
        buffer = evaluator.evaluate(Grid.default(), iterations=2000)
        buffer.at(row, column)

    One evaluator may serve several threads at once; every call gets its own
    substrate, buffer and Evaluation.

    Attributes:
        workers: Worker count (None = os.cpu_count())
        substrate: "threads" or "numba"
        chunk_size: Cells per unit of work on the thread substrate
        early_exit: Use the early-exit kernel (same results, faster)
        last_evaluation: Evaluation of the most recently started call
    """

    def __init__(self, workers=None, substrate="threads", chunk_size=1,
                 early_exit=False, kernel=None):
        """
        Initialize the evaluator.

        Args:
            workers: Number of worker threads (default: os.cpu_count())
            substrate: Execution substrate, "threads" or "numba"
            chunk_size: Consecutive cells per submitted unit (default 1)
            early_exit: Stop iterating a point once |z| > 2
            kernel: Optional per-point callable (coordinate, iterations) -> bool
                replacing the built-in kernel; thread substrate only
        """
        if substrate not in SUBSTRATES:
            raise ConfigError(f"unknown substrate {substrate!r}, expected one of {SUBSTRATES}")
        _check_chunk_size(chunk_size)
        if kernel is not None and substrate != "threads":
            raise ConfigError("a custom kernel requires the 'threads' substrate")

        self.workers = workers if workers is not None else (os.cpu_count() or 1)
        self.substrate = substrate
        self.chunk_size = chunk_size
        self.early_exit = early_exit
        if kernel is None:
            kernel = is_stable_early_exit if early_exit else is_stable
        self.kernel = kernel

        self.last_evaluation = None

    @property
    def state(self):
        """EvaluationState of the most recently started call (IDLE before any)."""
        evaluation = self.last_evaluation
        if evaluation is None:
            return EvaluationState.IDLE
        return evaluation.state

    def evaluate(self, grid, iterations=DEFAULT_ITERATIONS):
        """
        Evaluate every cell of `grid` and return the filled buffer.

        Blocks until all units have completed. The returned buffer is sealed
        and has every slot written exactly once; on any failure no buffer is
        returned.

        Args:
            grid: Grid to sample
            iterations: Iteration budget per point (non-negative integer)

        Returns:
            ResultBuffer of size grid.rows * grid.columns

        Raises:
            ConfigError: invalid iteration budget
            AllocationFailure: the result buffer could not be allocated
            SchedulingFailure: the substrate could not start or accept a unit
            KernelFailure: a unit raised while executing
            IncompleteResult: a slot was not written exactly once
        """
        iterations = _check_iterations(iterations)
        evaluation = Evaluation(grid, iterations)
        self.last_evaluation = evaluation
        started = time.perf_counter()
        evaluation.transition(EvaluationState.DISPATCHING)
        logger.info(
            "Evaluating %dx%d grid, %d iterations, substrate=%s, workers=%s",
            grid.rows, grid.columns, iterations, self.substrate, self.workers
        )

        def on_dispatched(units):
            logger.debug("Dispatched %d units for %d cells", units, grid.size)
            evaluation.transition(EvaluationState.AWAITING_COMPLETION)

        try:
            buffer = ResultBuffer.allocate(grid.rows, grid.columns)
            if self.substrate == "threads":
                with ThreadSubstrate(self.workers) as substrate:
                    substrate.run(grid, iterations, buffer, self.kernel, self.chunk_size, on_dispatched)
            else:
                with NumbaSubstrate(self.workers) as substrate:
                    substrate.run(grid, iterations, buffer, self.early_exit, on_dispatched)

            if not buffer.is_complete():
                missing = buffer.missing()
                duplicates = buffer.duplicates()
                raise IncompleteResult(
                    f"{len(missing)} slots unwritten, {len(duplicates)} written more than once",
                    missing=missing, duplicates=duplicates,
                )
        except Exception:
            evaluation.transition(EvaluationState.FAILED)
            logger.error("Evaluation failed after %.3fs", time.perf_counter() - started)
            raise

        buffer.seal()
        evaluation.transition(EvaluationState.DONE)
        logger.info(
            "Evaluated %d cells in %.3fs (%d stable)",
            grid.size, time.perf_counter() - started, buffer.count_stable()
        )
        return buffer


def evaluate(grid, iterations=DEFAULT_ITERATIONS, **options):
    """
    Evaluate a grid with a one-off ParallelEvaluator.

    Args:
        grid: Grid to sample
        iterations: Iteration budget per point
        **options: Passed to ParallelEvaluator (workers, substrate, ...)
    """
    return ParallelEvaluator(**options).evaluate(grid, iterations)


def _check_chunk_size(chunk_size):
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size < 1:
        raise ConfigError(f"chunk_size must be a positive integer, got {chunk_size!r}")


def _check_iterations(iterations):
    if isinstance(iterations, bool) or not isinstance(iterations, numbers.Integral) or iterations < 0:
        raise ConfigError(f"iterations must be a non-negative integer, got {iterations!r}")
    return int(iterations)
