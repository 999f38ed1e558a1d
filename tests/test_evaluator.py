import threading
import time

import numpy as np
import pytest

import mandelgrid.buffer as buffer_module
import mandelgrid.evaluator as evaluator_module
from mandelgrid.chart import render_chart
from mandelgrid.compute import is_stable
from mandelgrid.errors import (
    AllocationFailure,
    ConfigError,
    IncompleteResult,
    KernelFailure,
    SchedulingFailure,
)
from mandelgrid.evaluator import Evaluation, EvaluationState, ParallelEvaluator, Task, evaluate, partition
from mandelgrid.plane import Grid


SMALL = Grid(rows=12, columns=20)


@pytest.mark.parametrize("chunk_size", [1, 3, 7, 240, 1000])
def test_partition_covers_every_index_once(chunk_size):
    chunks = list(partition(SMALL, chunk_size))
    indices = [task.index for chunk in chunks for task in chunk]
    assert indices == list(range(SMALL.size))
    assert all(1 <= len(chunk) <= chunk_size for chunk in chunks)
    assert sum(len(chunk) for chunk in chunks) == SMALL.size


def test_partition_tasks_carry_their_cell():
    for chunk in partition(SMALL, 5):
        for task in chunk:
            assert isinstance(task, Task)
            assert (task.row, task.column) == divmod(task.index, SMALL.columns)
            assert task.coordinate == SMALL.coordinate_at(task.row, task.column)


def test_evaluate_fills_every_slot_exactly_once():
    evaluator = ParallelEvaluator(workers=4)
    buffer = evaluator.evaluate(SMALL, 100)
    assert len(buffer) == SMALL.size
    assert sorted(buffer.written_indices()) == list(range(SMALL.size))
    assert buffer.is_complete()
    assert buffer.sealed
    assert evaluator.state is EvaluationState.DONE


def test_evaluate_matches_point_kernel():
    buffer = evaluate(SMALL, 100, workers=3)
    for index, row, column, c in SMALL.coordinates():
        assert buffer[index] == is_stable(c, 100)
        assert buffer.at(row, column) == buffer[index]


def test_worker_count_does_not_change_the_result():
    grid = Grid(rows=20, columns=30)
    single = ParallelEvaluator(workers=1).evaluate(grid, 200)
    many = ParallelEvaluator(workers=8).evaluate(grid, 200)
    assert np.array_equal(single.values, many.values)


@pytest.mark.parametrize("options", [
    {"substrate": "numba", "workers": 1},
    {"substrate": "numba", "workers": 2},
    {"chunk_size": 17, "workers": 4},
    {"early_exit": True, "workers": 4},
    {"substrate": "numba", "early_exit": True},
])
def test_substrates_and_options_agree(options):
    grid = Grid(rows=15, columns=25)
    reference = ParallelEvaluator(workers=1).evaluate(grid, 150)
    other = ParallelEvaluator(**options).evaluate(grid, 150)
    assert other.is_complete()
    assert np.array_equal(reference.values, other.values)


def test_completion_order_does_not_matter():
    grid = Grid(rows=4, columns=6)
    completed = []
    lock = threading.Lock()

    def slow_on_the_left(c, iterations):
        # Left columns finish last
        time.sleep(0.002 * (grid.columns - round((c.real - grid.real_min) / grid.real_step)))
        with lock:
            completed.append(c)
        return is_stable(c, iterations)

    buffer = ParallelEvaluator(workers=6, kernel=slow_on_the_left).evaluate(grid, 50)
    reference = ParallelEvaluator(workers=1).evaluate(grid, 50)
    assert len(completed) == grid.size
    assert np.array_equal(buffer.values, reference.values)


def test_zero_iterations_is_all_stable():
    buffer = ParallelEvaluator(workers=2).evaluate(SMALL, 0)
    assert buffer.count_stable() == SMALL.size


def test_origin_and_two_on_the_real_axis():
    grid = Grid(rows=1, columns=2, real_min=0.0, real_max=2.0, imag_min=0.0, imag_max=0.0)
    buffer = ParallelEvaluator(workers=2).evaluate(grid, 10)
    assert buffer.at(0, 0) is True
    assert buffer.at(0, 1) is False


def test_scenario_inside_the_set():
    grid = Grid(rows=1, columns=3, real_min=-2.0, real_max=0.0, imag_min=0.0, imag_max=0.0)
    buffer = ParallelEvaluator(workers=3).evaluate(grid, 50)
    assert list(buffer) == [True, True, True]
    assert render_chart(buffer) == "...\n"


def test_scenario_outside_the_set():
    grid = Grid(rows=1, columns=2, real_min=1.0, real_max=2.0, imag_min=0.0, imag_max=0.0)
    buffer = ParallelEvaluator(workers=2).evaluate(grid, 50)
    assert list(buffer) == [False, False]
    assert render_chart(buffer) == "  \n"


def test_kernel_failure_aborts_the_evaluation():
    def trap(c, iterations):
        if c == SMALL.coordinate_at(5, 7):
            raise ZeroDivisionError("numeric trap")
        return True

    evaluator = ParallelEvaluator(workers=4, kernel=trap)
    with pytest.raises(KernelFailure) as excinfo:
        evaluator.evaluate(SMALL, 10)
    assert excinfo.value.index == SMALL.index_of(5, 7)
    assert isinstance(excinfo.value.__cause__, ZeroDivisionError)
    assert evaluator.state is EvaluationState.FAILED


def test_pool_cannot_start():
    evaluator = ParallelEvaluator(workers=0)
    with pytest.raises(SchedulingFailure):
        evaluator.evaluate(SMALL, 10)
    assert evaluator.state is EvaluationState.FAILED


def test_numba_thread_count_cannot_be_set():
    evaluator = ParallelEvaluator(workers=0, substrate="numba")
    with pytest.raises(SchedulingFailure):
        evaluator.evaluate(SMALL, 10)
    assert evaluator.state is EvaluationState.FAILED


def test_submission_refused(monkeypatch):
    def refuse(self, fn, *args, **kwargs):
        raise RuntimeError("cannot schedule new futures after shutdown")

    monkeypatch.setattr(evaluator_module.ThreadPoolExecutor, "submit", refuse)
    evaluator = ParallelEvaluator(workers=2)
    with pytest.raises(SchedulingFailure):
        evaluator.evaluate(SMALL, 10)
    assert evaluator.state is EvaluationState.FAILED


def test_allocation_failure(monkeypatch):
    def no_memory(*args, **kwargs):
        raise MemoryError("simulated")

    monkeypatch.setattr(buffer_module.np, "zeros", no_memory)
    evaluator = ParallelEvaluator(workers=2)
    with pytest.raises(AllocationFailure):
        evaluator.evaluate(SMALL, 10)
    assert evaluator.state is EvaluationState.FAILED


def test_unwritten_slot_is_reported(monkeypatch):
    real_partition = evaluator_module.partition

    def drop_first_chunk(grid, chunk_size=1):
        return list(real_partition(grid, chunk_size))[1:]

    monkeypatch.setattr(evaluator_module, "partition", drop_first_chunk)
    evaluator = ParallelEvaluator(workers=2, chunk_size=4)
    with pytest.raises(IncompleteResult) as excinfo:
        evaluator.evaluate(SMALL, 10)
    assert excinfo.value.missing == [0, 1, 2, 3]
    assert excinfo.value.duplicates == []
    assert evaluator.state is EvaluationState.FAILED


def test_evaluator_is_reusable_after_failure():
    calls = []

    def fail_once(c, iterations):
        if not calls:
            calls.append(c)
            raise ArithmeticError("first unit fails")
        return is_stable(c, iterations)

    evaluator = ParallelEvaluator(workers=1, kernel=fail_once)
    with pytest.raises(KernelFailure):
        evaluator.evaluate(SMALL, 10)
    buffer = evaluator.evaluate(SMALL, 10)
    assert buffer.is_complete()
    assert evaluator.state is EvaluationState.DONE


@pytest.mark.parametrize("kwargs", [
    {"substrate": "gpu"},
    {"chunk_size": 0},
    {"chunk_size": True},
    {"substrate": "numba", "kernel": is_stable},
])
def test_invalid_evaluator_options(kwargs):
    with pytest.raises(ConfigError):
        ParallelEvaluator(**kwargs)


@pytest.mark.parametrize("iterations", [-1, 1.5, True, "10"])
def test_invalid_iteration_budget(iterations):
    evaluator = ParallelEvaluator(workers=1)
    with pytest.raises(ConfigError):
        evaluator.evaluate(SMALL, iterations)
    assert evaluator.state is EvaluationState.IDLE


def test_default_workers_follow_cpu_count(monkeypatch):
    monkeypatch.setattr(evaluator_module.os, "cpu_count", lambda: 3)
    assert ParallelEvaluator().workers == 3
    monkeypatch.setattr(evaluator_module.os, "cpu_count", lambda: None)
    assert ParallelEvaluator().workers == 1


def test_shared_evaluator_serves_overlapping_calls():
    grid = Grid(rows=40, columns=60)
    evaluator = ParallelEvaluator(workers=2)
    reference = ParallelEvaluator(workers=1).evaluate(grid, 300)
    results = [None] * 4
    errors = []
    start = threading.Barrier(len(results))

    def call(slot):
        start.wait()
        try:
            results[slot] = evaluator.evaluate(grid, 300)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=call, args=(slot,)) for slot in range(len(results))]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    for buffer in results:
        assert buffer.is_complete()
        assert np.array_equal(buffer.values, reference.values)
    assert evaluator.state is EvaluationState.DONE


def test_each_call_has_its_own_evaluation():
    evaluator = ParallelEvaluator(workers=1)
    assert evaluator.last_evaluation is None
    evaluator.evaluate(SMALL, 5)
    first = evaluator.last_evaluation
    evaluator.evaluate(SMALL, 5)
    assert evaluator.last_evaluation is not first
    assert first.state is EvaluationState.DONE
    assert evaluator.last_evaluation.iterations == 5


@pytest.mark.parametrize("path", [
    [EvaluationState.AWAITING_COMPLETION],
    [EvaluationState.DISPATCHING, EvaluationState.DONE],
    [EvaluationState.DISPATCHING, EvaluationState.FAILED, EvaluationState.DONE],
])
def test_illegal_transition_is_a_scheduling_failure(path):
    evaluation = Evaluation(SMALL, 10)
    with pytest.raises(SchedulingFailure):
        for state in path:
            evaluation.transition(state)
