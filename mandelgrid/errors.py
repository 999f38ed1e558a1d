"""
Exception hierarchy for mandelgrid.

Every failure here is fatal for the call that raised it: the computation is
pure and deterministic, so nothing is ever retried and a partially filled
result buffer is never handed out.
"""


class MandelgridError(Exception):
    """Base class for all mandelgrid errors."""


class ConfigError(MandelgridError, ValueError):
    """Invalid settings, grid description or iteration budget."""


class OutOfRange(MandelgridError, IndexError):
    """A (row, column) pair or flattened index outside the grid."""


class EvaluationError(MandelgridError):
    """Base class for failures of ParallelEvaluator.evaluate."""


class AllocationFailure(EvaluationError):
    """The result buffer could not be allocated."""


class SchedulingFailure(EvaluationError):
    """The execution substrate could not be started or refused a unit of work."""


class KernelFailure(EvaluationError):
    """A unit of work raised while executing."""

    def __init__(self, message, index=None):
        super().__init__(message)
        self.index = index


class IncompleteResult(EvaluationError):
    """The completion barrier returned with slots not written exactly once."""

    def __init__(self, message, missing=(), duplicates=()):
        super().__init__(message)
        self.missing = list(missing)
        self.duplicates = list(duplicates)
