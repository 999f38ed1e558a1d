"""
Sampling window of the complex plane.

A Grid describes a rectangular window [real_min, real_max] x [imag_min, imag_max]
sampled by `rows` x `columns` points. Column j maps linearly onto the real axis
and row i onto the imaginary axis, both endpoints included:

    real = real_min + j * (real_max - real_min) / (columns - 1)
    imag = imag_min + i * (imag_max - imag_min) / (rows - 1)

An axis with a single sample has step 0, so its only coordinate is the axis
minimum.
"""

import math
from dataclasses import dataclass

from .errors import ConfigError, OutOfRange


# Reference window (rows x columns and plane bounds)
DEFAULT_ROWS = 63
DEFAULT_COLUMNS = 100
DEFAULT_BOUNDS = (-2.0, 0.5, -1.5, 1.5)  # real_min, real_max, imag_min, imag_max


def _axis_step(lo, hi, count):
    if count == 1:
        return 0.0
    return (hi - lo) / (count - 1)


@dataclass(frozen=True)
class Grid:
    """
    Immutable description of the sampled window.

    Attributes:
        rows, columns: Number of samples along the imaginary / real axis
        real_min, real_max: Real axis bounds (inclusive)
        imag_min, imag_max: Imaginary axis bounds (inclusive)
    """

    rows: int = DEFAULT_ROWS
    columns: int = DEFAULT_COLUMNS
    real_min: float = DEFAULT_BOUNDS[0]
    real_max: float = DEFAULT_BOUNDS[1]
    imag_min: float = DEFAULT_BOUNDS[2]
    imag_max: float = DEFAULT_BOUNDS[3]

    def __post_init__(self):
        for name in ("rows", "columns"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")

        for name in ("real_min", "real_max", "imag_min", "imag_max"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise ConfigError(f"{name} must be finite, got {value!r}")
            # Store plain floats so every consumer sees the same doubles
            object.__setattr__(self, name, float(value))

        if self.real_min > self.real_max:
            raise ConfigError(
                f"real_min ({self.real_min}) is greater than real_max ({self.real_max})"
            )
        if self.imag_min > self.imag_max:
            raise ConfigError(
                f"imag_min ({self.imag_min}) is greater than imag_max ({self.imag_max})"
            )

    @classmethod
    def default(cls):
        """The 63x100 window over real [-2.0, 0.5], imag [-1.5, 1.5]."""
        return cls()

    @property
    def size(self):
        return self.rows * self.columns

    @property
    def bounds(self):
        return (self.real_min, self.real_max, self.imag_min, self.imag_max)

    @property
    def real_step(self):
        return _axis_step(self.real_min, self.real_max, self.columns)

    @property
    def imag_step(self):
        return _axis_step(self.imag_min, self.imag_max, self.rows)

    def index_of(self, row, column):
        """Flattened index of a cell: row * columns + column."""
        self._check_cell(row, column)
        return row * self.columns + column

    def cell_of(self, index):
        """Inverse of index_of: (row, column) for a flattened index."""
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < self.size:
            raise OutOfRange(f"index {index!r} outside [0, {self.size})")
        return divmod(index, self.columns)

    def coordinate_at(self, row, column):
        """
        Complex coordinate sampled at (row, column).

        Raises:
            OutOfRange: if the cell is outside the grid
        """
        self._check_cell(row, column)
        real = self.real_min + column * self.real_step
        imag = self.imag_min + row * self.imag_step
        return complex(real, imag)

    def coordinates(self):
        """Yield (index, row, column, coordinate) for every cell in row-major order."""
        real_step = self.real_step
        imag_step = self.imag_step
        index = 0
        for row in range(self.rows):
            imag = self.imag_min + row * imag_step
            for column in range(self.columns):
                yield index, row, column, complex(self.real_min + column * real_step, imag)
                index += 1

    def _check_cell(self, row, column):
        if not (isinstance(row, int) and 0 <= row < self.rows):
            raise OutOfRange(f"row {row!r} outside [0, {self.rows})")
        if not (isinstance(column, int) and 0 <= column < self.columns):
            raise OutOfRange(f"column {column!r} outside [0, {self.columns})")


def coordinate_at(grid, row, column):
    """Module-level form of Grid.coordinate_at."""
    return grid.coordinate_at(row, column)
