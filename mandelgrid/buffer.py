"""
Write-once result buffer.

A ResultBuffer is an arena of rows*columns boolean slots indexed by the
flattened cell index (row * columns + column). Next to the values it keeps a
write counter per slot, so the "written exactly once" invariant can be
checked after the completion barrier instead of guarded by a lock while
units are running. Concurrent writers always address disjoint slots.
"""

import numpy as np

from .errors import AllocationFailure, OutOfRange


class ResultBuffer:
    """
    Flat mapping from cell index to stability outcome.

    Usage:
        buffer = ResultBuffer.allocate(rows, columns)
        buffer.write(i, True)      # once per slot, from any thread
        buffer.seal()              # read-only from here on
        buffer.at(row, column)

    Attributes:
        rows, columns: Grid dimensions the buffer was sized for
    """

    def __init__(self, rows, columns, values, writes):
        self.rows = rows
        self.columns = columns
        self._values = values
        self._writes = writes
        self.sealed = False

    @classmethod
    def allocate(cls, rows, columns):
        """
        Allocate an empty buffer for a rows x columns grid.

        Raises:
            AllocationFailure: if numpy cannot provide the storage
        """
        try:
            values = np.zeros(rows * columns, dtype=np.bool_)
            writes = np.zeros(rows * columns, dtype=np.uint8)
        except (MemoryError, ValueError) as e:
            raise AllocationFailure(
                f"cannot allocate result buffer for {rows}x{columns} grid: {e}"
            ) from e
        return cls(rows, columns, values, writes)

    def __len__(self):
        return self._values.shape[0]

    def __getitem__(self, index):
        self._check_index(index)
        return bool(self._values[index])

    def __iter__(self):
        for value in self._values:
            yield bool(value)

    def __repr__(self):
        state = "sealed" if self.sealed else "open"
        return f"<ResultBuffer {self.rows}x{self.columns} {state}>"

    def write(self, index, value):
        """Store the outcome for one slot and count the write."""
        self._check_index(index)
        self._values[index] = value
        self._writes[index] += 1

    def at(self, row, column):
        if not (0 <= row < self.rows and 0 <= column < self.columns):
            raise OutOfRange(f"cell ({row}, {column}) outside {self.rows}x{self.columns} grid")
        return bool(self._values[row * self.columns + column])

    @property
    def values(self):
        """Read-only flat view of the outcomes."""
        view = self._values.view()
        view.flags.writeable = False
        return view

    @property
    def write_counts(self):
        view = self._writes.view()
        view.flags.writeable = False
        return view

    def as_rows(self):
        """Read-only (rows, columns) view, top row first."""
        return self.values.reshape(self.rows, self.columns)

    def count_stable(self):
        return int(np.count_nonzero(self._values))

    # Invariant checks

    def written_indices(self):
        """Every index that has been written, repeated once per write."""
        return np.repeat(np.arange(len(self)), self._writes).tolist()

    def missing(self):
        return np.flatnonzero(self._writes == 0).tolist()

    def duplicates(self):
        return np.flatnonzero(self._writes > 1).tolist()

    def is_complete(self):
        """True when every slot was written exactly once."""
        return bool(np.all(self._writes == 1))

    def seal(self):
        """Freeze the buffer; later writes raise ValueError."""
        self._values.flags.writeable = False
        self._writes.flags.writeable = False
        self.sealed = True

    def _check_index(self, index):
        if not 0 <= index < len(self):
            raise OutOfRange(f"index {index} outside [0, {len(self)})")

    # Raw storage, for kernels that fill the buffer in place

    def storage(self):
        """Writable (values, writes) arrays; only valid before seal()."""
        if self.sealed:
            raise ValueError("result buffer is sealed")
        return self._values, self._writes
