"""
ASCII chart of a finished result buffer.

One line per grid row, top to bottom; one character per column, left to
right: '.' for a stable point and a space for an unstable one.
"""

import sys


STABLE_CHAR = "."
UNSTABLE_CHAR = " "


def render_chart(buffer):
    """
    Format a sealed ResultBuffer as text.

    Args:
        buffer: ResultBuffer returned by ParallelEvaluator.evaluate

    Returns:
        The chart, with a newline after every row
    """
    lines = []
    for row in buffer.as_rows():
        lines.append("".join(STABLE_CHAR if value else UNSTABLE_CHAR for value in row))
        lines.append("\n")
    return "".join(lines)


def print_chart(buffer, stream=None):
    """Write the chart of `buffer` to `stream` (default stdout)."""
    stream = stream if stream is not None else sys.stdout
    stream.write(render_chart(buffer))
    stream.flush()
