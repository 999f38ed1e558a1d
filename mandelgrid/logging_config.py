"""
Log output for the mandelgrid command-line tool.

The chart owns stdout, so log records go to stderr (and optionally a file).
The -v count picks the level: none for warnings only, -v for progress,
-vv for evaluator state transitions and pool lifecycle.
"""

import logging
import sys


VERBOSITY_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def level_for(verbosity):
    """Map a -v count onto a logging level (counts past 2 stay at DEBUG)."""
    return VERBOSITY_LEVELS[max(0, min(verbosity, len(VERBOSITY_LEVELS) - 1))]


def setup_logging(verbosity=0, log_file=None, stream=None):
    """
    Attach handlers to the 'mandelgrid' logger.

    Calling it again replaces the handlers from the previous call, so a
    process that runs main() more than once never logs a record twice.

    Args:
        verbosity: Number of -v flags given
        log_file: Optional path; the log is also written there (overwritten)
        stream: Console stream (default sys.stderr at call time)

    Returns:
        The configured logger
    """
    level = level_for(verbosity)
    logger = logging.getLogger("mandelgrid")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")
    handlers = [logging.StreamHandler(stream if stream is not None else sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug("Logging at %s", logging.getLevelName(level))
    return logger
