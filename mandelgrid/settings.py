"""
Run settings for mandelgrid.

Defaults live in settings.json next to this module. A user file passed with
--config is layered on top, then command-line flags on top of that.
"""

import json
import logging
import math
import os
from dataclasses import dataclass, fields, replace

from .compute import DEFAULT_ITERATIONS
from .errors import ConfigError
from .evaluator import SUBSTRATES, ParallelEvaluator
from .plane import DEFAULT_BOUNDS, DEFAULT_COLUMNS, DEFAULT_ROWS, Grid


logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = os.path.join(os.path.dirname(__file__), 'settings.json')


def load_settings(path=None):
    """
    Load settings from a JSON file.

    Args:
        path: File to read (default: the bundled settings.json)

    Returns:
        The parsed dict, or None if the file is missing or not valid JSON
    """
    settings_path = path or DEFAULT_SETTINGS_PATH
    try:
        with open(settings_path, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.warning("Could not load %s: %s", settings_path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top level is not an object", settings_path)
        return None
    return data


@dataclass(frozen=True)
class Settings:
    """All options of one run: the sampled window, the budget and the evaluator."""

    rows: int = DEFAULT_ROWS
    columns: int = DEFAULT_COLUMNS
    real_min: float = DEFAULT_BOUNDS[0]
    real_max: float = DEFAULT_BOUNDS[1]
    imag_min: float = DEFAULT_BOUNDS[2]
    imag_max: float = DEFAULT_BOUNDS[3]
    iterations: int = DEFAULT_ITERATIONS
    workers: int = None
    substrate: str = "threads"
    chunk_size: int = 1
    early_exit: bool = False

    @classmethod
    def from_dict(cls, data):
        """Build Settings from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown settings: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def load(cls, path=None):
        """
        Defaults merged with the bundled settings.json and, if given, `path`.

        Raises:
            ConfigError: if `path` cannot be read or holds unknown keys
        """
        settings = cls()
        bundled = load_settings()
        if bundled is not None:
            settings = settings.merged(bundled)
        if path is not None:
            data = load_settings(path)
            if data is None:
                raise ConfigError(f"cannot read settings file {path}")
            settings = settings.merged(data)
        return settings

    def merged(self, overrides):
        """Copy with every non-None value of `overrides` applied."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(f"unknown settings: {', '.join(unknown)}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self):
        """Raise ConfigError on the first invalid option; return self otherwise."""
        self.grid()
        if not _is_int(self.iterations) or self.iterations < 0:
            raise ConfigError(f"iterations must be a non-negative integer, got {self.iterations!r}")
        if self.workers is not None and (not _is_int(self.workers) or self.workers < 1):
            raise ConfigError(f"workers must be a positive integer, got {self.workers!r}")
        if self.substrate not in SUBSTRATES:
            raise ConfigError(f"substrate must be one of {', '.join(SUBSTRATES)}, got {self.substrate!r}")
        if not _is_int(self.chunk_size) or self.chunk_size < 1:
            raise ConfigError(f"chunk_size must be a positive integer, got {self.chunk_size!r}")
        if not isinstance(self.early_exit, bool):
            raise ConfigError(f"early_exit must be true or false, got {self.early_exit!r}")
        return self

    def grid(self):
        return Grid(
            rows=self.rows, columns=self.columns,
            real_min=self.real_min, real_max=self.real_max,
            imag_min=self.imag_min, imag_max=self.imag_max,
        )

    def evaluator(self):
        return ParallelEvaluator(
            workers=self.workers, substrate=self.substrate,
            chunk_size=self.chunk_size, early_exit=self.early_exit,
        )

    def describe(self):
        """One-line summary for logs."""
        return (
            f"{self.rows}x{self.columns} real [{self.real_min}, {self.real_max}] "
            f"imag [{self.imag_min}, {self.imag_max}] iterations={self.iterations} "
            f"substrate={self.substrate} workers={self.workers or 'auto'}"
        )


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def parse_float(text):
    """argparse type for plane bounds: a finite float."""
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"{text} is not finite")
    return value
