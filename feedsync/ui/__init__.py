"""UI helpers for terminal interactions."""

from .progress import ProgressReporter

__all__ = ["ProgressReporter"]
