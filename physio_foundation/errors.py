"""Exception taxonomy for the analysis pipeline."""

from __future__ import annotations


class PhysioFoundationError(Exception):
    """Base class for all errors raised by physio_foundation."""


class RecordDecodeError(PhysioFoundationError):
    """The activity file could not be decoded into records. Fatal for the run."""


class DegenerateWindowError(PhysioFoundationError, ValueError):
    """A sample window cannot support a power to heart-rate regression.

    Raised for windows with fewer than two samples or with zero power variance,
    where the slope is undefined.
    """

    def __init__(self, reason: str, n_samples: int = 0):
        super().__init__(reason)
        self.reason = reason
        self.n_samples = n_samples


class InsufficientDataError(PhysioFoundationError):
    """Not enough samples to run an analysis at all."""
