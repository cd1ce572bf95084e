"""Cleaning raw records into the conditioned sample series."""

from .conditioning import condition_samples, interpolate_gaps, smooth_samples

__all__ = ["condition_samples", "interpolate_gaps", "smooth_samples"]
