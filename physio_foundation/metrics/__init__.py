"""Whole-activity metrics."""

from .summary import rolling_statistics, summarize

__all__ = ["rolling_statistics", "summarize"]
