"""Activity file decoding."""

from .fit_loader import RECORD_COLUMNS, load_fit_records

__all__ = ["RECORD_COLUMNS", "load_fit_records"]
