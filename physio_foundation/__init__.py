"""Physiological analysis of power and heart-rate recordings.

Modules:
- io: Decoding FIT files into raw record dicts
- processing: Conditioning raw records into a clean 1 Hz sample series
- recognition: Power/HR relationship fits, stable windows, regimes and transitions
- metrics: Whole-activity summary metrics
- models: Typed domain objects and athlete profiles
- storage: Export helpers
- cli: Command line interface
"""

from .config import AnalysisConfig, default_config
from .errors import DegenerateWindowError, InsufficientDataError, PhysioFoundationError, RecordDecodeError
from .pipeline import analyze_activity, analyze_fit_file, analyze_records, condition_samples, find_stable_windows

__version__ = "1.0.0"

__all__ = [
    "AnalysisConfig",
    "default_config",
    "DegenerateWindowError",
    "InsufficientDataError",
    "PhysioFoundationError",
    "RecordDecodeError",
    "condition_samples",
    "find_stable_windows",
    "analyze_activity",
    "analyze_records",
    "analyze_fit_file",
]
