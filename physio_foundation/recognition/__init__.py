"""Power/heart-rate relationship fitting, stable-window segmentation and regime labelling."""

from .classification import classify_window, detect_transitions, segment_regimes
from .relationship import fit_relationship
from .segmentation import find_stable_windows

__all__ = [
    "classify_window",
    "detect_transitions",
    "find_stable_windows",
    "fit_relationship",
    "segment_regimes",
]
