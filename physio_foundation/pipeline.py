"""Entry points: condition raw records, find stable windows, summarize an activity."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from .config import AnalysisConfig
from .errors import InsufficientDataError
from .io.fit_loader import load_fit_records
from .metrics.summary import summarize
from .models.types import ActivitySummary, Sample
from .processing.conditioning import RawRecords, condition_samples
from .recognition.classification import detect_transitions, segment_regimes
from .recognition.segmentation import find_stable_windows

logger = logging.getLogger(__name__)

__all__ = [
    "condition_samples",
    "find_stable_windows",
    "analyze_activity",
    "analyze_records",
    "analyze_fit_file",
]


def analyze_activity(
    samples: Sequence[Sample],
    config: Optional[AnalysisConfig] = None,
    warnings: Sequence[str] = (),
) -> ActivitySummary:
    """Segment a conditioned series and summarize it.

    Raises InsufficientDataError for an empty series and ValueError for an invalid config.
    """
    config = config or AnalysisConfig()
    config.validate()
    samples = tuple(samples)
    if not samples:
        raise InsufficientDataError("no conditioned samples to analyze")

    windows = find_stable_windows(samples, config)
    regimes = segment_regimes(samples, config)
    transitions = detect_transitions(samples, regimes, config)
    logger.info(
        "Analyzed %d samples: %d stable windows, %d regimes, %d transitions",
        len(samples),
        len(windows),
        len(regimes),
        len(transitions),
    )
    return summarize(samples, windows, config, regimes=regimes, transitions=transitions, warnings=warnings)


def analyze_records(raw_records: RawRecords, config: Optional[AnalysisConfig] = None) -> ActivitySummary:
    """Condition decoded records and analyze them; conditioning warnings travel with the summary."""
    config = config or AnalysisConfig()
    config.validate()
    conditioned = condition_samples(raw_records, config)
    if not conditioned.samples:
        raise InsufficientDataError("no usable records: " + "; ".join(conditioned.warnings))
    return analyze_activity(conditioned.samples, config, warnings=conditioned.warnings)


def analyze_fit_file(path: Union[str, Path], config: Optional[AnalysisConfig] = None) -> ActivitySummary:
    """Decode a FIT file and analyze it. Raises RecordDecodeError if the file cannot be decoded."""
    records = load_fit_records(str(path))
    return analyze_records(records, config)
