from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..config import AnalysisConfig, ClassificationSettings, SegmentationSettings
from ..errors import DegenerateWindowError
from ..models.types import PhysiologicalState, RegimeWindow, Sample, StateTransition
from .relationship import coefficient_stability, linear_fit, relative_deviations, sample_arrays

logger = logging.getLogger(__name__)

DRIFT_SEGMENTS = 4


def _clamp(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def _relative_difference(diff: float, base: float) -> float:
    if base > 0:
        return diff / base
    return 0.0 if diff == 0 else 1.0


def rolling_slopes(power: np.ndarray, hr: np.ndarray, width: int) -> np.ndarray:
    """OLS slope of heart rate on power for every contiguous sub-window of `width` samples.

    Sub-windows without power variance yield NaN.
    """
    n = power.size
    if width < 2 or n < width:
        return np.empty(0)
    x = power - power.mean()
    y = hr - hr.mean()

    def window_sums(values: np.ndarray) -> np.ndarray:
        csum = np.concatenate(([0.0], np.cumsum(values)))
        return csum[width:] - csum[:-width]

    sx = window_sums(x)
    sy = window_sums(y)
    sxy = window_sums(x * y)
    sxx = window_sums(x * x)
    num = width * sxy - sx * sy
    denom = width * sxx - sx * sx

    slopes = np.full(num.shape, np.nan)
    valid = denom > width * width * 1e-6
    slopes[valid] = num[valid] / denom[valid]
    return slopes


def _lactate_confidence(power: np.ndarray, hr: np.ndarray, slope: float, intercept: float, max_hr_deviation: float) -> float:
    predicted = np.maximum(slope * power + intercept, 1.0)
    signed = (hr - predicted) / predicted
    return _clamp(float(signed.mean()) / max_hr_deviation)


def _drift_confidence(power: np.ndarray, hr: np.ndarray, settings: ClassificationSettings) -> Optional[float]:
    """Confidence of cardiovascular drift, or None when the window does not drift.

    Drift means near-constant power between the first and last quarter while heart rate rises.
    """
    quarter = power.size // DRIFT_SEGMENTS
    if quarter < 1:
        return None
    power_change = abs(float(power[-quarter:].mean()) - float(power[:quarter].mean()))
    hr_rise = float(hr[-quarter:].mean()) - float(hr[:quarter].mean())
    if not (power_change < settings.drift_max_power_change and hr_rise > settings.drift_min_hr_rise):
        return None

    power_means = np.array([power[i * quarter:(i + 1) * quarter].mean() for i in range(DRIFT_SEGMENTS)])
    hr_means = [float(hr[i * quarter:(i + 1) * quarter].mean()) for i in range(DRIFT_SEGMENTS)]
    hr_trend = (hr_means[-1] - hr_means[0]) / hr_means[0]
    return _clamp(coefficient_stability(power_means) * hr_trend * settings.drift_confidence_scale)


def classify_arrays(
    power: np.ndarray,
    hr: np.ndarray,
    segmentation: SegmentationSettings,
    classification: ClassificationSettings,
) -> Tuple[PhysiologicalState, float]:
    """Label one window as stable, lactate threshold, cardiovascular drift or unknown.

    Checks run in that order and the first match wins. A window without power
    variance can still be labelled as drift, which needs no regression.
    """
    try:
        slope, intercept, r2 = linear_fit(power, hr)
    except DegenerateWindowError:
        slope = None

    if slope is not None:
        deviations = relative_deviations(power, hr, slope, intercept)
        if r2 >= segmentation.min_r2_threshold and float(deviations.max()) < segmentation.max_hr_deviation:
            return PhysiologicalState.STABLE, _clamp(r2)

        if slope > 0:
            sub_slopes = rolling_slopes(power, hr, classification.lactate_subwindow)
            limit = slope * (1.0 + classification.lactate_slope_factor)
            if np.any(sub_slopes[~np.isnan(sub_slopes)] > limit):
                confidence = _lactate_confidence(power, hr, slope, intercept, segmentation.max_hr_deviation)
                return PhysiologicalState.LACTATE_THRESHOLD, confidence

    drift = _drift_confidence(power, hr, classification)
    if drift is not None:
        return PhysiologicalState.CV_DRIFT, drift
    return PhysiologicalState.UNKNOWN, 0.0


def classify_window(samples: Sequence[Sample], config: Optional[AnalysisConfig] = None) -> Tuple[PhysiologicalState, float]:
    config = config or AnalysisConfig()
    _, power, hr = sample_arrays(samples)
    return classify_arrays(power, hr, config.segmentation, config.classification)


class _Run:
    """Consecutive candidate windows sharing a label, as sample index bounds [lo, hi)."""

    __slots__ = ("state", "lo", "hi", "confidences")

    def __init__(self, state: PhysiologicalState, lo: int, hi: int, confidence: float):
        self.state = state
        self.lo = lo
        self.hi = hi
        self.confidences = [confidence]

    def absorb(self, other: "_Run") -> None:
        self.hi = max(self.hi, other.hi)
        self.confidences.extend(other.confidences)


def segment_regimes(samples: Sequence[Sample], config: Optional[AnalysisConfig] = None) -> List[RegimeWindow]:
    """Split the series into regimes of one coarse physiological label.

    A window of classification.window_size samples slides across the series; runs of
    equal labels become regimes, runs shorter than min_regime_windows are discarded,
    and same-label regimes closer than regime_merge_gap seconds are joined. Regimes do not
    overlap: each ends just before the next one starts.
    """
    config = config or AnalysisConfig()
    settings = config.classification
    seconds, power, hr = sample_arrays(samples)
    width = settings.window_size
    if seconds.size < width:
        return []

    runs: List[_Run] = []
    for start in range(0, seconds.size - width + 1, settings.window_stride):
        end = start + width
        state, confidence = classify_arrays(power[start:end], hr[start:end], config.segmentation, settings)
        if runs and runs[-1].state == state:
            runs[-1].hi = end
            runs[-1].confidences.append(confidence)
        else:
            runs.append(_Run(state, start, end, confidence))

    kept = [r for r in runs if len(r.confidences) >= settings.min_regime_windows]
    merged: List[_Run] = []
    for run in kept:
        if merged and merged[-1].state == run.state:
            gap = seconds[run.lo] - seconds[merged[-1].hi - 1]
            if gap < settings.regime_merge_gap:
                merged[-1].absorb(run)
                continue
        merged.append(run)

    regimes: List[RegimeWindow] = []
    for i, r in enumerate(merged):
        # A run spans its last window; stop where the next regime starts
        hi = min(r.hi, merged[i + 1].lo) if i + 1 < len(merged) else r.hi
        regimes.append(
            RegimeWindow(
                start_time=float(seconds[r.lo]),
                end_time=float(seconds[hi - 1]),
                state=r.state,
                confidence=_clamp(float(np.mean(r.confidences))),
                power_mean=float(power[r.lo:hi].mean()),
                hr_mean=float(hr[r.lo:hi].mean()),
            )
        )
    logger.debug("Segmented %d regimes from %d label runs", len(regimes), len(runs))
    return regimes


def find_transition_point(seconds: np.ndarray, power: np.ndarray, hr: np.ndarray, start: float, end: float) -> float:
    """Most likely changeover second within [start, end].

    Chooses the split minimising the summed within-side variance of power and heart
    rate, each normalised by its variance over the whole region.
    """
    lo_t, hi_t = min(start, end), max(start, end)
    idx = np.flatnonzero((seconds >= lo_t) & (seconds <= hi_t))
    m = idx.size
    if m < 4:
        return float(lo_t)

    splits = np.arange(2, m - 1)
    cost = np.zeros(splits.size)
    for values in (power[idx], hr[idx]):
        centered = values - values.mean()
        total_var = float(np.var(centered))
        if total_var <= 0:
            continue
        s1 = np.concatenate(([0.0], np.cumsum(centered)))
        s2 = np.concatenate(([0.0], np.cumsum(centered ** 2)))
        left = s2[splits] - s1[splits] ** 2 / splits
        right_n = m - splits
        right = (s2[m] - s2[splits]) - (s1[m] - s1[splits]) ** 2 / right_n
        cost += (left + right) / m / total_var

    best = splits[int(np.argmin(cost))]
    return float(seconds[idx[best]])


def transition_confidence(seconds: np.ndarray, power: np.ndarray, hr: np.ndarray, time: float, context: float) -> float:
    """Mean relative change of power and HR means across `time`, over `context` seconds each side."""
    before = (seconds >= time - context) & (seconds < time)
    after = (seconds >= time) & (seconds < time + context)
    if not before.any() or not after.any():
        return 0.0
    power_before = float(power[before].mean())
    hr_before = float(hr[before].mean())
    power_diff = abs(float(power[after].mean()) - power_before)
    hr_diff = abs(float(hr[after].mean()) - hr_before)
    return _clamp(
        (_relative_difference(power_diff, power_before) + _relative_difference(hr_diff, hr_before)) / 2.0
    )


def detect_transitions(
    samples: Sequence[Sample],
    regimes: Sequence[RegimeWindow],
    config: Optional[AnalysisConfig] = None,
) -> List[StateTransition]:
    """Transitions between consecutive regimes with different labels.

    The changeover is searched from the end of the earlier regime through the first
    classification window of the later one, where the new label was first seen.
    """
    config = config or AnalysisConfig()
    context = config.classification.transition_context
    span = config.classification.window_size - 1
    seconds, power, hr = sample_arrays(samples)

    transitions: List[StateTransition] = []
    for prev, curr in zip(regimes, regimes[1:]):
        if prev.state == curr.state:
            continue
        time = find_transition_point(seconds, power, hr, prev.end_time, curr.start_time + span)
        transitions.append(
            StateTransition(
                time=time,
                from_state=prev.state,
                to_state=curr.state,
                confidence=transition_confidence(seconds, power, hr, time, context),
            )
        )
    return transitions
