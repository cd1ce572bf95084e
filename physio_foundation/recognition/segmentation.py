from __future__ import annotations

import logging
import math
from dataclasses import fields
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import AnalysisConfig, SegmentationSettings
from ..errors import DegenerateWindowError
from ..models.types import LinearRelationship, QualityMetrics, Sample, StableWindow
from .classification import classify_arrays
from .relationship import (
    CoreFit,
    analyze_hr_responses,
    coefficient_stability,
    core_fit,
    detect_power_changes,
    fit_arrays,
    linear_fit,
    mean_response_time,
    relative_deviations,
    sample_arrays,
    stability_score,
)

logger = logging.getLogger(__name__)

# Residuals this close to zero carry no sign for the runs test
RESIDUAL_SIGN_TOLERANCE = 1e-9


def _clamp(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def _relative_change(reference: float, value: float) -> float:
    if reference == 0:
        return 0.0 if value == 0 else math.inf
    return abs(value - reference) / abs(reference)


def runs_test_score(residuals: np.ndarray, settings: SegmentationSettings) -> float:
    """Pattern penalty in [0, 1] from a Wald-Wolfowitz runs test on residual signs."""
    signs = np.sign(residuals[np.abs(residuals) > RESIDUAL_SIGN_TOLERANCE])
    if signs.size == 0:
        return 0.0
    n_pos = int(np.sum(signs > 0))
    n_neg = int(np.sum(signs < 0))
    if n_pos == 0 or n_neg == 0:
        return 1.0
    n = n_pos + n_neg
    runs = 1 + int(np.sum(signs[1:] != signs[:-1]))
    mu = 2.0 * n_pos * n_neg / n + 1.0
    var = (mu - 1.0) * (mu - 2.0) / (n - 1)
    if var <= 0:
        return 0.0
    z = abs(runs - mu) / math.sqrt(var)
    return min(1.0, z / settings.runs_z_scale)


def nonlinearity_score(power: np.ndarray, hr: np.ndarray) -> float:
    """Relative R^2 gained by a quadratic over a linear fit, clamped to [0, 1]."""
    ss_tot = float(np.sum((hr - hr.mean()) ** 2))
    if ss_tot <= 0:
        return 0.0
    r2 = []
    for degree in (1, 2):
        coeffs = np.polyfit(power, hr, degree)
        ss_res = float(np.sum((hr - np.polyval(coeffs, power)) ** 2))
        r2.append(1.0 - ss_res / ss_tot)
    r2_linear, r2_quadratic = r2
    if r2_linear <= 0:
        return 1.0
    return _clamp((r2_quadratic - r2_linear) / r2_linear)


def linearity_score(power: np.ndarray, hr: np.ndarray, slope: float, intercept: float, settings: SegmentationSettings) -> float:
    residuals = hr - (slope * power + intercept)
    pattern = runs_test_score(residuals, settings)
    return max(0.0, 1.0 - (0.6 * pattern + 0.4 * nonlinearity_score(power, hr)))


def response_consistency(response_times: Sequence[float]) -> Optional[float]:
    """1 - CV of HR response times; None with fewer than two responses."""
    if len(response_times) < 2:
        return None
    return coefficient_stability(np.asarray(response_times, dtype=float))


def is_stable_relationship(
    seconds: np.ndarray,
    power: np.ndarray,
    hr: np.ndarray,
    fit: CoreFit,
    settings: SegmentationSettings,
) -> bool:
    """Stability test gating window formation: fit quality, bounded deviation, consistent HR response, linearity."""
    if fit.r2 < settings.min_r2_threshold:
        return False
    if float(relative_deviations(power, hr, fit.slope, fit.intercept).max()) >= settings.max_hr_deviation:
        return False

    steps = detect_power_changes(seconds, power, settings)
    if len(steps) >= 2:
        responses = analyze_hr_responses(seconds, hr, steps, settings)
        consistency = response_consistency([r.response_time for r in responses])
        if consistency is not None and consistency < settings.min_response_consistency:
            return False

    return linearity_score(power, hr, fit.slope, fit.intercept, settings) >= settings.min_linearity_score


class SegmenterState(Enum):
    IDLE = "idle"
    BUILDING = "building"


class WindowSegmenter:
    """Left-to-right window lifecycle over candidate windows.

    IDLE + stable candidate -> open. BUILDING + stable consistent candidate -> extend
    and refit over the contiguous union. BUILDING + stable inconsistent candidate ->
    close and open from the candidate. Any unstable or degenerate candidate closes
    the open window and returns to IDLE.
    """

    def __init__(self, seconds: np.ndarray, power: np.ndarray, hr: np.ndarray, settings: SegmentationSettings):
        self.seconds = seconds
        self.power = power
        self.hr = hr
        self.settings = settings
        self.state = SegmenterState.IDLE
        self._lo = 0
        self._hi = 0
        self._fit: Optional[CoreFit] = None
        self.closed: List[Tuple[int, int]] = []

    def _candidate_fit(self, lo: int, hi: int) -> Optional[CoreFit]:
        power = self.power[lo:hi]
        hr = self.hr[lo:hi]
        try:
            fit = core_fit(power, hr, self.settings)
        except DegenerateWindowError:
            return None
        if not is_stable_relationship(self.seconds[lo:hi], power, hr, fit, self.settings):
            return None
        return fit

    def is_consistent(self, current: CoreFit, candidate: CoreFit) -> bool:
        s = self.settings
        return (
            _relative_change(current.slope, candidate.slope) < s.max_slope_change
            and _relative_change(current.efficiency, candidate.efficiency) < s.max_efficiency_change
            and candidate.r2 >= s.min_r2_threshold
            and abs(candidate.decoupling - current.decoupling) < s.max_decoupling_change
        )

    def _open(self, lo: int, hi: int, fit: CoreFit) -> None:
        self._lo, self._hi, self._fit = lo, hi, fit
        self.state = SegmenterState.BUILDING

    def _close(self) -> None:
        self.closed.append((self._lo, self._hi))
        self._fit = None
        self.state = SegmenterState.IDLE

    def _try_extend(self, hi: int) -> bool:
        union_hi = max(self._hi, hi)
        union_fit = core_fit(self.power[self._lo:union_hi], self.hr[self._lo:union_hi], self.settings)
        if union_fit.r2 < self.settings.min_r2_threshold:
            return False
        self._hi = union_hi
        self._fit = union_fit
        return True

    def step(self, lo: int, hi: int) -> None:
        candidate = self._candidate_fit(lo, hi)
        if candidate is None:
            if self.state is SegmenterState.BUILDING:
                self._close()
            return

        if self.state is SegmenterState.IDLE:
            self._open(lo, hi, candidate)
        elif self.is_consistent(self._fit, candidate) and self._try_extend(hi):
            pass
        else:
            self._close()
            self._open(lo, hi, candidate)

    def run(self) -> List[Tuple[int, int]]:
        """Sample index ranges [lo, hi) of every window closed over the series."""
        width = self.settings.min_window_size
        for lo in range(0, self.seconds.size - width + 1, self.settings.window_stride):
            self.step(lo, lo + width)
        if self.state is SegmenterState.BUILDING:
            self._close()
        return self.closed


def _consistency_score(power: np.ndarray, hr: np.ndarray, slope: float, segments: int) -> float:
    slopes: List[float] = []
    r2s: List[float] = []
    for idx in np.array_split(np.arange(power.size), segments):
        try:
            s, _, r2 = linear_fit(power[idx], hr[idx])
        except DegenerateWindowError:
            continue
        slopes.append(s)
        r2s.append(r2)
    if len(slopes) < 2:
        return 1.0
    slope_std = float(np.std(slopes, ddof=1))
    if slope != 0:
        slope_cv = slope_std / abs(slope)
    else:
        slope_cv = 0.0 if slope_std == 0 else 1.0
    r2_std = float(np.std(r2s, ddof=1))
    return _clamp(1.0 - (slope_cv * 0.6 + r2_std * 0.4))


def build_stable_window(samples: Sequence[Sample], config: AnalysisConfig) -> StableWindow:
    """Fit and score a window over `samples`. Raises DegenerateWindowError if it cannot be fitted."""
    seg = config.segmentation
    seconds, power, hr = sample_arrays(samples)
    response_time = mean_response_time(seconds, power, hr, seg)
    relationship = fit_arrays(seconds, power, hr, seg, response_time)
    state, _ = classify_arrays(power, hr, seg, config.classification)

    deviations = relative_deviations(power, hr, relationship.slope, relationship.intercept)
    quality = QualityMetrics(
        stability_score=stability_score(power, hr),
        coupling_score=_clamp(1.0 - float(deviations.mean())),
        consistency_score=_consistency_score(power, hr, relationship.slope, seg.consistency_segments),
    )
    base = {f.name: getattr(relationship, f.name) for f in fields(LinearRelationship)}
    return StableWindow(
        **base,
        start_time=float(seconds[0]),
        end_time=float(seconds[-1]),
        power_stability=coefficient_stability(power),
        hr_stability=coefficient_stability(hr),
        response_time=response_time,
        quality_metrics=quality,
        samples=tuple(samples),
        state=state,
    )


def quality_score(window: StableWindow, weights: Dict[str, float]) -> float:
    q = window.quality_metrics
    return (
        max(0.0, window.r2) * weights["r2"]
        + window.efficiency * weights["efficiency"]
        + (1.0 - min(1.0, window.decoupling)) * weights["decoupling"]
        + q.stability_score * weights["stability"]
        + q.coupling_score * weights["coupling"]
        + q.consistency_score * weights["consistency"]
    )


def _can_merge(first: StableWindow, second: StableWindow, settings: SegmentationSettings) -> bool:
    return (
        first.end_time >= second.start_time - settings.merge_max_gap
        and _relative_change(first.slope, second.slope) < settings.merge_max_slope_diff
        and _relative_change(first.efficiency, second.efficiency) < settings.merge_max_efficiency_diff
    )


def _combined_samples(first: StableWindow, second: StableWindow) -> List[Sample]:
    by_time: Dict[float, Sample] = {s.seconds: s for s in first.samples}
    for s in second.samples:
        by_time.setdefault(s.seconds, s)
    return [by_time[t] for t in sorted(by_time)]


def merge_adjacent_windows(windows: Sequence[StableWindow], config: AnalysisConfig) -> List[StableWindow]:
    """Merge chronologically adjacent windows with similar slope and efficiency.

    Merged windows are refitted over their combined samples. The window count never grows.
    """
    settings = config.segmentation
    merged: List[StableWindow] = []
    for window in sorted(windows, key=lambda w: w.start_time):
        if merged and _can_merge(merged[-1], window, settings):
            merged[-1] = build_stable_window(_combined_samples(merged[-1], window), config)
        else:
            merged.append(window)
    return merged


def resolve_sample_ownership(windows: Sequence[StableWindow], config: AnalysisConfig) -> List[StableWindow]:
    """Trim overlaps so each sample belongs to at most one window.

    The earlier window keeps shared samples; a trimmed window is refitted, and dropped
    if too little of it remains to fit.
    """
    owned: List[StableWindow] = []
    for window in sorted(windows, key=lambda w: w.start_time):
        if owned and window.start_time <= owned[-1].end_time:
            cutoff = owned[-1].end_time
            remaining = [s for s in window.samples if s.seconds > cutoff]
            if len(remaining) < 2:
                continue
            try:
                window = build_stable_window(remaining, config)
            except DegenerateWindowError:
                continue
        owned.append(window)
    return owned


def find_stable_windows(samples: Sequence[Sample], config: Optional[AnalysisConfig] = None) -> List[StableWindow]:
    """Stable power to heart-rate windows, best quality first."""
    config = config or AnalysisConfig()
    settings = config.segmentation
    samples = tuple(samples)
    if len(samples) < settings.min_window_size:
        return []

    seconds, power, hr = sample_arrays(samples)
    ranges = WindowSegmenter(seconds, power, hr, settings).run()
    windows = [build_stable_window(samples[lo:hi], config) for lo, hi in ranges]

    windows = [w for w in windows if len(w.samples) >= settings.min_window_size]
    windows = merge_adjacent_windows(windows, config)
    windows = resolve_sample_ownership(windows, config)
    windows = [w for w in windows if len(w.samples) >= settings.min_window_size]
    windows.sort(key=lambda w: quality_score(w, settings.quality_weights), reverse=True)

    logger.info("Found %d stable windows from %d candidate ranges", len(windows), len(ranges))
    return windows
