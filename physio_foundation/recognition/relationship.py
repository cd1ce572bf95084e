from __future__ import annotations

from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from ..config import SegmentationSettings
from ..errors import DegenerateWindowError
from ..models.types import (
    AerobicFitness,
    ConfidenceBands,
    HRResponse,
    LinearRelationship,
    PowerStep,
    Sample,
)

# Predicted heart rate is floored here before it is used as a denominator
MIN_PREDICTED_HR = 1.0
MIN_POWER_VARIANCE = 1e-9
# Mean relative deviations at or below this count as a perfect fit
DEVIATION_EPSILON = 1e-9


class CoreFit(NamedTuple):
    """Regression terms needed for window lifecycle decisions."""
    slope: float
    intercept: float
    r2: float
    decoupling: float
    efficiency: float


def sample_arrays(samples: Sequence[Sample]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(seconds, power, heart_rate) as float arrays."""
    seconds = np.fromiter((s.seconds for s in samples), dtype=float, count=len(samples))
    power = np.fromiter((s.power for s in samples), dtype=float, count=len(samples))
    hr = np.fromiter((s.heart_rate for s in samples), dtype=float, count=len(samples))
    return seconds, power, hr


def centered_mean(values: np.ndarray, radius: int) -> np.ndarray:
    """Mean over +/- radius neighbours, truncated at the edges."""
    values = np.asarray(values, dtype=float)
    n = values.size
    if radius <= 0 or n == 0:
        return values.copy()
    csum = np.concatenate(([0.0], np.cumsum(values)))
    idx = np.arange(n)
    lo = np.maximum(idx - radius, 0)
    hi = np.minimum(idx + radius + 1, n)
    return (csum[hi] - csum[lo]) / (hi - lo)


def _std(values: np.ndarray) -> float:
    return float(np.std(values, ddof=1)) if values.size >= 2 else 0.0


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return float(min(hi, max(lo, value)))


def linear_fit(power: np.ndarray, hr: np.ndarray) -> Tuple[float, float, float]:
    """OLS of heart rate on power: (slope, intercept, r2).

    r2 is 1 - SS_res/SS_tot and is reported as 0 when heart rate has no variance.
    Raises DegenerateWindowError when the slope is undefined.
    """
    n = power.size
    if n < 2:
        raise DegenerateWindowError("at least 2 samples are required for a regression", n)
    if float(np.var(power)) <= MIN_POWER_VARIANCE:
        raise DegenerateWindowError("power has zero variance; slope is undefined", n)

    result = stats.linregress(power, hr)
    slope = float(result.slope)
    intercept = float(result.intercept)
    residuals = hr - (slope * power + intercept)
    ss_res = float(np.sum(residuals ** 2))
    ss_tot = float(np.sum((hr - hr.mean()) ** 2))
    r2 = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0
    return slope, intercept, r2


def relative_deviations(power: np.ndarray, hr: np.ndarray, slope: float, intercept: float) -> np.ndarray:
    """|actual - predicted| / predicted heart rate per sample."""
    predicted = np.maximum(slope * power + intercept, MIN_PREDICTED_HR)
    return np.abs(hr - predicted) / predicted


def confidence_bands(
    power: np.ndarray,
    hr: np.ndarray,
    slope: float,
    intercept: float,
    z: float = 1.96,
    grid_points: int = 100,
) -> ConfidenceBands:
    """Regression prediction interval over an evenly spaced grid of the observed power range."""
    n = power.size
    x_mean = float(power.mean())
    residuals = hr - (slope * power + intercept)
    mse = float(np.sum(residuals ** 2)) / max(n - 2, 1)
    sxx = float(np.sum((power - x_mean) ** 2))

    grid = np.linspace(float(power.min()), float(power.max()), grid_points)
    prediction = slope * grid + intercept
    se = np.sqrt(mse * (1.0 + 1.0 / n + (grid - x_mean) ** 2 / sxx))
    return ConfidenceBands(
        power=tuple(grid.tolist()),
        prediction=tuple(prediction.tolist()),
        upper=tuple((prediction + z * se).tolist()),
        lower=tuple((prediction - z * se).tolist()),
    )


def decoupling(power: np.ndarray, hr: np.ndarray, slope: float, intercept: float) -> float:
    """Relative growth of mean prediction error from the first to the second half.

    When the first half fits perfectly, any error in the second half counts as full decoupling (1.0).
    """
    mid = power.size // 2
    if mid == 0:
        return 0.0
    deviations = relative_deviations(power, hr, slope, intercept)
    first = float(deviations[:mid].mean())
    second = float(deviations[mid:].mean())
    if first <= DEVIATION_EPSILON:
        return 0.0 if second <= DEVIATION_EPSILON else 1.0
    return max(0.0, (second - first) / first)


def cardiac_efficiency(power: np.ndarray, hr: np.ndarray, ratio_range: Tuple[float, float] = (0.5, 2.5)) -> float:
    """Mean W/bpm mapped linearly from ratio_range onto [0, 1]."""
    lo, hi = ratio_range
    mean_ratio = float(np.mean(power / hr))
    return _clamp((mean_ratio - lo) / (hi - lo))


def coefficient_stability(values: np.ndarray) -> float:
    """1 - coefficient of variation, clamped to [0, 1]."""
    mean = float(np.mean(values)) if values.size else 0.0
    std = _std(values)
    if mean <= 0.0:
        return 1.0 if std == 0.0 else 0.0
    return _clamp(1.0 - std / mean)


def stability_score(power: np.ndarray, hr: np.ndarray) -> float:
    return _clamp((coefficient_stability(power) + coefficient_stability(hr)) / 2.0)


def core_fit(power: np.ndarray, hr: np.ndarray, settings: SegmentationSettings) -> CoreFit:
    slope, intercept, r2 = linear_fit(power, hr)
    return CoreFit(
        slope=slope,
        intercept=intercept,
        r2=r2,
        decoupling=decoupling(power, hr, slope, intercept),
        efficiency=cardiac_efficiency(power, hr, settings.efficiency_ratio_range),
    )


def detect_power_changes(seconds: np.ndarray, power: np.ndarray, settings: SegmentationSettings) -> List[PowerStep]:
    """Sharp changes in smoothed power.

    Threshold is max(power_change_threshold, power_change_std_factor * std(smoothed power)).
    A change within min_gap_between_changes of the last reported one is folded into it.
    """
    if power.size < 2:
        return []
    smoothed = centered_mean(power, settings.smoothing_window_size)
    threshold = max(settings.power_change_threshold, settings.power_change_std_factor * _std(smoothed))
    diffs = np.diff(smoothed)

    steps: List[PowerStep] = []
    last_time: Optional[float] = None
    for i in np.flatnonzero(np.abs(diffs) > threshold) + 1:
        t = float(seconds[i])
        if last_time is None or t - last_time > settings.min_gap_between_changes:
            steps.append(PowerStep(time=t, magnitude=float(diffs[i - 1])))
            last_time = t
    return steps


def analyze_hr_responses(
    seconds: np.ndarray,
    hr: np.ndarray,
    steps: Sequence[PowerStep],
    settings: SegmentationSettings,
) -> List[HRResponse]:
    """Time for heart rate to cover response_fraction of its move after each power step.

    Baseline is the mean HR over response_baseline samples before the step; the move is
    to the peak (rising step) or trough (falling step) within response_lookahead samples.
    """
    responses: List[HRResponse] = []
    n = hr.size
    for step in steps:
        start = int(np.searchsorted(seconds, step.time, side="left"))
        if start >= n:
            continue
        end = min(start + settings.response_lookahead, n)
        window = hr[start:end]
        base_lo = max(0, start - settings.response_baseline)
        baseline = float(hr[base_lo:start].mean()) if start > base_lo else float(hr[start])

        if step.magnitude >= 0:
            extreme = float(window.max())
            target = baseline + settings.response_fraction * (extreme - baseline)
            hits = np.flatnonzero(window >= target)
        else:
            extreme = float(window.min())
            target = baseline + settings.response_fraction * (extreme - baseline)
            hits = np.flatnonzero(window <= target)
        first_hit = int(hits[0]) if hits.size else window.size - 1
        responses.append(
            HRResponse(
                response_time=float(seconds[start + first_hit] - seconds[start]),
                magnitude=extreme - baseline,
            )
        )
    return responses


def mean_response_time(seconds: np.ndarray, power: np.ndarray, hr: np.ndarray, settings: SegmentationSettings) -> float:
    """Mean HR response time over detected power steps; max_response_lag when there are none."""
    responses = analyze_hr_responses(seconds, hr, detect_power_changes(seconds, power, settings), settings)
    if not responses:
        return float(settings.max_response_lag)
    return float(np.mean([r.response_time for r in responses]))


def assessment_confidence(seconds: np.ndarray, power: np.ndarray, hr: np.ndarray, settings: SegmentationSettings) -> float:
    if power.size < 2:
        return 0.0
    weights = settings.confidence_weights
    duration = float(seconds[-1] - seconds[0])
    coverage = float(np.ptp(power)) / settings.confidence_power_span_cap
    return _clamp(
        min(1.0, duration / settings.confidence_duration_cap) * weights["duration"]
        + min(1.0, coverage) * weights["power_range"]
        + stability_score(power, hr) * weights["stability"]
    )


def assess_aerobic_fitness(
    seconds: np.ndarray,
    power: np.ndarray,
    hr: np.ndarray,
    slope: float,
    decoupling_value: float,
    response_time: float,
    settings: SegmentationSettings,
) -> AerobicFitness:
    weights = settings.aerobic_weights
    slope_score = _clamp(1.0 - slope / settings.slope_score_cap)
    decoupling_score = _clamp(1.0 - decoupling_value)
    response_score = _clamp(1.0 - response_time / settings.max_response_lag)
    score = (
        slope_score * weights["slope"]
        + decoupling_score * weights["decoupling"]
        + response_score * weights["response"]
        + stability_score(power, hr) * weights["stability"]
    )
    return AerobicFitness(score=_clamp(score), confidence=assessment_confidence(seconds, power, hr, settings))


def fit_arrays(
    seconds: np.ndarray,
    power: np.ndarray,
    hr: np.ndarray,
    settings: SegmentationSettings,
    response_time: Optional[float] = None,
) -> LinearRelationship:
    fit = core_fit(power, hr, settings)
    if response_time is None:
        response_time = mean_response_time(seconds, power, hr, settings)
    return LinearRelationship(
        slope=fit.slope,
        intercept=fit.intercept,
        r2=fit.r2,
        power_range=(float(power.min()), float(power.max())),
        hr_range=(float(hr.min()), float(hr.max())),
        confidence_bands=confidence_bands(
            power, hr, fit.slope, fit.intercept, settings.z_value, settings.confidence_grid_points
        ),
        decoupling=fit.decoupling,
        efficiency=fit.efficiency,
        aerobic_fitness=assess_aerobic_fitness(
            seconds, power, hr, fit.slope, fit.decoupling, response_time, settings
        ),
    )


def fit_relationship(samples: Sequence[Sample], settings: Optional[SegmentationSettings] = None) -> LinearRelationship:
    """Fit the linear power -> heart-rate relationship of a sample window.

    Raises DegenerateWindowError for fewer than 2 samples or zero power variance.
    """
    settings = settings or SegmentationSettings()
    seconds, power, hr = sample_arrays(samples)
    return fit_arrays(seconds, power, hr, settings)
