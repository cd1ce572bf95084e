from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..config import AnalysisConfig, SummarySettings
from ..errors import InsufficientDataError
from ..models.types import (
    ActivitySummary,
    EnergyExpenditure,
    HRZones,
    PowerZones,
    RegimeWindow,
    Sample,
    StableWindow,
    StateTransition,
    VariabilityIndex,
    WorkloadMetrics,
)

logger = logging.getLogger(__name__)

# Upper bounds (inclusive, % of FTP / % of max HR) of every zone but the last
POWER_ZONE_EDGES_PCT = (55.0, 75.0, 90.0, 105.0, 120.0)
HR_ZONE_EDGES_PCT = (60.0, 70.0, 80.0, 90.0)


def _power_series(samples: Sequence[Sample]) -> pd.Series:
    return pd.Series([s.power for s in samples], dtype=float)


def _hr_series(samples: Sequence[Sample]) -> pd.Series:
    return pd.Series([s.heart_rate for s in samples], dtype=float)


def _normalized_power_w(power_series: pd.Series, window_s: int = 30) -> Optional[float]:
    """Normalized Power: 30-second rolling mean, raised to the 4th power, averaged, 4th root.

    Unavailable (None) when the series is shorter than the rolling window; no
    fallback to mean power, so dependent ratios stay unavailable too.
    """
    ps = power_series.dropna()
    if len(ps) < window_s:
        return None
    rolling = ps.rolling(window=window_s, min_periods=window_s).mean()
    mean_fourth = rolling.pow(4).mean(skipna=True)
    if pd.isna(mean_fourth):
        return None
    return float(np.power(mean_fourth, 1.0 / 4.0))


def _best_average_power(power_series: pd.Series, window_s: int) -> Optional[float]:
    """Best sustained average power over `window_s` samples; None if the ride is shorter."""
    if len(power_series) < window_s:
        return None
    rolling = power_series.rolling(window=window_s, min_periods=window_s).mean()
    return float(rolling.max())


def estimate_ftp(power_series: pd.Series, settings: SummarySettings) -> Optional[float]:
    """FTP override if configured, else ftp_fraction of the best ftp_test_duration average."""
    if settings.ftp_watts is not None:
        return float(settings.ftp_watts)
    best = _best_average_power(power_series, settings.ftp_test_duration)
    if best is None or best <= 0:
        return None
    return best * settings.ftp_fraction


def _variability(series: pd.Series) -> Optional[float]:
    if len(series) < 2:
        return None
    mean = float(series.mean())
    if mean <= 0:
        return None
    return float(series.std(ddof=1)) / mean


def _zone_fractions(values: np.ndarray, reference: float, edges_pct: Sequence[float]) -> List[float]:
    pct = values * 100.0 / reference
    zone_idx = np.searchsorted(np.asarray(edges_pct), pct, side="left")
    counts = np.bincount(zone_idx, minlength=len(edges_pct) + 1)
    return [float(c) / values.size for c in counts]


def power_zones(power_series: pd.Series, ftp: Optional[float]) -> Optional[PowerZones]:
    if ftp is None or ftp <= 0 or power_series.empty:
        return None
    return PowerZones(*_zone_fractions(power_series.to_numpy(), ftp, POWER_ZONE_EDGES_PCT))


def hr_zones(hr_series: pd.Series, max_hr: Optional[float] = None) -> HRZones:
    """HR zone fractions against max_hr, or the highest observed heart rate."""
    reference = max_hr if max_hr is not None and max_hr > 0 else float(hr_series.max())
    return HRZones(*_zone_fractions(hr_series.to_numpy(), reference, HR_ZONE_EDGES_PCT))


def peak_powers(power_series: pd.Series, durations: Sequence[int]) -> Dict[int, Optional[float]]:
    return {int(d): _best_average_power(power_series, int(d)) for d in durations}


def _mean_interval(samples: Sequence[Sample]) -> float:
    if len(samples) < 2:
        return 1.0
    return float(np.mean(np.diff([s.seconds for s in samples])))


def energy_expenditure(samples: Sequence[Sample], duration_s: float, kcal_per_kj: float = 0.239) -> EnergyExpenditure:
    kjoules = float(sum(s.power for s in samples)) * _mean_interval(samples) / 1000.0
    kj_per_hour = kjoules / (duration_s / 3600.0) if duration_s > 0 else None
    return EnergyExpenditure(kjoules=kjoules, kcal=kjoules * kcal_per_kj, kj_per_hour=kj_per_hour)


def workload_metrics(normalized_power: Optional[float], ftp: Optional[float], duration_s: float) -> WorkloadMetrics:
    if normalized_power is None or ftp is None or ftp <= 0:
        intensity_factor = None
        tss = None
    else:
        intensity_factor = normalized_power / ftp
        tss = (duration_s / 3600.0) * 100.0 * intensity_factor ** 2
    work_per_hour = normalized_power * 3.6 if normalized_power is not None else None
    return WorkloadMetrics(
        intensity_factor=intensity_factor,
        training_stress_score=tss,
        work_per_hour=work_per_hour,
    )


def _total_distance(samples: Sequence[Sample]) -> Optional[float]:
    for s in reversed(samples):
        if s.distance is not None:
            return s.distance
    return None


def summarize(
    samples: Sequence[Sample],
    windows: Sequence[StableWindow],
    config: Optional[AnalysisConfig] = None,
    regimes: Sequence[RegimeWindow] = (),
    transitions: Sequence[StateTransition] = (),
    warnings: Sequence[str] = (),
) -> ActivitySummary:
    """Whole-activity metrics from the conditioned series and its stable windows.

    Metrics that cannot be computed are None, and anything derived from them is None as well.
    """
    if not samples:
        raise InsufficientDataError("cannot summarize an empty sample series")
    settings = (config or AnalysisConfig()).summary

    power = _power_series(samples)
    hr = _hr_series(samples)
    duration = float(samples[-1].seconds - samples[0].seconds)

    normalized_power = _normalized_power_w(power, settings.normalized_power_window)
    ftp = estimate_ftp(power, settings)
    workload = workload_metrics(normalized_power, ftp, duration)
    intensity_score = (
        normalized_power * workload.intensity_factor if workload.intensity_factor is not None else None
    )
    if normalized_power is None:
        logger.info("Recording shorter than %ds; normalized power unavailable", settings.normalized_power_window)
    if ftp is None:
        logger.info("No FTP available; power zones and training stress unavailable")

    return ActivitySummary(
        duration=duration,
        total_distance=_total_distance(samples),
        average_power=float(power.mean()),
        normalized_power=normalized_power,
        variability_index=VariabilityIndex(power=_variability(power), hr=_variability(hr)),
        intensity_score=intensity_score,
        estimated_ftp=ftp,
        power_zones=power_zones(power, ftp),
        hr_zones=hr_zones(hr, settings.max_hr_bpm),
        peaks=peak_powers(power, settings.peak_durations),
        stable_windows=tuple(windows),
        energy_expenditure=energy_expenditure(samples, duration, settings.kcal_per_kj),
        workload_metrics=workload,
        regimes=tuple(regimes),
        transitions=tuple(transitions),
        warnings=tuple(warnings),
    )


def rolling_statistics(samples: Sequence[Sample], window: int = 10) -> pd.DataFrame:
    """Rolling power/HR mean and std plus their correlation, one row per sample.

    Rows before the first full window are NaN.
    """
    df = pd.DataFrame(
        {
            "seconds": [s.seconds for s in samples],
            "power": [s.power for s in samples],
            "heart_rate": [s.heart_rate for s in samples],
        }
    )
    roll = df[["power", "heart_rate"]].rolling(window=window, min_periods=window)
    means = roll.mean()
    stds = roll.std()
    return pd.DataFrame(
        {
            "seconds": df["seconds"],
            "power_mean": means["power"],
            "power_std": stds["power"],
            "hr_mean": means["heart_rate"],
            "hr_std": stds["heart_rate"],
            "power_hr_corr": df["power"].rolling(window=window, min_periods=window).corr(df["heart_rate"]),
        }
    )
