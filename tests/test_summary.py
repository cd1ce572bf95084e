import math

import numpy as np
import pandas as pd
import pytest

from physio_foundation.config import AnalysisConfig, SummarySettings
from physio_foundation.errors import InsufficientDataError
from physio_foundation.metrics.summary import (
    energy_expenditure,
    estimate_ftp,
    hr_zones,
    power_zones,
    rolling_statistics,
    summarize,
)


def test_normalized_power_of_constant_ride_equals_power(make_samples):
    samples = make_samples(np.full(2400, 200.0), np.full(2400, 140.0))
    summary = summarize(samples, [])
    assert summary.normalized_power == pytest.approx(200.0)
    assert summary.average_power == pytest.approx(200.0)
    assert summary.estimated_ftp == pytest.approx(190.0)
    assert summary.workload_metrics.intensity_factor == pytest.approx(200.0 / 190.0)
    assert summary.intensity_score == pytest.approx(200.0 * 200.0 / 190.0)
    expected_tss = (2399.0 / 3600.0) * 100.0 * (200.0 / 190.0) ** 2
    assert summary.workload_metrics.training_stress_score == pytest.approx(expected_tss)
    assert summary.workload_metrics.work_per_hour == pytest.approx(720.0)
    assert summary.variability_index.power == pytest.approx(0.0)


def test_short_ride_marks_normalized_power_unavailable(make_samples):
    samples = make_samples(np.full(20, 250.0), np.full(20, 150.0))
    summary = summarize(samples, [])
    assert summary.normalized_power is None
    assert summary.intensity_score is None
    assert summary.estimated_ftp is None
    assert summary.power_zones is None
    assert summary.workload_metrics.intensity_factor is None
    assert summary.workload_metrics.training_stress_score is None
    assert summary.peaks[5] == pytest.approx(250.0)
    assert summary.peaks[30] is None
    assert summary.peaks[3600] is None


def test_short_ride_with_ftp_override_still_has_no_intensity(make_samples):
    config = AnalysisConfig()
    config.update_settings("summary", ftp_watts=250.0)
    summary = summarize(make_samples(np.full(20, 250.0), np.full(20, 150.0)), [], config)
    assert summary.estimated_ftp == 250.0
    assert summary.power_zones is not None
    assert summary.intensity_score is None


def test_zone_boundaries_are_inclusive_upper_bounds():
    power = pd.Series([100.0, 110.0, 150.0, 180.0, 210.0, 240.0, 250.0])
    zones = power_zones(power, 200.0)
    assert zones.as_tuple() == pytest.approx((2 / 7, 1 / 7, 1 / 7, 1 / 7, 1 / 7, 1 / 7))

    hr = pd.Series([100.0, 120.0, 140.0, 160.0, 180.0, 190.0, 200.0])
    hz = hr_zones(hr, 200.0)
    assert hz.as_tuple() == pytest.approx((2 / 7, 1 / 7, 1 / 7, 1 / 7, 2 / 7))


def test_zone_fractions_sum_to_one(steady_samples):
    config = AnalysisConfig()
    config.update_settings("summary", ftp_watts=170.0)
    summary = summarize(steady_samples, [], config)
    assert math.fsum(summary.power_zones.as_tuple()) == pytest.approx(1.0, abs=1e-9)
    assert math.fsum(summary.hr_zones.as_tuple()) == pytest.approx(1.0, abs=1e-9)


def test_hr_zones_default_to_observed_max():
    zones = hr_zones(pd.Series([100.0, 200.0]))
    assert zones.z1 == pytest.approx(0.5)
    assert zones.z5 == pytest.approx(0.5)


def test_ftp_estimate_uses_best_twenty_minutes():
    power = pd.Series(np.concatenate([np.full(600, 150.0), np.full(1200, 300.0), np.full(600, 150.0)]))
    assert estimate_ftp(power, SummarySettings()) == pytest.approx(285.0)
    assert estimate_ftp(power, SummarySettings(ftp_watts=260.0)) == 260.0
    assert estimate_ftp(pd.Series(np.zeros(1300)), SummarySettings()) is None


def test_energy_expenditure(make_samples):
    samples = make_samples(np.full(3600, 200.0), np.full(3600, 140.0))
    energy = energy_expenditure(samples, 3599.0)
    assert energy.kjoules == pytest.approx(720.0)
    assert energy.kcal == pytest.approx(720.0 * 0.239)
    assert energy.kj_per_hour == pytest.approx(720.0 * 3600.0 / 3599.0)


def test_single_sample_has_no_hourly_rate(make_samples):
    summary = summarize(make_samples([200.0], [140.0]), [])
    assert summary.duration == 0.0
    assert summary.energy_expenditure.kjoules == pytest.approx(0.2)
    assert summary.energy_expenditure.kj_per_hour is None
    assert summary.variability_index.power is None


def test_zero_power_has_no_variability_index(make_samples):
    summary = summarize(make_samples(np.zeros(40), np.full(40, 100.0)), [])
    assert summary.variability_index.power is None
    assert summary.variability_index.hr == pytest.approx(0.0)


def test_empty_series_is_rejected():
    with pytest.raises(InsufficientDataError):
        summarize([], [])


def test_rolling_statistics(steady_samples):
    df = rolling_statistics(steady_samples, window=10)
    assert list(df.columns) == ["seconds", "power_mean", "power_std", "hr_mean", "hr_std", "power_hr_corr"]
    assert len(df) == 600
    assert df["power_mean"].iloc[:9].isna().all()
    expected = np.mean([s.power for s in steady_samples[:10]])
    assert df["power_mean"].iloc[9] == pytest.approx(expected)
    corr = df["power_hr_corr"].dropna()
    assert len(corr) == 591
    assert ((corr >= -1.0 - 1e-9) & (corr <= 1.0 + 1e-9)).all()
    assert corr.mean() > 0.5
