import numpy as np
import pytest

from physio_foundation.config import SegmentationSettings
from physio_foundation.errors import DegenerateWindowError
from physio_foundation.recognition.relationship import (
    analyze_hr_responses,
    cardiac_efficiency,
    centered_mean,
    coefficient_stability,
    decoupling,
    detect_power_changes,
    fit_relationship,
    linear_fit,
    mean_response_time,
)


def test_fit_recovers_exact_line(make_samples):
    power = np.linspace(100, 300, 120)
    samples = make_samples(power, 0.5 * power + 60.0)
    rel = fit_relationship(samples)
    assert rel.slope == pytest.approx(0.5)
    assert rel.intercept == pytest.approx(60.0)
    assert rel.r2 == pytest.approx(1.0)
    assert rel.power_range == pytest.approx((100.0, 300.0))
    assert rel.hr_range == pytest.approx((110.0, 210.0))
    assert rel.decoupling == 0.0
    assert rel.predict(200.0) == pytest.approx(160.0)
    assert 0.0 <= rel.aerobic_fitness.score <= 1.0
    assert 0.0 <= rel.aerobic_fitness.confidence <= 1.0


def test_constant_series_is_degenerate_not_nan(make_samples):
    samples = make_samples(np.full(3600, 200.0), np.full(3600, 140.0))
    with pytest.raises(DegenerateWindowError) as excinfo:
        fit_relationship(samples)
    assert excinfo.value.n_samples == 3600


def test_single_sample_is_degenerate(make_samples):
    with pytest.raises(DegenerateWindowError):
        fit_relationship(make_samples([200.0], [140.0]))


def test_r2_can_be_zero_when_hr_is_flat():
    power = np.linspace(100, 200, 50)
    _, _, r2 = linear_fit(power, np.full(50, 140.0))
    assert r2 == 0.0


def test_confidence_bands_cover_prediction(steady_samples):
    settings = SegmentationSettings()
    rel = fit_relationship(steady_samples[:60], settings)
    bands = rel.confidence_bands
    assert len(bands.power) == settings.confidence_grid_points
    assert bands.power[0] == pytest.approx(rel.power_range[0])
    assert bands.power[-1] == pytest.approx(rel.power_range[1])
    for lo, mid, hi in zip(bands.lower, bands.prediction, bands.upper):
        assert lo < mid < hi


def test_decoupling_grows_when_second_half_drifts():
    power = np.tile([150.0, 250.0], 30)
    hr = 0.4 * power + 70.0
    noise = np.where(np.arange(60) % 4 < 2, 1.0, -1.0)
    hr_drift = hr + noise * np.where(np.arange(60) < 30, 1.0, 3.0)
    assert decoupling(power, hr_drift, 0.4, 70.0) == pytest.approx(2.0, rel=0.05)
    assert decoupling(power, hr + noise, 0.4, 70.0) == pytest.approx(0.0, abs=1e-9)


def test_efficiency_clamps_to_unit_interval():
    assert cardiac_efficiency(np.array([300.0]), np.array([100.0])) == 1.0
    assert cardiac_efficiency(np.array([20.0]), np.array([100.0])) == 0.0
    assert cardiac_efficiency(np.array([150.0]), np.array([100.0])) == pytest.approx(0.5)


def test_stability_is_clamped_when_cv_exceeds_one():
    assert coefficient_stability(np.array([0.0, 0.0, 0.0, 100.0])) == 0.0
    assert coefficient_stability(np.array([200.0, 200.0])) == 1.0
    assert coefficient_stability(np.array([0.0, 0.0])) == 1.0


def test_centered_mean_truncates_at_edges():
    out = centered_mean(np.array([3.0, 0.0, 0.0, 0.0, 3.0]), 1)
    assert out == pytest.approx([1.5, 1.0, 0.0, 1.0, 1.5])


def test_power_steps_close_together_are_coalesced():
    seconds = np.arange(200, dtype=float)
    power = np.full(200, 100.0)
    power[100:105] = 300.0
    settings = SegmentationSettings(smoothing_window_size=0)
    steps = detect_power_changes(seconds, power, settings)
    assert len(steps) == 1
    assert steps[0].time == 100.0
    assert steps[0].magnitude == pytest.approx(200.0)


def test_hr_response_time_to_half_of_the_rise():
    settings = SegmentationSettings(smoothing_window_size=0)
    seconds = np.arange(200, dtype=float)
    power = np.full(200, 100.0)
    power[100:] = 300.0
    hr = np.full(200, 120.0)
    hr[100:120] = 120.0 + np.arange(20)
    hr[120:] = 140.0

    steps = detect_power_changes(seconds, power, settings)
    assert [s.time for s in steps] == [100.0]
    responses = analyze_hr_responses(seconds, hr, steps, settings)
    assert responses[0].response_time == 10.0
    assert responses[0].magnitude == pytest.approx(20.0)
    assert mean_response_time(seconds, power, hr, settings) == 10.0


def test_response_time_defaults_to_max_lag_without_steps(steady_samples):
    settings = SegmentationSettings()
    seconds = np.array([s.seconds for s in steady_samples])
    power = np.array([s.power for s in steady_samples])
    hr = np.array([s.heart_rate for s in steady_samples])
    assert mean_response_time(seconds, power, hr, settings) == settings.max_response_lag
