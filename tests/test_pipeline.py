import pytest

from physio_foundation import AnalysisConfig, InsufficientDataError, analyze_activity, analyze_fit_file, analyze_records
from physio_foundation.errors import RecordDecodeError
from physio_foundation.io import fit_loader
from physio_foundation.models.types import PhysiologicalState


def test_analyze_records_summarizes_ride(raw_records):
    summary = analyze_records(raw_records)
    assert summary.duration == 119.0
    assert summary.total_distance == pytest.approx(1071.0)
    assert summary.average_power == pytest.approx(204.5, abs=0.5)
    assert summary.normalized_power is not None
    assert summary.warnings == ()


def test_records_without_heart_rate_are_insufficient(raw_records):
    for record in raw_records:
        record["heart_rate"] = None
    with pytest.raises(InsufficientDataError) as excinfo:
        analyze_records(raw_records)
    assert "No usable records" in str(excinfo.value)


def test_dropped_records_are_reported(raw_records):
    raw_records[10]["power"] = None
    summary = analyze_records(raw_records)
    assert any("Dropped 1 records" in w for w in summary.warnings)


def test_invalid_config_is_rejected_before_analysis(raw_records):
    config = AnalysisConfig()
    config.update_settings("segmentation", min_window_size=1)
    with pytest.raises(ValueError):
        analyze_records(raw_records, config)


def test_analyze_activity_on_steady_ride(steady_samples):
    summary = analyze_activity(steady_samples)
    assert len(summary.stable_windows) == 1
    assert summary.stable_windows[0].state is PhysiologicalState.STABLE
    assert [r.state for r in summary.regimes] == [PhysiologicalState.STABLE]
    assert summary.transitions == ()


def test_analyze_activity_rejects_empty_series():
    with pytest.raises(InsufficientDataError):
        analyze_activity([])


def test_analyze_fit_file_decodes_then_analyzes(monkeypatch, raw_records):
    monkeypatch.setattr("physio_foundation.pipeline.load_fit_records", lambda path: raw_records)
    summary = analyze_fit_file("ride.fit")
    assert summary.duration == 119.0


def test_analyze_fit_file_propagates_decode_errors(monkeypatch):
    class BrokenFitFile:
        def __init__(self, path):
            raise ValueError("not a FIT file")

    monkeypatch.setattr(fit_loader, "FitFile", BrokenFitFile)
    with pytest.raises(RecordDecodeError):
        analyze_fit_file("notes.txt")
