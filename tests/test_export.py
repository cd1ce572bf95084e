import json

import pandas as pd
import pytest

from physio_foundation.metrics.summary import summarize
from physio_foundation.recognition.segmentation import find_stable_windows
from physio_foundation.storage.export import (
    export_summary_json,
    export_table,
    regimes_to_frame,
    summary_to_dict,
    transitions_to_frame,
    windows_to_frame,
)


@pytest.fixture
def steady_summary(steady_samples):
    return summarize(steady_samples, find_stable_windows(steady_samples))


def test_windows_frame_is_ranked(steady_summary):
    df = windows_to_frame(steady_summary.stable_windows)
    assert list(df["rank"]) == [1]
    assert df.loc[0, "state"] == "stable"
    assert df.loc[0, "n_samples"] == 600
    assert df.loc[0, "duration_s"] == 599.0


def test_empty_regimes_and_transitions_keep_columns():
    assert list(regimes_to_frame([]).columns) == ["start_s", "end_s", "state", "confidence", "power_mean_w", "hr_mean_bpm"]
    assert list(transitions_to_frame([]).columns) == ["time_s", "from_state", "to_state", "confidence"]


@pytest.mark.parametrize("suffix", ["csv", "parquet", "xlsx"])
def test_export_table_by_suffix(tmp_path, suffix):
    df = pd.DataFrame({"start_s": [0.0, 60.0], "state": ["stable", "cv_drift"]})
    path = export_table(df, tmp_path / "nested" / f"windows.{suffix}")
    assert path.exists()
    if suffix == "csv":
        back = pd.read_csv(path)
    elif suffix == "parquet":
        back = pd.read_parquet(path)
    else:
        back = pd.read_excel(path)
    assert list(back["state"]) == ["stable", "cv_drift"]


def test_summary_json(tmp_path, steady_summary):
    path = export_summary_json(steady_summary, tmp_path / "ride_summary.json")
    with open(path) as f:
        data = json.load(f)
    assert data["duration_s"] == 599.0
    assert data["zones"]["power"] is None
    assert len(data["zones"]["hr"]) == 5
    assert data["peaks_w"]["3600"] is None
    assert data["stable_windows"][0]["state"] == "stable"
    assert data["transitions"] == []


def test_summary_dict_without_regimes(steady_summary):
    data = summary_to_dict(steady_summary)
    assert data["regimes"] == []
    assert data["warnings"] == []
    assert data["energy"]["kjoules"] == pytest.approx(steady_summary.energy_expenditure.kjoules)


def test_empty_windows_export_keeps_header(tmp_path):
    df = windows_to_frame([])
    assert df.empty
    assert list(df.columns)[:3] == ["rank", "start_s", "end_s"]
    path = export_table(df, tmp_path / "ride_windows.csv")
    assert list(pd.read_csv(path).columns) == list(df.columns)
