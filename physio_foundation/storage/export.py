from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import pandas as pd

from ..models.types import ActivitySummary, RegimeWindow, StableWindow, StateTransition

PathLike = Union[str, Path]

WINDOW_COLUMNS = [
    "rank",
    "start_s",
    "end_s",
    "duration_s",
    "state",
    "slope_bpm_per_w",
    "intercept_bpm",
    "r2",
    "power_min_w",
    "power_max_w",
    "hr_min_bpm",
    "hr_max_bpm",
    "decoupling",
    "efficiency",
    "aerobic_score",
    "aerobic_confidence",
    "power_stability",
    "hr_stability",
    "response_time_s",
    "stability_score",
    "coupling_score",
    "consistency_score",
    "n_samples",
]


def windows_to_frame(windows: Sequence[StableWindow]) -> pd.DataFrame:
    rows = []
    for rank, w in enumerate(windows, start=1):
        row = {
            "rank": rank,
            "start_s": w.start_time,
            "end_s": w.end_time,
            "duration_s": w.duration,
            "state": w.state.value,
            "slope_bpm_per_w": w.slope,
            "intercept_bpm": w.intercept,
            "r2": w.r2,
            "power_min_w": w.power_range[0],
            "power_max_w": w.power_range[1],
            "hr_min_bpm": w.hr_range[0],
            "hr_max_bpm": w.hr_range[1],
            "decoupling": w.decoupling,
            "efficiency": w.efficiency,
            "aerobic_score": w.aerobic_fitness.score,
            "aerobic_confidence": w.aerobic_fitness.confidence,
            "power_stability": w.power_stability,
            "hr_stability": w.hr_stability,
            "response_time_s": w.response_time,
            "stability_score": w.quality_metrics.stability_score,
            "coupling_score": w.quality_metrics.coupling_score,
            "consistency_score": w.quality_metrics.consistency_score,
            "n_samples": len(w.samples),
        }
        rows.append(row)
    return pd.DataFrame(rows, columns=WINDOW_COLUMNS)


def regimes_to_frame(regimes: Sequence[RegimeWindow]) -> pd.DataFrame:
    rows = [
        {
            "start_s": r.start_time,
            "end_s": r.end_time,
            "state": r.state.value,
            "confidence": r.confidence,
            "power_mean_w": r.power_mean,
            "hr_mean_bpm": r.hr_mean,
        }
        for r in regimes
    ]
    return pd.DataFrame(rows, columns=["start_s", "end_s", "state", "confidence", "power_mean_w", "hr_mean_bpm"])


def transitions_to_frame(transitions: Sequence[StateTransition]) -> pd.DataFrame:
    rows = [
        {
            "time_s": t.time,
            "from_state": t.from_state.value,
            "to_state": t.to_state.value,
            "confidence": t.confidence,
        }
        for t in transitions
    ]
    return pd.DataFrame(rows, columns=["time_s", "from_state", "to_state", "confidence"])


def export_table(df: pd.DataFrame, path: PathLike) -> Path:
    """Write a frame by file suffix: .parquet (pyarrow), .xlsx (openpyxl), anything else CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(path, index=False, engine="pyarrow")
    elif suffix == ".xlsx":
        df.to_excel(path, index=False, engine="openpyxl")
    else:
        df.to_csv(path, index=False)
    return path


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, float) and value != value:
        return None
    return value


def summary_to_dict(summary: ActivitySummary) -> Dict[str, Any]:
    """Plain-dict view of a summary; windows are reduced to their table rows."""
    zones: Dict[str, Any] = {
        "power": list(summary.power_zones.as_tuple()) if summary.power_zones is not None else None,
        "hr": list(summary.hr_zones.as_tuple()),
    }
    windows: List[Dict[str, Any]] = [
        {k: _jsonable(v) for k, v in row.items()} for row in windows_to_frame(summary.stable_windows).to_dict("records")
    ]
    return {
        "duration_s": summary.duration,
        "total_distance_m": summary.total_distance,
        "average_power_w": summary.average_power,
        "normalized_power_w": summary.normalized_power,
        "variability_index": {"power": summary.variability_index.power, "hr": summary.variability_index.hr},
        "intensity_score": summary.intensity_score,
        "estimated_ftp_w": summary.estimated_ftp,
        "zones": zones,
        "peaks_w": {str(d): p for d, p in summary.peaks.items()},
        "energy": {
            "kjoules": summary.energy_expenditure.kjoules,
            "kcal": summary.energy_expenditure.kcal,
            "kj_per_hour": summary.energy_expenditure.kj_per_hour,
        },
        "workload": {
            "intensity_factor": summary.workload_metrics.intensity_factor,
            "training_stress_score": summary.workload_metrics.training_stress_score,
            "work_per_hour": summary.workload_metrics.work_per_hour,
        },
        "stable_windows": windows,
        "regimes": regimes_to_frame(summary.regimes).to_dict("records"),
        "transitions": transitions_to_frame(summary.transitions).to_dict("records"),
        "warnings": list(summary.warnings),
    }


def export_summary_json(summary: ActivitySummary, path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(summary_to_dict(summary), f, indent=2, default=str)
    return path
