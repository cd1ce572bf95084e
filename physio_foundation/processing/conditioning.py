#!/usr/bin/env python3
"""Data conditioning: turn decoded records into a clean, gap-filled, smoothed sample series."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..config import AnalysisConfig, ConditioningSettings
from ..models.types import ActivityMetadata, ConditioningResult, Sample

logger = logging.getLogger(__name__)

RawRecords = Union[pd.DataFrame, Iterable[Mapping[str, Any]]]

# Usable record not yet range-filtered
_Row = Dict[str, Any]


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _optional_float(value: Any) -> Optional[float]:
    return None if _is_missing(value) else float(value)


def _to_datetime(value: Any) -> datetime:
    # Numeric timestamps are epoch seconds
    if isinstance(value, (int, float, np.number)) and not isinstance(value, bool):
        ts = pd.Timestamp(float(value), unit="s")
    else:
        ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts.to_pydatetime()


def _position(record: Mapping[str, Any]) -> Optional[Tuple[float, float]]:
    pos = record.get("position")
    if isinstance(pos, (tuple, list)) and len(pos) == 2 and not any(_is_missing(v) for v in pos):
        return (float(pos[0]), float(pos[1]))
    lat = record.get("position_lat")
    lon = record.get("position_long")
    if _is_missing(lat) or _is_missing(lon):
        return None
    return (float(lat), float(lon))


def _iter_records(raw_records: RawRecords) -> Iterable[Mapping[str, Any]]:
    if isinstance(raw_records, pd.DataFrame):
        return raw_records.to_dict("records")
    return raw_records


def extract_usable_rows(raw_records: RawRecords) -> Tuple[List[_Row], int]:
    """Keep records that carry power, heart rate and timestamp; sort and de-duplicate by time.

    Returns the rows (with seconds from the first timestamp) and the number of dropped records.
    """
    rows: List[_Row] = []
    dropped = 0
    for record in _iter_records(raw_records):
        power = record.get("power")
        hr = record.get("heart_rate", record.get("heartRate"))
        ts = record.get("timestamp")
        if _is_missing(power) or _is_missing(hr) or _is_missing(ts):
            dropped += 1
            continue
        rows.append(
            {
                "timestamp": _to_datetime(ts),
                "power": float(power),
                "heart_rate": float(hr),
                "cadence": _optional_float(record.get("cadence")),
                "speed": _optional_float(record.get("speed")),
                "distance": _optional_float(record.get("distance")),
                "temperature": _optional_float(record.get("temperature")),
                "position": _position(record),
            }
        )

    # Stable sort keeps the first of any duplicate timestamps at the front
    rows.sort(key=lambda r: r["timestamp"])
    unique: List[_Row] = []
    for row in rows:
        if unique and row["timestamp"] == unique[-1]["timestamp"]:
            dropped += 1
            continue
        unique.append(row)

    if unique:
        start = unique[0]["timestamp"]
        for row in unique:
            row["seconds"] = (row["timestamp"] - start).total_seconds()
    return unique, dropped


def detect_abnormal_jumps(values: Sequence[float], threshold: float) -> List[int]:
    """Indices whose value differs from both neighbours by more than threshold."""
    arr = np.asarray(values, dtype=float)
    if arr.size < 3:
        return []
    prev_diff = np.abs(arr[1:-1] - arr[:-2])
    next_diff = np.abs(arr[2:] - arr[1:-1])
    return [int(i) + 1 for i in np.flatnonzero((prev_diff > threshold) & (next_diff > threshold))]


def validate_rows(rows: Sequence[_Row], settings: ConditioningSettings) -> List[str]:
    """Non-fatal findings: out-of-range values, long gaps, isolated spikes."""
    warnings: List[str] = []
    for idx, row in enumerate(rows):
        if row["power"] < settings.min_power or row["power"] > settings.max_power:
            warnings.append(f"Invalid power value at index {idx}: {row['power']:g}W")
        if row["heart_rate"] < settings.min_hr or row["heart_rate"] > settings.max_hr:
            warnings.append(f"Invalid heart rate value at index {idx}: {row['heart_rate']:g}bpm")

    for idx in range(1, len(rows)):
        gap = rows[idx]["seconds"] - rows[idx - 1]["seconds"]
        if gap > settings.max_gap:
            warnings.append(f"Large time gap detected at index {idx}: {gap:g}s")

    for idx in detect_abnormal_jumps([r["power"] for r in rows], settings.power_jump_threshold):
        warnings.append(f"Suspicious power jump at index {idx}")
    for idx in detect_abnormal_jumps([r["heart_rate"] for r in rows], settings.hr_jump_threshold):
        warnings.append(f"Suspicious heart rate jump at index {idx}")
    return warnings


def filter_out_of_range(rows: Sequence[_Row], settings: ConditioningSettings) -> List[_Row]:
    return [
        r
        for r in rows
        if max(settings.min_power, 0.0) <= r["power"] <= settings.max_power
        and settings.min_hr <= r["heart_rate"] <= settings.max_hr
        and r["heart_rate"] > 0
    ]


def _lerp(start: float, end: float, fraction: float) -> float:
    return start + (end - start) * fraction


def _lerp_optional(start: Optional[float], end: Optional[float], fraction: float) -> Optional[float]:
    if start is None or end is None:
        return None
    return _lerp(start, end, fraction)


def interpolate_gaps(samples: Sequence[Sample], max_gap: float) -> Tuple[List[Sample], List[str]]:
    """Fill gaps of (1s, max_gap] with 1-second linearly interpolated samples.

    Longer gaps are left as recording breaks and reported. A gap-free series is returned unchanged.
    """
    if len(samples) < 2:
        return list(samples), []

    out: List[Sample] = []
    warnings: List[str] = []
    for current, nxt in zip(samples, samples[1:]):
        out.append(current)
        gap = nxt.seconds - current.seconds
        if gap > max_gap:
            warnings.append(f"Unfilled recording gap of {gap:g}s at {current.seconds:g}s")
            continue
        if gap <= 1:
            continue
        for step in range(1, int(math.ceil(gap))):
            fraction = step / gap
            out.append(
                Sample(
                    timestamp=current.timestamp + timedelta(seconds=step),
                    seconds=current.seconds + step,
                    power=_lerp(current.power, nxt.power, fraction),
                    heart_rate=_lerp(current.heart_rate, nxt.heart_rate, fraction),
                    cadence=_lerp_optional(current.cadence, nxt.cadence, fraction),
                    speed=_lerp_optional(current.speed, nxt.speed, fraction),
                    distance=_lerp_optional(current.distance, nxt.distance, fraction),
                )
            )
    out.append(samples[-1])
    return out, warnings


def smooth_samples(samples: Sequence[Sample], radius: int) -> List[Sample]:
    """Centered moving average of power and heart rate over +/- radius samples, truncated at the edges."""
    if radius <= 0 or len(samples) < 2:
        return list(samples)
    frame = pd.DataFrame({"power": [s.power for s in samples], "heart_rate": [s.heart_rate for s in samples]})
    smoothed = frame.rolling(window=2 * radius + 1, center=True, min_periods=1).mean()
    return [
        replace(s, power=float(p), heart_rate=float(h))
        for s, p, h in zip(samples, smoothed["power"].to_numpy(), smoothed["heart_rate"].to_numpy())
    ]


def sampling_rate(samples: Sequence[Sample]) -> float:
    """Effective sampling rate in Hz; 0 when it cannot be measured."""
    if len(samples) < 2:
        return 0.0
    deltas = np.diff([s.seconds for s in samples])
    mean_delta = float(np.mean(deltas))
    return 1.0 / mean_delta if mean_delta > 0 else 0.0


def build_metadata(samples: Sequence[Sample]) -> ActivityMetadata:
    if not samples:
        return ActivityMetadata(start_time=None, total_distance=None, duration=0.0, sample_count=0, sampling_rate=0.0)
    distances = [s.distance for s in samples if s.distance is not None]
    return ActivityMetadata(
        start_time=samples[0].timestamp,
        total_distance=distances[-1] if distances else None,
        duration=float(samples[-1].seconds),
        sample_count=len(samples),
        sampling_rate=sampling_rate(samples),
    )


def condition_samples(raw_records: RawRecords, config: Optional[AnalysisConfig] = None) -> ConditioningResult:
    """Clean decoded records into the sample series consumed by the analyzers.

    Order matters: usable-record extraction, validation warnings, range filter,
    gap interpolation, then smoothing. Smoothing must see the interpolated series.
    """
    config = config or AnalysisConfig()
    settings = config.conditioning

    rows, dropped = extract_usable_rows(raw_records)
    warnings: List[str] = []
    if dropped:
        warnings.append(f"Dropped {dropped} records missing power, heart rate or timestamp (or duplicated)")
    if not rows:
        warnings.append("No usable records with power and heart rate")
        logger.warning("No usable records with power and heart rate")
        return ConditioningResult(samples=(), metadata=build_metadata([]), warnings=tuple(warnings))

    warnings.extend(validate_rows(rows, settings))

    kept = filter_out_of_range(rows, settings)
    removed = len(rows) - len(kept)
    if removed:
        warnings.append(f"Removed {removed} samples outside valid power/heart rate ranges")
    samples = [
        Sample(
            timestamp=r["timestamp"],
            seconds=r["seconds"],
            power=r["power"],
            heart_rate=r["heart_rate"],
            cadence=r["cadence"],
            speed=r["speed"],
            distance=r["distance"],
            temperature=r["temperature"],
            position=r["position"],
        )
        for r in kept
    ]

    samples, gap_warnings = interpolate_gaps(samples, settings.max_gap)
    warnings.extend(gap_warnings)
    samples = smooth_samples(samples, settings.smoothing_radius)

    if warnings:
        logger.warning("Conditioning produced %d warnings", len(warnings))
        for w in warnings:
            logger.debug(w)

    return ConditioningResult(samples=tuple(samples), metadata=build_metadata(samples), warnings=tuple(warnings))
