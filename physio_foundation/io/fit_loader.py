from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fitparse import FitFile

from ..errors import RecordDecodeError

logger = logging.getLogger(__name__)

RECORD_COLUMNS = ["timestamp", "power", "heart_rate", "cadence", "speed", "distance", "temperature", "altitude", "position"]

_SEMICIRCLE_TO_DEGREES = 180.0 / 2 ** 31
_FLOAT_FIELDS = ("power", "heart_rate", "cadence", "speed", "distance", "temperature")


def _normalize_ts(value: Any) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    # Ensure timezone-aware then convert to naive UTC for consistency
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _semicircles(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value) * _SEMICIRCLE_TO_DEGREES


def _extract_record_fields(record) -> Dict[str, Any]:
    data: Dict[str, Any] = {name: None for name in RECORD_COLUMNS}
    alt_raw = None
    alt_enh = None
    speed_enh = None
    lat = None
    lon = None
    for fit_field in record:
        name = fit_field.name
        value = fit_field.value
        if name == "timestamp":
            data["timestamp"] = _normalize_ts(value)
        elif name in _FLOAT_FIELDS:
            data[name] = float(value) if value is not None else None
        elif name == "enhanced_speed":
            speed_enh = float(value) if value is not None else None
        elif name == "altitude":
            alt_raw = float(value) if value is not None else None
        elif name == "enhanced_altitude":
            alt_enh = float(value) if value is not None else None
        elif name == "position_lat":
            lat = _semicircles(value)
        elif name == "position_long":
            lon = _semicircles(value)
    # Prefer enhanced fields deterministically
    data["altitude"] = alt_enh if alt_enh is not None else alt_raw
    if speed_enh is not None:
        data["speed"] = speed_enh
    if lat is not None and lon is not None:
        data["position"] = (lat, lon)
    return data


def load_fit_records(file_path: str) -> List[Dict[str, Any]]:
    """Decode FIT 'record' messages into a time-ordered list of raw record dicts.

    Keys: timestamp (naive UTC datetime), power (W), heart_rate (bpm), cadence (rpm),
    speed (m/s), distance (m), temperature (C), altitude (m), position ((lat, long) degrees).
    Fields missing from a message are None; filtering is left to the conditioner.
    """
    try:
        fit = FitFile(file_path)
        records = [_extract_record_fields(message) for message in fit.get_messages("record")]
    except Exception as e:
        raise RecordDecodeError(f"failed to decode FIT file {file_path}: {e}") from e

    logger.debug("Decoded %d records from %s", len(records), file_path)
    records.sort(key=lambda r: (r["timestamp"] is None, r["timestamp"] or datetime.min))
    return records

