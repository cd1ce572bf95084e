from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

ZONE_SUM_TOLERANCE = 1e-9


def _require_unit_interval(name: str, value: float) -> None:
    if not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def _require_sums_to_one(name: str, values: Tuple[float, ...]) -> None:
    for v in values:
        _require_unit_interval(name, v)
    total = math.fsum(values)
    if abs(total - 1.0) > ZONE_SUM_TOLERANCE:
        raise ValueError(f"{name} fractions must sum to 1, got {total}")


class PhysiologicalState(str, Enum):
    """Coarse regime label attached to windows and regimes."""

    STABLE = "stable"
    LACTATE_THRESHOLD = "lactate_threshold"
    CV_DRIFT = "cv_drift"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Sample:
    timestamp: datetime
    seconds: float  # elapsed from the first usable record
    power: float  # W
    heart_rate: float  # bpm
    cadence: Optional[float] = None
    speed: Optional[float] = None
    distance: Optional[float] = None  # cumulative, m
    temperature: Optional[float] = None
    position: Optional[Tuple[float, float]] = None  # (lat, long) degrees

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValueError(f"seconds must be >= 0, got {self.seconds}")
        if not self.power >= 0:
            raise ValueError(f"power must be >= 0, got {self.power}")
        if not self.heart_rate > 0:
            raise ValueError(f"heart_rate must be > 0, got {self.heart_rate}")


@dataclass(frozen=True)
class ActivityMetadata:
    start_time: Optional[datetime]
    total_distance: Optional[float]
    duration: float
    sample_count: int
    sampling_rate: float  # Hz


@dataclass(frozen=True)
class ConditioningResult:
    samples: Tuple[Sample, ...]
    metadata: ActivityMetadata
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfidenceBands:
    """Prediction interval of heart rate over a fixed power grid."""
    power: Tuple[float, ...]
    prediction: Tuple[float, ...]
    upper: Tuple[float, ...]
    lower: Tuple[float, ...]

    def __post_init__(self) -> None:
        n = len(self.power)
        if not (len(self.prediction) == len(self.upper) == len(self.lower) == n):
            raise ValueError("confidence band arrays must have equal length")


@dataclass(frozen=True)
class AerobicFitness:
    score: float
    confidence: float

    def __post_init__(self) -> None:
        _require_unit_interval("aerobic fitness score", self.score)
        _require_unit_interval("aerobic fitness confidence", self.confidence)


@dataclass(frozen=True)
class PowerStep:
    time: float  # seconds
    magnitude: float  # W, signed


@dataclass(frozen=True)
class HRResponse:
    response_time: float  # seconds to the target fraction of the response
    magnitude: float  # bpm, signed


@dataclass(frozen=True)
class LinearRelationship:
    slope: float  # bpm per W
    intercept: float  # bpm
    r2: float  # may be <= 0 for poor fits
    power_range: Tuple[float, float]
    hr_range: Tuple[float, float]
    confidence_bands: ConfidenceBands
    decoupling: float
    efficiency: float
    aerobic_fitness: AerobicFitness

    def __post_init__(self) -> None:
        if not (math.isfinite(self.slope) and math.isfinite(self.intercept)):
            raise ValueError("slope and intercept must be finite")
        if self.r2 > 1.0 + 1e-12:
            raise ValueError(f"r2 must be <= 1, got {self.r2}")
        if not self.decoupling >= 0:
            raise ValueError(f"decoupling must be >= 0, got {self.decoupling}")
        _require_unit_interval("efficiency", self.efficiency)

    def predict(self, power: float) -> float:
        return self.slope * power + self.intercept


@dataclass(frozen=True)
class QualityMetrics:
    stability_score: float
    coupling_score: float
    consistency_score: float

    def __post_init__(self) -> None:
        _require_unit_interval("stability_score", self.stability_score)
        _require_unit_interval("coupling_score", self.coupling_score)
        _require_unit_interval("consistency_score", self.consistency_score)


@dataclass(frozen=True)
class StableWindow(LinearRelationship):
    start_time: float
    end_time: float
    power_stability: float
    hr_stability: float
    response_time: float
    quality_metrics: QualityMetrics
    samples: Tuple[Sample, ...]
    state: PhysiologicalState

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        _require_unit_interval("power_stability", self.power_stability)
        _require_unit_interval("hr_stability", self.hr_stability)
        if self.response_time < 0:
            raise ValueError("response_time must be >= 0")

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class RegimeWindow:
    """Contiguous span sharing one coarse regime label."""
    start_time: float
    end_time: float
    state: PhysiologicalState
    confidence: float
    power_mean: float
    hr_mean: float

    def __post_init__(self) -> None:
        if self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        _require_unit_interval("regime confidence", self.confidence)


@dataclass(frozen=True)
class StateTransition:
    time: float
    from_state: PhysiologicalState
    to_state: PhysiologicalState
    confidence: float

    def __post_init__(self) -> None:
        _require_unit_interval("transition confidence", self.confidence)


@dataclass(frozen=True)
class PowerZones:
    """Fraction of samples per FTP-relative zone (<=55/75/90/105/120/>120 %)."""
    z1: float
    z2: float
    z3: float
    z4: float
    z5: float
    z6: float

    def __post_init__(self) -> None:
        _require_sums_to_one("power zone", self.as_tuple())

    def as_tuple(self) -> Tuple[float, ...]:
        return (self.z1, self.z2, self.z3, self.z4, self.z5, self.z6)


@dataclass(frozen=True)
class HRZones:
    """Fraction of samples per max-HR-relative zone (<=60/70/80/90/>90 %)."""
    z1: float
    z2: float
    z3: float
    z4: float
    z5: float

    def __post_init__(self) -> None:
        _require_sums_to_one("hr zone", self.as_tuple())

    def as_tuple(self) -> Tuple[float, ...]:
        return (self.z1, self.z2, self.z3, self.z4, self.z5)


@dataclass(frozen=True)
class VariabilityIndex:
    power: Optional[float]
    hr: Optional[float]


@dataclass(frozen=True)
class EnergyExpenditure:
    kjoules: float
    kcal: float
    kj_per_hour: Optional[float]


@dataclass(frozen=True)
class WorkloadMetrics:
    intensity_factor: Optional[float]
    training_stress_score: Optional[float]
    work_per_hour: Optional[float]  # kJ/h at normalized power


@dataclass(frozen=True)
class ActivitySummary:
    duration: float
    total_distance: Optional[float]
    average_power: float
    normalized_power: Optional[float]  # None when the recording is too short
    variability_index: VariabilityIndex
    intensity_score: Optional[float]
    estimated_ftp: Optional[float]
    power_zones: Optional[PowerZones]  # None when no FTP is available
    hr_zones: HRZones
    peaks: Dict[int, Optional[float]]  # duration s -> best average W, None if longer than the ride
    stable_windows: Tuple[StableWindow, ...]
    energy_expenditure: EnergyExpenditure
    workload_metrics: WorkloadMetrics
    regimes: Tuple[RegimeWindow, ...] = ()
    transitions: Tuple[StateTransition, ...] = ()
    warnings: Tuple[str, ...] = field(default=())
