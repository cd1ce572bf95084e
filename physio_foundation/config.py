"""
Configuration for the physiological analysis pipeline.
Every threshold and weight used by the pipeline lives here with its default.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Tuple

from scipy import stats

PEAK_DURATIONS_S: Tuple[int, ...] = (5, 30, 60, 300, 600, 1200, 3600)


@dataclass
class ConditioningSettings:
    """Data conditioner validity bounds, gap handling and smoothing."""
    min_power: float = 0.0  # W
    max_power: float = 3000.0  # W
    min_hr: float = 30.0  # bpm
    max_hr: float = 250.0  # bpm
    max_gap: float = 5.0  # seconds; longer gaps are left unfilled
    smoothing_radius: int = 5  # samples each side of the centered mean
    power_jump_threshold: float = 100.0  # W
    hr_jump_threshold: float = 20.0  # bpm


@dataclass
class SegmentationSettings:
    """Stable-window detection configuration."""
    min_window_size: int = 60  # seconds / samples at 1 Hz
    window_stride: int = 1  # samples between candidate windows
    max_hr_deviation: float = 0.15  # relative deviation from the fitted line
    min_r2_threshold: float = 0.8
    max_slope_change: float = 0.2  # relative, extend vs split
    max_efficiency_change: float = 0.15
    max_decoupling_change: float = 0.1
    confidence_level: float = 0.95
    confidence_grid_points: int = 100

    # Power-step detection and HR response
    power_change_threshold: float = 15.0  # W, floor of the dynamic threshold
    power_change_std_factor: float = 1.5  # multiple of window power std
    smoothing_window_size: int = 5  # seconds each side
    min_gap_between_changes: float = 10.0  # seconds
    response_lookahead: int = 30  # seconds
    response_baseline: int = 5  # seconds before the step
    response_fraction: float = 0.5
    max_response_lag: float = 15.0  # seconds

    # Stability test
    min_response_consistency: float = 0.7
    min_linearity_score: float = 0.7
    runs_z_scale: float = 4.0  # runs-test z at which the pattern penalty saturates

    # Relationship scores
    efficiency_ratio_range: Tuple[float, float] = (0.5, 2.5)  # W/bpm
    slope_score_cap: float = 2.0  # bpm/W at which slope quality reaches 0
    confidence_duration_cap: float = 1800.0  # seconds
    confidence_power_span_cap: float = 300.0  # W
    consistency_segments: int = 4
    aerobic_weights: Dict[str, float] = field(default_factory=lambda: {
        "slope": 0.3,
        "decoupling": 0.3,
        "response": 0.2,
        "stability": 0.2,
    })
    confidence_weights: Dict[str, float] = field(default_factory=lambda: {
        "duration": 0.4,
        "power_range": 0.3,
        "stability": 0.3,
    })

    # Post-processing
    merge_max_gap: float = 5.0  # seconds
    merge_max_slope_diff: float = 0.15
    merge_max_efficiency_diff: float = 0.15
    quality_weights: Dict[str, float] = field(default_factory=lambda: {
        "r2": 0.25,
        "efficiency": 0.2,
        "decoupling": 0.2,
        "stability": 0.15,
        "coupling": 0.1,
        "consistency": 0.1,
    })

    @property
    def z_value(self) -> float:
        """Two-sided normal quantile for confidence_level (0.95 -> 1.96)."""
        return float(stats.norm.ppf(0.5 + self.confidence_level / 2.0))


@dataclass
class ClassificationSettings:
    """Coarse regime labelling and transition detection."""
    window_size: int = 60  # seconds
    window_stride: int = 1
    lactate_subwindow: int = 30  # seconds
    lactate_slope_factor: float = 0.2  # sub-window slope above baseline * (1 + factor)
    drift_max_power_change: float = 10.0  # W between first and last quarter
    drift_min_hr_rise: float = 5.0  # bpm between first and last quarter
    drift_confidence_scale: float = 5.0
    min_regime_windows: int = 5  # label runs shorter than this are treated as noise
    regime_merge_gap: float = 30.0  # seconds
    transition_context: float = 30.0  # seconds before/after the changeover


@dataclass
class SummarySettings:
    """Whole-activity metrics."""
    ftp_watts: Optional[float] = None  # overrides the 20-min estimate when set
    max_hr_bpm: Optional[float] = None  # overrides observed max HR when set
    ftp_test_duration: int = 1200  # seconds
    ftp_fraction: float = 0.95
    normalized_power_window: int = 30  # seconds
    peak_durations: Tuple[int, ...] = PEAK_DURATIONS_S
    kcal_per_kj: float = 0.239
    rolling_window: int = 10  # seconds, rolling statistics


class AnalysisConfig:
    """Main configuration object passed through the pipeline."""

    SECTIONS = ("conditioning", "segmentation", "classification", "summary")

    def __init__(
        self,
        conditioning: Optional[ConditioningSettings] = None,
        segmentation: Optional[SegmentationSettings] = None,
        classification: Optional[ClassificationSettings] = None,
        summary: Optional[SummarySettings] = None,
    ):
        self.conditioning = conditioning or ConditioningSettings()
        self.segmentation = segmentation or SegmentationSettings()
        self.classification = classification or ClassificationSettings()
        self.summary = summary or SummarySettings()

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Any]]) -> "AnalysisConfig":
        """Build a config from nested section dicts, e.g. {"segmentation": {"min_r2_threshold": 0.7}}."""
        config = cls()
        for section, values in data.items():
            config.update_settings(section, **dict(values))
        return config

    def update_settings(self, section: str, **kwargs) -> None:
        """Update one settings section, rejecting unknown sections and keys."""
        if section not in self.SECTIONS:
            raise ValueError(f"Unknown settings section: {section}")
        settings = getattr(self, section)
        known = {f.name for f in fields(settings)}
        for key, value in kwargs.items():
            if key not in known:
                raise ValueError(f"Unknown {section} setting: {key}")
            if isinstance(getattr(settings, key), tuple) and isinstance(value, list):
                value = tuple(value)
            setattr(settings, key, value)

    def validate(self) -> bool:
        """Validate settings, raising ValueError listing every problem."""
        errors: List[str] = []
        c = self.conditioning
        s = self.segmentation
        k = self.classification
        m = self.summary

        if c.min_power < 0:
            errors.append("min_power must be >= 0")
        if c.min_hr <= 0:
            errors.append("min_hr must be greater than 0")
        if c.min_power > c.max_power:
            errors.append("min_power must not exceed max_power")
        if c.min_hr > c.max_hr:
            errors.append("min_hr must not exceed max_hr")
        if c.max_gap <= 0:
            errors.append("max_gap must be greater than 0")
        if c.smoothing_radius < 0:
            errors.append("smoothing_radius must be >= 0")

        if s.min_window_size < 2:
            errors.append("min_window_size must be at least 2")
        if s.window_stride < 1:
            errors.append("window_stride must be at least 1")
        if not 0.0 < s.confidence_level < 1.0:
            errors.append("confidence_level must be in (0, 1)")
        if s.max_hr_deviation <= 0:
            errors.append("max_hr_deviation must be greater than 0")
        if s.runs_z_scale <= 0:
            errors.append("runs_z_scale must be greater than 0")
        lo, hi = s.efficiency_ratio_range
        if hi <= lo:
            errors.append("efficiency_ratio_range must be increasing")
        if s.consistency_segments < 2:
            errors.append("consistency_segments must be at least 2")

        if k.window_size < 4:
            errors.append("classification window_size must be at least 4")
        if k.lactate_subwindow < 2 or k.lactate_subwindow > k.window_size:
            errors.append("lactate_subwindow must be between 2 and window_size")
        if k.window_stride < 1:
            errors.append("classification window_stride must be at least 1")
        if k.min_regime_windows < 1:
            errors.append("min_regime_windows must be at least 1")

        if m.ftp_watts is not None and m.ftp_watts <= 0:
            errors.append("ftp_watts must be greater than 0 when set")
        if m.max_hr_bpm is not None and m.max_hr_bpm <= 0:
            errors.append("max_hr_bpm must be greater than 0 when set")
        if m.normalized_power_window < 1:
            errors.append("normalized_power_window must be at least 1")
        if any(d < 1 for d in m.peak_durations):
            errors.append("peak_durations must be positive")

        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")
        return True

    def get_summary(self) -> Dict[str, Any]:
        """Nested plain-dict view of every section."""
        return {section: asdict(getattr(self, section)) for section in self.SECTIONS}


def default_config() -> AnalysisConfig:
    return AnalysisConfig()
