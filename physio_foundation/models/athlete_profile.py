from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from ..config import AnalysisConfig

logger = logging.getLogger(__name__)


@dataclass
class AthleteProfile:
    name: str
    ftp_watts: Optional[float] = None
    max_hr_bpm: Optional[float] = None
    weight_kg: Optional[float] = None
    notes: Optional[str] = None

    def apply_to(self, config: AnalysisConfig) -> AnalysisConfig:
        """Copy the athlete's known thresholds into the summary settings."""
        if self.ftp_watts is not None:
            config.summary.ftp_watts = float(self.ftp_watts)
        if self.max_hr_bpm is not None:
            config.summary.max_hr_bpm = float(self.max_hr_bpm)
        return config


def load_athlete_profile(profile_path: Path) -> AthleteProfile:
    """Load an athlete profile JSON file.

    A missing file yields a profile without thresholds, so the analysis falls
    back to values estimated from the ride itself.
    """
    profile_path = Path(profile_path)
    if not profile_path.exists():
        logger.info("No athlete profile at %s; using ride-derived thresholds", profile_path)
        return AthleteProfile(name=profile_path.parent.name or "athlete")

    with open(profile_path, "r") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Athlete profile must be a JSON object: {profile_path}")
    data.setdefault("name", profile_path.parent.name or "athlete")
    return AthleteProfile(**data)


def save_athlete_profile(profile_path: Path, profile: AthleteProfile) -> None:
    profile_path = Path(profile_path)
    profile_path.parent.mkdir(parents=True, exist_ok=True)
    with open(profile_path, "w") as f:
        json.dump(asdict(profile), f, indent=2)
