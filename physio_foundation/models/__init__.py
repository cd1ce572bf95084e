"""Typed domain objects."""

from .athlete_profile import AthleteProfile, load_athlete_profile, save_athlete_profile
from .types import (
    ActivitySummary,
    LinearRelationship,
    PhysiologicalState,
    RegimeWindow,
    Sample,
    StableWindow,
    StateTransition,
)

__all__ = [
    "ActivitySummary",
    "AthleteProfile",
    "LinearRelationship",
    "PhysiologicalState",
    "RegimeWindow",
    "Sample",
    "StableWindow",
    "StateTransition",
    "load_athlete_profile",
    "save_athlete_profile",
]
