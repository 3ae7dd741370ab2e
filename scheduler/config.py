"""
Engine configuration.

Every tunable the solver reads lives here, so two runs with the same
config and the same entity snapshot produce the same plan.
"""

import os
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

ENV_PREFIX = "CLERKSHIP_"


class AvailabilityPolicy(str, Enum):
    """How a missing PreceptorAvailability record is read."""
    CLOSED_WORLD = "closed_world"  # no record -> unavailable
    OPEN_WORLD = "open_world"      # no record -> available at any of the preceptor's sites


class ScoringWeights(BaseModel):
    """
    Relative weights of the slot ranking terms.
    Defaults rank team priority over continuity over earliest date.
    """
    team_rank: float = Field(default=10_000.0, ge=0, description="Penalty per team rank step")
    member_rank: float = Field(default=50.0, ge=0, description="Penalty per member priority step")
    fallback_member: float = Field(default=1_000.0, ge=0, description="Penalty for fallback-only members")
    health_system_continuity: float = Field(default=2_000.0, ge=0)
    site_continuity: float = Field(default=800.0, ge=0)
    preceptor_continuity: float = Field(default=400.0, ge=0)
    daily_rotation: float = Field(
        default=400.0, ge=0,
        description="Penalty per day already held with the preceptor (daily_rotation clerkships)"
    )
    earliest_date: float = Field(default=1.0, ge=0, description="Penalty per day after range start")


class SchedulerConfig(BaseModel):
    """Tunables for the availability resolver, solver and regeneration runs."""
    availability_policy: AvailabilityPolicy = Field(default=AvailabilityPolicy.CLOSED_WORLD)

    # Used only when neither a CapacityRule nor Preceptor.max_students applies
    default_max_students_per_day: int = Field(default=1, ge=1)
    default_max_students_per_year: Optional[int] = Field(default=None, ge=1)

    enable_fallbacks: bool = Field(default=False, description="Run the tiered fallback gap-fill phase")
    fallback_allow_cross_system: bool = Field(default=False)

    weights: ScoringWeights = Field(default_factory=ScoringWeights)

    @classmethod
    def from_env(cls, **overrides) -> "SchedulerConfig":
        """Build a config from CLERKSHIP_* environment variables, then apply overrides."""
        values = {}
        policy = os.environ.get(f"{ENV_PREFIX}AVAILABILITY_POLICY")
        if policy:
            values["availability_policy"] = policy.lower()

        per_day = os.environ.get(f"{ENV_PREFIX}DEFAULT_MAX_PER_DAY")
        if per_day:
            values["default_max_students_per_day"] = int(per_day)

        per_year = os.environ.get(f"{ENV_PREFIX}DEFAULT_MAX_PER_YEAR")
        if per_year:
            values["default_max_students_per_year"] = int(per_year)

        for key, field in (("ENABLE_FALLBACKS", "enable_fallbacks"),
                           ("FALLBACK_CROSS_SYSTEM", "fallback_allow_cross_system")):
            raw = os.environ.get(f"{ENV_PREFIX}{key}")
            if raw:
                values[field] = raw.lower() in ("1", "true", "yes")

        values.update(overrides)
        return cls(**values)
