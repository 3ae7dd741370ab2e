"""
Resource and Constraint data models for the Clerkship Scheduler.

This module defines the 'Supply' side of the scheduler:
1. Locations (Health Systems and their Sites)
2. Preceptors and the Teams they form for a clerkship
3. Availability, Blackout Dates and Capacity Rules (Context that limits supply)
"""

from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import date as date_type, datetime, timezone


class HealthSystem(BaseModel):
    """Top of the location hierarchy."""
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1)


class Site(BaseModel):
    """A clinical location. Belongs to exactly one health system."""
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1)
    health_system_id: str = Field(description="Owning health system")
    max_students_per_day: Optional[int] = Field(
        default=None,
        ge=1,
        description="Site-wide daily student limit (None = unlimited)"
    )


class Preceptor(BaseModel):
    """
    Clinical educator hosting students at one or more sites.
    """
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1, description="Name of the clinician")
    email: Optional[str] = Field(default=None)
    specialty: Optional[str] = Field(default=None, description="Medical specialty")
    health_system_id: Optional[str] = Field(default=None)
    site_ids: List[str] = Field(min_length=1, description="Sites where this preceptor teaches")

    # Capacity Constraint
    max_students: int = Field(
        default=1,
        ge=1,
        description="Students per day when no CapacityRule overrides it"
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "pre_smith",
            "name": "Dr. Jane Smith",
            "specialty": "Family Medicine",
            "health_system_id": "hs_north",
            "site_ids": ["site_north_clinic"],
            "max_students": 1
        }
    })


class PreceptorTeamMember(BaseModel):
    """Position of a preceptor inside a team."""
    preceptor_id: str
    priority: int = Field(ge=1, description="Rank inside the team (1 = first choice)")
    role: Optional[str] = Field(default=None, description="e.g. 'lead', 'backup'")
    is_fallback_only: bool = Field(
        default=False,
        description="Used only when every primary member is exhausted or unavailable"
    )


class PreceptorTeam(BaseModel):
    """
    A group of preceptors sharing the students of one clerkship.
    Formation rules are declared here and checked against the members by the team selector.
    """
    id: str = Field(description="Unique identifier")
    clerkship_id: str
    name: Optional[str] = Field(default=None)
    priority: int = Field(default=1, ge=1, description="Team rank for the clerkship (1 = first choice)")

    # Formation Rules
    require_same_health_system: bool = Field(default=False)
    require_same_site: bool = Field(default=False)
    require_same_specialty: bool = Field(default=False)
    requires_admin_approval: bool = Field(default=False)
    is_approved: bool = Field(default=False, description="Admin sign-off, relevant when approval is required")

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    members: List[PreceptorTeamMember] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_members(self):
        if len(self.members) < 2:
            raise ValueError("A team must have at least 2 members")

        preceptor_ids = [m.preceptor_id for m in self.members]
        if len(preceptor_ids) != len(set(preceptor_ids)):
            raise ValueError("A preceptor cannot appear twice in the same team")

        priorities = [m.priority for m in self.members]
        if len(priorities) != len(set(priorities)):
            raise ValueError("Team member priorities must be unique")
        return self

    @property
    def ordered_members(self) -> List[PreceptorTeamMember]:
        """Primaries by ascending priority, then fallback-only members by ascending priority."""
        return sorted(self.members, key=lambda m: (m.is_fallback_only, m.priority))


class PreceptorAvailability(BaseModel):
    """Whether a preceptor can host students at a site on a date."""
    preceptor_id: str
    site_id: str
    date: date_type
    is_available: bool = Field(default=True)


class BlackoutDate(BaseModel):
    """
    A date when no assignment may land.
    Global when neither preceptor_id nor site_id is set.
    """
    id: str = Field(description="Unique identifier")
    date: date_type
    reason: str = Field(default="")
    preceptor_id: Optional[str] = Field(default=None, description="Scope to a single preceptor")
    site_id: Optional[str] = Field(default=None, description="Scope to a single site")

    @property
    def is_global(self) -> bool:
        return self.preceptor_id is None and self.site_id is None

    def covers(self, preceptor_id: str, site_id: str, day: date_type) -> bool:
        if day != self.date:
            return False
        if self.preceptor_id is not None and self.preceptor_id != preceptor_id:
            return False
        if self.site_id is not None and self.site_id != site_id:
            return False
        return True


class CapacityRule(BaseModel):
    """Per-preceptor student limits. At most one rule per preceptor."""
    preceptor_id: str
    max_students_per_day: int = Field(ge=1)
    max_students_per_year: Optional[int] = Field(default=None, ge=1, description="None = unlimited")
    max_students_per_block: Optional[int] = Field(
        default=None,
        ge=1,
        description="Distinct students the preceptor hosts over one block's dates (block_based clerkships)"
    )
