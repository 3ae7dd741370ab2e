"""
Curriculum data models for the Clerkship Scheduler.

This module defines the 'Demand' side of the scheduler:
1. Students (who need clinical days)
2. Clerkships (rotations with a required day count)
3. Electives (sub-rotations that consume part of a clerkship's days)
4. Onboarding (health systems a student has been cleared to work in)
"""

from datetime import date as date_type
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator


class ClerkshipType(str, Enum):
    """Setting in which a clerkship is delivered."""
    INPATIENT = "inpatient"
    OUTPATIENT = "outpatient"


class AssignmentStrategy(str, Enum):
    """How the core days of a clerkship are spread over preceptors."""
    TEAM_CONTINUITY = "team_continuity"      # best-scored slot from the ranked teams
    CONTINUOUS_SINGLE = "continuous_single"  # one preceptor for every core day
    BLOCK_BASED = "block_based"              # fixed-size blocks, one preceptor per block
    DAILY_ROTATION = "daily_rotation"        # change preceptor from day to day where possible


class Student(BaseModel):
    """A medical student who holds zero or more schedule assignments."""
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1, description="Full name")
    email: Optional[str] = Field(default=None, description="Contact email")


class Elective(BaseModel):
    """
    An elective offered inside a clerkship.
    Only required electives are scheduled; their days count toward the parent clerkship.
    """
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1)

    # Checked by run validation (must be > 0), not here, so a bad value
    # surfaces as a regeneration ValidationError instead of a load failure.
    minimum_days: int = Field(description="Days a student must spend in this elective")
    is_required: bool = Field(default=True)

    preceptor_ids: List[str] = Field(
        default_factory=list,
        description="Preceptors allowed to teach this elective (empty = any eligible preceptor)"
    )
    site_ids: List[str] = Field(
        default_factory=list,
        description="Sites where this elective runs (empty = any of the preceptor's sites)"
    )


class Clerkship(BaseModel):
    """
    A rotation definition.
    'required_days' is the total day budget per student, electives included.
    """
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1)
    specialty: Optional[str] = Field(
        default=None,
        description="Specialty a preceptor must hold to teach this clerkship (None = any)"
    )
    clerkship_type: ClerkshipType = Field(default=ClerkshipType.OUTPATIENT)
    required_days: int = Field(description="Clinical days each student must complete")
    electives: List[Elective] = Field(default_factory=list)

    # Placement Strategy
    assignment_strategy: AssignmentStrategy = Field(default=AssignmentStrategy.TEAM_CONTINUITY)
    block_size_days: Optional[int] = Field(default=None, description="Days per block (block_based only)")
    allow_partial_blocks: bool = Field(
        default=True,
        description="Whether core days may end in a block shorter than block_size_days"
    )
    prefer_continuous_blocks: bool = Field(default=True, description="Reuse the previous block's preceptor first")

    @model_validator(mode='after')
    def validate_unique_electives(self):
        ids = [e.id for e in self.electives]
        if len(ids) != len(set(ids)):
            raise ValueError("Elective ids must be unique within a clerkship")
        return self

    @property
    def required_electives(self) -> List[Elective]:
        return [e for e in self.electives if e.is_required]

    @property
    def elective_days(self) -> int:
        """Days reserved for required electives."""
        return sum(e.minimum_days for e in self.required_electives)

    @property
    def core_days(self) -> int:
        """Days placed with the clerkship's own teams, before electives."""
        return max(0, self.required_days - self.elective_days)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "clk_fm",
            "name": "Family Medicine",
            "specialty": "Family Medicine",
            "clerkship_type": "outpatient",
            "required_days": 20,
            "electives": [
                {"id": "elec_sports", "name": "Sports Medicine", "minimum_days": 5, "is_required": True}
            ]
        }
    })


class StudentOnboarding(BaseModel):
    """
    Orientation record of a student at a health system.
    Once any record exists, students are only placed in systems where theirs is completed.
    """
    student_id: str
    health_system_id: str
    is_completed: bool = Field(default=True)
    completed_date: Optional[date_type] = Field(default=None)
