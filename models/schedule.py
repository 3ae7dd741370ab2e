"""
Schedule data models for the Clerkship Scheduler.

This module defines the 'Output' of the scheduling engine:
Concrete day assignments of a student to a preceptor at a site,
plus the scheduling period and date range every run is scoped to.
"""

import uuid
from typing import Iterator, List, Optional
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import date as date_type, timedelta


class AssignmentStatus(str, Enum):
    """Status of a scheduled day."""
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AssignmentType(str, Enum):
    """How the day was produced."""
    CLERKSHIP = "clerkship"
    ELECTIVE = "elective"
    FALLBACK = "fallback"


class DateRange(BaseModel):
    """Inclusive range of calendar dates."""
    start: date_type
    end: date_type

    @model_validator(mode='after')
    def validate_order(self):
        if self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    def __contains__(self, day: date_type) -> bool:
        return self.start <= day <= self.end

    def days(self) -> Iterator[date_type]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)


class SchedulingPeriod(BaseModel):
    """
    The academic window a regeneration operates over.
    student_ids / clerkship_ids restrict the entities in play (None = all).
    """
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1)
    start_date: date_type
    end_date: date_type
    student_ids: Optional[List[str]] = Field(default=None)
    clerkship_ids: Optional[List[str]] = Field(default=None)

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("Period end date cannot be before start date")
        return self

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start_date, end=self.end_date)


class ScheduleAssignment(BaseModel):
    """
    One student on one date with one preceptor at one site.
    This row layout is what calendar and export collaborators read.
    """

    # --- Identity ---
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    period_id: str = Field(description="Scheduling period that owns this assignment")

    # --- Core Scheduling Data ---
    student_id: str
    preceptor_id: str
    clerkship_id: str
    site_id: str
    date: date_type
    elective_id: Optional[str] = Field(default=None)
    team_id: Optional[str] = Field(default=None, description="Team the preceptor was drawn from")

    # --- State ---
    assignment_type: AssignmentType = Field(default=AssignmentType.CLERKSHIP)
    status: AssignmentStatus = Field(default=AssignmentStatus.SCHEDULED)
    is_locked: bool = Field(default=False, description="Locked assignments survive every regeneration mode")
    notes: str = Field(default="")

    def plan_key(self) -> tuple:
        """Identity of the placement itself, ignoring row id and bookkeeping fields."""
        return (
            self.student_id, self.date, self.preceptor_id, self.site_id,
            self.clerkship_id, self.elective_id,
        )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "period_id": "2026-27",
            "student_id": "stu_001",
            "preceptor_id": "pre_smith",
            "clerkship_id": "clk_fm",
            "site_id": "site_north_clinic",
            "date": "2026-09-14",
            "assignment_type": "clerkship",
            "status": "scheduled",
            "is_locked": False
        }
    })
