"""
Data models package for the Clerkship Scheduler.

This package exports the three core pillars of the data architecture:
1. Demand (Student, Clerkship, Elective)
2. Supply (Preceptor, Team, Site, Availability, Blackout, Capacity)
3. Output (ScheduleAssignment, SchedulingPeriod, DateRange)
"""

from .curriculum import (
    Student,
    Clerkship,
    ClerkshipType,
    AssignmentStrategy,
    StudentOnboarding,
    Elective,
)

from .resource import (
    HealthSystem,
    Site,
    Preceptor,
    PreceptorTeam,
    PreceptorTeamMember,
    PreceptorAvailability,
    BlackoutDate,
    CapacityRule
)

from .schedule import (
    ScheduleAssignment,
    AssignmentStatus,
    AssignmentType,
    SchedulingPeriod,
    DateRange
)

__all__ = [
    # --- Demand Models ---
    "Student",
    "Clerkship",
    "ClerkshipType",
    "AssignmentStrategy",
    "StudentOnboarding",
    "Elective",

    # --- Resource & Constraint Models ---
    "HealthSystem",
    "Site",
    "Preceptor",
    "PreceptorTeam",
    "PreceptorTeamMember",
    "PreceptorAvailability",
    "BlackoutDate",
    "CapacityRule",

    # --- Output Models ---
    "ScheduleAssignment",
    "AssignmentStatus",
    "AssignmentType",
    "SchedulingPeriod",
    "DateRange",
]
