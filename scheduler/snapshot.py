"""
Read-consistent view of one scheduling period.

The orchestrator reads a snapshot once per run and never goes back to the
store until commit, so capacity decremented in memory always matches what
gets written.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Dict, List, Optional, Set, Tuple

from models import (
    BlackoutDate,
    CapacityRule,
    Clerkship,
    DateRange,
    HealthSystem,
    Preceptor,
    PreceptorAvailability,
    PreceptorTeam,
    ScheduleAssignment,
    SchedulingPeriod,
    StudentOnboarding,
    Site,
    Student,
)


@dataclass
class SchedulingSnapshot:
    """Entity state for a period plus O(1) lookup indices."""
    period: SchedulingPeriod
    students: List[Student]
    clerkships: List[Clerkship]
    preceptors: List[Preceptor]
    sites: List[Site] = field(default_factory=list)
    health_systems: List[HealthSystem] = field(default_factory=list)
    teams: List[PreceptorTeam] = field(default_factory=list)
    availability: List[PreceptorAvailability] = field(default_factory=list)
    blackout_dates: List[BlackoutDate] = field(default_factory=list)
    capacity_rules: List[CapacityRule] = field(default_factory=list)
    assignments: List[ScheduleAssignment] = field(default_factory=list)
    onboarding: List[StudentOnboarding] = field(default_factory=list)

    def __post_init__(self):
        # Stable ordering everywhere downstream depends on these sorts
        self.students = sorted(self.students, key=lambda s: s.id)
        self.clerkships = sorted(self.clerkships, key=lambda c: c.id)
        self.preceptors = sorted(self.preceptors, key=lambda p: p.id)

        self.student_by_id: Dict[str, Student] = {s.id: s for s in self.students}
        self.clerkship_by_id: Dict[str, Clerkship] = {c.id: c for c in self.clerkships}
        self.preceptor_by_id: Dict[str, Preceptor] = {p.id: p for p in self.preceptors}
        self.site_by_id: Dict[str, Site] = {s.id: s for s in self.sites}
        self.health_system_by_id: Dict[str, HealthSystem] = {h.id: h for h in self.health_systems}
        self.capacity_rule_by_preceptor: Dict[str, CapacityRule] = {
            r.preceptor_id: r for r in self.capacity_rules
        }

        self.teams_by_clerkship: Dict[str, List[PreceptorTeam]] = defaultdict(list)
        for team in self.teams:
            self.teams_by_clerkship[team.clerkship_id].append(team)

        # (preceptor, date) -> {site_id: is_available}
        self.availability_index: Dict[Tuple[str, date_type], Dict[str, bool]] = defaultdict(dict)
        for record in self.availability:
            self.availability_index[(record.preceptor_id, record.date)][record.site_id] = record.is_available

        self.blackouts_by_date: Dict[date_type, List[BlackoutDate]] = defaultdict(list)
        for blackout in self.blackout_dates:
            self.blackouts_by_date[blackout.date].append(blackout)

        # student -> health systems with completed onboarding
        self.onboarded_by_student: Dict[str, Set[str]] = defaultdict(set)
        for record in self.onboarding:
            if record.is_completed:
                self.onboarded_by_student[record.student_id].add(record.health_system_id)

    @property
    def date_range(self) -> DateRange:
        return self.period.date_range

    def site_health_system(self, site_id: str) -> Optional[str]:
        site = self.site_by_id.get(site_id)
        return site.health_system_id if site else None

    def preceptor_health_system(self, preceptor_id: str, site_id: Optional[str] = None) -> Optional[str]:
        """Preceptor's own health system, else the one owning the site they teach at."""
        preceptor = self.preceptor_by_id.get(preceptor_id)
        if preceptor and preceptor.health_system_id:
            return preceptor.health_system_id
        if site_id:
            return self.site_health_system(site_id)
        return None

    @property
    def tracks_onboarding(self) -> bool:
        return bool(self.onboarding)

    def onboarded_systems(self, student_id: str) -> Set[str]:
        return self.onboarded_by_student.get(student_id, set())
