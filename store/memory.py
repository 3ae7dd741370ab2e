"""
In-process entity store. Used by tests, scenarios and the CLI.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

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
    Site,
    Student,
    StudentOnboarding,
)
from scheduler.errors import ConflictError, FatalError, ValidationError
from .base import EntityStore

logger = logging.getLogger(__name__)


class InMemoryStore(EntityStore):

    def __init__(self):
        self.periods: Dict[str, SchedulingPeriod] = {}
        self.students: Dict[str, Student] = {}
        self.clerkships: Dict[str, Clerkship] = {}
        self.health_systems: Dict[str, HealthSystem] = {}
        self.sites: Dict[str, Site] = {}
        self.preceptors: Dict[str, Preceptor] = {}
        self.teams: Dict[str, PreceptorTeam] = {}
        self.availability: Dict[tuple, PreceptorAvailability] = {}
        self.blackout_dates: Dict[str, BlackoutDate] = {}
        self.capacity_rules: Dict[str, CapacityRule] = {}
        self.assignments: Dict[str, ScheduleAssignment] = {}
        self.onboarding: Dict[tuple, StudentOnboarding] = {}

        # period_id -> run_id of the run in flight
        self._claims: Dict[str, str] = {}
        self._claims_lock = threading.Lock()

    # --- Reads ---

    def get_period(self, period_id: str) -> Optional[SchedulingPeriod]:
        return self.periods.get(period_id)

    def list_students(self) -> List[Student]:
        return list(self.students.values())

    def list_clerkships(self) -> List[Clerkship]:
        return list(self.clerkships.values())

    def list_health_systems(self) -> List[HealthSystem]:
        return list(self.health_systems.values())

    def list_sites(self) -> List[Site]:
        return list(self.sites.values())

    def list_preceptors(self) -> List[Preceptor]:
        return list(self.preceptors.values())

    def list_teams(self) -> List[PreceptorTeam]:
        return list(self.teams.values())

    def list_availability(self, date_range: Optional[DateRange] = None) -> List[PreceptorAvailability]:
        return [r for r in self.availability.values() if date_range is None or r.date in date_range]

    def list_blackout_dates(self, date_range: Optional[DateRange] = None) -> List[BlackoutDate]:
        return [b for b in self.blackout_dates.values() if date_range is None or b.date in date_range]

    def list_capacity_rules(self) -> List[CapacityRule]:
        return list(self.capacity_rules.values())

    def list_onboarding(self) -> List[StudentOnboarding]:
        return list(self.onboarding.values())

    def list_assignments(self, period_id: str, date_range: Optional[DateRange] = None) -> List[ScheduleAssignment]:
        rows = [
            a for a in self.assignments.values()
            if a.period_id == period_id and (date_range is None or a.date in date_range)
        ]
        return sorted(rows, key=lambda a: (a.date, a.student_id, a.id))

    def assignments_on(self, day) -> List[ScheduleAssignment]:
        return [a for a in self.assignments.values() if a.date == day]

    # --- Writes ---

    def commit_delta(self, period_id: str, inserts: Iterable[ScheduleAssignment], delete_ids: Iterable[str]) -> None:
        inserts = list(inserts)
        delete_ids = list(delete_ids)

        # Check everything before touching anything
        for assignment_id in delete_ids:
            existing = self.assignments.get(assignment_id)
            if existing is None or existing.period_id != period_id:
                raise FatalError(f"Cannot delete unknown assignment {assignment_id} in period {period_id}")
        doomed = set(delete_ids)
        for assignment in inserts:
            if assignment.period_id != period_id:
                raise FatalError(f"Assignment {assignment.id} belongs to period {assignment.period_id}, not {period_id}")
            if assignment.id in self.assignments and assignment.id not in doomed:
                raise FatalError(f"Assignment {assignment.id} already exists")

        for assignment_id in delete_ids:
            del self.assignments[assignment_id]
        for assignment in inserts:
            self.assignments[assignment.id] = assignment

        logger.info(f"Committed period {period_id}: +{len(inserts)} / -{len(delete_ids)}")

    def _insert_blackout(self, blackout: BlackoutDate) -> None:
        self.blackout_dates[blackout.id] = blackout

    def _write_capacity_rule(self, rule: CapacityRule) -> None:
        self.capacity_rules[rule.preceptor_id] = rule

    def _write_team(self, team: PreceptorTeam) -> None:
        self.teams[team.id] = team

    def add_period(self, period: SchedulingPeriod) -> None:
        self.periods[period.id] = period

    def add_student(self, student: Student) -> None:
        self.students[student.id] = student

    def add_clerkship(self, clerkship: Clerkship) -> None:
        self.clerkships[clerkship.id] = clerkship

    def add_health_system(self, health_system: HealthSystem) -> None:
        self.health_systems[health_system.id] = health_system

    def add_site(self, site: Site) -> None:
        if site.health_system_id not in self.health_systems:
            raise ValidationError(f"Site {site.id} references unknown health system {site.health_system_id}", field="health_system_id")
        self.sites[site.id] = site

    def add_preceptor(self, preceptor: Preceptor) -> None:
        self.preceptors[preceptor.id] = preceptor

    def add_availability(self, record: PreceptorAvailability) -> None:
        self.availability[(record.preceptor_id, record.site_id, record.date)] = record

    def add_assignment(self, assignment: ScheduleAssignment) -> None:
        if assignment.id in self.assignments:
            raise ValidationError(f"Assignment {assignment.id} already exists", field="id")
        self.assignments[assignment.id] = assignment

    def add_onboarding(self, record: StudentOnboarding) -> None:
        self.onboarding[(record.student_id, record.health_system_id)] = record

    # --- Run claims ---

    def claim_period(self, period_id: str, run_id: str) -> None:
        with self._claims_lock:
            holder = self._claims.get(period_id)
            if holder is not None:
                raise ConflictError(f"Run {holder} is already in flight for period {period_id}")
            self._claims[period_id] = run_id

    def release_period(self, period_id: str, run_id: str) -> None:
        with self._claims_lock:
            if self._claims.get(period_id) == run_id:
                del self._claims[period_id]
