"""
Entity Store Access.

The engine's only view of persistence: one snapshot read and one atomic
delta commit per run, plus the few writes that carry invariants of their own.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

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
from scheduler.snapshot import SchedulingSnapshot

logger = logging.getLogger(__name__)


def revalidate(model_cls, entity):
    """Re-run model validation on a write, surfacing failures as the engine's ValidationError."""
    try:
        payload = entity.model_dump() if hasattr(entity, "model_dump") else entity
        return model_cls.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model_cls.__name__}: {e.errors()[0]['msg']}", field=model_cls.__name__)


class EntityStore(ABC):
    """Abstract persistence used by the orchestrator and by collaborators that create entities."""

    # --- Reads ---

    @abstractmethod
    def get_period(self, period_id: str) -> Optional[SchedulingPeriod]: ...

    @abstractmethod
    def list_students(self) -> List[Student]: ...

    @abstractmethod
    def list_clerkships(self) -> List[Clerkship]: ...

    @abstractmethod
    def list_health_systems(self) -> List[HealthSystem]: ...

    @abstractmethod
    def list_sites(self) -> List[Site]: ...

    @abstractmethod
    def list_preceptors(self) -> List[Preceptor]: ...

    @abstractmethod
    def list_teams(self) -> List[PreceptorTeam]: ...

    @abstractmethod
    def list_availability(self, date_range: Optional[DateRange] = None) -> List[PreceptorAvailability]: ...

    @abstractmethod
    def list_blackout_dates(self, date_range: Optional[DateRange] = None) -> List[BlackoutDate]: ...

    @abstractmethod
    def list_capacity_rules(self) -> List[CapacityRule]: ...

    @abstractmethod
    def list_onboarding(self) -> List[StudentOnboarding]: ...

    @abstractmethod
    def list_assignments(self, period_id: str, date_range: Optional[DateRange] = None) -> List[ScheduleAssignment]: ...

    @abstractmethod
    def assignments_on(self, day) -> List[ScheduleAssignment]:
        """Every assignment on a date, across periods."""

    # --- Writes ---

    @abstractmethod
    def commit_delta(self, period_id: str, inserts: Iterable[ScheduleAssignment], delete_ids: Iterable[str]) -> None:
        """Apply deletions then insertions atomically. Raises FatalError and changes nothing on failure."""

    @abstractmethod
    def _insert_blackout(self, blackout: BlackoutDate) -> None: ...

    @abstractmethod
    def _write_capacity_rule(self, rule: CapacityRule) -> None: ...

    @abstractmethod
    def _write_team(self, team: PreceptorTeam) -> None: ...

    @abstractmethod
    def add_period(self, period: SchedulingPeriod) -> None: ...

    @abstractmethod
    def add_student(self, student: Student) -> None: ...

    @abstractmethod
    def add_clerkship(self, clerkship: Clerkship) -> None: ...

    @abstractmethod
    def add_health_system(self, health_system: HealthSystem) -> None: ...

    @abstractmethod
    def add_site(self, site: Site) -> None: ...

    @abstractmethod
    def add_preceptor(self, preceptor: Preceptor) -> None: ...

    @abstractmethod
    def add_availability(self, record: PreceptorAvailability) -> None: ...

    @abstractmethod
    def add_assignment(self, assignment: ScheduleAssignment) -> None: ...

    @abstractmethod
    def add_onboarding(self, record: StudentOnboarding) -> None:
        """At most one record per (student, health system): a second write replaces the first."""

    # --- Run claims ---

    @abstractmethod
    def claim_period(self, period_id: str, run_id: str) -> None:
        """Mark a regeneration run in flight for the period. Raises ConflictError if one already is."""

    @abstractmethod
    def release_period(self, period_id: str, run_id: str) -> None:
        """Drop the claim, if run_id still holds it."""

    # --- Shared operations ---

    def snapshot(self, period_id: str, date_range: Optional[DateRange] = None) -> SchedulingSnapshot:
        """
        Read everything a run needs in one go.
        Calendar data is limited to date_range (default: the period); assignments cover the whole period.
        """
        period = self.get_period(period_id)
        if period is None:
            raise FatalError(f"Scheduling period {period_id} not found")

        window = date_range or period.date_range

        students = self.list_students()
        if period.student_ids is not None:
            wanted = set(period.student_ids)
            students = [s for s in students if s.id in wanted]

        clerkships = self.list_clerkships()
        if period.clerkship_ids is not None:
            wanted = set(period.clerkship_ids)
            clerkships = [c for c in clerkships if c.id in wanted]
        clerkship_ids = {c.id for c in clerkships}

        return SchedulingSnapshot(
            period=period,
            students=students,
            clerkships=clerkships,
            preceptors=self.list_preceptors(),
            sites=self.list_sites(),
            health_systems=self.list_health_systems(),
            teams=[t for t in self.list_teams() if t.clerkship_id in clerkship_ids],
            availability=self.list_availability(window),
            blackout_dates=self.list_blackout_dates(window),
            capacity_rules=self.list_capacity_rules(),
            assignments=self.list_assignments(period_id),
            onboarding=self.list_onboarding(),
        )

    def add_blackout_date(self, blackout: BlackoutDate) -> None:
        """
        Add a blackout. A blackout may not land on a locked assignment.
        Unlocked assignments on that date stay until the next regeneration.
        """
        blackout = revalidate(BlackoutDate, blackout)
        collisions = [
            a for a in self.assignments_on(blackout.date)
            if a.is_locked and blackout.covers(a.preceptor_id, a.site_id, a.date)
        ]
        if collisions:
            ids = ", ".join(a.id for a in collisions)
            raise ConflictError(f"Blackout on {blackout.date} collides with locked assignment(s): {ids}")

        self._insert_blackout(blackout)
        logger.info(f"Blackout {blackout.id} added for {blackout.date}")

    def upsert_capacity_rule(self, rule: CapacityRule) -> None:
        """At most one rule per preceptor: a second write replaces the first."""
        rule = revalidate(CapacityRule, rule)
        self._write_capacity_rule(rule)

    def save_team(self, team: PreceptorTeam) -> None:
        """Create or replace a team after re-checking its member invariants."""
        team = revalidate(PreceptorTeam, team)
        self._write_team(team)
