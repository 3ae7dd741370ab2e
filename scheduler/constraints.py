"""
Hard Constraint Validation Logic.

This module answers the binary question: "Can Student S spend Date D with Preceptor P at Site X?"
Every constraint has a stable name. In completion runs a caller may demote a subset of
them to advisory: the violation is still detected and reported, but it no longer blocks.
"""

from dataclasses import dataclass
from datetime import date as date_type
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Tuple

from .errors import ValidationError


class ConstraintName(str, Enum):
    NO_DOUBLE_BOOKING = "no-double-booking"
    PRECEPTOR_CAPACITY = "preceptor-capacity"
    SITE_CAPACITY = "site-capacity"
    SPECIALTY_MATCH = "specialty-match"
    HEALTH_SYSTEM_CONTINUITY = "health-system-continuity"
    BLACKOUT_DATE = "blackout-date"
    PRECEPTOR_AVAILABILITY = "preceptor-availability"
    STUDENT_ONBOARDING = "student-onboarding"


# A student holding two rows on one date is corrupt data, not a preference.
# Onboarding is a compliance gate.
NON_RELAXABLE: FrozenSet[ConstraintName] = frozenset({
    ConstraintName.NO_DOUBLE_BOOKING,
    ConstraintName.STUDENT_ONBOARDING,
})


def parse_relaxed(names: Optional[Iterable]) -> FrozenSet[ConstraintName]:
    """Turn caller-supplied constraint names into a validated frozenset."""
    relaxed = set()
    for raw in names or []:
        try:
            name = ConstraintName(raw)
        except ValueError:
            known = ", ".join(c.value for c in ConstraintName)
            raise ValidationError(f"Unknown constraint '{raw}' (known: {known})", field="constraints_to_relax")
        if name in NON_RELAXABLE:
            raise ValidationError(f"Constraint '{name.value}' can never be relaxed", field="constraints_to_relax")
        relaxed.add(name)
    return frozenset(relaxed)


@dataclass(frozen=True)
class Candidate:
    """One possible student-day placement."""
    student_id: str
    preceptor_id: str
    site_id: str
    date: date_type
    clerkship_id: str
    elective_id: Optional[str] = None


@dataclass
class ConstraintViolation:
    """Detailed reason for rejection."""
    constraint_type: ConstraintName
    reason: str
    student_id: str
    date: date_type
    preceptor_id: Optional[str] = None
    site_id: Optional[str] = None
    clerkship_id: Optional[str] = None

    @classmethod
    def for_candidate(cls, name: ConstraintName, reason: str, candidate: Candidate) -> "ConstraintViolation":
        return cls(
            constraint_type=name,
            reason=reason,
            student_id=candidate.student_id,
            date=candidate.date,
            preceptor_id=candidate.preceptor_id,
            site_id=candidate.site_id,
            clerkship_id=candidate.clerkship_id,
        )

    def to_dict(self) -> dict:
        return {
            "constraint": self.constraint_type.value,
            "reason": self.reason,
            "student_id": self.student_id,
            "date": self.date.isoformat(),
            "preceptor_id": self.preceptor_id,
            "site_id": self.site_id,
            "clerkship_id": self.clerkship_id,
        }


class ConstraintChecker:
    """
    Validates candidates against the closed constraint set.

    Checks run cheapest first. The availability resolver owns the calendar
    and capacity questions; this class owns the ones that need the student's
    own ledger (double booking, continuity) or static entity data.
    """

    def __init__(self, snapshot, state, resolver, relaxed: FrozenSet[ConstraintName] = frozenset()):
        self.snapshot = snapshot
        self.state = state
        self.resolver = resolver
        self.relaxed = frozenset(relaxed)

        # (priority, name, check) - lower priority runs first
        self._checks = sorted([
            (1, ConstraintName.NO_DOUBLE_BOOKING, self._check_double_booking),
            (2, ConstraintName.STUDENT_ONBOARDING, self._check_onboarding),
            (3, ConstraintName.SPECIALTY_MATCH, self._check_specialty),
            (4, ConstraintName.BLACKOUT_DATE, self.resolver.blackout_violation),
            (5, ConstraintName.PRECEPTOR_AVAILABILITY, self.resolver.availability_violation),
            (6, ConstraintName.PRECEPTOR_CAPACITY, self.resolver.capacity_violation),
            (7, ConstraintName.SITE_CAPACITY, self._check_site_capacity),
            (8, ConstraintName.HEALTH_SYSTEM_CONTINUITY, self._check_health_system),
        ], key=lambda c: c[0])

    def with_relaxed(self, extra: Iterable[ConstraintName]) -> "ConstraintChecker":
        """Copy of this checker with additional advisory constraints."""
        return ConstraintChecker(self.snapshot, self.state, self.resolver, self.relaxed | frozenset(extra))

    def check(self, candidate: Candidate) -> Optional[ConstraintViolation]:
        """
        Master validation function. Returns None if Valid, the first blocking Violation if Invalid.
        """
        blocking, _ = self.evaluate(candidate, stop_on_block=True)
        return blocking[0] if blocking else None

    def evaluate(
        self,
        candidate: Candidate,
        stop_on_block: bool = False
    ) -> Tuple[List[ConstraintViolation], List[ConstraintViolation]]:
        """Split every violation of the candidate into (blocking, advisory)."""
        blocking: List[ConstraintViolation] = []
        advisory: List[ConstraintViolation] = []

        for _, name, check in self._checks:
            violation = check(candidate)
            if violation is None:
                continue
            if name in self.relaxed:
                advisory.append(violation)
                continue
            blocking.append(violation)
            if stop_on_block:
                break

        return blocking, advisory

    def _check_double_booking(self, candidate: Candidate) -> Optional[ConstraintViolation]:
        existing = self.state.booking_for(candidate.student_id, candidate.date)
        if existing is None:
            return None
        return ConstraintViolation.for_candidate(
            ConstraintName.NO_DOUBLE_BOOKING,
            f"Student already assigned to {existing.preceptor_id} on {candidate.date}",
            candidate
        )

    def _check_onboarding(self, candidate: Candidate) -> Optional[ConstraintViolation]:
        # Tracking is off until the first onboarding record exists
        if not self.snapshot.tracks_onboarding:
            return None

        system = self.snapshot.preceptor_health_system(candidate.preceptor_id, candidate.site_id)
        if system is None or system in self.snapshot.onboarded_systems(candidate.student_id):
            return None

        health_system = self.snapshot.health_system_by_id.get(system)
        return ConstraintViolation.for_candidate(
            ConstraintName.STUDENT_ONBOARDING,
            f"{candidate.student_id} has not completed onboarding at {health_system.name if health_system else system}",
            candidate
        )

    def _check_specialty(self, candidate: Candidate) -> Optional[ConstraintViolation]:
        # Elective preceptors are listed explicitly on the elective
        if candidate.elective_id:
            return None

        clerkship = self.snapshot.clerkship_by_id.get(candidate.clerkship_id)
        preceptor = self.snapshot.preceptor_by_id.get(candidate.preceptor_id)
        if not clerkship or not clerkship.specialty or not preceptor:
            return None

        if (preceptor.specialty or "").lower() != clerkship.specialty.lower():
            return ConstraintViolation.for_candidate(
                ConstraintName.SPECIALTY_MATCH,
                f"{preceptor.name} ({preceptor.specialty or 'no specialty'}) cannot teach {clerkship.name}",
                candidate
            )
        return None

    def _check_site_capacity(self, candidate: Candidate) -> Optional[ConstraintViolation]:
        site = self.snapshot.site_by_id.get(candidate.site_id)
        if not site or site.max_students_per_day is None:
            return None

        if self.state.site_count(candidate.site_id, candidate.date) >= site.max_students_per_day:
            return ConstraintViolation.for_candidate(
                ConstraintName.SITE_CAPACITY,
                f"{site.name} is full on {candidate.date}",
                candidate
            )
        return None

    def _check_health_system(self, candidate: Candidate) -> Optional[ConstraintViolation]:
        """A student stays inside one health system for the core days of a clerkship."""
        if candidate.elective_id:
            return None

        held = self.state.health_systems_for(candidate.student_id, candidate.clerkship_id, core_only=True)
        if not held:
            return None

        system = self.snapshot.site_health_system(candidate.site_id)
        if system is None or system in held:
            return None

        return ConstraintViolation.for_candidate(
            ConstraintName.HEALTH_SYSTEM_CONTINUITY,
            f"Site in {system} breaks continuity with {', '.join(sorted(held))}",
            candidate
        )
