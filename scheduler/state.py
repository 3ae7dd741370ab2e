"""
Scheduler State Management.

This module acts as the 'Memory' of a regeneration run.
It tracks:
1. The assignment ledger (frozen rows plus provisional placements) with O(1) indices.
2. Student-days that could not be placed (InfeasibilityWarning records).
3. Blocking and accepted violations for the final report.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Any, Dict, List, Optional, Set, Tuple

from models import AssignmentStatus, AssignmentType, ScheduleAssignment
from .constraints import ConstraintName, ConstraintViolation


@dataclass
class InfeasibilityWarning:
    """Days of a requirement the solver could not place. A report record, not an error."""
    student_id: str
    clerkship_id: str
    missing_days: int
    reason: str
    elective_id: Optional[str] = None
    blocking: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "clerkship_id": self.clerkship_id,
            "elective_id": self.elective_id,
            "missing_days": self.missing_days,
            "reason": self.reason,
            "blocking": dict(self.blocking),
        }


class SchedulerState:
    """
    Maintains the mutable state of the solver during a run.
    Frozen rows and provisional placements share the same indices so capacity
    checks see both.
    """

    def __init__(self, snapshot):
        self.snapshot = snapshot

        # The Ledger
        self.fixed: List[ScheduleAssignment] = []
        self.placed: List[ScheduleAssignment] = []

        # Indices (for O(1) constraint checking)
        self.by_student_date: Dict[Tuple[str, date_type], ScheduleAssignment] = {}
        self.preceptor_day: Dict[Tuple[str, date_type], int] = defaultdict(int)
        self.preceptor_year: Dict[Tuple[str, int], int] = defaultdict(int)
        self.site_day: Dict[Tuple[str, date_type], int] = defaultdict(int)
        self.student_clerkship: Dict[Tuple[str, str], List[ScheduleAssignment]] = defaultdict(list)
        self.preceptor_rows: Dict[str, List[ScheduleAssignment]] = defaultdict(list)

        # Failure Tracking
        self.unassigned: List[InfeasibilityWarning] = []
        self.blocking_counts: Dict[ConstraintName, int] = defaultdict(int)
        self.accepted_violations: List[ConstraintViolation] = []

    def add_booking(self, assignment: ScheduleAssignment, fixed: bool = False) -> None:
        """
        Record an assignment in the ledger.
        Cancelled rows keep their student-date but consume no capacity and credit no days.
        """
        (self.fixed if fixed else self.placed).append(assignment)
        self.by_student_date[(assignment.student_id, assignment.date)] = assignment

        if assignment.status == AssignmentStatus.CANCELLED:
            return

        self.preceptor_day[(assignment.preceptor_id, assignment.date)] += 1
        self.preceptor_year[(assignment.preceptor_id, assignment.date.year)] += 1
        self.site_day[(assignment.site_id, assignment.date)] += 1
        self.student_clerkship[(assignment.student_id, assignment.clerkship_id)].append(assignment)
        self.preceptor_rows[assignment.preceptor_id].append(assignment)

    def remove_booking(self, assignment: ScheduleAssignment) -> None:
        """Release a provisional placement (backtracking)."""
        self.placed.remove(assignment)
        self.by_student_date.pop((assignment.student_id, assignment.date), None)

        if assignment.status == AssignmentStatus.CANCELLED:
            return

        self.preceptor_day[(assignment.preceptor_id, assignment.date)] -= 1
        self.preceptor_year[(assignment.preceptor_id, assignment.date.year)] -= 1
        self.site_day[(assignment.site_id, assignment.date)] -= 1
        self.student_clerkship[(assignment.student_id, assignment.clerkship_id)].remove(assignment)
        self.preceptor_rows[assignment.preceptor_id].remove(assignment)

    def record_violation(self, violation: ConstraintViolation) -> None:
        self.blocking_counts[violation.constraint_type] += 1

    def record_unassigned(self, warning: InfeasibilityWarning) -> None:
        self.unassigned.append(warning)

    # --- Query Methods (Used by Constraints / Availability) ---

    def booking_for(self, student_id: str, day: date_type) -> Optional[ScheduleAssignment]:
        return self.by_student_date.get((student_id, day))

    def preceptor_count(self, preceptor_id: str, day: date_type) -> int:
        return self.preceptor_day[(preceptor_id, day)]

    def preceptor_year_count(self, preceptor_id: str, year: int) -> int:
        return self.preceptor_year[(preceptor_id, year)]

    def site_count(self, site_id: str, day: date_type) -> int:
        return self.site_day[(site_id, day)]

    def assignments_for(self, student_id: str, clerkship_id: str) -> List[ScheduleAssignment]:
        return self.student_clerkship[(student_id, clerkship_id)]

    def students_hosted(self, preceptor_id: str, start: date_type, end: date_type) -> Set[str]:
        """Distinct students the preceptor holds on any date in [start, end]."""
        return {a.student_id for a in self.preceptor_rows[preceptor_id] if start <= a.date <= end}

    def health_systems_for(self, student_id: str, clerkship_id: str, core_only: bool = False) -> Set[str]:
        systems = set()
        for assignment in self.assignments_for(student_id, clerkship_id):
            if core_only and assignment.elective_id:
                continue
            system = self.snapshot.site_health_system(assignment.site_id)
            if system:
                systems.add(system)
        return systems

    def team_for(self, student_id: str, clerkship_id: str) -> Optional[str]:
        """Team the student already works with for this clerkship (earliest dated row wins)."""
        held = sorted(self.assignments_for(student_id, clerkship_id), key=lambda a: a.date)
        for assignment in held:
            if assignment.team_id:
                return assignment.team_id
        return None

    # --- Reporting Methods ---

    def get_statistics(self) -> Dict[str, Any]:
        """Summary counts for the run report."""
        type_counts = defaultdict(int)
        for assignment in self.placed:
            type_counts[assignment.assignment_type.value] += 1

        preceptor_load = defaultdict(int)
        for assignment in self.placed:
            preceptor_load[assignment.preceptor_id] += 1

        return {
            "fixed_assignments": len(self.fixed),
            "placed_assignments": len(self.placed),
            "placed_by_type": {t.value: type_counts.get(t.value, 0) for t in AssignmentType},
            "unassigned_requirements": len(self.unassigned),
            "unassigned_days": sum(w.missing_days for w in self.unassigned),
            "accepted_violations": len(self.accepted_violations),
            "blocking_violations": {k.value: v for k, v in sorted(self.blocking_counts.items(), key=lambda kv: kv[0].value)},
            "preceptor_usage_count": dict(sorted(preceptor_load.items())),
        }

    def get_failure_report(self) -> List[Dict]:
        """
        Human-readable list of what could not be placed and why.
        Largest gaps first.
        """
        report = []
        for warning in self.unassigned:
            primary_cause = max(warning.blocking, key=warning.blocking.get) if warning.blocking else None
            report.append({
                "student_id": warning.student_id,
                "clerkship_id": warning.clerkship_id,
                "elective_id": warning.elective_id,
                "missing_days": warning.missing_days,
                "primary_failure_cause": primary_cause,
                "violation_breakdown": dict(warning.blocking),
                "reason": warning.reason,
            })

        report.sort(key=lambda x: (-x["missing_days"], x["student_id"], x["clerkship_id"]))
        return report
