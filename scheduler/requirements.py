"""
Requirement tracking.

Expands every (student, clerkship) pair of a snapshot into the days still owed,
crediting each assignment already held as one day.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from models import AssignmentStatus, AssignmentStrategy, Clerkship, ScheduleAssignment
from .errors import ValidationError


@dataclass
class Requirement:
    """Days a student still needs for a clerkship (or one of its required electives)."""
    student_id: str
    clerkship_id: str
    days: int
    elective_id: Optional[str] = None

    @property
    def sort_key(self) -> Tuple:
        return (-self.days, self.student_id, self.clerkship_id, self.elective_id or "")

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "clerkship_id": self.clerkship_id,
            "elective_id": self.elective_id,
            "days": self.days,
        }


def validate_clerkship(clerkship: Clerkship) -> None:
    """Numeric checks that must fail before any solving begins."""
    if clerkship.required_days <= 0:
        raise ValidationError(
            f"Clerkship {clerkship.id} has non-positive required_days ({clerkship.required_days})",
            field="required_days"
        )
    for elective in clerkship.electives:
        if elective.minimum_days <= 0:
            raise ValidationError(
                f"Elective {elective.id} of {clerkship.id} has non-positive minimum_days ({elective.minimum_days})",
                field="minimum_days"
            )
    if clerkship.elective_days > clerkship.required_days:
        raise ValidationError(
            f"Required electives of {clerkship.id} need {clerkship.elective_days} days "
            f"but the clerkship only has {clerkship.required_days}",
            field="electives"
        )
    if clerkship.assignment_strategy == AssignmentStrategy.BLOCK_BASED:
        if not clerkship.block_size_days or clerkship.block_size_days < 1:
            raise ValidationError(
                f"Block-based clerkship {clerkship.id} needs a positive block_size_days",
                field="block_size_days"
            )
        core_days = clerkship.core_days
        if not clerkship.allow_partial_blocks and core_days % clerkship.block_size_days:
            raise ValidationError(
                f"{core_days} core days of {clerkship.id} do not split into blocks of "
                f"{clerkship.block_size_days} and partial blocks are not allowed",
                field="block_size_days"
            )


def build_requirements(
    snapshot,
    held: Iterable[ScheduleAssignment]
) -> Tuple[List[Requirement], List[Requirement]]:
    """
    Return (core, elective) requirements, each in solving order.
    Zero-day requirements are left out.
    """
    done: Dict[Tuple[str, str], int] = defaultdict(int)
    elective_done: Dict[Tuple[str, str, str], int] = defaultdict(int)

    for assignment in held:
        if assignment.status == AssignmentStatus.CANCELLED:
            continue
        done[(assignment.student_id, assignment.clerkship_id)] += 1
        if assignment.elective_id:
            elective_done[(assignment.student_id, assignment.clerkship_id, assignment.elective_id)] += 1

    core: List[Requirement] = []
    electives: List[Requirement] = []

    for student in snapshot.students:
        for clerkship in snapshot.clerkships:
            key = (student.id, clerkship.id)
            remaining_total = max(0, clerkship.required_days - done[key])
            if remaining_total == 0:
                continue

            required = clerkship.required_electives
            credited_electives = sum(
                min(elective_done[(student.id, clerkship.id, e.id)], e.minimum_days) for e in required
            )
            # Core days held = everything not counted toward a required elective minimum
            core_done = done[key] - credited_electives
            core_remaining = min(max(0, clerkship.core_days - core_done), remaining_total)
            if core_remaining:
                core.append(Requirement(student.id, clerkship.id, core_remaining))

            # Elective budget: whatever the core days leave over
            budget = remaining_total - core_remaining
            for elective in required:
                if budget <= 0:
                    break
                owed = max(0, elective.minimum_days - elective_done[(student.id, clerkship.id, elective.id)])
                owed = min(owed, budget)
                if owed:
                    electives.append(Requirement(student.id, clerkship.id, owed, elective_id=elective.id))
                    budget -= owed

    core.sort(key=lambda r: r.sort_key)
    electives.sort(key=lambda r: r.sort_key)
    return core, electives
