"""
Turns blocking-violation statistics into actionable suggestions for the scheduler admin.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping

from .constraints import ConstraintName

IMPACT_ORDER = {"high": 0, "medium": 1, "low": 2}

# constraint -> (title, description template, action)
_TEMPLATES: Dict[ConstraintName, tuple] = {
    ConstraintName.PRECEPTOR_CAPACITY: (
        "Increase Preceptor Capacity",
        "Preceptors reached max capacity {count} times.",
        "Review capacity rules and raise limits for busy preceptors",
    ),
    ConstraintName.PRECEPTOR_AVAILABILITY: (
        "Add Preceptor Availability",
        "Preceptors were unavailable {count} times.",
        "Add available days to preceptor schedules",
    ),
    ConstraintName.SPECIALTY_MATCH: (
        "Add Specialized Preceptors",
        "Specialty requirements could not be met {count} times.",
        "Add preceptors with the needed specialty",
    ),
    ConstraintName.NO_DOUBLE_BOOKING: (
        "Schedule Conflicts Detected",
        "Students had conflicting assignments {count} times.",
        "Review existing assignments for conflicts",
    ),
    ConstraintName.BLACKOUT_DATE: (
        "Reduce Blackout Dates",
        "Blackout dates prevented {count} assignments.",
        "Review the blackout list and remove unnecessary dates",
    ),
    ConstraintName.SITE_CAPACITY: (
        "Increase Site Capacity",
        "Sites reached max capacity {count} times.",
        "Raise site limits or add clinical sites",
    ),
    ConstraintName.HEALTH_SYSTEM_CONTINUITY: (
        "Widen Health System Coverage",
        "Health system continuity blocked {count} placements.",
        "Add preceptors in the same health system or allow cross-system fallbacks",
    ),
    ConstraintName.STUDENT_ONBOARDING: (
        "Complete Student Onboarding",
        "Missing onboarding blocked {count} placements.",
        "Finish health system onboarding for the affected students",
    ),
}


@dataclass
class Suggestion:
    constraint_type: str
    title: str
    description: str
    action: str
    impact: str
    violation_count: int

    def to_dict(self) -> dict:
        return {
            "constraint": self.constraint_type,
            "title": self.title,
            "description": self.description,
            "action": self.action,
            "impact": self.impact,
            "violation_count": self.violation_count,
        }


def impact_for(count: int) -> str:
    if count > 30:
        return "high"
    if count > 15:
        return "medium"
    return "low"


def generate_suggestions(blocking: Mapping[str, int]) -> List[Suggestion]:
    """One suggestion per blocking constraint, highest impact then largest count first."""
    suggestions = []
    for name, count in blocking.items():
        if count <= 0:
            continue
        try:
            template = _TEMPLATES[ConstraintName(name)]
        except (ValueError, KeyError):
            continue
        title, description, action = template
        suggestions.append(Suggestion(
            constraint_type=ConstraintName(name).value,
            title=title,
            description=description.format(count=count),
            action=action,
            impact=impact_for(count),
            violation_count=count,
        ))

    suggestions.sort(key=lambda s: (IMPACT_ORDER[s.impact], -s.violation_count, s.constraint_type))
    return suggestions
