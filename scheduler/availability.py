"""
Availability Resolver.

Pure queries over the run snapshot plus the solver state, so a capacity
check always sees the provisional placements made earlier in the same run.
"""

from datetime import date as date_type
from typing import FrozenSet, Iterable, List, Optional, Tuple

from models import BlackoutDate
from .config import AvailabilityPolicy, SchedulerConfig
from .constraints import Candidate, ConstraintName, ConstraintViolation


class AvailabilityResolver:
    """
    Answers "is this (preceptor, site, date) slot open?" and "how many more students today?".
    """

    def __init__(self, snapshot, state, config: SchedulerConfig, relaxed: FrozenSet[ConstraintName] = frozenset()):
        self.snapshot = snapshot
        self.state = state
        self.config = config
        self.relaxed = frozenset(relaxed)

    # --- Raw lookups ---

    def blackout_for(self, preceptor_id: str, site_id: str, day: date_type) -> Optional[BlackoutDate]:
        for blackout in self.snapshot.blackouts_by_date.get(day, []):
            if blackout.covers(preceptor_id, site_id, day):
                return blackout
        return None

    def is_available(self, preceptor_id: str, site_id: str, day: date_type) -> bool:
        """Availability under the configured absence policy."""
        preceptor = self.snapshot.preceptor_by_id.get(preceptor_id)
        if preceptor is None or site_id not in preceptor.site_ids:
            return False

        records = self.snapshot.availability_index.get((preceptor_id, day), {})
        if site_id in records:
            return records[site_id]
        return self.config.availability_policy == AvailabilityPolicy.OPEN_WORLD

    def daily_capacity(self, preceptor_id: str) -> int:
        rule = self.snapshot.capacity_rule_by_preceptor.get(preceptor_id)
        if rule:
            return rule.max_students_per_day
        preceptor = self.snapshot.preceptor_by_id.get(preceptor_id)
        if preceptor:
            return preceptor.max_students
        return self.config.default_max_students_per_day

    def yearly_capacity(self, preceptor_id: str) -> Optional[int]:
        rule = self.snapshot.capacity_rule_by_preceptor.get(preceptor_id)
        if rule and rule.max_students_per_year is not None:
            return rule.max_students_per_year
        return self.config.default_max_students_per_year

    def remaining_capacity(self, preceptor_id: str, day: date_type) -> int:
        """Seats left for the preceptor on the date, bounded by the yearly limit."""
        remaining = self.daily_capacity(preceptor_id) - self.state.preceptor_count(preceptor_id, day)

        yearly = self.yearly_capacity(preceptor_id)
        if yearly is not None:
            remaining = min(remaining, yearly - self.state.preceptor_year_count(preceptor_id, day.year))

        return max(0, remaining)

    # --- Slot queries ---

    def is_slot_open(self, preceptor_id: str, site_id: str, day: date_type) -> bool:
        if ConstraintName.BLACKOUT_DATE not in self.relaxed and self.blackout_for(preceptor_id, site_id, day):
            return False
        if ConstraintName.PRECEPTOR_AVAILABILITY not in self.relaxed and not self.is_available(preceptor_id, site_id, day):
            return False
        if ConstraintName.PRECEPTOR_CAPACITY not in self.relaxed and self.remaining_capacity(preceptor_id, day) <= 0:
            return False
        return True

    def candidate_slots(
        self,
        preceptor_id: str,
        dates: Iterable[date_type],
        site_ids: Optional[Iterable[str]] = None
    ) -> List[Tuple[str, date_type]]:
        """
        (site, date) pairs where the preceptor teaches, is available and not blacked out.
        Capacity is left to the constraint checker since it moves as the run places students.
        """
        preceptor = self.snapshot.preceptor_by_id.get(preceptor_id)
        if preceptor is None:
            return []

        sites = sorted(preceptor.site_ids)
        if site_ids is not None:
            allowed = set(site_ids)
            sites = [s for s in sites if s in allowed]

        slots = []
        for day in dates:
            for site_id in sites:
                if ConstraintName.BLACKOUT_DATE not in self.relaxed and self.blackout_for(preceptor_id, site_id, day):
                    continue
                if (ConstraintName.PRECEPTOR_AVAILABILITY not in self.relaxed
                        and not self.is_available(preceptor_id, site_id, day)):
                    continue
                slots.append((site_id, day))
        return slots

    # --- Violation helpers (used by the constraint checker and for reporting) ---

    def blackout_violation(self, candidate: Candidate) -> Optional[ConstraintViolation]:
        blackout = self.blackout_for(candidate.preceptor_id, candidate.site_id, candidate.date)
        if blackout is None:
            return None
        scope = "global" if blackout.is_global else "scoped"
        reason = f"Blackout ({scope}) on {candidate.date}"
        if blackout.reason:
            reason += f": {blackout.reason}"
        return ConstraintViolation.for_candidate(ConstraintName.BLACKOUT_DATE, reason, candidate)

    def availability_violation(self, candidate: Candidate) -> Optional[ConstraintViolation]:
        if self.is_available(candidate.preceptor_id, candidate.site_id, candidate.date):
            return None
        return ConstraintViolation.for_candidate(
            ConstraintName.PRECEPTOR_AVAILABILITY,
            f"{candidate.preceptor_id} not available at {candidate.site_id} on {candidate.date}",
            candidate
        )

    def capacity_violation(self, candidate: Candidate) -> Optional[ConstraintViolation]:
        if self.remaining_capacity(candidate.preceptor_id, candidate.date) > 0:
            return None
        return ConstraintViolation.for_candidate(
            ConstraintName.PRECEPTOR_CAPACITY,
            f"{candidate.preceptor_id} is at capacity on {candidate.date}",
            candidate
        )

    def block_capacity_violation(
        self,
        candidate: Candidate,
        start: date_type,
        end: date_type
    ) -> Optional[ConstraintViolation]:
        """
        CapacityRule.max_students_per_block: distinct students the preceptor hosts
        over [start, end], counting the candidate's student.
        """
        if ConstraintName.PRECEPTOR_CAPACITY in self.relaxed:
            return None
        rule = self.snapshot.capacity_rule_by_preceptor.get(candidate.preceptor_id)
        if rule is None or rule.max_students_per_block is None:
            return None

        hosted = self.state.students_hosted(candidate.preceptor_id, start, end) | {candidate.student_id}
        if len(hosted) <= rule.max_students_per_block:
            return None
        return ConstraintViolation.for_candidate(
            ConstraintName.PRECEPTOR_CAPACITY,
            f"{candidate.preceptor_id} already hosts {len(hosted) - 1} student(s) between {start} and {end} "
            f"(block limit {rule.max_students_per_block})",
            candidate
        )
