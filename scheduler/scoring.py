"""
Heuristic Scoring Engine for the Clerkship Scheduler.

This module determines the 'Quality' of a valid slot.
Unlike hard constraints (binary Yes/No), this provides a gradient to guide the
solver toward schedules where a student stays with the same people and places.
Higher is better; the relative weights come from ScoringWeights.
"""

from datetime import date as date_type
from typing import Tuple

from models import AssignmentStrategy
from .config import ScoringWeights
from .constraints import Candidate


class SlotScorer:
    """
    Ranks open slots on team rank, member priority, continuity and earliest date.
    """

    def __init__(self, weights: ScoringWeights, snapshot, state, range_start: date_type):
        self.weights = weights
        self.snapshot = snapshot
        self.state = state
        self.range_start = range_start

    def calculate_score(
        self,
        candidate: Candidate,
        team_rank: int = 0,
        member_index: int = 0,
        is_fallback_member: bool = False
    ) -> float:
        """
        Master scoring function.
        """
        w = self.weights
        score = 0.0

        # 1. Preference order of the pool
        score -= team_rank * w.team_rank
        score -= member_index * w.member_rank
        if is_fallback_member:
            score -= w.fallback_member

        # 2. Continuity with what the student already holds for this clerkship
        score += self._score_continuity(candidate)

        # 3. Earliest date first
        score -= (candidate.date - self.range_start).days * w.earliest_date

        return score

    def _score_continuity(self, candidate: Candidate) -> float:
        held = self.state.assignments_for(candidate.student_id, candidate.clerkship_id)
        if not held:
            return 0.0

        w = self.weights
        score = 0.0

        system = self.snapshot.site_health_system(candidate.site_id)
        if system and system in self.state.health_systems_for(candidate.student_id, candidate.clerkship_id):
            score += w.health_system_continuity

        if any(a.site_id == candidate.site_id for a in held):
            score += w.site_continuity

        same_preceptor = sum(1 for a in held if a.preceptor_id == candidate.preceptor_id)
        if self._rotates(candidate):
            score -= same_preceptor * w.daily_rotation
        elif same_preceptor:
            score += w.preceptor_continuity

        return score

    def _rotates(self, candidate: Candidate) -> bool:
        if candidate.elective_id:
            return False
        clerkship = self.snapshot.clerkship_by_id.get(candidate.clerkship_id)
        return clerkship is not None and clerkship.assignment_strategy == AssignmentStrategy.DAILY_ROTATION

    @staticmethod
    def rank_key(score: float, candidate: Candidate) -> Tuple:
        """Sort key: best score first, then a fixed tie-break so equal scores stay deterministic."""
        return (-score, candidate.date, candidate.preceptor_id, candidate.site_id)
