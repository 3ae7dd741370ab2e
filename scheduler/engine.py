"""
The Clerkship Assignment Engine.

This module implements the core "Solver" logic.
It combines three strategies:
1. Hardest First - requirements with the most remaining days are placed first.
2. Team Backtracking - if a team cannot cover a whole requirement, its placements
   are released and the next team is tried.
3. Fallback Tiers - optional gap fill that widens the pool for whatever is still missing.

Each clerkship picks how its core days are shaped: team continuity (default),
one preceptor for every day, fixed-size blocks with one preceptor each, or daily
rotation across the pool.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from models import AssignmentStrategy, AssignmentType, Clerkship, ScheduleAssignment
from .constraints import Candidate, ConstraintChecker, ConstraintName, ConstraintViolation
from .errors import RegenerationCancelled
from .requirements import Requirement
from .scoring import SlotScorer
from .state import InfeasibilityWarning, SchedulerState
from .teams import RankedTeam, TeamSelector

logger = logging.getLogger(__name__)


@dataclass
class SolveResult:
    assignments: List[ScheduleAssignment]
    unassigned: List[InfeasibilityWarning]
    violations: List[ConstraintViolation]
    statistics: Dict = field(default_factory=dict)
    failure_report: List[Dict] = field(default_factory=list)


class AssignmentSolver:
    """
    Main scheduling engine.
    Ingests Demand (Requirements) and Supply (ranked teams over open slots), outputs assignments.
    """

    def __init__(
        self,
        snapshot,
        state: SchedulerState,
        checker: ConstraintChecker,
        selector: TeamSelector,
        scorer: SlotScorer,
        dates: List,
        enable_fallbacks: bool = False,
        allow_cross_system: bool = False,
        cancel_event: Optional[threading.Event] = None
    ):
        self.snapshot = snapshot
        self.state = state
        self.checker = checker
        self.selector = selector
        self.scorer = scorer
        self.dates = list(dates)
        self.enable_fallbacks = enable_fallbacks
        self.allow_cross_system = allow_cross_system
        self.cancel_event = cancel_event

    def solve(self, core: List[Requirement], electives: List[Requirement]) -> SolveResult:
        """
        Execute the placement pipeline.
        """
        logger.info(f"Solving {len(core)} core and {len(electives)} elective requirements over {len(self.dates)} days")

        # 1. Core clerkship days, hardest first, shaped by the clerkship's strategy
        missing: List[Tuple[Requirement, int, Dict[str, int]]] = []
        for req in sorted(core, key=lambda r: r.sort_key):
            self._check_cancelled()
            gap, blocking = self._place_core(req)
            if gap:
                missing.append((req, gap, blocking))

        # 2. Elective days inside each clerkship's remaining budget
        for req in sorted(electives, key=lambda r: r.sort_key):
            self._check_cancelled()
            clerkship = self.snapshot.clerkship_by_id[req.clerkship_id]
            elective = next(e for e in clerkship.electives if e.id == req.elective_id)
            pools = self.selector.elective_pools(clerkship, elective)
            gap, blocking = self._place_requirement(req, pools, AssignmentType.ELECTIVE)
            if gap:
                missing.append((req, gap, blocking))

        # 3. Fallback gap fill, largest gaps first
        if self.enable_fallbacks and missing:
            missing = self._fill_gaps(missing)

        for req, gap, blocking in missing:
            self.state.record_unassigned(InfeasibilityWarning(
                student_id=req.student_id,
                clerkship_id=req.clerkship_id,
                elective_id=req.elective_id,
                missing_days=gap,
                reason=self._describe(blocking),
                blocking=blocking,
            ))
            logger.warning(
                f"Infeasible: {req.student_id} / {req.clerkship_id}"
                f"{' / ' + req.elective_id if req.elective_id else ''} short {gap} day(s)"
            )

        stats = self.state.get_statistics()
        logger.info(f"Solver placed {stats['placed_assignments']} day(s), {stats['unassigned_days']} unassigned")

        return SolveResult(
            assignments=list(self.state.placed),
            unassigned=list(self.state.unassigned),
            violations=list(self.state.accepted_violations),
            statistics=stats,
            failure_report=self.state.get_failure_report(),
        )

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.info("Cancellation observed between requirements")
            raise RegenerationCancelled("Regeneration cancelled by caller")

    def _ordered_pools(self, req: Requirement) -> List[RankedTeam]:
        """Candidate teams in rank order, the team the student already holds moved to the front."""
        pools = self.selector.candidate_teams(req.clerkship_id)
        current = self.state.team_for(req.student_id, req.clerkship_id)
        if current:
            pools.sort(key=lambda t: (t.team_id != current, t.rank))
        return pools

    def _place_core(self, req: Requirement) -> Tuple[int, Dict[str, int]]:
        clerkship = self.snapshot.clerkship_by_id[req.clerkship_id]
        pools = self._ordered_pools(req)
        strategy = clerkship.assignment_strategy

        if strategy == AssignmentStrategy.CONTINUOUS_SINGLE:
            return self._place_requirement(req, self._single_member_pools(req, pools), AssignmentType.CLERKSHIP)
        if strategy == AssignmentStrategy.BLOCK_BASED:
            return self._place_blocks(req, clerkship, self._single_member_pools(req, pools))
        # Team continuity and daily rotation differ only in slot scoring
        return self._place_requirement(req, pools, AssignmentType.CLERKSHIP)

    def _single_member_pools(self, req: Requirement, pools: List[RankedTeam]) -> List[RankedTeam]:
        """
        Split ranked pools into one pool per preceptor, in team then member order.
        Preceptors the student already holds core days with come first.
        """
        held = {
            a.preceptor_id for a in self.state.assignments_for(req.student_id, req.clerkship_id)
            if not a.elective_id
        }
        singles = []
        seen = set()
        for pool in pools:
            for member in pool.members:
                if member.preceptor_id in seen:
                    continue
                seen.add(member.preceptor_id)
                singles.append(RankedTeam(
                    team_id=pool.team_id,
                    rank=pool.rank,
                    members=[member],
                    health_system_id=pool.health_system_id,
                    site_ids=pool.site_ids,
                ))
        singles.sort(key=lambda p: p.members[0].preceptor_id not in held)
        return singles

    def _place_blocks(
        self,
        req: Requirement,
        clerkship: Clerkship,
        singles: List[RankedTeam]
    ) -> Tuple[int, Dict[str, int]]:
        """
        Cut the requirement into blocks of block_size_days (the remainder forms a shorter
        last block) and give every block to a single preceptor.
        A block no preceptor can cover stays unplaced as a whole.
        """
        size = clerkship.block_size_days or req.days
        sizes = [size] * (req.days // size)
        if req.days % size:
            sizes.append(req.days % size)

        blocking: Dict[str, int] = {}
        gap = 0
        previous: Optional[str] = None

        for number, block_days in enumerate(sizes, start=1):
            order = singles
            if clerkship.prefer_continuous_blocks and previous is not None:
                order = sorted(singles, key=lambda p: p.members[0].preceptor_id != previous)

            chosen = None
            for pool in order:
                placed = self._fill_from_pool(
                    req, block_days, pool, AssignmentType.CLERKSHIP, blocking, notes=f"block {number}"
                )
                if len(placed) == block_days:
                    violation = self.checker.resolver.block_capacity_violation(
                        as_candidate(placed[0]),
                        min(a.date for a in placed),
                        max(a.date for a in placed),
                    )
                    if violation is None:
                        chosen = pool.members[0].preceptor_id
                        break
                    name = violation.constraint_type.value
                    blocking[name] = blocking.get(name, 0) + 1
                    self.state.record_violation(violation)

                # Backtrack
                for assignment in reversed(placed):
                    self.state.remove_booking(assignment)
                self._forget_accepted(placed)

            if chosen is None:
                gap += block_days
                logger.debug(f"{req.student_id} / {req.clerkship_id}: no preceptor covers block {number} ({block_days} day(s))")
            else:
                previous = chosen

        return gap, blocking

    def _place_requirement(
        self,
        req: Requirement,
        pools: List[RankedTeam],
        assignment_type: AssignmentType
    ) -> Tuple[int, Dict[str, int]]:
        """
        Try each pool in order until one covers the whole requirement.
        Returns (days still missing, blocking counts seen).
        """
        blocking: Dict[str, int] = {}
        best: Optional[Tuple[int, RankedTeam]] = None

        for pool in pools:
            placed = self._fill_from_pool(req, req.days, pool, assignment_type, blocking)
            if len(placed) == req.days:
                logger.debug(f"{req.student_id} / {req.clerkship_id}: {pool.team_id or 'open pool'} covers {req.days} day(s)")
                return 0, blocking

            if placed and (best is None or len(placed) > best[0]):
                best = (len(placed), pool)

            # Backtrack
            for assignment in reversed(placed):
                self.state.remove_booking(assignment)
            self._forget_accepted(placed)

        if best is None:
            return req.days, blocking

        # Identical state as when the best pool was first tried, so the re-run
        # reproduces the same partial placement
        placed = self._fill_from_pool(req, req.days, best[1], assignment_type, {})
        logger.debug(f"{req.student_id} / {req.clerkship_id}: partial {len(placed)}/{req.days} from {best[1].team_id or 'open pool'}")
        return req.days - len(placed), blocking

    def _fill_from_pool(
        self,
        req: Requirement,
        needed: int,
        pool: RankedTeam,
        assignment_type: AssignmentType,
        blocking: Dict[str, int],
        checker: Optional[ConstraintChecker] = None,
        gate_fallback_members: bool = True,
        notes: str = ""
    ) -> List[ScheduleAssignment]:
        """Greedily take the best open slot from the pool until the need is met or nothing is left."""
        checker = checker or self.checker
        placed: List[ScheduleAssignment] = []

        while len(placed) < needed:
            choice = self._best_slot(req, pool, blocking, checker, gate_fallback_members)
            if choice is None:
                break

            candidate, member_is_fallback, advisory = choice
            assignment = ScheduleAssignment(
                period_id=self.snapshot.period.id,
                student_id=candidate.student_id,
                preceptor_id=candidate.preceptor_id,
                clerkship_id=candidate.clerkship_id,
                site_id=candidate.site_id,
                date=candidate.date,
                elective_id=candidate.elective_id,
                team_id=pool.team_id,
                assignment_type=assignment_type,
                notes=notes or ("fallback member" if member_is_fallback else ""),
            )
            self.state.add_booking(assignment)
            self.state.accepted_violations.extend(advisory)
            placed.append(assignment)

        return placed

    def _best_slot(
        self,
        req: Requirement,
        pool: RankedTeam,
        blocking: Dict[str, int],
        checker: ConstraintChecker,
        gate_fallback_members: bool
    ) -> Optional[Tuple[Candidate, bool, List[ConstraintViolation]]]:
        """
        Score every valid (member, site, date) of the pool and return the winner.
        Fallback-only members are considered on a date only if no primary is open that day.
        """
        primaries = [(i, m) for i, m in enumerate(pool.members) if not (gate_fallback_members and m.is_fallback_only)]
        fallbacks = [(i, m) for i, m in enumerate(pool.members) if gate_fallback_members and m.is_fallback_only]

        valid = []
        for day in self.dates:
            if self.state.booking_for(req.student_id, day) is not None:
                continue

            day_valid = self._valid_on_day(req, pool, primaries, day, blocking, checker, is_fallback=False)
            if not day_valid and fallbacks:
                day_valid = self._valid_on_day(req, pool, fallbacks, day, blocking, checker, is_fallback=True)
            valid.extend(day_valid)

        if not valid:
            return None

        valid.sort(key=lambda v: v[0])
        _, candidate, is_fallback, advisory = valid[0]
        return candidate, is_fallback, advisory

    def _valid_on_day(self, req, pool, members, day, blocking, checker, is_fallback) -> List:
        found = []
        for index, member in members:
            for site_id, _ in self.checker.resolver.candidate_slots(member.preceptor_id, [day], pool.site_ids):
                candidate = Candidate(
                    student_id=req.student_id,
                    preceptor_id=member.preceptor_id,
                    site_id=site_id,
                    date=day,
                    clerkship_id=req.clerkship_id,
                    elective_id=req.elective_id,
                )
                violations, advisory = checker.evaluate(candidate, stop_on_block=True)
                if violations:
                    name = violations[0].constraint_type.value
                    blocking[name] = blocking.get(name, 0) + 1
                    self.state.record_violation(violations[0])
                    continue

                score = self.scorer.calculate_score(candidate, pool.rank, index, is_fallback)
                found.append((SlotScorer.rank_key(score, candidate), candidate, is_fallback, advisory))
        return found

    def _forget_accepted(self, released: List[ScheduleAssignment]) -> None:
        """Drop advisory violations that belonged to released placements."""
        if not released or not self.state.accepted_violations:
            return
        keys = {(a.student_id, a.date, a.preceptor_id, a.site_id) for a in released}
        self.state.accepted_violations = [
            v for v in self.state.accepted_violations
            if (v.student_id, v.date, v.preceptor_id, v.site_id) not in keys
        ]

    def _fill_gaps(self, missing: List[Tuple[Requirement, int, Dict[str, int]]]) -> List[Tuple[Requirement, int, Dict[str, int]]]:
        """
        Retry unmet days across fallback tiers.
        Tier 3 crosses health systems, so continuity is demoted to advisory there.
        """
        still_missing = []
        ordered = sorted(missing, key=lambda m: (-m[1], m[0].student_id, m[0].clerkship_id, m[0].elective_id or ""))

        for req, gap, blocking in ordered:
            self._check_cancelled()
            primary = self.state.team_for(req.student_id, req.clerkship_id)
            tiers = self.selector.fallback_tiers(req.clerkship_id, primary, self.allow_cross_system)

            for tier in tiers:
                if gap == 0:
                    break
                checker = self.checker
                if tier.tier == 3:
                    checker = self.checker.with_relaxed([ConstraintName.HEALTH_SYSTEM_CONTINUITY])

                for pool in tier.teams:
                    if gap == 0:
                        break
                    placed = self._fill_from_pool(
                        req, gap, pool, AssignmentType.FALLBACK, blocking,
                        checker=checker, gate_fallback_members=False, notes=f"fallback tier {tier.tier}",
                    )
                    if placed:
                        logger.info(f"Fallback tier {tier.tier}: {req.student_id} / {req.clerkship_id} +{len(placed)} day(s)")
                    gap -= len(placed)

            if gap:
                still_missing.append((req, gap, blocking))

        return still_missing

    @staticmethod
    def _describe(blocking: Dict[str, int]) -> str:
        if not blocking:
            return "No open slot with any candidate preceptor"
        top = max(sorted(blocking), key=blocking.get)
        return f"Blocked mostly by {top} ({blocking[top]} candidate(s))"


def as_candidate(assignment: ScheduleAssignment) -> Candidate:
    return Candidate(
        student_id=assignment.student_id,
        preceptor_id=assignment.preceptor_id,
        site_id=assignment.site_id,
        date=assignment.date,
        clerkship_id=assignment.clerkship_id,
        elective_id=assignment.elective_id,
    )
