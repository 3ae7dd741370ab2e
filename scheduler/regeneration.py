"""
Regeneration Orchestrator.

Runs one regeneration of a scheduling period:
VALIDATING -> COMPUTING_FROZEN_SET -> SOLVING -> DIFFING -> COMMITTING -> DONE
(or FAILED / CANCELLED). The store is read once into a snapshot and written once
through an atomic commit_delta.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from models import AssignmentStatus, DateRange, ScheduleAssignment
from .availability import AvailabilityResolver
from .config import SchedulerConfig
from .constraints import ConstraintChecker, ConstraintViolation, parse_relaxed
from .engine import AssignmentSolver, as_candidate
from .errors import FatalError, RegenerationCancelled, ValidationError
from .requirements import Requirement, build_requirements, validate_clerkship
from .scoring import SlotScorer
from .snapshot import SchedulingSnapshot
from .state import InfeasibilityWarning, SchedulerState
from .suggestions import Suggestion, generate_suggestions
from .teams import InvalidTeam, TeamSelector

logger = logging.getLogger(__name__)


class RegenerationMode(str, Enum):
    FULL = "full"
    SMART = "smart"
    COMPLETION = "completion"


class SmartStrategy(str, Enum):
    MINIMAL_CHANGE = "minimal-change"
    FULL_REOPTIMIZE = "full-reoptimize"


class RunState(str, Enum):
    VALIDATING = "validating"
    COMPUTING_FROZEN_SET = "computing_frozen_set"
    SOLVING = "solving"
    DIFFING = "diffing"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RegenerationOptions(BaseModel):
    """Caller options for a single run."""
    cutoff_date: Optional[date_type] = Field(default=None, description="Smart mode: assignments before this date are frozen")
    strategy: SmartStrategy = Field(default=SmartStrategy.MINIMAL_CHANGE)
    constraints_to_relax: List[str] = Field(default_factory=list, description="Completion mode only")
    confirm_destructive: bool = Field(default=False, description="Required for full mode")
    dry_run: bool = Field(default=False, description="Compute the full report without committing")
    enable_fallbacks: Optional[bool] = Field(default=None, description="Overrides SchedulerConfig.enable_fallbacks")


@dataclass
class RunReport:
    run_id: str
    period_id: str
    mode: RegenerationMode
    state: RunState = RunState.VALIDATING
    strategy: Optional[SmartStrategy] = None
    date_range: Optional[DateRange] = None
    dry_run: bool = False

    created: List[ScheduleAssignment] = field(default_factory=list)
    removed_ids: List[str] = field(default_factory=list)
    kept_count: int = 0
    frozen_count: int = 0

    unassigned: List[InfeasibilityWarning] = field(default_factory=list)
    failure_report: List[dict] = field(default_factory=list)
    accepted_violations: List[ConstraintViolation] = field(default_factory=list)
    blocking_violations: Dict[str, int] = field(default_factory=dict)
    suggestions: List[Suggestion] = field(default_factory=list)
    invalid_teams: List[InvalidTeam] = field(default_factory=list)
    removal_reasons: Dict[str, str] = field(default_factory=dict)

    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def removed_count(self) -> int:
        return len(self.removed_ids)

    @property
    def unassigned_days(self) -> int:
        return sum(w.missing_days for w in self.unassigned)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "period_id": self.period_id,
            "mode": self.mode.value,
            "strategy": self.strategy.value if self.strategy else None,
            "state": self.state.value,
            "dry_run": self.dry_run,
            "date_range": self.date_range.model_dump(mode="json") if self.date_range else None,
            "counts": {
                "created": self.created_count,
                "kept": self.kept_count,
                "removed": self.removed_count,
                "frozen": self.frozen_count,
                "unassigned_days": self.unassigned_days,
            },
            "created": [a.model_dump(mode="json") for a in self.created],
            "removed_ids": list(self.removed_ids),
            "removal_reasons": dict(self.removal_reasons),
            "unassigned": [w.to_dict() for w in self.unassigned],
            "failure_report": [dict(entry) for entry in self.failure_report],
            "accepted_violations": [v.to_dict() for v in self.accepted_violations],
            "blocking_violations": dict(self.blocking_violations),
            "suggestions": [s.to_dict() for s in self.suggestions],
            "invalid_teams": [t.to_dict() for t in self.invalid_teams],
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "timings": dict(self.timings),
        }


class RegenerationOrchestrator:
    """
    Entry point for regeneration runs over an EntityStore.
    At most one run per period is in flight across every orchestrator sharing the
    store (the store holds the claim); finished runs stay in the run registry.
    """

    def __init__(self, store, config: Optional[SchedulerConfig] = None):
        self.store = store
        self.config = config or SchedulerConfig()
        self._runs: Dict[str, RunReport] = {}

    # --- Public API ---

    def regenerate(
        self,
        period_id: str,
        mode: Union[RegenerationMode, str],
        date_range: Union[DateRange, Tuple[date_type, date_type], None] = None,
        options: Optional[RegenerationOptions] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> RunReport:
        try:
            mode = RegenerationMode(mode)
        except ValueError:
            raise ValidationError(f"Unknown regeneration mode '{mode}'", field="mode")
        options = options or RegenerationOptions()

        run_id = uuid.uuid4().hex
        self.store.claim_period(period_id, run_id)

        report = RunReport(run_id=run_id, period_id=period_id, mode=mode, dry_run=options.dry_run)
        if mode == RegenerationMode.SMART:
            report.strategy = options.strategy
        self._runs[report.run_id] = report
        logger.info(f"Run {report.run_id}: {mode.value} regeneration of period {period_id} started")

        try:
            self._execute(report, date_range, options, cancel_event)
        except ValidationError as e:
            # Input was rejected before solving; no state was touched
            report.state = RunState.FAILED
            report.error = str(e)
            logger.error(f"Run {report.run_id} rejected: {e}")
            raise
        except RegenerationCancelled:
            report.state = RunState.CANCELLED
            logger.info(f"Run {report.run_id} cancelled; nothing committed")
            raise
        except FatalError as e:
            report.state = RunState.FAILED
            report.error = str(e)
            logger.error(f"Run {report.run_id} failed: {e}")
            raise
        except Exception as e:
            report.state = RunState.FAILED
            report.error = f"{type(e).__name__}: {e}"
            logger.exception(f"Run {report.run_id} failed unexpectedly")
            raise FatalError(f"Regeneration of period {period_id} failed: {report.error}") from e
        finally:
            self.store.release_period(period_id, run_id)

        self._audit(report)
        return report

    def get_run(self, run_id: str) -> RunReport:
        if run_id not in self._runs:
            raise ValidationError(f"Unknown run id {run_id}", field="run_id")
        return self._runs[run_id]

    def get_violations(self, run_id: str) -> List[ConstraintViolation]:
        """Accepted (advisory) violations recorded by a run."""
        return list(self.get_run(run_id).accepted_violations)

    def get_unassigned(self, period_id: str) -> List[Requirement]:
        """Requirements minus current assignments, computed from live store state."""
        snapshot = self._load_snapshot(period_id)
        core, electives = build_requirements(snapshot, snapshot.assignments)
        return sorted(core + electives, key=lambda r: r.sort_key)

    # --- Pipeline ---

    def _execute(self, report: RunReport, date_range, options: RegenerationOptions, cancel_event) -> None:
        clock = time.perf_counter()

        # 1. VALIDATING
        report.state = RunState.VALIDATING
        snapshot = self._load_snapshot(report.period_id)
        target = self._resolve_range(snapshot, date_range)
        report.date_range = target
        relaxed = self._validate(report.mode, options, snapshot)
        report.timings["validating"] = round(time.perf_counter() - clock, 4)

        # 2. COMPUTING_FROZEN_SET
        report.state = RunState.COMPUTING_FROZEN_SET
        frozen, candidates_to_keep, discarded = self._partition(report.mode, options, snapshot, target)
        report.frozen_count = len(frozen)

        state = SchedulerState(snapshot)
        for assignment in frozen:
            state.add_booking(assignment, fixed=True)

        resolver = AvailabilityResolver(snapshot, state, self.config, relaxed)
        checker = ConstraintChecker(snapshot, state, resolver, relaxed)

        removed: List[ScheduleAssignment] = list(discarded)
        for assignment in discarded:
            report.removal_reasons[assignment.id] = "discarded by regeneration mode"

        # Minimal-change: keep future rows that still satisfy every active constraint
        strict = ConstraintChecker(snapshot, state, resolver)
        for assignment in sorted(candidates_to_keep, key=lambda a: (a.date, a.student_id, a.id)):
            if assignment.status == AssignmentStatus.CANCELLED:
                # Holds the student's date without crediting a day
                removed.append(assignment)
                report.removal_reasons[assignment.id] = "cancelled: holds no placement"
                continue
            violation = strict.check(as_candidate(assignment))
            if violation is None:
                state.add_booking(assignment, fixed=True)
                report.kept_count += 1
            else:
                removed.append(assignment)
                report.removal_reasons[assignment.id] = f"{violation.constraint_type.value}: {violation.reason}"
                logger.info(f"Removing {assignment.id} ({assignment.student_id} on {assignment.date}): {violation.reason}")
        report.timings["frozen_set"] = round(time.perf_counter() - clock, 4)

        # 3. SOLVING
        report.state = RunState.SOLVING
        selector = TeamSelector(snapshot)
        report.invalid_teams = selector.invalid_teams()
        core, electives = build_requirements(snapshot, state.fixed)

        enable_fallbacks = self.config.enable_fallbacks if options.enable_fallbacks is None else options.enable_fallbacks
        solver = AssignmentSolver(
            snapshot=snapshot,
            state=state,
            checker=checker,
            selector=selector,
            scorer=SlotScorer(self.config.weights, snapshot, state, target.start),
            dates=list(target.days()),
            enable_fallbacks=enable_fallbacks,
            allow_cross_system=self.config.fallback_allow_cross_system,
            cancel_event=cancel_event,
        )
        result = solver.solve(core, electives)
        report.timings["solving"] = round(time.perf_counter() - clock, 4)

        # 4. DIFFING: a re-solved row identical to a removed one keeps the old row
        report.state = RunState.DIFFING
        inserts, deletes, revived = _net_changes(result.assignments, removed)
        report.kept_count += revived
        report.created = inserts
        report.removed_ids = [a.id for a in deletes]
        for assignment_id in list(report.removal_reasons):
            if assignment_id not in report.removed_ids:
                del report.removal_reasons[assignment_id]

        report.unassigned = result.unassigned
        report.failure_report = result.failure_report
        report.accepted_violations = result.violations
        report.blocking_violations = result.statistics.get("blocking_violations", {})
        report.suggestions = generate_suggestions(report.blocking_violations)
        report.timings["diffing"] = round(time.perf_counter() - clock, 4)

        if cancel_event is not None and cancel_event.is_set():
            raise RegenerationCancelled("Regeneration cancelled before commit")

        # 5. COMMITTING
        if not options.dry_run:
            report.state = RunState.COMMITTING
            try:
                self.store.commit_delta(report.period_id, inserts, report.removed_ids)
            except FatalError:
                raise
            except Exception as e:
                raise FatalError(f"Commit failed for period {report.period_id}: {e}") from e
        report.timings["committing"] = round(time.perf_counter() - clock, 4)

        report.state = RunState.DONE

    def _load_snapshot(self, period_id: str) -> SchedulingSnapshot:
        try:
            snapshot = self.store.snapshot(period_id)
        except (FatalError, ValidationError):
            raise
        except Exception as e:
            raise FatalError(f"Store unavailable while reading period {period_id}: {e}") from e
        if snapshot is None:
            raise FatalError(f"Scheduling period {period_id} not found")
        return snapshot

    @staticmethod
    def _resolve_range(snapshot: SchedulingSnapshot, date_range) -> DateRange:
        if date_range is None:
            return snapshot.date_range
        if not isinstance(date_range, DateRange):
            try:
                start, end = date_range
                date_range = DateRange(start=start, end=end)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid date range: {e.errors()[0]['msg']}", field="date_range")
            except (TypeError, ValueError):
                raise ValidationError("Date range must be a DateRange or a (start, end) pair", field="date_range")

        period = snapshot.period
        if date_range.start < period.start_date or date_range.end > period.end_date:
            raise ValidationError(
                f"Date range {date_range.start}..{date_range.end} is outside period "
                f"{period.start_date}..{period.end_date}",
                field="date_range"
            )
        return date_range

    def _validate(self, mode: RegenerationMode, options: RegenerationOptions, snapshot: SchedulingSnapshot):
        relaxed = parse_relaxed(options.constraints_to_relax)
        if relaxed and mode != RegenerationMode.COMPLETION:
            raise ValidationError("constraints_to_relax only applies to completion mode", field="constraints_to_relax")

        if mode == RegenerationMode.FULL and not options.confirm_destructive:
            raise ValidationError(
                "Full regeneration deletes every unlocked assignment in range; pass confirm_destructive=True",
                field="confirm_destructive"
            )
        if mode == RegenerationMode.SMART and options.cutoff_date is None:
            raise ValidationError("Smart regeneration requires cutoff_date", field="cutoff_date")

        for clerkship in snapshot.clerkships:
            validate_clerkship(clerkship)
        return relaxed

    @staticmethod
    def _partition(mode: RegenerationMode, options: RegenerationOptions, snapshot: SchedulingSnapshot, target: DateRange):
        """
        Split existing assignments into (frozen, re-validate, discard).
        Rows outside the target range and locked rows are always frozen.
        """
        frozen, revalidate, discard = [], [], []
        for assignment in snapshot.assignments:
            if assignment.date not in target or assignment.is_locked:
                frozen.append(assignment)
            elif mode == RegenerationMode.COMPLETION:
                frozen.append(assignment)
            elif mode == RegenerationMode.SMART and assignment.date < options.cutoff_date:
                frozen.append(assignment)
            elif mode == RegenerationMode.SMART and options.strategy == SmartStrategy.MINIMAL_CHANGE:
                revalidate.append(assignment)
            else:
                discard.append(assignment)
        return frozen, revalidate, discard

    def _audit(self, report: RunReport) -> None:
        logger.info(
            f"Run {report.run_id} {report.state.value}: period={report.period_id} mode={report.mode.value}"
            f"{' strategy=' + report.strategy.value if report.strategy else ''}"
            f" created={report.created_count} kept={report.kept_count} removed={report.removed_count}"
            f" unassigned_days={report.unassigned_days} accepted_violations={len(report.accepted_violations)}"
            f"{' (dry run)' if report.dry_run else ''}"
        )


def _revival_key(assignment: ScheduleAssignment) -> tuple:
    return assignment.plan_key() + (assignment.status, assignment.assignment_type, assignment.team_id)


def _net_changes(placed: List[ScheduleAssignment], removed: List[ScheduleAssignment]):
    """
    Cancel out placements that reproduce a removed row exactly.
    Cancelled rows are never revived: they credit no days, so a fresh placement replaces them.
    Returns (inserts, deletes, revived_count).
    """
    removed_by_key: Dict[tuple, List[ScheduleAssignment]] = {}
    for assignment in removed:
        if assignment.status == AssignmentStatus.CANCELLED:
            continue
        removed_by_key.setdefault(_revival_key(assignment), []).append(assignment)

    inserts = []
    revived = set()
    for assignment in placed:
        matches = removed_by_key.get(_revival_key(assignment))
        if matches:
            revived.add(matches.pop(0).id)
        else:
            inserts.append(assignment)

    deletes = [a for a in removed if a.id not in revived]
    return inserts, deletes, len(revived)
