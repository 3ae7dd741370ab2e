import threading
from collections import Counter

import pytest

from generators import SCENARIOS, load_scenario
from models import AssignmentStatus, BlackoutDate, Clerkship, PreceptorAvailability, ScheduleAssignment
from scheduler import (
    ConflictError,
    ConstraintName,
    FatalError,
    RegenerationCancelled,
    RegenerationOptions,
    RegenerationOrchestrator,
    RunState,
    SchedulerConfig,
    ValidationError,
)
from scheduler.engine import AssignmentSolver
from scheduler.requirements import Requirement
from store import InMemoryStore
from tests.conftest import PERIOD_ID, day, full_options, seed_basic


def _rows(store, period_id=PERIOD_ID):
    return store.list_assignments(period_id)


def _plan(store, period_id=PERIOD_ID):
    return sorted(a.plan_key() for a in _rows(store, period_id))


def _close(store, offset, preceptor_id="pre1"):
    store.add_availability(PreceptorAvailability(
        preceptor_id=preceptor_id, site_id="site1", date=day(offset), is_available=False
    ))


# --- Full mode ---

def test_second_full_run_changes_nothing(store, orchestrator):
    seed_basic(store)
    orchestrator.regenerate(PERIOD_ID, "full", options=full_options())
    ids = {a.id for a in _rows(store)}

    report = orchestrator.regenerate(PERIOD_ID, "full", options=full_options())

    assert (report.created_count, report.removed_count, report.kept_count) == (0, 0, 10)
    assert {a.id for a in _rows(store)} == ids


@pytest.mark.parametrize("scenario", sorted(SCENARIOS))
def test_same_input_same_plan(scenario):
    plans = []
    for _ in range(2):
        store = InMemoryStore()
        period_id = load_scenario(scenario, store)
        RegenerationOrchestrator(store).regenerate(period_id, "full", options=full_options())
        plans.append(_plan(store, period_id))

    assert plans[0] == plans[1]


@pytest.mark.parametrize("scenario", sorted(SCENARIOS))
def test_scenarios_respect_capacity_and_double_booking(scenario):
    store = InMemoryStore()
    period_id = load_scenario(scenario, store)
    RegenerationOrchestrator(store).regenerate(period_id, "full", options=full_options())

    rows = _rows(store, period_id)
    assert rows
    per_student_day = Counter((a.student_id, a.date) for a in rows)
    assert max(per_student_day.values()) == 1

    limits = {p.id: p.max_students for p in store.list_preceptors()}
    per_preceptor_day = Counter((a.preceptor_id, a.date) for a in rows)
    for (preceptor_id, _), count in per_preceptor_day.items():
        assert count <= limits[preceptor_id]

    available = {(r.preceptor_id, r.site_id, r.date) for r in store.list_availability() if r.is_available}
    assert all((a.preceptor_id, a.site_id, a.date) in available for a in rows)


def test_locked_rows_survive_full_mode(store, orchestrator):
    seed_basic(store, available=range(12))
    locked = ScheduleAssignment(
        period_id=PERIOD_ID, student_id="stu_a", preceptor_id="pre1", clerkship_id="clk1",
        site_id="site1", date=day(11), is_locked=True,
    )
    store.add_assignment(locked)

    report = orchestrator.regenerate(PERIOD_ID, "full", options=full_options())

    assert report.frozen_count == 1
    assert report.created_count == 9
    assert locked.id in {a.id for a in _rows(store)}


def test_range_limits_what_is_touched(store, orchestrator):
    seed_basic(store, available=range(14), required_days=10)
    orchestrator.regenerate(PERIOD_ID, "full", options=full_options())
    before = {a.date: a.id for a in _rows(store)}

    _close(store, 1)
    report = orchestrator.regenerate(PERIOD_ID, "full", date_range=(day(0), day(4)), options=full_options())

    after = {a.date: a.id for a in _rows(store)}
    assert report.frozen_count == 5
    assert all(after[day(i)] == before[day(i)] for i in range(5, 10))
    assert day(1) not in after
    assert len(after) == 9
    assert report.unassigned_days == 1


def test_dry_run_commits_nothing(store, orchestrator):
    seed_basic(store)

    report = orchestrator.regenerate(PERIOD_ID, "full", options=full_options(dry_run=True))

    assert report.created_count == 10
    assert report.state == RunState.DONE
    assert _rows(store) == []


# --- Smart mode ---

def _smart_setup(store, orchestrator):
    seed_basic(store, required_days=4, available=range(6))
    orchestrator.regenerate(PERIOD_ID, "full", options=full_options())
    rows = {a.date: a for a in _rows(store)}
    assert sorted(rows) == [day(i) for i in range(4)]
    _close(store, 3)
    return rows


def test_smart_minimal_change_replaces_only_broken_rows(store, orchestrator):
    before = _smart_setup(store, orchestrator)

    report = orchestrator.regenerate(
        PERIOD_ID, "smart", options=RegenerationOptions(cutoff_date=day(2), strategy="minimal-change")
    )

    assert (report.created_count, report.removed_count, report.kept_count) == (1, 1, 1)
    assert report.frozen_count == 2
    assert report.removed_ids == [before[day(3)].id]
    assert report.removal_reasons[before[day(3)].id].startswith("preceptor-availability")
    after = {a.date: a.id for a in _rows(store)}
    assert sorted(after) == [day(0), day(1), day(2), day(4)]
    assert all(after[day(i)] == before[day(i)].id for i in range(3))


def test_smart_full_reoptimize_reports_net_changes(store, orchestrator):
    before = _smart_setup(store, orchestrator)

    report = orchestrator.regenerate(
        PERIOD_ID, "smart", options=RegenerationOptions(cutoff_date=day(2), strategy="full-reoptimize")
    )

    assert (report.created_count, report.removed_count, report.kept_count) == (1, 1, 1)
    after = {a.date: a.id for a in _rows(store)}
    assert sorted(after) == [day(0), day(1), day(2), day(4)]
    assert after[day(2)] == before[day(2)].id


def test_smart_never_touches_rows_before_cutoff(store, orchestrator):
    before = _smart_setup(store, orchestrator)
    _close(store, 0)

    orchestrator.regenerate(PERIOD_ID, "smart", options=RegenerationOptions(cutoff_date=day(1)))

    assert before[day(0)].id in {a.id for a in _rows(store)}


# --- Completion mode ---

def test_completion_only_adds(store):
    period_id = load_scenario("partial-availability", store)
    orchestrator = RegenerationOrchestrator(store)
    first = orchestrator.regenerate(period_id, "full", options=full_options())
    assert first.unassigned_days == 30
    ids = {a.id for a in _rows(store, period_id)}

    plain = orchestrator.regenerate(period_id, "completion")
    assert (plain.created_count, plain.removed_count) == (0, 0)

    relaxed = orchestrator.regenerate(
        period_id, "completion", options=RegenerationOptions(constraints_to_relax=["preceptor-capacity"])
    )
    assert relaxed.removed_count == 0
    assert relaxed.created_count == 30
    assert relaxed.unassigned == []
    assert ids <= {a.id for a in _rows(store, period_id)}

    violations = orchestrator.get_violations(relaxed.run_id)
    assert len(violations) == 30
    assert {v.constraint_type for v in violations} == {ConstraintName.PRECEPTOR_CAPACITY}


def test_get_unassigned_reads_live_state(store, orchestrator):
    seed_basic(store, students=("stu_a", "stu_b"), required_days=1, available=[0])
    assert len(orchestrator.get_unassigned(PERIOD_ID)) == 2

    orchestrator.regenerate(PERIOD_ID, "full", options=full_options())

    assert orchestrator.get_unassigned(PERIOD_ID) == [Requirement("stu_b", "clk1", 1)]


# --- Validation and errors ---

@pytest.mark.parametrize("mode, options, field", [
    ("partial", None, "mode"),
    ("full", RegenerationOptions(), "confirm_destructive"),
    ("smart", RegenerationOptions(), "cutoff_date"),
    ("full", full_options(constraints_to_relax=["blackout-date"]), "constraints_to_relax"),
    ("completion", RegenerationOptions(constraints_to_relax=["no-double-booking"]), "constraints_to_relax"),
    ("completion", RegenerationOptions(constraints_to_relax=["whatever"]), "constraints_to_relax"),
])
def test_bad_input_is_rejected_before_solving(store, orchestrator, mode, options, field):
    seed_basic(store)

    with pytest.raises(ValidationError) as exc:
        orchestrator.regenerate(PERIOD_ID, mode, options=options)

    assert exc.value.field == field
    assert _rows(store) == []


@pytest.mark.parametrize("date_range", [(day(5), day(1)), (day(0), day(40)), "soon"])
def test_bad_date_range_is_rejected(store, orchestrator, date_range):
    seed_basic(store)

    with pytest.raises(ValidationError) as exc:
        orchestrator.regenerate(PERIOD_ID, "full", date_range=date_range, options=full_options())
    assert exc.value.field == "date_range"


def test_non_positive_required_days_is_rejected(store, orchestrator):
    seed_basic(store)
    store.add_clerkship(Clerkship(id="clk_zero", name="Broken", required_days=0))

    with pytest.raises(ValidationError, match="non-positive required_days"):
        orchestrator.regenerate(PERIOD_ID, "completion")


def test_missing_period_is_fatal(orchestrator):
    with pytest.raises(FatalError):
        orchestrator.regenerate("nope", "completion")


def test_failed_run_is_recorded_and_releases_the_period(store, orchestrator):
    seed_basic(store)
    with pytest.raises(ValidationError):
        orchestrator.regenerate(PERIOD_ID, "full")

    [failed] = orchestrator._runs.values()
    assert failed.state == RunState.FAILED
    assert "confirm_destructive" in failed.error

    report = orchestrator.regenerate(PERIOD_ID, "full", options=full_options())
    assert orchestrator.get_run(report.run_id) is report


def test_unknown_run_id(orchestrator):
    with pytest.raises(ValidationError):
        orchestrator.get_run("missing")


class FailingCommitStore(InMemoryStore):
    def commit_delta(self, period_id, inserts, delete_ids):
        raise RuntimeError("disk full")


def test_commit_failure_is_fatal_and_changes_nothing():
    store = FailingCommitStore()
    seed_basic(store)
    orchestrator = RegenerationOrchestrator(store)

    with pytest.raises(FatalError, match="disk full"):
        orchestrator.regenerate(PERIOD_ID, "full", options=full_options())

    assert _rows(store) == []
    [report] = orchestrator._runs.values()
    assert report.state == RunState.FAILED


def test_cancelled_run_commits_nothing(store, orchestrator):
    seed_basic(store)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RegenerationCancelled):
        orchestrator.regenerate(PERIOD_ID, "full", options=full_options(), cancel_event=cancel)

    assert _rows(store) == []
    [report] = orchestrator._runs.values()
    assert report.state == RunState.CANCELLED


class BlockingStore(InMemoryStore):
    """Holds every snapshot read until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def snapshot(self, period_id, date_range=None):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().snapshot(period_id, date_range)


def test_one_run_per_period_at_a_time():
    store = BlockingStore()
    seed_basic(store)
    orchestrator = RegenerationOrchestrator(store, SchedulerConfig())
    results = []

    worker = threading.Thread(
        target=lambda: results.append(orchestrator.regenerate(PERIOD_ID, "full", options=full_options()))
    )
    worker.start()
    assert store.entered.wait(timeout=5)

    with pytest.raises(ConflictError):
        orchestrator.regenerate(PERIOD_ID, "completion")

    store.release.set()
    worker.join(timeout=10)
    assert results[0].created_count == 10

    # The period is free again
    assert orchestrator.regenerate(PERIOD_ID, "completion").created_count == 0


# --- Blackouts ---

def test_blackout_on_locked_assignment_conflicts(store):
    seed_basic(store)
    store.add_assignment(ScheduleAssignment(
        period_id=PERIOD_ID, student_id="stu_a", preceptor_id="pre1", clerkship_id="clk1",
        site_id="site1", date=day(0), is_locked=True,
    ))

    with pytest.raises(ConflictError):
        store.add_blackout_date(BlackoutDate(id="b", date=day(0)))
    # A blackout scoped to another preceptor does not collide
    store.add_blackout_date(BlackoutDate(id="b2", date=day(0), preceptor_id="pre_other"))
    assert [b.id for b in store.list_blackout_dates()] == ["b2"]


def test_blackout_moves_unlocked_rows_on_next_run(store, orchestrator):
    seed_basic(store, available=range(12))
    orchestrator.regenerate(PERIOD_ID, "full", options=full_options())
    store.add_blackout_date(BlackoutDate(id="b", date=day(0), reason="Holiday"))
    assert day(0) in {a.date for a in _rows(store)}

    report = orchestrator.regenerate(PERIOD_ID, "full", options=full_options())

    dates = sorted(a.date for a in _rows(store))
    assert day(0) not in dates
    assert len(dates) == 10
    assert (report.created_count, report.removed_count) == (1, 1)


def test_report_serializes(store, orchestrator):
    seed_basic(store, students=("stu_a", "stu_b"), required_days=1, available=[0])

    data = orchestrator.regenerate(PERIOD_ID, "full", options=full_options()).to_dict()

    assert data["counts"] == {"created": 1, "kept": 0, "removed": 0, "frozen": 0, "unassigned_days": 1}
    assert data["state"] == "done"
    assert data["suggestions"][0]["constraint"] == "preceptor-capacity"
    assert data["created"][0]["date"] == day(0).isoformat()


# --- Cancelled and locked rows ---

def _cancelled(offset):
    return ScheduleAssignment(
        period_id=PERIOD_ID, student_id="stu_a", preceptor_id="pre1", clerkship_id="clk1",
        site_id="site1", date=day(offset), status=AssignmentStatus.CANCELLED,
    )


def test_full_run_replaces_cancelled_row_instead_of_reviving_it(store, orchestrator):
    seed_basic(store)
    cancelled = _cancelled(0)
    store.add_assignment(cancelled)

    report = orchestrator.regenerate(PERIOD_ID, "full", options=full_options())

    assert (report.created_count, report.removed_count, report.kept_count) == (10, 1, 0)
    assert report.removed_ids == [cancelled.id]
    assert {a.status for a in _rows(store)} == {AssignmentStatus.SCHEDULED}
    assert report.unassigned == []
    assert orchestrator.get_unassigned(PERIOD_ID) == []


def test_completion_keeps_cancelled_row_and_reports_the_gap(store, orchestrator):
    seed_basic(store)
    cancelled = _cancelled(0)
    store.add_assignment(cancelled)

    report = orchestrator.regenerate(PERIOD_ID, "completion")

    assert (report.created_count, report.removed_count) == (9, 0)
    assert report.unassigned_days == 1
    assert cancelled.id in {a.id for a in _rows(store)}
    assert orchestrator.get_unassigned(PERIOD_ID) == [Requirement("stu_a", "clk1", 1)]


@pytest.mark.parametrize("strategy", ["minimal-change", "full-reoptimize"])
def test_smart_replaces_cancelled_rows_after_cutoff(store, orchestrator, strategy):
    seed_basic(store, required_days=4, available=range(6))
    cancelled = _cancelled(3)
    store.add_assignment(cancelled)

    report = orchestrator.regenerate(
        PERIOD_ID, "smart", options=RegenerationOptions(cutoff_date=day(2), strategy=strategy)
    )

    assert (report.created_count, report.removed_count, report.kept_count) == (4, 1, 0)
    assert report.removed_ids == [cancelled.id]
    assert sorted(a.date for a in _rows(store)) == [day(i) for i in range(4)]
    assert {a.status for a in _rows(store)} == {AssignmentStatus.SCHEDULED}


@pytest.mark.parametrize("strategy", ["minimal-change", "full-reoptimize"])
def test_smart_freezes_locked_future_row_that_breaks_a_constraint(store, orchestrator, strategy):
    seed_basic(store, required_days=4, available=range(6))
    locked = ScheduleAssignment(
        period_id=PERIOD_ID, student_id="stu_a", preceptor_id="pre1", clerkship_id="clk1",
        site_id="site1", date=day(5), is_locked=True,
    )
    store.add_assignment(locked)
    orchestrator.regenerate(PERIOD_ID, "full", options=full_options())
    _close(store, 5)

    report = orchestrator.regenerate(
        PERIOD_ID, "smart", options=RegenerationOptions(cutoff_date=day(2), strategy=strategy)
    )

    assert report.frozen_count == 3
    assert locked.id in {a.id for a in _rows(store)}
    assert locked.id not in report.removed_ids
    assert locked.id not in report.removal_reasons
    assert len(_rows(store)) == 4


# --- Concurrency across orchestrators ---

def test_period_claim_is_shared_by_orchestrators_on_one_store():
    store = BlockingStore()
    seed_basic(store)
    first = RegenerationOrchestrator(store, SchedulerConfig())
    second = RegenerationOrchestrator(store, SchedulerConfig())
    results = []

    worker = threading.Thread(
        target=lambda: results.append(first.regenerate(PERIOD_ID, "full", options=full_options()))
    )
    worker.start()
    assert store.entered.wait(timeout=5)

    with pytest.raises(ConflictError):
        second.regenerate(PERIOD_ID, "completion")
    assert second._runs == {}

    store.release.set()
    worker.join(timeout=10)
    assert results[0].created_count == 10
    assert second.regenerate(PERIOD_ID, "completion").state == RunState.DONE


# --- Unexpected failures ---

def test_unexpected_error_marks_run_failed_and_frees_the_period(store, orchestrator, monkeypatch):
    seed_basic(store)

    def explode(self, core, electives):
        raise KeyError("clk_missing")

    monkeypatch.setattr(AssignmentSolver, "solve", explode)
    with pytest.raises(FatalError, match="KeyError") as exc:
        orchestrator.regenerate(PERIOD_ID, "full", options=full_options())

    assert isinstance(exc.value.__cause__, KeyError)
    [report] = orchestrator._runs.values()
    assert report.state == RunState.FAILED
    assert report.error.startswith("KeyError")
    assert _rows(store) == []

    monkeypatch.undo()
    assert orchestrator.regenerate(PERIOD_ID, "full", options=full_options()).created_count == 10


def test_report_lists_failure_causes(store, orchestrator):
    seed_basic(store, students=("stu_a", "stu_b"), required_days=1, available=[0])

    data = orchestrator.regenerate(PERIOD_ID, "full", options=full_options()).to_dict()

    [entry] = data["failure_report"]
    assert entry["student_id"] == "stu_b"
    assert entry["missing_days"] == 1
    assert entry["primary_failure_cause"] == "preceptor-capacity"
    assert entry["violation_breakdown"] == {"preceptor-capacity": 1}
