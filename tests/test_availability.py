from models import BlackoutDate, CapacityRule, PreceptorAvailability, ScheduleAssignment
from scheduler import AvailabilityPolicy, AvailabilityResolver, Candidate, ConstraintName, SchedulerConfig, SchedulerState
from tests.conftest import PERIOD_ID, day, seed_basic


def _resolver(store, config=None, relaxed=frozenset()):
    snapshot = store.snapshot(PERIOD_ID)
    state = SchedulerState(snapshot)
    return AvailabilityResolver(snapshot, state, config or SchedulerConfig(), relaxed), state


def _booking(student_id, offset, preceptor_id="pre1"):
    return ScheduleAssignment(
        period_id=PERIOD_ID, student_id=student_id, preceptor_id=preceptor_id,
        clerkship_id="clk1", site_id="site1", date=day(offset),
    )


def test_closed_world_treats_missing_records_as_unavailable(store):
    seed_basic(store, available=[0])
    resolver, _ = _resolver(store)

    assert resolver.is_slot_open("pre1", "site1", day(0))
    assert not resolver.is_slot_open("pre1", "site1", day(1))


def test_open_world_treats_missing_records_as_available(store):
    seed_basic(store, available=[])
    store.add_availability(PreceptorAvailability(preceptor_id="pre1", site_id="site1", date=day(2), is_available=False))
    resolver, _ = _resolver(store, SchedulerConfig(availability_policy=AvailabilityPolicy.OPEN_WORLD))

    assert resolver.is_slot_open("pre1", "site1", day(1))
    assert not resolver.is_slot_open("pre1", "site1", day(2))
    # Only the preceptor's own sites count
    assert not resolver.is_slot_open("pre1", "elsewhere", day(1))


def test_blackouts_close_slots_by_scope(store):
    seed_basic(store, available=range(5))
    store.add_blackout_date(BlackoutDate(id="b_global", date=day(0), reason="Holiday"))
    store.add_blackout_date(BlackoutDate(id="b_pre", date=day(1), preceptor_id="pre1"))
    store.add_blackout_date(BlackoutDate(id="b_other", date=day(2), preceptor_id="someone_else"))
    resolver, _ = _resolver(store)

    assert not resolver.is_slot_open("pre1", "site1", day(0))
    assert not resolver.is_slot_open("pre1", "site1", day(1))
    assert resolver.is_slot_open("pre1", "site1", day(2))


def test_relaxed_blackout_keeps_slot_open(store):
    seed_basic(store, available=range(2))
    store.add_blackout_date(BlackoutDate(id="b", date=day(0)))
    resolver, _ = _resolver(store, relaxed=frozenset({ConstraintName.BLACKOUT_DATE}))

    assert resolver.is_slot_open("pre1", "site1", day(0))


def test_remaining_capacity_sees_provisional_bookings(store):
    seed_basic(store, available=range(3), capacity=2)
    resolver, state = _resolver(store)

    assert resolver.remaining_capacity("pre1", day(0)) == 2
    state.add_booking(_booking("stu_a", 0))
    assert resolver.remaining_capacity("pre1", day(0)) == 1
    state.add_booking(_booking("stu_b", 0))
    assert resolver.remaining_capacity("pre1", day(0)) == 0
    assert not resolver.is_slot_open("pre1", "site1", day(0))
    assert resolver.is_slot_open("pre1", "site1", day(1))


def test_capacity_rule_overrides_preceptor_default(store):
    seed_basic(store, available=range(3), capacity=1)
    store.upsert_capacity_rule(CapacityRule(preceptor_id="pre1", max_students_per_day=3))
    resolver, _ = _resolver(store)

    assert resolver.daily_capacity("pre1") == 3


def test_upsert_keeps_one_rule_per_preceptor(store):
    seed_basic(store)
    store.upsert_capacity_rule(CapacityRule(preceptor_id="pre1", max_students_per_day=3))
    store.upsert_capacity_rule(CapacityRule(preceptor_id="pre1", max_students_per_day=2))

    assert [r.max_students_per_day for r in store.list_capacity_rules()] == [2]


def test_yearly_limit_counts_the_calendar_year(store):
    seed_basic(store, available=range(5), capacity=5)
    store.upsert_capacity_rule(CapacityRule(preceptor_id="pre1", max_students_per_day=5, max_students_per_year=2))
    resolver, state = _resolver(store)

    state.add_booking(_booking("stu_a", 0))
    state.add_booking(_booking("stu_b", 1))

    assert resolver.remaining_capacity("pre1", day(3)) == 0
    violation = resolver.capacity_violation(Candidate("stu_c", "pre1", "site1", day(3), "clk1"))
    assert violation.constraint_type == ConstraintName.PRECEPTOR_CAPACITY


def test_candidate_slots_skip_blackouts_and_closed_days(store):
    seed_basic(store, available=[0, 1, 3])
    store.add_blackout_date(BlackoutDate(id="b", date=day(1)))
    resolver, _ = _resolver(store)

    slots = resolver.candidate_slots("pre1", [day(i) for i in range(5)])
    assert slots == [("site1", day(0)), ("site1", day(3))]
    assert resolver.candidate_slots("ghost", [day(0)]) == []
    assert resolver.candidate_slots("pre1", [day(0)], site_ids=["other"]) == []
