from datetime import date, timedelta

import pytest

from models import (
    Clerkship,
    HealthSystem,
    Preceptor,
    PreceptorAvailability,
    SchedulingPeriod,
    Site,
    Student,
)
from scheduler import RegenerationOptions, RegenerationOrchestrator, SchedulerConfig
from store import InMemoryStore

PERIOD_ID = "p1"
START = date(2026, 3, 2)  # a Monday


def day(offset: int) -> date:
    return START + timedelta(days=offset)


def seed_basic(
    store,
    students=("stu_a",),
    required_days=10,
    available=range(10),
    capacity=1,
    period_days=14,
    preceptor_id="pre1",
):
    """One health system, one site, one clerkship, one preceptor open on the given day offsets."""
    store.add_period(SchedulingPeriod(id=PERIOD_ID, name="Spring", start_date=START, end_date=day(period_days - 1)))
    store.add_health_system(HealthSystem(id="hs1", name="Health One"))
    store.add_site(Site(id="site1", name="Clinic One", health_system_id="hs1"))
    store.add_clerkship(Clerkship(id="clk1", name="Family Medicine", required_days=required_days))
    for student_id in students:
        store.add_student(Student(id=student_id, name=student_id.replace("_", " ").title()))
    add_preceptor(store, preceptor_id, available, capacity=capacity)
    return PERIOD_ID


def add_preceptor(store, preceptor_id, available, capacity=1, site_id="site1", specialty=None, health_system_id="hs1"):
    preceptor = Preceptor(
        id=preceptor_id,
        name=f"Dr. {preceptor_id}",
        specialty=specialty,
        health_system_id=health_system_id,
        site_ids=[site_id],
        max_students=capacity,
    )
    store.add_preceptor(preceptor)
    for offset in available:
        store.add_availability(PreceptorAvailability(preceptor_id=preceptor_id, site_id=site_id, date=day(offset)))
    return preceptor


def full_options(**kwargs):
    return RegenerationOptions(confirm_destructive=True, **kwargs)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def orchestrator(store):
    return RegenerationOrchestrator(store, SchedulerConfig())
