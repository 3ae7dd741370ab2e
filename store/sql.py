"""SQLAlchemy-backed entity store (SQLite by default)."""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Integer, JSON, String, Text, UniqueConstraint,
    create_engine, delete, select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from models import (
    BlackoutDate,
    CapacityRule,
    Clerkship,
    DateRange,
    HealthSystem,
    Preceptor,
    PreceptorAvailability,
    PreceptorTeam,
    ScheduleAssignment,
    SchedulingPeriod,
    Site,
    Student,
    StudentOnboarding,
)
from scheduler.errors import ConflictError, FatalError, ValidationError
from .base import EntityStore

logger = logging.getLogger(__name__)

Base = declarative_base()


class PeriodRow(Base):
    __tablename__ = "scheduling_periods"
    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    student_ids = Column(JSON, nullable=True)  # null = every student
    clerkship_ids = Column(JSON, nullable=True)


class StudentRow(Base):
    __tablename__ = "students"
    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=True)


class ClerkshipRow(Base):
    __tablename__ = "clerkships"
    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    specialty = Column(String(100), nullable=True)
    clerkship_type = Column(String(20), nullable=False)
    required_days = Column(Integer, nullable=False)
    electives = Column(JSON, default=list)  # [{"id": ..., "minimum_days": ...}]
    assignment_strategy = Column(String(30), nullable=False, default="team_continuity")
    block_size_days = Column(Integer, nullable=True)
    allow_partial_blocks = Column(Boolean, default=True)
    prefer_continuous_blocks = Column(Boolean, default=True)


class HealthSystemRow(Base):
    __tablename__ = "health_systems"
    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)


class SiteRow(Base):
    __tablename__ = "sites"
    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    health_system_id = Column(String(64), nullable=False, index=True)
    max_students_per_day = Column(Integer, nullable=True)


class PreceptorRow(Base):
    __tablename__ = "preceptors"
    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=True)
    specialty = Column(String(100), nullable=True)
    health_system_id = Column(String(64), nullable=True)
    site_ids = Column(JSON, default=list)
    max_students = Column(Integer, nullable=False, default=1)


class TeamRow(Base):
    __tablename__ = "preceptor_teams"
    id = Column(String(64), primary_key=True)
    clerkship_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    priority = Column(Integer, nullable=False, default=1)
    require_same_health_system = Column(Boolean, default=False)
    require_same_site = Column(Boolean, default=False)
    require_same_specialty = Column(Boolean, default=False)
    requires_admin_approval = Column(Boolean, default=False)
    is_approved = Column(Boolean, default=False)
    created_at = Column(DateTime, nullable=False)
    members = Column(JSON, default=list)  # [{"preceptor_id": ..., "priority": 1, ...}]


class AvailabilityRow(Base):
    __tablename__ = "preceptor_availability"
    id = Column(Integer, primary_key=True, autoincrement=True)
    preceptor_id = Column(String(64), nullable=False, index=True)
    site_id = Column(String(64), nullable=False)
    date = Column(Date, nullable=False, index=True)
    is_available = Column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("preceptor_id", "site_id", "date"),)


class BlackoutRow(Base):
    __tablename__ = "blackout_dates"
    id = Column(String(64), primary_key=True)
    date = Column(Date, nullable=False, index=True)
    reason = Column(Text, default="")
    preceptor_id = Column(String(64), nullable=True)
    site_id = Column(String(64), nullable=True)


class CapacityRuleRow(Base):
    __tablename__ = "capacity_rules"
    preceptor_id = Column(String(64), primary_key=True)
    max_students_per_day = Column(Integer, nullable=False)
    max_students_per_year = Column(Integer, nullable=True)
    max_students_per_block = Column(Integer, nullable=True)


class AssignmentRow(Base):
    __tablename__ = "schedule_assignments"
    id = Column(String(64), primary_key=True)
    period_id = Column(String(64), nullable=False, index=True)
    student_id = Column(String(64), nullable=False, index=True)
    preceptor_id = Column(String(64), nullable=False, index=True)
    clerkship_id = Column(String(64), nullable=False)
    site_id = Column(String(64), nullable=False)
    date = Column(Date, nullable=False, index=True)
    elective_id = Column(String(64), nullable=True)
    team_id = Column(String(64), nullable=True)
    assignment_type = Column(String(20), nullable=False, default="clerkship")
    status = Column(String(20), nullable=False, default="scheduled")
    is_locked = Column(Boolean, default=False)
    notes = Column(Text, default="")


class OnboardingRow(Base):
    __tablename__ = "student_health_system_onboarding"
    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False, index=True)
    health_system_id = Column(String(64), nullable=False)
    is_completed = Column(Boolean, nullable=False, default=True)
    completed_date = Column(Date, nullable=True)

    __table_args__ = (UniqueConstraint("student_id", "health_system_id"),)


class RunClaimRow(Base):
    __tablename__ = "regeneration_claims"
    period_id = Column(String(64), primary_key=True)
    run_id = Column(String(64), nullable=False)
    claimed_at = Column(DateTime, nullable=False)


def _to_row(row_cls, model):
    data = {k: (v.value if isinstance(v, Enum) else v) for k, v in model.model_dump().items()}
    return row_cls(**data)


def _to_model(model_cls, row):
    return model_cls.model_validate({c.name: getattr(row, c.name) for c in row.__table__.columns})


class SqlStore(EntityStore):
    """
    Entity store over a SQLAlchemy engine.
    Every public call runs in its own session; commit_delta is one transaction.
    """

    def __init__(self, database_url: str = "sqlite://", echo: bool = False):
        kwargs = {"echo": echo}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    def _all(self, row_cls, model_cls, *criteria, order_by=None) -> list:
        try:
            with self.SessionLocal() as session:
                stmt = select(row_cls).where(*criteria) if criteria else select(row_cls)
                if order_by is not None:
                    stmt = stmt.order_by(*order_by)
                return [_to_model(model_cls, row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise FatalError(f"Store read failed for {row_cls.__tablename__}: {e}") from e

    def _merge(self, row) -> None:
        try:
            with self.SessionLocal.begin() as session:
                session.merge(row)
        except SQLAlchemyError as e:
            raise FatalError(f"Store write failed for {row.__tablename__}: {e}") from e

    # --- Reads ---

    def get_period(self, period_id: str) -> Optional[SchedulingPeriod]:
        rows = self._all(PeriodRow, SchedulingPeriod, PeriodRow.id == period_id)
        return rows[0] if rows else None

    def list_students(self) -> List[Student]:
        return self._all(StudentRow, Student)

    def list_clerkships(self) -> List[Clerkship]:
        return self._all(ClerkshipRow, Clerkship)

    def list_health_systems(self) -> List[HealthSystem]:
        return self._all(HealthSystemRow, HealthSystem)

    def list_sites(self) -> List[Site]:
        return self._all(SiteRow, Site)

    def list_preceptors(self) -> List[Preceptor]:
        return self._all(PreceptorRow, Preceptor)

    def list_teams(self) -> List[PreceptorTeam]:
        return self._all(TeamRow, PreceptorTeam)

    def list_availability(self, date_range: Optional[DateRange] = None) -> List[PreceptorAvailability]:
        if date_range is None:
            return self._all(AvailabilityRow, PreceptorAvailability)
        return self._all(
            AvailabilityRow, PreceptorAvailability,
            AvailabilityRow.date >= date_range.start, AvailabilityRow.date <= date_range.end,
        )

    def list_blackout_dates(self, date_range: Optional[DateRange] = None) -> List[BlackoutDate]:
        if date_range is None:
            return self._all(BlackoutRow, BlackoutDate)
        return self._all(
            BlackoutRow, BlackoutDate,
            BlackoutRow.date >= date_range.start, BlackoutRow.date <= date_range.end,
        )

    def list_capacity_rules(self) -> List[CapacityRule]:
        return self._all(CapacityRuleRow, CapacityRule)

    def list_onboarding(self) -> List[StudentOnboarding]:
        return self._all(OnboardingRow, StudentOnboarding)

    def list_assignments(self, period_id: str, date_range: Optional[DateRange] = None) -> List[ScheduleAssignment]:
        criteria = [AssignmentRow.period_id == period_id]
        if date_range is not None:
            criteria += [AssignmentRow.date >= date_range.start, AssignmentRow.date <= date_range.end]
        return self._all(
            AssignmentRow, ScheduleAssignment, *criteria,
            order_by=(AssignmentRow.date, AssignmentRow.student_id, AssignmentRow.id),
        )

    def assignments_on(self, day) -> List[ScheduleAssignment]:
        return self._all(AssignmentRow, ScheduleAssignment, AssignmentRow.date == day)

    # --- Writes ---

    def commit_delta(self, period_id: str, inserts: Iterable[ScheduleAssignment], delete_ids: Iterable[str]) -> None:
        inserts = list(inserts)
        delete_ids = list(delete_ids)
        try:
            with self.SessionLocal.begin() as session:
                if delete_ids:
                    result = session.execute(
                        delete(AssignmentRow)
                        .where(AssignmentRow.period_id == period_id, AssignmentRow.id.in_(delete_ids))
                    )
                    if result.rowcount != len(delete_ids):
                        raise FatalError(
                            f"Expected to delete {len(delete_ids)} assignment(s) in period {period_id}, "
                            f"found {result.rowcount}"
                        )
                    # Deletes must hit the database before inserts reuse any key
                    session.flush()

                for assignment in inserts:
                    if assignment.period_id != period_id:
                        raise FatalError(f"Assignment {assignment.id} belongs to period {assignment.period_id}, not {period_id}")
                    session.add(_to_row(AssignmentRow, assignment))
        except SQLAlchemyError as e:
            raise FatalError(f"Commit failed for period {period_id}: {e}") from e

        logger.info(f"Committed period {period_id}: +{len(inserts)} / -{len(delete_ids)}")

    def _insert_blackout(self, blackout: BlackoutDate) -> None:
        self._merge(_to_row(BlackoutRow, blackout))

    def _write_capacity_rule(self, rule: CapacityRule) -> None:
        self._merge(_to_row(CapacityRuleRow, rule))

    def _write_team(self, team: PreceptorTeam) -> None:
        self._merge(_to_row(TeamRow, team))

    def add_period(self, period: SchedulingPeriod) -> None:
        self._merge(_to_row(PeriodRow, period))

    def add_student(self, student: Student) -> None:
        self._merge(_to_row(StudentRow, student))

    def add_clerkship(self, clerkship: Clerkship) -> None:
        self._merge(_to_row(ClerkshipRow, clerkship))

    def add_health_system(self, health_system: HealthSystem) -> None:
        self._merge(_to_row(HealthSystemRow, health_system))

    def add_site(self, site: Site) -> None:
        self._merge(_to_row(SiteRow, site))

    def add_preceptor(self, preceptor: Preceptor) -> None:
        self._merge(_to_row(PreceptorRow, preceptor))

    def add_availability(self, record: PreceptorAvailability) -> None:
        try:
            with self.SessionLocal.begin() as session:
                existing = session.scalars(select(AvailabilityRow).where(
                    AvailabilityRow.preceptor_id == record.preceptor_id,
                    AvailabilityRow.site_id == record.site_id,
                    AvailabilityRow.date == record.date,
                )).first()
                if existing is not None:
                    existing.is_available = record.is_available
                else:
                    session.add(_to_row(AvailabilityRow, record))
        except SQLAlchemyError as e:
            raise FatalError(f"Store write failed for availability: {e}") from e

    def add_assignment(self, assignment: ScheduleAssignment) -> None:
        try:
            with self.SessionLocal.begin() as session:
                if session.get(AssignmentRow, assignment.id) is not None:
                    raise ValidationError(f"Assignment {assignment.id} already exists", field="id")
                session.add(_to_row(AssignmentRow, assignment))
        except SQLAlchemyError as e:
            raise FatalError(f"Store write failed for assignment {assignment.id}: {e}") from e

    def add_onboarding(self, record: StudentOnboarding) -> None:
        try:
            with self.SessionLocal.begin() as session:
                existing = session.scalars(select(OnboardingRow).where(
                    OnboardingRow.student_id == record.student_id,
                    OnboardingRow.health_system_id == record.health_system_id,
                )).first()
                if existing is not None:
                    existing.is_completed = record.is_completed
                    existing.completed_date = record.completed_date
                else:
                    session.add(_to_row(OnboardingRow, record))
        except SQLAlchemyError as e:
            raise FatalError(f"Store write failed for onboarding: {e}") from e

    # --- Run claims ---

    def claim_period(self, period_id: str, run_id: str) -> None:
        """The claim row's primary key makes a second claim fail inside the database."""
        try:
            with self.SessionLocal.begin() as session:
                session.add(RunClaimRow(period_id=period_id, run_id=run_id, claimed_at=datetime.now(timezone.utc)))
        except IntegrityError as e:
            raise ConflictError(f"A regeneration run is already in flight for period {period_id}") from e
        except SQLAlchemyError as e:
            raise FatalError(f"Could not claim period {period_id}: {e}") from e

    def release_period(self, period_id: str, run_id: str) -> None:
        try:
            with self.SessionLocal.begin() as session:
                session.execute(
                    delete(RunClaimRow).where(RunClaimRow.period_id == period_id, RunClaimRow.run_id == run_id)
                )
        except SQLAlchemyError as e:
            raise FatalError(f"Could not release period {period_id}: {e}") from e
