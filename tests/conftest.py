"""
Pytest fixtures for the billing test suite.

Provides:
- In-memory SQLite sessions (one fresh schema per test, SAVEPOINTs enabled)
- Seed factories for organisations, people, lessons and credits
- Deterministic clock and settings
- Log capture

Environment Variables:
- DATABASE_URL: run against another database instead (e.g. PostgreSQL).
  Tables are created and dropped around every test.
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import billing_batch.models  # noqa: F401
import billing_kernel.models  # noqa: F401
from billing_config import get_active_config
from billing_kernel.db.base import Base
from billing_kernel.db.engine import enable_sqlite_savepoints
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_kernel.models import (
    AttendanceRecord,
    Guardian,
    Lesson,
    LessonParticipant,
    LessonStatus,
    Organisation,
    RateCard,
    Student,
    StudentGuardian,
    Term,
)
from billing_kernel.services.credit_ledger import CreditLedger

from billing_batch.services.run_executor import BillingRunExecutor
from billing_batch.services.run_guard import OrgRunGuard


# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# 1 April 2026, 09:00 UTC -- after the March lessons seeded by most tests
TEST_NOW = datetime(2026, 4, 1, 9, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, executor):
            executor.create_run(...)
            logs = captured_logs()
            assert any(r["message"] == "billing_run_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    url = os.environ.get("DATABASE_URL", "sqlite:///:memory:")
    if url.startswith("sqlite"):
        eng = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        enable_sqlite_savepoints(eng)
    else:
        eng = create_engine(url)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def db_session(engine):
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=TEST_NOW)


@pytest.fixture
def settings():
    return get_active_config()


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def run_guard():
    return OrgRunGuard()


@pytest.fixture
def executor(db_session, clock, settings, run_guard):
    return BillingRunExecutor(
        db_session, clock=clock, settings=settings, run_guard=run_guard,
    )


@pytest.fixture
def credit_ledger(db_session, clock):
    return CreditLedger(db_session, clock)


# =============================================================================
# Seed factories
# =============================================================================


@pytest.fixture
def make_org(db_session):
    def _make(
        name: str = "Allegro Music School",
        vat_enabled: bool = False,
        vat_rate: str = "0",
        cancellation_notice_hours: int | None = None,
        currency_code: str = "GBP",
    ) -> Organisation:
        org = Organisation(
            name=name,
            currency_code=currency_code,
            vat_enabled=vat_enabled,
            vat_rate=Decimal(vat_rate),
            cancellation_notice_hours=cancellation_notice_hours,
        )
        db_session.add(org)
        db_session.flush()
        return org

    return _make


@pytest.fixture
def org(make_org):
    return make_org()


@pytest.fixture
def make_rate_card(db_session):
    def _make(org, duration_mins: int, rate_amount_minor: int, is_default: bool = False):
        card = RateCard(
            org_id=org.id,
            duration_mins=duration_mins,
            rate_amount_minor=rate_amount_minor,
            is_default=is_default,
        )
        db_session.add(card)
        db_session.flush()
        return card

    return _make


@pytest.fixture
def make_term(db_session):
    def _make(org, start_date, end_date, name: str = "Spring Term"):
        term = Term(org_id=org.id, name=name, start_date=start_date, end_date=end_date)
        db_session.add(term)
        db_session.flush()
        return term

    return _make


@pytest.fixture
def make_student(db_session):
    def _make(
        org,
        first_name: str = "Clara",
        last_name: str = "Schumann",
        email: str | None = None,
        status: str = "active",
    ) -> Student:
        student = Student(
            org_id=org.id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            status=status,
        )
        db_session.add(student)
        db_session.flush()
        return student

    return _make


@pytest.fixture
def make_guardian(db_session):
    def _make(
        org,
        full_name: str = "Robert Schumann",
        email: str | None = "robert@example.com",
        students=(),
        primary: bool = True,
    ) -> Guardian:
        guardian = Guardian(org_id=org.id, full_name=full_name, email=email)
        db_session.add(guardian)
        db_session.flush()
        for student in students:
            db_session.add(
                StudentGuardian(
                    student_id=student.id,
                    guardian_id=guardian.id,
                    is_primary_payer=primary,
                )
            )
        db_session.flush()
        return guardian

    return _make


@pytest.fixture
def make_lesson(db_session):
    def _make(
        org,
        start_at: datetime,
        students=(),
        duration_minutes: int = 30,
        status: LessonStatus = LessonStatus.COMPLETED,
        title: str = "Piano",
    ) -> Lesson:
        lesson = Lesson(
            org_id=org.id,
            title=title,
            start_at=start_at,
            end_at=start_at + timedelta(minutes=duration_minutes),
            status=status.value,
        )
        db_session.add(lesson)
        db_session.flush()
        for student in students:
            db_session.add(LessonParticipant(lesson_id=lesson.id, student_id=student.id))
        db_session.flush()
        return lesson

    return _make


@pytest.fixture
def record_attendance(db_session):
    def _record(lesson, student, status) -> AttendanceRecord:
        record = AttendanceRecord(
            lesson_id=lesson.id,
            student_id=student.id,
            attendance_status=status.value,
            recorded_at=lesson.start_at,
        )
        db_session.add(record)
        db_session.flush()
        return record

    return _record
