"""
Module: billing_kernel.models.lesson
Responsibility: ORM persistence for lessons, their participants, and
    per-participant attendance.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A student participates in a lesson at most once.
    - One attendance record per (lesson, student).
    - A lesson is "billed" when a line item of a non-void invoice links to
      it; billed lessons are never selected again.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import Base, UTCDateTime, UUIDString


class LessonStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    CANCELLED_BY_STUDENT = "cancelled_by_student"
    CANCELLED_BY_TEACHER = "cancelled_by_teacher"


class Lesson(Base):
    """A scheduled lesson occurrence."""

    __tablename__ = "lessons"

    __table_args__ = (
        Index("idx_lesson_org_start", "org_id", "start_at"),
        Index("idx_lesson_status", "status"),
    )

    org_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organisations.id"),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)

    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=LessonStatus.SCHEDULED.value,
        nullable=False,
    )

    teacher_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Recurring lessons share a series id
    recurrence_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    participants: Mapped[list["LessonParticipant"]] = relationship(
        "LessonParticipant",
        back_populates="lesson",
        order_by="LessonParticipant.student_id",
    )

    @property
    def duration_minutes(self) -> int:
        return round((self.end_at - self.start_at).total_seconds() / 60)

    def __repr__(self) -> str:
        return f"<Lesson {self.title} @ {self.start_at.isoformat()}: {self.status}>"


class LessonParticipant(Base):
    """A student taking part in a lesson."""

    __tablename__ = "lesson_participants"

    __table_args__ = (
        UniqueConstraint("lesson_id", "student_id", name="uq_lesson_participant"),
    )

    lesson_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lessons.id"),
        nullable=False,
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=False,
    )

    lesson: Mapped["Lesson"] = relationship("Lesson", back_populates="participants")


class AttendanceRecord(Base):
    """Attendance outcome for one student in one lesson."""

    __tablename__ = "attendance_records"

    __table_args__ = (
        UniqueConstraint("lesson_id", "student_id", name="uq_attendance"),
    )

    lesson_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lessons.id"),
        nullable=False,
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=False,
    )

    attendance_status: Mapped[str] = mapped_column(String(30), nullable=False)

    recorded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
