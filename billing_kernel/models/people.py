"""
Module: billing_kernel.models.people
Responsibility: ORM persistence for students, guardians, and the
    student-guardian link that designates who pays.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A (student, guardian) pair is linked at most once.
    - Payer resolution reads is_primary_payer; a student without a primary
      payer guardian pays for itself only when it has an e-mail address.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import Base, UUIDString


class StudentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Student(Base):
    """A learner enrolled with an organisation."""

    __tablename__ = "students"

    __table_args__ = (Index("idx_student_org", "org_id"),)

    org_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organisations.id"),
        nullable=False,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=StudentStatus.ACTIVE.value,
        nullable=False,
    )

    guardian_links: Mapped[list["StudentGuardian"]] = relationship(
        "StudentGuardian",
        back_populates="student",
        order_by="StudentGuardian.guardian_id",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == StudentStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Student {self.full_name}>"


class Guardian(Base):
    """A parent or carer; may be the paying party for one or more students."""

    __tablename__ = "guardians"

    __table_args__ = (Index("idx_guardian_org", "org_id"),)

    org_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organisations.id"),
        nullable=False,
    )

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)

    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    def __repr__(self) -> str:
        return f"<Guardian {self.full_name}>"


class StudentGuardian(Base):
    """Link between a student and a guardian."""

    __tablename__ = "student_guardians"

    __table_args__ = (
        UniqueConstraint("student_id", "guardian_id", name="uq_student_guardian"),
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=False,
    )

    guardian_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("guardians.id"),
        nullable=False,
    )

    is_primary_payer: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    student: Mapped["Student"] = relationship(
        "Student",
        back_populates="guardian_links",
    )

    guardian: Mapped["Guardian"] = relationship("Guardian")
