"""
Module: billing_kernel.selectors.lesson_selector
Responsibility: Select the lesson participations a billing run should
    invoice, resolving each to its payer.
Architecture position: Kernel > Selectors.  Read-only.

Selection rules:
    - billing mode "delivered" bills completed lessons; "upfront" bills
      scheduled and completed lessons.
    - start_at in [period_start 00:00 UTC, period_end + 1 day 00:00 UTC),
      i.e. the end date is inclusive.
    - A lesson linked from a line item of any non-void invoice of the org is
      already billed and is never selected again.
    - A participation whose attendance is cancelled_by_teacher is skipped
      and counted in skipped_for_cancellation.
    - A participation with an inactive student or no resolvable payer is
      skipped and counted in skipped_lessons.

Payer resolution:
    primary-payer guardian, else the student itself when it has an e-mail
    address, else no payer.
"""

from collections.abc import Collection
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.dtos import (
    BillableParticipation,
    BillingMode,
    InvoiceStatus,
    PayerRef,
    PayerType,
    SelectionResult,
)
from billing_kernel.exceptions import InvalidBillingModeError, InvalidBillingPeriodError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import Invoice, InvoiceItem
from billing_kernel.models.lesson import (
    AttendanceRecord,
    AttendanceStatus,
    Lesson,
    LessonParticipant,
    LessonStatus,
)
from billing_kernel.models.people import Guardian, Student, StudentGuardian
from billing_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.lesson")

_STATUSES_BY_MODE: dict[BillingMode, tuple[str, ...]] = {
    BillingMode.DELIVERED: (LessonStatus.COMPLETED.value,),
    BillingMode.UPFRONT: (LessonStatus.SCHEDULED.value, LessonStatus.COMPLETED.value),
}


def period_bounds(period_start: date, period_end: date) -> tuple[datetime, datetime]:
    """Half-open UTC datetime range covering both dates in full."""
    if period_start is None or period_end is None or period_start > period_end:
        raise InvalidBillingPeriodError(period_start, period_end)
    lower = datetime.combine(period_start, time.min, tzinfo=timezone.utc)
    upper = datetime.combine(period_end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return lower, upper


def parse_billing_mode(value: BillingMode | str) -> BillingMode:
    try:
        return BillingMode(value)
    except ValueError:
        raise InvalidBillingModeError(str(value)) from None


class LessonSelector(BaseSelector):
    """Billable lesson selection for a period."""

    def billed_lesson_ids_query(self, org_id: UUID):
        """Lessons already carried by a live invoice of the org."""
        return (
            select(InvoiceItem.linked_lesson_id)
            .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
            .where(
                Invoice.org_id == org_id,
                Invoice.status != InvoiceStatus.VOID.value,
                InvoiceItem.linked_lesson_id.is_not(None),
            )
        )

    def select_billable_lessons(
        self,
        org_id: UUID,
        period_start: date,
        period_end: date,
        billing_mode: BillingMode | str,
        payer_ids: Collection[UUID | str] | None = None,
    ) -> SelectionResult:
        """
        Billable participations ordered by lesson start, then lesson id.

        Args:
            payer_ids: When given (retry), only participations whose payer
                id is in this collection are returned.
        """
        mode = parse_billing_mode(billing_mode)
        lower, upper = period_bounds(period_start, period_end)

        lessons = list(
            self.session.execute(
                select(Lesson)
                .where(
                    Lesson.org_id == org_id,
                    Lesson.status.in_(_STATUSES_BY_MODE[mode]),
                    Lesson.start_at >= lower,
                    Lesson.start_at < upper,
                    Lesson.id.not_in(self.billed_lesson_ids_query(org_id)),
                )
                .order_by(Lesson.start_at, Lesson.id)
            ).scalars()
        )
        if not lessons:
            return SelectionResult()

        lesson_ids = [lesson.id for lesson in lessons]

        rows = self.session.execute(
            select(LessonParticipant.lesson_id, Student)
            .join(Student, Student.id == LessonParticipant.student_id)
            .where(LessonParticipant.lesson_id.in_(lesson_ids))
            .order_by(Student.id)
        ).all()
        participants: dict[UUID, list[Student]] = {}
        for lesson_id, student in rows:
            participants.setdefault(lesson_id, []).append(student)

        cancelled = set(
            self.session.execute(
                select(AttendanceRecord.lesson_id, AttendanceRecord.student_id)
                .where(
                    AttendanceRecord.lesson_id.in_(lesson_ids),
                    AttendanceRecord.attendance_status
                    == AttendanceStatus.CANCELLED_BY_TEACHER.value,
                )
            ).all()
        )

        student_ids = {student.id for _, student in rows}
        payers = self._resolve_payers(student_ids, {s.id: s for _, s in rows})
        wanted = {str(pid) for pid in payer_ids} if payer_ids is not None else None

        participations: list[BillableParticipation] = []
        skipped_lessons = 0
        skipped_for_cancellation = 0

        for lesson in lessons:
            for student in participants.get(lesson.id, []):
                if (lesson.id, student.id) in cancelled:
                    skipped_for_cancellation += 1
                    continue
                payer = payers.get(student.id)
                if not student.is_active or payer is None:
                    skipped_lessons += 1
                    continue
                if wanted is not None and str(payer.payer_id) not in wanted:
                    continue
                participations.append(
                    BillableParticipation(
                        lesson_id=lesson.id,
                        lesson_title=lesson.title,
                        start_at=lesson.start_at,
                        duration_minutes=lesson.duration_minutes,
                        student_id=student.id,
                        student_name=student.full_name,
                        payer=payer,
                    )
                )

        logger.debug(
            "billable_lessons_selected",
            extra={
                "org_id": str(org_id),
                "billing_mode": mode.value,
                "lesson_count": len(lessons),
                "participation_count": len(participations),
                "skipped_lessons": skipped_lessons,
                "skipped_for_cancellation": skipped_for_cancellation,
            },
        )

        return SelectionResult(
            participations=tuple(participations),
            skipped_lessons=skipped_lessons,
            skipped_for_cancellation=skipped_for_cancellation,
        )

    def _resolve_payers(
        self,
        student_ids: set[UUID],
        students: dict[UUID, Student],
    ) -> dict[UUID, PayerRef]:
        payers: dict[UUID, PayerRef] = {}
        if not student_ids:
            return payers

        links = self.session.execute(
            select(StudentGuardian.student_id, Guardian)
            .join(Guardian, Guardian.id == StudentGuardian.guardian_id)
            .where(
                StudentGuardian.student_id.in_(student_ids),
                StudentGuardian.is_primary_payer.is_(True),
            )
            .order_by(Guardian.id)
        ).all()
        for student_id, guardian in links:
            if student_id in payers:
                continue
            payers[student_id] = PayerRef(
                payer_type=PayerType.GUARDIAN,
                payer_id=guardian.id,
                name=guardian.full_name,
                email=guardian.email,
            )

        for student_id in student_ids:
            if student_id in payers:
                continue
            student = students[student_id]
            if student.email:
                payers[student_id] = PayerRef(
                    payer_type=PayerType.STUDENT,
                    payer_id=student.id,
                    name=student.full_name,
                    email=student.email,
                )
        return payers
