from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.datetime_utils import ensure_utc, utc_now
from lessonhub.db.models import Booking, Lesson
from lessonhub.db.transactions import unit_of_work
from lessonhub.domain.commands import ListBookingsQuery
from lessonhub.domain.enums import BookingStatus, CancelResultStatus
from lessonhub.domain.errors import (
    AlreadyBooked,
    BookingNotFound,
    LessonFull,
    LessonInPast,
    LessonNotFound,
    LessonPreviouslyCancelled,
    ScheduleConflict,
    Unauthorized,
    UserNotFound,
    ValidationError,
)
from lessonhub.domain.results import CancelResult, ReleasedSeat
from lessonhub.repositories.booking_repository import BookingRepository, CancelledBookingRepository
from lessonhub.repositories.lesson_repository import LessonRepository
from lessonhub.repositories.user_repository import UserRepository
from lessonhub.services.credit_ledger_service import CreditLedgerService

logger = structlog.get_logger(__name__)


class BookingService:
    def __init__(
        self,
        session: AsyncSession,
        booking_repository: BookingRepository,
        lesson_repository: LessonRepository,
        cancelled_booking_repository: CancelledBookingRepository,
        user_repository: UserRepository,
        credit_ledger: CreditLedgerService,
        refund_window_hours: int = 24,
    ) -> None:
        self._session = session
        self._bookings = booking_repository
        self._lessons = lesson_repository
        self._cancelled = cancelled_booking_repository
        self._users = user_repository
        self._ledger = credit_ledger
        self._refund_window = timedelta(hours=max(0, refund_window_hours))

    async def create_booking(
        self,
        student_id: UUID,
        lesson_id: UUID,
        acting_user_id: UUID | None = None,
        is_admin: bool = False,
        now_utc: datetime | None = None,
    ) -> Booking:
        now = ensure_utc(now_utc or utc_now())
        if not is_admin and acting_user_id is not None and acting_user_id != student_id:
            raise Unauthorized("Students can only book lessons for themselves")

        async with unit_of_work(self._session):
            await self.require_student(student_id)
            lesson = await self._lessons.get_for_update(lesson_id)
            if lesson is None:
                raise LessonNotFound(lesson_id=lesson_id)
            booking = await self.enroll(
                lesson,
                student_id,
                performed_by=acting_user_id or student_id,
                now_utc=now,
                allow_started=is_admin,
            )

        logger.info(
            "booking.created",
            booking_id=str(booking.id),
            lesson_id=str(lesson_id),
            student_id=str(student_id),
            by_admin=is_admin,
        )
        return booking

    async def cancel_booking(
        self,
        booking_id: UUID,
        acting_user_id: UUID,
        is_admin: bool = False,
        now_utc: datetime | None = None,
    ) -> CancelResult:
        now = ensure_utc(now_utc or utc_now())
        async with unit_of_work(self._session):
            booking = await self._bookings.get_for_update(booking_id)
            if booking is None:
                raise BookingNotFound(booking_id=booking_id)
            if not is_admin and booking.student_id != acting_user_id:
                raise Unauthorized("Students can only cancel their own bookings")

            if not booking.is_active:
                result = CancelResult(
                    status=CancelResultStatus.ALREADY_CANCELLED,
                    booking_id=booking.id,
                    message="Booking was already cancelled",
                )
            else:
                lesson = await self._lessons.get_for_update(booking.lesson_id, include_deleted=True)
                if lesson is None:
                    raise LessonNotFound(lesson_id=booking.lesson_id)
                refund = 0
                if self.is_refundable(lesson, now):
                    refund = await self._ledger.charged_for_booking(booking.id)
                released = await self.release(
                    booking,
                    lesson,
                    refund_amount=refund,
                    performed_by=acting_user_id,
                    reason="Booking cancelled",
                    now_utc=now,
                    write_marker=True,
                )
                result = CancelResult(
                    status=CancelResultStatus.SUCCESS,
                    booking_id=booking.id,
                    refunded_credits=released.refunded_credits,
                    message="Booking cancelled" if refund else "Booking cancelled without refund",
                )

        logger.info(
            "booking.cancelled",
            booking_id=str(booking_id),
            status=result.status.value,
            refunded_credits=result.refunded_credits,
            by_admin=is_admin,
        )
        return result

    async def get_booking(self, booking_id: UUID) -> Booking:
        booking = await self._bookings.get_by_id(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id=booking_id)
        return booking

    async def list_bookings(self, query: ListBookingsQuery | None = None) -> list[Booking]:
        query = query or ListBookingsQuery()
        return await self._bookings.list_filtered(
            student_id=query.student_id,
            lesson_id=query.lesson_id,
            status=query.status,
            limit=query.limit,
        )

    def is_refundable(self, lesson: Lesson, now_utc: datetime) -> bool:
        return ensure_utc(now_utc) < ensure_utc(lesson.start_time) - self._refund_window

    async def require_student(self, student_id: UUID) -> None:
        user = await self._users.get_by_id(student_id)
        if user is None:
            raise UserNotFound(user_id=student_id)
        if not user.is_student:
            raise ValidationError("Only students can be booked", user_id=student_id, role=user.role)

    async def ensure_can_enroll(
        self,
        lesson: Lesson,
        student_id: UUID,
        now_utc: datetime,
        allow_started: bool = True,
        check_schedule: bool = True,
    ) -> None:
        if not allow_started and ensure_utc(lesson.start_time) <= ensure_utc(now_utc):
            raise LessonInPast(lesson_id=lesson.id)
        if await self._cancelled.exists(student_id, lesson.id):
            raise LessonPreviouslyCancelled(lesson_id=lesson.id, student_id=student_id)
        if lesson.current_students >= lesson.max_students:
            raise LessonFull(lesson_id=lesson.id, max_students=lesson.max_students)
        if await self._bookings.get_active(student_id, lesson.id) is not None:
            raise AlreadyBooked(lesson_id=lesson.id, student_id=student_id)
        if check_schedule:
            overlapping = await self._bookings.find_overlapping_active(
                student_id,
                ensure_utc(lesson.start_time),
                ensure_utc(lesson.end_time),
                exclude_lesson_id=lesson.id,
            )
            if overlapping is not None:
                raise ScheduleConflict(
                    lesson_id=lesson.id,
                    conflicting_lesson_id=overlapping.lesson_id,
                )

    async def enroll(
        self,
        lesson: Lesson,
        student_id: UUID,
        performed_by: UUID,
        now_utc: datetime,
        allow_started: bool = True,
        check_schedule: bool = True,
        template_application_id: UUID | None = None,
        reason: str | None = None,
    ) -> Booking:
        # Caller holds the lesson row lock. Credits are charged after the insert.
        await self.ensure_can_enroll(
            lesson,
            student_id,
            now_utc,
            allow_started=allow_started,
            check_schedule=check_schedule,
        )
        try:
            booking = await self._bookings.create(
                Booking(
                    student_id=student_id,
                    lesson_id=lesson.id,
                    status=BookingStatus.ACTIVE.value,
                    booked_at=ensure_utc(now_utc),
                )
            )
        except IntegrityError as exc:
            raise AlreadyBooked(lesson_id=lesson.id, student_id=student_id) from exc
        await self._ledger.deduct(
            student_id,
            lesson.credits_cost,
            reason or f"Booking for lesson at {ensure_utc(lesson.start_time):%Y-%m-%d %H:%M} UTC",
            performed_by=performed_by,
            booking_id=booking.id,
            template_application_id=template_application_id,
        )
        lesson.current_students += 1
        await self._lessons.update(lesson)
        return booking

    async def release(
        self,
        booking: Booking,
        lesson: Lesson,
        refund_amount: int,
        performed_by: UUID | None,
        reason: str,
        now_utc: datetime,
        write_marker: bool,
        template_application_id: UUID | None = None,
    ) -> ReleasedSeat:
        now = ensure_utc(now_utc)
        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = now
        lesson.current_students = max(0, lesson.current_students - 1)
        await self._lessons.update(lesson)

        if refund_amount > 0:
            await self._ledger.refund(
                booking.student_id,
                refund_amount,
                reason,
                performed_by=performed_by,
                booking_id=booking.id,
                template_application_id=template_application_id,
            )
        if write_marker:
            await self._cancelled.mark(booking.student_id, lesson.id, booking.id, now)
        return ReleasedSeat(
            booking_id=booking.id,
            student_id=booking.student_id,
            refunded_credits=max(0, refund_amount),
        )
