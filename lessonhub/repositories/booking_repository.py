from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.db.models import Booking, CancelledBooking, Lesson
from lessonhub.domain.enums import BookingStatus


class BookingRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, booking: Booking) -> Booking:
        self._session.add(booking)
        await self._session.flush()
        return booking

    async def get_by_id(self, booking_id: UUID) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_update(self, booking_id: UUID) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id).with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active(self, student_id: UUID, lesson_id: UUID) -> Booking | None:
        stmt = select(Booking).where(
            Booking.student_id == student_id,
            Booking.lesson_id == lesson_id,
            Booking.status == BookingStatus.ACTIVE.value,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_filtered(
        self,
        student_id: UUID | None = None,
        lesson_id: UUID | None = None,
        status: BookingStatus | None = None,
        limit: int = 100,
    ) -> list[Booking]:
        stmt = select(Booking)
        if student_id is not None:
            stmt = stmt.where(Booking.student_id == student_id)
        if lesson_id is not None:
            stmt = stmt.where(Booking.lesson_id == lesson_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status.value)
        result = await self._session.execute(stmt.order_by(Booking.booked_at.desc()).limit(limit))
        return list(result.scalars())

    async def list_active_for_lesson(self, lesson_id: UUID, for_update: bool = False) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.lesson_id == lesson_id, Booking.status == BookingStatus.ACTIVE.value)
            .order_by(Booking.booked_at, Booking.id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def count_active_for_lesson(self, lesson_id: UUID) -> int:
        stmt = select(func.count(Booking.id)).where(
            Booking.lesson_id == lesson_id,
            Booking.status == BookingStatus.ACTIVE.value,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def find_overlapping_active(
        self,
        student_id: UUID,
        start_utc: datetime,
        end_utc: datetime,
        exclude_lesson_id: UUID | None = None,
    ) -> Booking | None:
        stmt = (
            select(Booking)
            .join(Lesson, Lesson.id == Booking.lesson_id)
            .where(
                Booking.student_id == student_id,
                Booking.status == BookingStatus.ACTIVE.value,
                Lesson.deleted_at.is_(None),
                Lesson.start_time < end_utc,
                Lesson.end_time > start_utc,
            )
            .limit(1)
        )
        if exclude_lesson_id is not None:
            stmt = stmt.where(Booking.lesson_id != exclude_lesson_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


class CancelledBookingRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def exists(self, student_id: UUID, lesson_id: UUID) -> bool:
        stmt = select(CancelledBooking.id).where(
            CancelledBooking.student_id == student_id,
            CancelledBooking.lesson_id == lesson_id,
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def mark(
        self,
        student_id: UUID,
        lesson_id: UUID,
        booking_id: UUID | None,
        cancelled_at: datetime,
    ) -> None:
        if await self.exists(student_id, lesson_id):
            return
        self._session.add(
            CancelledBooking(
                student_id=student_id,
                lesson_id=lesson_id,
                booking_id=booking_id,
                cancelled_at=cancelled_at,
            )
        )
        await self._session.flush()
