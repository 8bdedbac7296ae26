from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.datetime_utils import combine_utc, ensure_utc, format_time_of_day, parse_time_of_day, utc_now
from lessonhub.db.models import Lesson, LessonModification
from lessonhub.db.transactions import unit_of_work
from lessonhub.domain.commands import BulkEditCommand
from lessonhub.domain.enums import TEACHING_ROLES, ModificationType, UserRole
from lessonhub.domain.errors import (
    BookingNotActive,
    InsufficientCredits,
    InvalidLessonCapacity,
    LessonInPast,
    LessonNotFound,
    ScheduleConflict,
    UserNotFound,
    ValidationError,
)
from lessonhub.domain.rules import resolve_lesson_type
from lessonhub.repositories.booking_repository import BookingRepository
from lessonhub.repositories.lesson_modification_repository import LessonModificationRepository
from lessonhub.repositories.lesson_repository import LessonRepository
from lessonhub.repositories.user_repository import UserRepository
from lessonhub.services.access import require_role
from lessonhub.services.booking_service import BookingService
from lessonhub.services.credit_ledger_service import CreditLedgerService

logger = structlog.get_logger(__name__)

T = TypeVar("T")
Handler = Callable[[UUID, list[Lesson], BulkEditCommand, datetime], Awaitable[tuple[int, dict[str, Any]]]]


# Teacher, weekday and UTC time of day; recurring_group_id is not consulted.
def pattern_key(lesson: Lesson) -> tuple[UUID, int, int, int]:
    start = ensure_utc(lesson.start_time)
    return lesson.teacher_id, start.weekday(), start.hour, start.minute


class BulkEditService:
    def __init__(
        self,
        session: AsyncSession,
        lesson_repository: LessonRepository,
        booking_repository: BookingRepository,
        modification_repository: LessonModificationRepository,
        user_repository: UserRepository,
        booking_service: BookingService,
        credit_ledger: CreditLedgerService,
    ) -> None:
        self._session = session
        self._lessons = lesson_repository
        self._bookings = booking_repository
        self._modifications = modification_repository
        self._users = user_repository
        self._booking_service = booking_service
        self._ledger = credit_ledger
        self._handlers: dict[ModificationType, Handler] = {
            ModificationType.ADD_STUDENT: self._add_student,
            ModificationType.REMOVE_STUDENT: self._remove_student,
            ModificationType.CHANGE_TEACHER: self._change_teacher,
            ModificationType.CHANGE_TIME: self._change_time,
            ModificationType.CHANGE_CAPACITY: self._change_capacity,
        }

    async def apply_to_all_subsequent(
        self,
        admin_id: UUID,
        source_lesson_id: UUID,
        command: BulkEditCommand,
        now_utc: datetime | None = None,
    ) -> LessonModification:
        now = ensure_utc(now_utc or utc_now())
        async with unit_of_work(self._session):
            await require_role(self._users, admin_id, (UserRole.ADMIN,), "edit lesson series")
            source = await self._lessons.get_by_id(source_lesson_id)
            if source is None:
                raise LessonNotFound(lesson_id=source_lesson_id)

            targets = await self.find_matching_lessons(source, now, for_update=True)
            if not targets:
                raise LessonInPast("No upcoming lessons match this lesson's slot", lesson_id=source_lesson_id)

            handler = self._handlers[command.modification_type]
            affected, changes = await handler(admin_id, targets, command, now)
            modification = await self._modifications.create(
                LessonModification(
                    original_lesson_id=source.id,
                    modification_type=command.modification_type.value,
                    applied_by_id=admin_id,
                    applied_at=now,
                    affected_lessons_count=affected,
                    changes=changes,
                    notes=command.notes,
                )
            )

        logger.info(
            "bulk_edit.applied",
            source_lesson_id=str(source_lesson_id),
            modification_type=command.modification_type.value,
            affected_lessons=affected,
        )
        return modification

    async def find_matching_lessons(
        self,
        source: Lesson,
        now_utc: datetime,
        for_update: bool = False,
    ) -> list[Lesson]:
        key = pattern_key(source)
        candidates = await self._lessons.list_upcoming_for_teacher(
            source.teacher_id,
            ensure_utc(now_utc),
            for_update=for_update,
        )
        return [lesson for lesson in candidates if pattern_key(lesson) == key]

    async def list_modifications(self, lesson_id: UUID) -> list[LessonModification]:
        return await self._modifications.list_for_lesson(lesson_id)

    async def _add_student(
        self,
        admin_id: UUID,
        targets: list[Lesson],
        command: BulkEditCommand,
        now: datetime,
    ) -> tuple[int, dict[str, Any]]:
        student_id = self._required(command.student_id, "student_id")
        await self._booking_service.require_student(student_id)

        for lesson in targets:
            await self._booking_service.ensure_can_enroll(lesson, student_id, now)
        required = sum(lesson.credits_cost for lesson in targets)
        balance = (await self._ledger.lock_balances([student_id]))[student_id]
        if balance < required:
            raise InsufficientCredits(
                f"Student needs {required} credits for {len(targets)} lessons, has {balance}",
                required=required,
                available=balance,
                student_id=student_id,
            )

        for lesson in targets:
            await self._booking_service.enroll(
                lesson,
                student_id,
                performed_by=admin_id,
                now_utc=now,
                reason=f"Bulk booking for lesson at {ensure_utc(lesson.start_time):%Y-%m-%d %H:%M} UTC",
            )
        return len(targets), {
            "student_id": str(student_id),
            "action": "add",
            "deducted_credits": required,
        }

    async def _remove_student(
        self,
        admin_id: UUID,
        targets: list[Lesson],
        command: BulkEditCommand,
        now: datetime,
    ) -> tuple[int, dict[str, Any]]:
        student_id = self._required(command.student_id, "student_id")
        removed = 0
        refunded = 0
        for lesson in targets:
            booking = await self._bookings.get_active(student_id, lesson.id)
            if booking is None:
                continue
            refund = 0
            if self._booking_service.is_refundable(lesson, now):
                refund = await self._ledger.charged_for_booking(booking.id)
            released = await self._booking_service.release(
                booking,
                lesson,
                refund_amount=refund,
                performed_by=admin_id,
                reason="Removed from lesson series",
                now_utc=now,
                write_marker=False,
            )
            removed += 1
            refunded += released.refunded_credits

        if removed == 0:
            raise BookingNotActive("Student is not booked on any matching lesson", student_id=student_id)
        return removed, {
            "student_id": str(student_id),
            "action": "remove",
            "removed_count": removed,
            "refunded_credits": refunded,
        }

    async def _change_teacher(
        self,
        admin_id: UUID,
        targets: list[Lesson],
        command: BulkEditCommand,
        now: datetime,
    ) -> tuple[int, dict[str, Any]]:
        teacher_id = self._required(command.teacher_id, "teacher_id")
        teacher = await self._users.get_by_id(teacher_id)
        if teacher is None:
            raise UserNotFound(user_id=teacher_id)
        if teacher.role not in {role.value for role in TEACHING_ROLES}:
            raise ValidationError("User cannot be assigned as teacher", user_id=teacher_id, role=teacher.role)

        old_teacher_id = targets[0].teacher_id
        for lesson in targets:
            lesson.teacher_id = teacher_id
            await self._lessons.update(lesson)
        return len(targets), {
            "old_teacher_id": str(old_teacher_id),
            "new_teacher_id": str(teacher_id),
        }

    async def _change_time(
        self,
        admin_id: UUID,
        targets: list[Lesson],
        command: BulkEditCommand,
        now: datetime,
    ) -> tuple[int, dict[str, Any]]:
        new_time = parse_time_of_day(self._required(command.new_start_time, "new_start_time"))
        target_ids = {lesson.id for lesson in targets}
        old_time = ensure_utc(targets[0].start_time).time()

        moves: list[tuple[Lesson, datetime, datetime]] = []
        for lesson in targets:
            start = ensure_utc(lesson.start_time)
            duration = ensure_utc(lesson.end_time) - start
            new_start = combine_utc(start.date(), new_time)
            new_end = new_start + duration
            if new_start <= now:
                raise LessonInPast("New time is already in the past", lesson_id=lesson.id)
            await self._ensure_teacher_free(lesson, new_start, new_end, target_ids)
            await self._ensure_students_free(lesson, new_start, new_end)
            moves.append((lesson, new_start, new_end))

        for lesson, new_start, new_end in moves:
            lesson.start_time = new_start
            lesson.end_time = new_end
            await self._lessons.update(lesson)
        return len(moves), {
            "old_start_time": format_time_of_day(old_time),
            "new_start_time": format_time_of_day(new_time),
        }

    async def _change_capacity(
        self,
        admin_id: UUID,
        targets: list[Lesson],
        command: BulkEditCommand,
        now: datetime,
    ) -> tuple[int, dict[str, Any]]:
        new_max = self._required(command.new_max_students, "new_max_students")
        lesson_type = resolve_lesson_type(None, new_max)
        for lesson in targets:
            if lesson.current_students > new_max:
                raise InvalidLessonCapacity(
                    f"Lesson already has {lesson.current_students} students",
                    lesson_id=lesson.id,
                    current_students=lesson.current_students,
                    new_max_students=new_max,
                )

        old_max = targets[0].max_students
        for lesson in targets:
            lesson.max_students = new_max
            lesson.lesson_type = lesson_type.value
            await self._lessons.update(lesson)
        return len(targets), {
            "old_max_students": old_max,
            "new_max_students": new_max,
            "lesson_type": lesson_type.value,
        }

    async def _ensure_teacher_free(
        self,
        lesson: Lesson,
        start: datetime,
        end: datetime,
        ignore_ids: set[UUID],
    ) -> None:
        for other in await self._lessons.list_for_teacher_between(lesson.teacher_id, start, end):
            if other.id not in ignore_ids:
                raise ScheduleConflict(
                    "Teacher already has a lesson at the new time",
                    lesson_id=lesson.id,
                    conflicting_lesson_id=other.id,
                )

    async def _ensure_students_free(self, lesson: Lesson, start: datetime, end: datetime) -> None:
        for booking in await self._bookings.list_active_for_lesson(lesson.id):
            overlapping = await self._bookings.find_overlapping_active(
                booking.student_id,
                start,
                end,
                exclude_lesson_id=lesson.id,
            )
            if overlapping is not None:
                raise ScheduleConflict(
                    "Student already has a lesson at the new time",
                    lesson_id=lesson.id,
                    student_id=booking.student_id,
                    conflicting_lesson_id=overlapping.lesson_id,
                )

    @staticmethod
    def _required(value: T | None, field: str) -> T:
        if value is None:
            raise ValidationError(f"{field} is required")
        return value
