from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.datetime_utils import ensure_utc, utc_now
from lessonhub.db.models import Lesson, User
from lessonhub.db.transactions import unit_of_work
from lessonhub.domain.commands import CreateLessonCommand, CreateRecurringLessonsCommand, UpdateLessonCommand
from lessonhub.domain.enums import TEACHING_ROLES, TEMPLATE_EDITOR_ROLES
from lessonhub.domain.errors import HasDependents, LessonNotFound, Unauthorized, ValidationError
from lessonhub.domain.rules import resolve_lesson_type, validate_credits_cost
from lessonhub.repositories.booking_repository import BookingRepository
from lessonhub.repositories.lesson_repository import LessonRepository
from lessonhub.repositories.user_repository import UserRepository
from lessonhub.services.access import require_role

logger = structlog.get_logger(__name__)


class LessonService:
    def __init__(
        self,
        session: AsyncSession,
        lesson_repository: LessonRepository,
        booking_repository: BookingRepository,
        user_repository: UserRepository,
        default_lesson_duration_minutes: int = 120,
        default_recurring_weeks: int = 4,
        max_recurring_weeks: int = 52,
    ) -> None:
        self._session = session
        self._lessons = lesson_repository
        self._bookings = booking_repository
        self._users = user_repository
        self._default_duration = timedelta(minutes=max(1, default_lesson_duration_minutes))
        self._default_weeks = max(1, default_recurring_weeks)
        self._max_weeks = max(self._default_weeks, max_recurring_weeks)

    async def get_lesson(self, lesson_id: UUID) -> Lesson:
        lesson = await self._lessons.get_by_id(lesson_id)
        if lesson is None:
            raise LessonNotFound(lesson_id=lesson_id)
        return lesson

    async def create_lesson(self, actor_id: UUID, cmd: CreateLessonCommand) -> Lesson:
        async with unit_of_work(self._session):
            await self._require_scheduler(actor_id, cmd.teacher_id)
            lesson = await self._lessons.create(self._build_lesson(cmd))
        logger.info("lesson.created", lesson_id=str(lesson.id), teacher_id=str(lesson.teacher_id))
        return lesson

    async def create_recurring_lessons(self, actor_id: UUID, cmd: CreateRecurringLessonsCommand) -> list[Lesson]:
        weeks = cmd.weeks or self._default_weeks
        if weeks > self._max_weeks:
            raise ValidationError(f"A series can span at most {self._max_weeks} weeks", weeks=weeks)

        group_id = uuid4()
        async with unit_of_work(self._session):
            await self._require_scheduler(actor_id, cmd.teacher_id)
            lessons = [self._build_lesson(cmd, week_offset=week, recurring_group_id=group_id) for week in range(weeks)]
            await self._lessons.create_many(lessons)
        logger.info("lesson.series_created", recurring_group_id=str(group_id), lessons=len(lessons))
        return lessons

    async def update_lesson(self, actor_id: UUID, lesson_id: UUID, cmd: UpdateLessonCommand) -> Lesson:
        async with unit_of_work(self._session):
            lesson = await self._lessons.get_for_update(lesson_id)
            if lesson is None:
                raise LessonNotFound(lesson_id=lesson_id)
            await self._require_scheduler(actor_id, lesson.teacher_id)
            for field in ("subject", "color", "homework_text", "report_text"):
                value = getattr(cmd, field)
                if value is not None:
                    setattr(lesson, field, value)
            await self._lessons.update(lesson)
        return lesson

    async def delete_lesson(self, actor_id: UUID, lesson_id: UUID, now_utc: datetime | None = None) -> None:
        async with unit_of_work(self._session):
            await require_role(self._users, actor_id, TEMPLATE_EDITOR_ROLES, "delete lessons")
            lesson = await self._lessons.get_for_update(lesson_id)
            if lesson is None:
                raise LessonNotFound(lesson_id=lesson_id)
            active = await self._bookings.count_active_for_lesson(lesson.id)
            if active:
                raise HasDependents("Lesson has active bookings", lesson_id=lesson_id, active_bookings=active)
            if lesson.homework_text:
                raise HasDependents("Lesson has homework attached", lesson_id=lesson_id)
            await self._lessons.soft_delete(lesson, ensure_utc(now_utc or utc_now()))
        logger.info("lesson.deleted", lesson_id=str(lesson_id), actor_id=str(actor_id))

    def _build_lesson(
        self,
        cmd: CreateLessonCommand,
        week_offset: int = 0,
        recurring_group_id: UUID | None = None,
    ) -> Lesson:
        lesson_type = resolve_lesson_type(cmd.lesson_type, cmd.max_students)
        validate_credits_cost(cmd.credits_cost)
        shift = timedelta(weeks=week_offset)
        start = ensure_utc(cmd.start_time)
        end = ensure_utc(cmd.end_time) if cmd.end_time is not None else start + self._default_duration
        return Lesson(
            teacher_id=cmd.teacher_id,
            start_time=start + shift,
            end_time=end + shift,
            lesson_type=lesson_type.value,
            max_students=cmd.max_students,
            current_students=0,
            credits_cost=cmd.credits_cost,
            color=cmd.color,
            subject=cmd.subject,
            recurring_group_id=recurring_group_id,
        )

    async def _require_scheduler(self, actor_id: UUID, teacher_id: UUID) -> User:
        actor = await require_role(self._users, actor_id, TEACHING_ROLES, "schedule lessons")
        if actor.is_teacher and actor.id != teacher_id:
            raise Unauthorized("Teachers can only schedule their own lessons")
        if actor.id != teacher_id:
            await require_role(self._users, teacher_id, TEACHING_ROLES, "teach lessons")
        return actor
