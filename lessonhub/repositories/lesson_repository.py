from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.db.models import Lesson


class LessonRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, lesson: Lesson) -> Lesson:
        self._session.add(lesson)
        await self._session.flush()
        return lesson

    async def create_many(self, lessons: list[Lesson]) -> list[Lesson]:
        self._session.add_all(lessons)
        await self._session.flush()
        return lessons

    async def get_by_id(self, lesson_id: UUID, include_deleted: bool = False) -> Lesson | None:
        stmt = select(Lesson).where(Lesson.id == lesson_id)
        if not include_deleted:
            stmt = stmt.where(Lesson.deleted_at.is_(None))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_update(self, lesson_id: UUID, include_deleted: bool = False) -> Lesson | None:
        stmt = select(Lesson).where(Lesson.id == lesson_id).with_for_update()
        if not include_deleted:
            stmt = stmt.where(Lesson.deleted_at.is_(None))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_upcoming_for_teacher(
        self,
        teacher_id: UUID,
        from_utc: datetime,
        for_update: bool = False,
    ) -> list[Lesson]:
        stmt = (
            select(Lesson)
            .where(
                Lesson.teacher_id == teacher_id,
                Lesson.deleted_at.is_(None),
                Lesson.start_time >= from_utc,
            )
            .order_by(Lesson.start_time, Lesson.id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_for_teacher_between(
        self,
        teacher_id: UUID,
        from_utc: datetime,
        to_utc: datetime,
    ) -> list[Lesson]:
        stmt = (
            select(Lesson)
            .where(
                Lesson.teacher_id == teacher_id,
                Lesson.deleted_at.is_(None),
                Lesson.start_time < to_utc,
                Lesson.end_time > from_utc,
            )
            .order_by(Lesson.start_time)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_by_application(self, application_id: UUID, for_update: bool = False) -> list[Lesson]:
        stmt = (
            select(Lesson)
            .where(Lesson.template_application_id == application_id, Lesson.deleted_at.is_(None))
            .order_by(Lesson.start_time, Lesson.id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def update(self, lesson: Lesson) -> Lesson:
        await self._session.flush()
        return lesson

    async def soft_delete(self, lesson: Lesson, deleted_at: datetime) -> None:
        lesson.deleted_at = deleted_at
        await self._session.flush()
