from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.db.models import LessonModification


class LessonModificationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, item: LessonModification) -> LessonModification:
        self._session.add(item)
        await self._session.flush()
        return item

    async def list_for_lesson(self, lesson_id: UUID, limit: int = 100) -> list[LessonModification]:
        stmt = (
            select(LessonModification)
            .where(LessonModification.original_lesson_id == lesson_id)
            .order_by(LessonModification.applied_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())
