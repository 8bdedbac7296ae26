from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.db.models import LessonTemplate, TemplateEntryStudent, TemplateLessonEntry


class LessonTemplateRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, template: LessonTemplate) -> LessonTemplate:
        self._session.add(template)
        await self._session.flush()
        return template

    async def get_by_id(self, template_id: UUID) -> LessonTemplate | None:
        stmt = select(LessonTemplate).where(LessonTemplate.id == template_id, LessonTemplate.deleted_at.is_(None))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self, owner_id: UUID | None = None) -> list[LessonTemplate]:
        stmt = select(LessonTemplate).where(LessonTemplate.deleted_at.is_(None))
        if owner_id is not None:
            stmt = stmt.where(LessonTemplate.owner_id == owner_id)
        result = await self._session.execute(stmt.order_by(LessonTemplate.name))
        return list(result.scalars())

    async def update(self, template: LessonTemplate) -> LessonTemplate:
        await self._session.flush()
        return template

    async def soft_delete(self, template: LessonTemplate, deleted_at: datetime) -> None:
        template.deleted_at = deleted_at
        await self._session.flush()

    async def add_entry(self, entry: TemplateLessonEntry) -> TemplateLessonEntry:
        if not entry.position:
            entry.position = await self._next_position(entry.template_id)
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def get_entry(self, entry_id: UUID) -> TemplateLessonEntry | None:
        stmt = select(TemplateLessonEntry).where(TemplateLessonEntry.id == entry_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_entries(self, template_id: UUID) -> list[TemplateLessonEntry]:
        stmt = (
            select(TemplateLessonEntry)
            .where(TemplateLessonEntry.template_id == template_id)
            .order_by(TemplateLessonEntry.position, TemplateLessonEntry.day_of_week, TemplateLessonEntry.start_time)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def update_entry(self, entry: TemplateLessonEntry) -> TemplateLessonEntry:
        await self._session.flush()
        return entry

    async def delete_entry(self, entry: TemplateLessonEntry) -> None:
        await self._session.execute(delete(TemplateEntryStudent).where(TemplateEntryStudent.entry_id == entry.id))
        await self._session.delete(entry)
        await self._session.flush()

    async def list_student_ids(self, entry_id: UUID) -> list[UUID]:
        stmt = (
            select(TemplateEntryStudent.student_id)
            .where(TemplateEntryStudent.entry_id == entry_id)
            .order_by(TemplateEntryStudent.created_at, TemplateEntryStudent.student_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def students_by_entry(self, entry_ids: list[UUID]) -> dict[UUID, list[UUID]]:
        grouped: dict[UUID, list[UUID]] = defaultdict(list)
        if not entry_ids:
            return grouped
        stmt = (
            select(TemplateEntryStudent.entry_id, TemplateEntryStudent.student_id)
            .where(TemplateEntryStudent.entry_id.in_(entry_ids))
            .order_by(TemplateEntryStudent.created_at, TemplateEntryStudent.student_id)
        )
        result = await self._session.execute(stmt)
        for entry_id, student_id in result.all():
            grouped[entry_id].append(student_id)
        return grouped

    async def add_students(self, entry_id: UUID, student_ids: list[UUID]) -> None:
        self._session.add_all(
            [TemplateEntryStudent(entry_id=entry_id, student_id=student_id) for student_id in student_ids]
        )
        await self._session.flush()

    async def remove_student(self, entry_id: UUID, student_id: UUID) -> bool:
        result = await self._session.execute(
            delete(TemplateEntryStudent).where(
                TemplateEntryStudent.entry_id == entry_id,
                TemplateEntryStudent.student_id == student_id,
            )
        )
        await self._session.flush()
        return bool(result.rowcount)

    async def _next_position(self, template_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(TemplateLessonEntry.position), 0)).where(
            TemplateLessonEntry.template_id == template_id
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one()) + 1
