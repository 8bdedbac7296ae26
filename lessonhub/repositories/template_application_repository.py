from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.db.models import TemplateApplication
from lessonhub.domain.enums import ApplicationStatus


class TemplateApplicationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, application: TemplateApplication) -> TemplateApplication:
        self._session.add(application)
        await self._session.flush()
        return application

    async def get_by_id(self, application_id: UUID) -> TemplateApplication | None:
        stmt = select(TemplateApplication).where(TemplateApplication.id == application_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_applied(
        self,
        template_id: UUID,
        week_start_date: date,
        for_update: bool = False,
    ) -> TemplateApplication | None:
        stmt = select(TemplateApplication).where(
            TemplateApplication.template_id == template_id,
            TemplateApplication.week_start_date == week_start_date,
            TemplateApplication.status == ApplicationStatus.APPLIED.value,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_template(self, template_id: UUID) -> list[TemplateApplication]:
        stmt = (
            select(TemplateApplication)
            .where(TemplateApplication.template_id == template_id)
            .order_by(TemplateApplication.week_start_date.desc(), TemplateApplication.applied_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def update(self, application: TemplateApplication) -> TemplateApplication:
        await self._session.flush()
        return application
