from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lessonhub.core.config import Settings
from lessonhub.core.container import AppContainer
from lessonhub.db.base import Base
from lessonhub.db.models import CreditBalance, Lesson, User
from lessonhub.domain.commands import CreateTemplateCommand, TemplateEntryInput
from lessonhub.domain.enums import LessonType, UserRole


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(DATABASE_URL="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def container(settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> AppContainer:
    return AppContainer(settings=settings, session_factory=session_factory)


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    async def _make(role: UserRole = UserRole.STUDENT, credits: int = 0, name: str | None = None) -> User:
        label = name or f"{role.value}-{uuid4().hex[:8]}"
        user = User(email=f"{label}@example.com", full_name=label, role=role.value)
        db_session.add(user)
        await db_session.flush()
        if credits:
            db_session.add(CreditBalance(user_id=user.id, balance=credits))
        await db_session.commit()
        db_session.expunge(user)
        return user

    return _make


@pytest.fixture
def make_lesson(db_session: AsyncSession) -> Callable[..., Awaitable[Lesson]]:
    async def _make(
        teacher_id: UUID,
        start_time: datetime,
        duration_minutes: int = 60,
        max_students: int = 4,
        credits_cost: int = 1,
        current_students: int = 0,
    ) -> Lesson:
        lesson = Lesson(
            teacher_id=teacher_id,
            start_time=start_time,
            end_time=start_time + timedelta(minutes=duration_minutes),
            lesson_type=(LessonType.INDIVIDUAL if max_students == 1 else LessonType.GROUP).value,
            max_students=max_students,
            current_students=current_students,
            credits_cost=credits_cost,
        )
        db_session.add(lesson)
        await db_session.commit()
        db_session.expunge(lesson)
        return lesson

    return _make


@pytest.fixture
def make_template(db_session: AsyncSession, container: AppContainer) -> Callable[..., Awaitable[UUID]]:
    async def _make(owner_id: UUID, entries: list[dict[str, Any]], name: str = "Week plan") -> UUID:
        service = container.create_template_service(db_session)
        template = await service.create_template(owner_id, CreateTemplateCommand(name=name))
        for entry in entries:
            await service.add_entry(owner_id, template.id, TemplateEntryInput(**entry))
        return template.id

    return _make
