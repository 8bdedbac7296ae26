from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.container import AppContainer
from lessonhub.db.models import Booking, CreditTransaction, Lesson, TemplateApplication
from lessonhub.domain.enums import ApplicationStatus, UserRole
from lessonhub.domain.errors import (
    InsufficientCredits,
    InvalidWeekStart,
    TemplateAlreadyApplied,
    TemplateNotFound,
    Unauthorized,
)
from lessonhub.repositories.template_application_repository import TemplateApplicationRepository

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
WEEK = date(2026, 3, 9)


async def _count(session: AsyncSession, model: Any) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return int(result.scalar_one())


def _entry(day: int, teacher_id: UUID, students: list[UUID], cost: int = 1) -> dict[str, Any]:
    return {
        "day_of_week": day,
        "start_time": "10:00",
        "end_time": "11:30",
        "teacher_id": teacher_id,
        "max_students": 4,
        "credits_cost": cost,
        "student_ids": students,
    }


@pytest.fixture
async def scenario(make_user: Any, make_template: Any) -> dict[str, Any]:
    admin = await make_user(UserRole.ADMIN)
    teacher = await make_user(UserRole.TEACHER)
    main = await make_user(credits=10)
    second = await make_user(credits=10)
    third = await make_user(credits=10)
    template_id = await make_template(
        admin.id,
        [
            _entry(0, teacher.id, [main.id, second.id]),
            _entry(2, teacher.id, [main.id, third.id]),
            _entry(4, teacher.id, [second.id, third.id]),
        ],
    )
    return {
        "admin_id": admin.id,
        "teacher_id": teacher.id,
        "student_ids": [main.id, second.id, third.id],
        "template_id": template_id,
    }


@pytest.mark.asyncio
async def test_apply_creates_week_and_charges_students(
    db_session: AsyncSession,
    container: AppContainer,
    scenario: dict[str, Any],
) -> None:
    service = container.create_template_application_service(db_session)
    ledger = container.create_credit_ledger_service(db_session)
    main_id = scenario["student_ids"][0]

    result = await service.apply_template_to_week(scenario["admin_id"], scenario["template_id"], WEEK, now_utc=NOW)

    assert result.status == ApplicationStatus.APPLIED
    assert not result.dry_run
    assert result.created_lessons_count == 3
    assert result.stats.created_bookings == 6
    assert result.stats.deducted_credits == 6
    assert len(result.lesson_ids) == 3
    assert await ledger.get_balance(main_id) == 8

    lessons = list((await db_session.execute(select(Lesson).order_by(Lesson.start_time))).scalars())
    assert [lesson.start_time.replace(tzinfo=UTC) for lesson in lessons] == [
        datetime(2026, 3, 9, 10, 0, tzinfo=UTC),
        datetime(2026, 3, 11, 10, 0, tzinfo=UTC),
        datetime(2026, 3, 13, 10, 0, tzinfo=UTC),
    ]
    assert all(lesson.current_students == 2 for lesson in lessons)
    assert all(lesson.template_application_id == result.application_id for lesson in lessons)

    application = await service.get_active_application(scenario["template_id"], WEEK)
    assert application is not None
    assert application.created_lessons_count == 3
    assert application.deducted_credits == 6


@pytest.mark.asyncio
async def test_apply_twice_conflicts(
    db_session: AsyncSession,
    container: AppContainer,
    scenario: dict[str, Any],
) -> None:
    service = container.create_template_application_service(db_session)
    await service.apply_template_to_week(scenario["admin_id"], scenario["template_id"], WEEK, now_utc=NOW)

    with pytest.raises(TemplateAlreadyApplied):
        await service.apply_template_to_week(scenario["admin_id"], scenario["template_id"], WEEK, now_utc=NOW)

    assert await _count(db_session, Lesson) == 3
    assert await _count(db_session, TemplateApplication) == 1


@pytest.mark.asyncio
async def test_apply_is_all_or_nothing_on_credit_shortage(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
    make_template: Any,
) -> None:
    admin = await make_user(UserRole.ADMIN)
    teacher = await make_user(UserRole.TEACHER)
    rich = await make_user(credits=50)
    poor = await make_user(credits=2)
    template_id = await make_template(
        admin.id,
        [
            _entry(0, teacher.id, [rich.id, poor.id], cost=1),
            _entry(1, teacher.id, [rich.id, poor.id], cost=1),
            _entry(2, teacher.id, [rich.id, poor.id], cost=1),
        ],
    )
    service = container.create_template_application_service(db_session)

    with pytest.raises(InsufficientCredits) as exc_info:
        await service.apply_template_to_week(admin.id, template_id, WEEK, now_utc=NOW)

    assert exc_info.value.required == 3
    assert exc_info.value.available == 2
    assert exc_info.value.details["shortages"] == [{"student_id": str(poor.id), "required": 3, "available": 2}]
    assert await _count(db_session, Lesson) == 0
    assert await _count(db_session, Booking) == 0
    assert await _count(db_session, CreditTransaction) == 0
    assert await _count(db_session, TemplateApplication) == 0
    ledger = container.create_credit_ledger_service(db_session)
    assert await ledger.get_balance(rich.id) == 50
    assert await ledger.get_balance(poor.id) == 2


@pytest.mark.asyncio
async def test_dry_run_reports_same_stats_without_writing(
    db_session: AsyncSession,
    container: AppContainer,
    scenario: dict[str, Any],
) -> None:
    service = container.create_template_application_service(db_session)

    preview = await service.apply_template_to_week(
        scenario["admin_id"],
        scenario["template_id"],
        WEEK,
        dry_run=True,
        now_utc=NOW,
    )

    assert preview.status == ApplicationStatus.PREVIEW
    assert preview.dry_run
    assert preview.application_id is None
    assert preview.lesson_ids == []
    assert await _count(db_session, Lesson) == 0
    assert await _count(db_session, Booking) == 0
    assert await _count(db_session, CreditTransaction) == 0
    assert await _count(db_session, TemplateApplication) == 0
    await db_session.commit()

    applied = await service.apply_template_to_week(scenario["admin_id"], scenario["template_id"], WEEK, now_utc=NOW)

    assert applied.stats == preview.stats


@pytest.mark.asyncio
async def test_apply_validation(
    db_session: AsyncSession,
    container: AppContainer,
    scenario: dict[str, Any],
) -> None:
    service = container.create_template_application_service(db_session)

    with pytest.raises(InvalidWeekStart):
        await service.apply_template_to_week(scenario["admin_id"], scenario["template_id"], "2026-03-10")
    with pytest.raises(TemplateNotFound):
        await service.apply_template_to_week(scenario["admin_id"], uuid4(), WEEK, now_utc=NOW)
    with pytest.raises(Unauthorized):
        await service.apply_template_to_week(scenario["teacher_id"], scenario["template_id"], WEEK, now_utc=NOW)

    assert await _count(db_session, Lesson) == 0


@pytest.mark.asyncio
async def test_other_weeks_are_independent(
    db_session: AsyncSession,
    container: AppContainer,
    scenario: dict[str, Any],
) -> None:
    service = container.create_template_application_service(db_session)

    await service.apply_template_to_week(scenario["admin_id"], scenario["template_id"], WEEK, now_utc=NOW)
    await service.apply_template_to_week(
        scenario["admin_id"],
        scenario["template_id"],
        WEEK + timedelta(weeks=1),
        now_utc=NOW,
    )

    applications = await service.list_applications(scenario["template_id"])
    assert [item.week_start_date for item in applications] == [WEEK + timedelta(weeks=1), WEEK]
    assert await container.create_credit_ledger_service(db_session).get_balance(scenario["student_ids"][0]) == 6


@pytest.mark.asyncio
async def test_racing_second_apply_is_rejected_by_unique_index(
    db_session: AsyncSession,
    container: AppContainer,
    scenario: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service = container.create_template_application_service(db_session)
    first = await service.apply_template_to_week(scenario["admin_id"], scenario["template_id"], WEEK, now_utc=NOW)

    async def _not_seen(*_: Any, **__: Any) -> None:
        return None

    # A concurrent admin passes the existence check before the first commit is visible.
    monkeypatch.setattr(TemplateApplicationRepository, "get_applied", _not_seen)

    with pytest.raises(TemplateAlreadyApplied):
        await service.apply_template_to_week(scenario["admin_id"], scenario["template_id"], WEEK, now_utc=NOW)

    monkeypatch.undo()
    active = await service.get_active_application(scenario["template_id"], WEEK)
    assert active is not None
    assert active.id == first.application_id
    assert await _count(db_session, TemplateApplication) == 1
    assert await _count(db_session, Lesson) == 3
    ledger = container.create_credit_ledger_service(db_session)
    assert await ledger.get_balance(scenario["student_ids"][0]) == 8


@pytest.mark.asyncio
async def test_apply_refuses_to_join_an_open_transaction(
    db_session: AsyncSession,
    container: AppContainer,
    scenario: dict[str, Any],
) -> None:
    service = container.create_template_application_service(db_session)
    ledger = container.create_credit_ledger_service(db_session)
    assert await ledger.get_balance(scenario["student_ids"][0]) == 10

    with pytest.raises(RuntimeError):
        await service.apply_template_to_week(scenario["admin_id"], scenario["template_id"], WEEK, now_utc=NOW)

    await db_session.rollback()
    assert await _count(db_session, Lesson) == 0
    assert await _count(db_session, TemplateApplication) == 0
    assert await ledger.get_balance(scenario["student_ids"][0]) == 10
