from __future__ import annotations

from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.container import AppContainer
from lessonhub.domain.commands import (
    CreateTemplateCommand,
    TemplateEntryInput,
    UpdateTemplateCommand,
    UpdateTemplateEntryCommand,
)
from lessonhub.domain.enums import LessonType, UserRole
from lessonhub.domain.errors import (
    InvalidLessonCapacity,
    TemplateNotFound,
    Unauthorized,
    UserNotFound,
    ValidationError,
)


@pytest.mark.asyncio
async def test_create_template_requires_editor_role(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
) -> None:
    methodologist = await make_user(UserRole.METHODOLOGIST)
    teacher = await make_user(UserRole.TEACHER)
    service = container.create_template_service(db_session)

    template = await service.create_template(methodologist.id, CreateTemplateCommand(name="  Autumn  "))
    assert template.name == "Autumn"
    assert template.owner_id == methodologist.id

    with pytest.raises(Unauthorized):
        await service.create_template(teacher.id, CreateTemplateCommand(name="Mine"))


@pytest.mark.asyncio
async def test_entries_keep_order_and_defaults(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
) -> None:
    admin = await make_user(UserRole.ADMIN)
    teacher = await make_user(UserRole.TEACHER)
    student = await make_user()
    service = container.create_template_service(db_session)
    template = await service.create_template(admin.id, CreateTemplateCommand(name="Week"))
    template_id = template.id

    first = await service.add_entry(
        admin.id,
        template_id,
        TemplateEntryInput(day_of_week=3, start_time="18:00", teacher_id=teacher.id, student_ids=[student.id]),
    )
    await service.add_entry(
        admin.id,
        template_id,
        TemplateEntryInput(day_of_week=0, start_time="09:15", end_time="10:00", teacher_id=teacher.id, max_students=8),
    )

    assert first.entry.end_time == "20:00:00"
    assert first.entry.lesson_type == LessonType.INDIVIDUAL.value
    assert first.student_ids == [student.id]

    details = await service.get_template(template_id)
    assert details.lesson_count == 2
    assert [view.entry.day_of_week for view in details.entries] == [3, 0]
    assert details.entries[1].entry.lesson_type == LessonType.GROUP.value
    assert details.entries[0].student_ids == [student.id]


@pytest.mark.asyncio
async def test_entry_validation(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
) -> None:
    admin = await make_user(UserRole.ADMIN)
    teacher = await make_user(UserRole.TEACHER)
    students = [await make_user() for _ in range(2)]
    service = container.create_template_service(db_session)
    template = await service.create_template(admin.id, CreateTemplateCommand(name="Week"))
    template_id = template.id

    with pytest.raises(InvalidLessonCapacity):
        await service.add_entry(
            admin.id,
            template_id,
            TemplateEntryInput(day_of_week=1, start_time="10:00", teacher_id=teacher.id, max_students=2),
        )
    with pytest.raises(InvalidLessonCapacity):
        await service.add_entry(
            admin.id,
            template_id,
            TemplateEntryInput(
                day_of_week=1,
                start_time="10:00",
                teacher_id=teacher.id,
                student_ids=[student.id for student in students],
            ),
        )
    with pytest.raises(ValidationError):
        await service.add_entry(
            admin.id,
            template_id,
            TemplateEntryInput(day_of_week=1, start_time="23:00", teacher_id=teacher.id),
        )
    with pytest.raises(ValidationError):
        await service.add_entry(
            admin.id,
            template_id,
            TemplateEntryInput(day_of_week=1, start_time="10:00", teacher_id=teacher.id, student_ids=[teacher.id]),
        )
    with pytest.raises(UserNotFound):
        await service.add_entry(
            admin.id,
            template_id,
            TemplateEntryInput(day_of_week=1, start_time="10:00", teacher_id=teacher.id, student_ids=[uuid4()]),
        )
    with pytest.raises(ValueError):
        TemplateEntryInput(day_of_week=7, start_time="10:00", teacher_id=teacher.id)

    assert (await service.get_template(template_id)).lesson_count == 0


@pytest.mark.asyncio
async def test_update_entry_and_assignments(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
) -> None:
    admin = await make_user(UserRole.ADMIN)
    teacher = await make_user(UserRole.TEACHER)
    students = [await make_user() for _ in range(5)]
    service = container.create_template_service(db_session)
    template = await service.create_template(admin.id, CreateTemplateCommand(name="Week"))
    view = await service.add_entry(
        admin.id,
        template.id,
        TemplateEntryInput(day_of_week=2, start_time="10:00", teacher_id=teacher.id, max_students=4),
    )
    entry_id = view.entry.id

    assigned = await service.assign_students(admin.id, entry_id, [student.id for student in students[:4]])
    assert len(assigned.student_ids) == 4

    with pytest.raises(InvalidLessonCapacity):
        await service.assign_students(admin.id, entry_id, [students[4].id])

    updated = await service.update_entry(
        admin.id,
        entry_id,
        UpdateTemplateEntryCommand(start_time="11:00", end_time="12:30", max_students=6, credits_cost=3),
    )
    assert (updated.entry.start_time, updated.entry.end_time) == ("11:00:00", "12:30:00")
    assert updated.entry.credits_cost == 3

    with pytest.raises(InvalidLessonCapacity):
        await service.update_entry(admin.id, entry_id, UpdateTemplateEntryCommand(max_students=1))

    remaining = await service.unassign_student(admin.id, entry_id, students[0].id)
    assert students[0].id not in remaining.student_ids
    with pytest.raises(ValidationError):
        await service.unassign_student(admin.id, entry_id, students[0].id)

    await service.remove_entry(admin.id, entry_id)
    assert (await service.get_template(template.id)).lesson_count == 0


@pytest.mark.asyncio
async def test_owner_and_editors_manage_template(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
) -> None:
    owner = await make_user(UserRole.METHODOLOGIST)
    admin = await make_user(UserRole.ADMIN)
    teacher = await make_user(UserRole.TEACHER)
    service = container.create_template_service(db_session)
    template = await service.create_template(owner.id, CreateTemplateCommand(name="Week"))
    template_id = template.id

    with pytest.raises(Unauthorized):
        await service.update_template(teacher.id, template_id, UpdateTemplateCommand(name="Hijacked"))

    renamed = await service.update_template(admin.id, template_id, UpdateTemplateCommand(name="Renamed"))
    assert renamed.name == "Renamed"
    assert [item.id for item in await service.list_templates(owner_id=owner.id)] == [template_id]

    await service.delete_template(owner.id, template_id)

    with pytest.raises(TemplateNotFound):
        await service.get_template(template_id)
    assert await service.list_templates() == []
