from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.datetime_utils import ensure_utc, format_time_of_day, parse_time_of_day, utc_now
from lessonhub.db.models import LessonTemplate, TemplateLessonEntry, User
from lessonhub.db.transactions import unit_of_work
from lessonhub.domain.commands import (
    CreateTemplateCommand,
    TemplateEntryInput,
    UpdateTemplateCommand,
    UpdateTemplateEntryCommand,
)
from lessonhub.domain.enums import TEACHING_ROLES, TEMPLATE_EDITOR_ROLES, LessonType
from lessonhub.domain.errors import (
    InvalidLessonCapacity,
    TemplateEntryNotFound,
    TemplateNotFound,
    Unauthorized,
    UserNotFound,
    ValidationError,
)
from lessonhub.domain.results import TemplateDetails, TemplateEntryView
from lessonhub.domain.rules import resolve_lesson_type, validate_credits_cost
from lessonhub.repositories.lesson_template_repository import LessonTemplateRepository
from lessonhub.repositories.user_repository import UserRepository
from lessonhub.services.access import require_role

logger = structlog.get_logger(__name__)


class TemplateService:
    def __init__(
        self,
        session: AsyncSession,
        template_repository: LessonTemplateRepository,
        user_repository: UserRepository,
        default_lesson_duration_minutes: int = 120,
    ) -> None:
        self._session = session
        self._templates = template_repository
        self._users = user_repository
        self._default_duration = timedelta(minutes=max(1, default_lesson_duration_minutes))

    async def create_template(self, actor_id: UUID, cmd: CreateTemplateCommand) -> LessonTemplate:
        async with unit_of_work(self._session):
            await require_role(self._users, actor_id, TEMPLATE_EDITOR_ROLES, "create templates")
            template = await self._templates.create(
                LessonTemplate(owner_id=actor_id, name=cmd.name.strip(), description=cmd.description)
            )
        logger.info("template.created", template_id=str(template.id), owner_id=str(actor_id))
        return template

    async def get_template(self, template_id: UUID) -> TemplateDetails:
        template = await self._require_template(template_id)
        entries = await self._templates.list_entries(template_id)
        students = await self._templates.students_by_entry([entry.id for entry in entries])
        return TemplateDetails(
            template=template,
            entries=[TemplateEntryView(entry=entry, student_ids=list(students.get(entry.id, []))) for entry in entries],
        )

    async def list_templates(self, owner_id: UUID | None = None) -> list[LessonTemplate]:
        return await self._templates.list_all(owner_id=owner_id)

    async def update_template(self, actor_id: UUID, template_id: UUID, cmd: UpdateTemplateCommand) -> LessonTemplate:
        async with unit_of_work(self._session):
            template = await self._require_template(template_id)
            await self._require_editor(actor_id, template)
            if cmd.name is not None:
                template.name = cmd.name.strip()
            if cmd.description is not None:
                template.description = cmd.description
            await self._templates.update(template)
        return template

    async def delete_template(self, actor_id: UUID, template_id: UUID, now_utc: datetime | None = None) -> None:
        async with unit_of_work(self._session):
            template = await self._require_template(template_id)
            await self._require_editor(actor_id, template)
            await self._templates.soft_delete(template, ensure_utc(now_utc or utc_now()))
        logger.info("template.deleted", template_id=str(template_id), actor_id=str(actor_id))

    async def add_entry(self, actor_id: UUID, template_id: UUID, data: TemplateEntryInput) -> TemplateEntryView:
        async with unit_of_work(self._session):
            template = await self._require_template(template_id)
            await self._require_editor(actor_id, template)
            start, end = self._resolve_times(data.start_time, data.end_time)
            lesson_type = resolve_lesson_type(data.lesson_type, data.max_students)
            validate_credits_cost(data.credits_cost)
            await self._require_teacher(data.teacher_id)
            await self._require_students(data.student_ids, data.max_students)

            entry = await self._templates.add_entry(
                TemplateLessonEntry(
                    template_id=template_id,
                    day_of_week=data.day_of_week,
                    start_time=start,
                    end_time=end,
                    teacher_id=data.teacher_id,
                    lesson_type=lesson_type.value,
                    max_students=data.max_students,
                    credits_cost=data.credits_cost,
                    color=data.color,
                    subject=data.subject,
                    description=data.description,
                )
            )
            if data.student_ids:
                await self._templates.add_students(entry.id, data.student_ids)
            view = TemplateEntryView(entry=entry, student_ids=list(data.student_ids))
        return view

    async def update_entry(
        self,
        actor_id: UUID,
        entry_id: UUID,
        cmd: UpdateTemplateEntryCommand,
    ) -> TemplateEntryView:
        async with unit_of_work(self._session):
            entry = await self._require_entry(entry_id)
            template = await self._require_template(entry.template_id)
            await self._require_editor(actor_id, template)

            start_raw = cmd.start_time or entry.start_time
            end_raw = cmd.end_time or entry.end_time
            start, end = self._resolve_times(start_raw, end_raw)
            max_students = cmd.max_students if cmd.max_students is not None else entry.max_students
            requested_type: LessonType | str | None = cmd.lesson_type
            if requested_type is None and cmd.max_students is None:
                requested_type = entry.lesson_type
            lesson_type = resolve_lesson_type(requested_type, max_students)
            student_ids = await self._templates.list_student_ids(entry.id)
            if len(student_ids) > max_students:
                raise InvalidLessonCapacity(
                    f"Template lesson already has {len(student_ids)} students",
                    entry_id=entry.id,
                    max_students=max_students,
                )
            if cmd.teacher_id is not None:
                await self._require_teacher(cmd.teacher_id)
                entry.teacher_id = cmd.teacher_id
            if cmd.credits_cost is not None:
                entry.credits_cost = validate_credits_cost(cmd.credits_cost)
            if cmd.day_of_week is not None:
                entry.day_of_week = cmd.day_of_week
            if cmd.color is not None:
                entry.color = cmd.color
            if cmd.subject is not None:
                entry.subject = cmd.subject
            if cmd.description is not None:
                entry.description = cmd.description
            entry.start_time = start
            entry.end_time = end
            entry.max_students = max_students
            entry.lesson_type = lesson_type.value
            await self._templates.update_entry(entry)
            view = TemplateEntryView(entry=entry, student_ids=student_ids)
        return view

    async def remove_entry(self, actor_id: UUID, entry_id: UUID) -> None:
        async with unit_of_work(self._session):
            entry = await self._require_entry(entry_id)
            template = await self._require_template(entry.template_id)
            await self._require_editor(actor_id, template)
            await self._templates.delete_entry(entry)

    async def assign_students(self, actor_id: UUID, entry_id: UUID, student_ids: list[UUID]) -> TemplateEntryView:
        async with unit_of_work(self._session):
            entry = await self._require_entry(entry_id)
            template = await self._require_template(entry.template_id)
            await self._require_editor(actor_id, template)

            current = await self._templates.list_student_ids(entry.id)
            new_ids = [student_id for student_id in dict.fromkeys(student_ids) if student_id not in current]
            await self._require_students(current + new_ids, entry.max_students)
            if new_ids:
                await self._templates.add_students(entry.id, new_ids)
            view = TemplateEntryView(entry=entry, student_ids=current + new_ids)
        return view

    async def unassign_student(self, actor_id: UUID, entry_id: UUID, student_id: UUID) -> TemplateEntryView:
        async with unit_of_work(self._session):
            entry = await self._require_entry(entry_id)
            template = await self._require_template(entry.template_id)
            await self._require_editor(actor_id, template)
            if not await self._templates.remove_student(entry.id, student_id):
                raise ValidationError("Student is not assigned to this template lesson", student_id=student_id)
            view = TemplateEntryView(entry=entry, student_ids=await self._templates.list_student_ids(entry.id))
        return view

    async def _require_template(self, template_id: UUID) -> LessonTemplate:
        template = await self._templates.get_by_id(template_id)
        if template is None:
            raise TemplateNotFound(template_id=template_id)
        return template

    async def _require_entry(self, entry_id: UUID) -> TemplateLessonEntry:
        entry = await self._templates.get_entry(entry_id)
        if entry is None:
            raise TemplateEntryNotFound(entry_id=entry_id)
        return entry

    async def _require_editor(self, actor_id: UUID, template: LessonTemplate) -> User:
        actor = await self._users.get_by_id(actor_id)
        if actor is None:
            raise UserNotFound(user_id=actor_id)
        if actor.id != template.owner_id and actor.role not in {role.value for role in TEMPLATE_EDITOR_ROLES}:
            raise Unauthorized("Only the owner, an admin or a methodologist can change this template")
        return actor

    async def _require_teacher(self, teacher_id: UUID) -> None:
        await require_role(self._users, teacher_id, TEACHING_ROLES, "teach lessons")

    async def _require_students(self, student_ids: list[UUID], max_students: int) -> None:
        if len(student_ids) > max_students:
            raise InvalidLessonCapacity(
                f"{len(student_ids)} students exceed the capacity of {max_students}",
                max_students=max_students,
            )
        users = await self._users.get_many(student_ids)
        for student_id in student_ids:
            user = users.get(student_id)
            if user is None:
                raise UserNotFound(user_id=student_id)
            if not user.is_student:
                raise ValidationError("Only students can be assigned to template lessons", user_id=student_id)

    def _resolve_times(self, start_raw: str, end_raw: str | None) -> tuple[str, str]:
        try:
            start = parse_time_of_day(start_raw)
            end = parse_time_of_day(end_raw) if end_raw else None
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        if end is None:
            anchor = date(2000, 1, 3)
            start_dt = datetime.combine(anchor, start, tzinfo=UTC)
            end_dt = start_dt + self._default_duration
            if end_dt.date() != anchor:
                raise ValidationError("Default lesson duration runs past midnight, set end_time explicitly")
            end = end_dt.time()
        if end <= start:
            raise ValidationError("end_time must be after start_time")
        return format_time_of_day(start), format_time_of_day(end)
