from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.datetime_utils import combine_utc, ensure_utc, parse_time_of_day, utc_now
from lessonhub.db.models import Lesson, TemplateApplication, TemplateLessonEntry
from lessonhub.db.transactions import SERIALIZABLE, unit_of_work
from lessonhub.domain.enums import ApplicationStatus, UserRole
from lessonhub.domain.errors import InsufficientCredits, TemplateAlreadyApplied, TemplateNotFound
from lessonhub.domain.results import ApplicationResult, CreationStats
from lessonhub.domain.rules import require_week_start
from lessonhub.repositories.lesson_repository import LessonRepository
from lessonhub.repositories.lesson_template_repository import LessonTemplateRepository
from lessonhub.repositories.template_application_repository import TemplateApplicationRepository
from lessonhub.repositories.user_repository import UserRepository
from lessonhub.services.access import require_role
from lessonhub.services.booking_service import BookingService
from lessonhub.services.credit_ledger_service import CreditLedgerService

logger = structlog.get_logger(__name__)


class TemplateApplicationService:
    def __init__(
        self,
        session: AsyncSession,
        template_repository: LessonTemplateRepository,
        application_repository: TemplateApplicationRepository,
        lesson_repository: LessonRepository,
        user_repository: UserRepository,
        booking_service: BookingService,
        credit_ledger: CreditLedgerService,
        default_lesson_duration_minutes: int = 120,
    ) -> None:
        self._session = session
        self._templates = template_repository
        self._applications = application_repository
        self._lessons = lesson_repository
        self._users = user_repository
        self._bookings = booking_service
        self._ledger = credit_ledger
        self._default_duration = timedelta(minutes=max(1, default_lesson_duration_minutes))

    async def apply_template_to_week(
        self,
        admin_id: UUID,
        template_id: UUID,
        week_start_date: date | str,
        dry_run: bool = False,
        now_utc: datetime | None = None,
    ) -> ApplicationResult:
        week_start = require_week_start(week_start_date)
        now = ensure_utc(now_utc or utc_now())

        async with unit_of_work(self._session, isolation_level=SERIALIZABLE, commit=not dry_run):
            await require_role(self._users, admin_id, (UserRole.ADMIN,), "apply templates")
            template = await self._templates.get_by_id(template_id)
            if template is None:
                raise TemplateNotFound(template_id=template_id)

            existing = await self._applications.get_applied(template_id, week_start, for_update=True)
            if existing is not None:
                raise TemplateAlreadyApplied(
                    application_id=existing.id,
                    template_id=template_id,
                    week_start_date=week_start.isoformat(),
                )

            entries = await self._templates.list_entries(template_id)
            students = await self._templates.students_by_entry([entry.id for entry in entries])
            await self._check_credit_requirements(entries, students)

            application = TemplateApplication(
                template_id=template_id,
                applied_by_id=admin_id,
                week_start_date=week_start,
                status=ApplicationStatus.APPLIED.value,
                applied_at=now,
            )
            try:
                await self._applications.create(application)
            except IntegrityError as exc:
                raise TemplateAlreadyApplied(template_id=template_id, week_start_date=week_start.isoformat()) from exc

            stats = CreationStats()
            lesson_ids: list[UUID] = []
            for entry in entries:
                lesson = await self._lessons.create(self._build_lesson(entry, week_start, application.id))
                lesson_ids.append(lesson.id)
                stats.created_lessons += 1
                for student_id in students.get(entry.id, []):
                    await self._bookings.enroll(
                        lesson,
                        student_id,
                        performed_by=admin_id,
                        now_utc=now,
                        check_schedule=False,
                        template_application_id=application.id,
                        reason=f"Template lesson {week_start.isoformat()} day {entry.day_of_week} {entry.start_time}",
                    )
                    stats.created_bookings += 1
                    stats.deducted_credits += lesson.credits_cost

            application.created_lessons_count = stats.created_lessons
            application.created_bookings_count = stats.created_bookings
            application.deducted_credits = stats.deducted_credits
            await self._applications.update(application)

            result = ApplicationResult(
                application_id=None if dry_run else application.id,
                template_id=template_id,
                week_start_date=week_start,
                status=ApplicationStatus.PREVIEW if dry_run else ApplicationStatus.APPLIED,
                stats=stats,
                lesson_ids=[] if dry_run else lesson_ids,
            )

        logger.info(
            "template.preview" if dry_run else "template.applied",
            template_id=str(template_id),
            week_start_date=week_start.isoformat(),
            application_id=str(result.application_id) if result.application_id else None,
            created_lessons=stats.created_lessons,
            created_bookings=stats.created_bookings,
            deducted_credits=stats.deducted_credits,
        )
        return result

    async def get_active_application(self, template_id: UUID, week_start_date: date | str) -> TemplateApplication | None:
        return await self._applications.get_applied(template_id, require_week_start(week_start_date))

    async def list_applications(self, template_id: UUID) -> list[TemplateApplication]:
        if await self._templates.get_by_id(template_id) is None:
            raise TemplateNotFound(template_id=template_id)
        return await self._applications.list_for_template(template_id)

    def lesson_window(self, entry: TemplateLessonEntry, week_start: date) -> tuple[datetime, datetime]:
        day = week_start + timedelta(days=entry.day_of_week)
        start = combine_utc(day, parse_time_of_day(entry.start_time))
        if entry.end_time:
            end = combine_utc(day, parse_time_of_day(entry.end_time))
        else:
            end = start + self._default_duration
        return start, end

    def _build_lesson(self, entry: TemplateLessonEntry, week_start: date, application_id: UUID) -> Lesson:
        start, end = self.lesson_window(entry, week_start)
        return Lesson(
            teacher_id=entry.teacher_id,
            start_time=start,
            end_time=end,
            lesson_type=entry.lesson_type,
            max_students=entry.max_students,
            current_students=0,
            credits_cost=entry.credits_cost,
            color=entry.color,
            subject=entry.subject,
            template_application_id=application_id,
        )

    async def _check_credit_requirements(
        self,
        entries: list[TemplateLessonEntry],
        students: dict[UUID, list[UUID]],
    ) -> None:
        required: dict[UUID, int] = defaultdict(int)
        for entry in entries:
            for student_id in students.get(entry.id, []):
                required[student_id] += entry.credits_cost
        if not required:
            return

        balances = await self._ledger.lock_balances(required)
        shortages = [
            {"student_id": str(student_id), "required": amount, "available": balances[student_id]}
            for student_id, amount in sorted(required.items())
            if balances[student_id] < amount
        ]
        if shortages:
            first = shortages[0]
            raise InsufficientCredits(
                f"{len(shortages)} student(s) lack credits for this template",
                required=int(first["required"]),
                available=int(first["available"]),
                shortages=shortages,
            )
