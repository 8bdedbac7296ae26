from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.datetime_utils import ensure_utc, utc_now
from lessonhub.db.models import Booking, Lesson
from lessonhub.db.transactions import unit_of_work
from lessonhub.domain.enums import ApplicationStatus, UserRole
from lessonhub.domain.errors import ApplicationNotFound
from lessonhub.domain.results import RollbackResult
from lessonhub.domain.rules import require_week_start
from lessonhub.repositories.booking_repository import BookingRepository
from lessonhub.repositories.lesson_repository import LessonRepository
from lessonhub.repositories.template_application_repository import TemplateApplicationRepository
from lessonhub.repositories.user_repository import UserRepository
from lessonhub.services.access import require_role
from lessonhub.services.booking_service import BookingService
from lessonhub.services.credit_ledger_service import CreditLedgerService

logger = structlog.get_logger(__name__)


class RollbackService:
    def __init__(
        self,
        session: AsyncSession,
        application_repository: TemplateApplicationRepository,
        lesson_repository: LessonRepository,
        booking_repository: BookingRepository,
        user_repository: UserRepository,
        booking_service: BookingService,
        credit_ledger: CreditLedgerService,
    ) -> None:
        self._session = session
        self._applications = application_repository
        self._lessons = lesson_repository
        self._bookings = booking_repository
        self._users = user_repository
        self._booking_service = booking_service
        self._ledger = credit_ledger

    async def rollback_week_to_template(
        self,
        admin_id: UUID,
        week_start_date: date | str,
        template_id: UUID,
        now_utc: datetime | None = None,
    ) -> RollbackResult:
        week_start = require_week_start(week_start_date)
        now = ensure_utc(now_utc or utc_now())

        async with unit_of_work(self._session):
            await require_role(self._users, admin_id, (UserRole.ADMIN,), "roll back templates")
            application = await self._applications.get_applied(template_id, week_start, for_update=True)
            if application is None:
                raise ApplicationNotFound(template_id=template_id, week_start_date=week_start.isoformat())

            lessons = await self._lessons.list_by_application(application.id, for_update=True)
            bookings_by_lesson: list[tuple[Lesson, list[Booking]]] = []
            student_ids: set[UUID] = set()
            for lesson in lessons:
                active = await self._bookings.list_active_for_lesson(lesson.id, for_update=True)
                bookings_by_lesson.append((lesson, active))
                student_ids.update(booking.student_id for booking in active)
            await self._ledger.lock_balances(student_ids)

            result = RollbackResult(application_id=application.id)
            for lesson, active in bookings_by_lesson:
                for booking in active:
                    refund = await self._ledger.charged_for_booking(booking.id)
                    released = await self._booking_service.release(
                        booking,
                        lesson,
                        refund_amount=refund,
                        performed_by=admin_id,
                        reason=f"Template rollback for week {week_start.isoformat()}",
                        now_utc=now,
                        write_marker=False,
                        template_application_id=application.id,
                    )
                    result.cancelled_bookings += 1
                    result.refunded_credits += released.refunded_credits
                await self._lessons.soft_delete(lesson, now)
                result.deleted_lessons += 1

            application.status = ApplicationStatus.ROLLED_BACK.value
            application.rolled_back_at = now
            await self._applications.update(application)

        logger.info(
            "template.rolled_back",
            template_id=str(template_id),
            week_start_date=week_start.isoformat(),
            application_id=str(result.application_id),
            deleted_lessons=result.deleted_lessons,
            refunded_credits=result.refunded_credits,
        )
        return result
