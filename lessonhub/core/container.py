from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lessonhub.core.config import Settings
from lessonhub.repositories.booking_repository import BookingRepository, CancelledBookingRepository
from lessonhub.repositories.credit_repository import CreditRepository
from lessonhub.repositories.lesson_modification_repository import LessonModificationRepository
from lessonhub.repositories.lesson_repository import LessonRepository
from lessonhub.repositories.lesson_template_repository import LessonTemplateRepository
from lessonhub.repositories.template_application_repository import TemplateApplicationRepository
from lessonhub.repositories.user_repository import UserRepository
from lessonhub.services.booking_service import BookingService
from lessonhub.services.bulk_edit_service import BulkEditService
from lessonhub.services.credit_ledger_service import CreditLedgerService
from lessonhub.services.lesson_service import LessonService
from lessonhub.services.rollback_service import RollbackService
from lessonhub.services.template_application_service import TemplateApplicationService
from lessonhub.services.template_service import TemplateService


@dataclass(slots=True)
class AppContainer:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]

    def create_credit_ledger_service(self, session: AsyncSession) -> CreditLedgerService:
        return CreditLedgerService(
            session,
            CreditRepository(session),
            user_repository=UserRepository(session),
            max_balance=self.settings.max_credit_balance,
            history_default_limit=self.settings.credit_history_default_limit,
            history_max_limit=self.settings.credit_history_max_limit,
        )

    def create_booking_service(self, session: AsyncSession) -> BookingService:
        return self._booking_service_with(session, self.create_credit_ledger_service(session))

    def create_lesson_service(self, session: AsyncSession) -> LessonService:
        return LessonService(
            session,
            LessonRepository(session),
            BookingRepository(session),
            UserRepository(session),
            default_lesson_duration_minutes=self.settings.default_lesson_duration_minutes,
            default_recurring_weeks=self.settings.default_recurring_weeks,
            max_recurring_weeks=self.settings.max_recurring_weeks,
        )

    def create_template_service(self, session: AsyncSession) -> TemplateService:
        return TemplateService(
            session,
            LessonTemplateRepository(session),
            UserRepository(session),
            default_lesson_duration_minutes=self.settings.default_lesson_duration_minutes,
        )

    def create_template_application_service(self, session: AsyncSession) -> TemplateApplicationService:
        ledger = self.create_credit_ledger_service(session)
        return TemplateApplicationService(
            session,
            LessonTemplateRepository(session),
            TemplateApplicationRepository(session),
            LessonRepository(session),
            UserRepository(session),
            self._booking_service_with(session, ledger),
            ledger,
            default_lesson_duration_minutes=self.settings.default_lesson_duration_minutes,
        )

    def create_rollback_service(self, session: AsyncSession) -> RollbackService:
        ledger = self.create_credit_ledger_service(session)
        return RollbackService(
            session,
            TemplateApplicationRepository(session),
            LessonRepository(session),
            BookingRepository(session),
            UserRepository(session),
            self._booking_service_with(session, ledger),
            ledger,
        )

    def create_bulk_edit_service(self, session: AsyncSession) -> BulkEditService:
        ledger = self.create_credit_ledger_service(session)
        return BulkEditService(
            session,
            LessonRepository(session),
            BookingRepository(session),
            LessonModificationRepository(session),
            UserRepository(session),
            self._booking_service_with(session, ledger),
            ledger,
        )

    def _booking_service_with(self, session: AsyncSession, ledger: CreditLedgerService) -> BookingService:
        return BookingService(
            session,
            BookingRepository(session),
            LessonRepository(session),
            CancelledBookingRepository(session),
            UserRepository(session),
            ledger,
            refund_window_hours=self.settings.refund_window_hours,
        )
