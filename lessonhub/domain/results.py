from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from lessonhub.db.models import LessonTemplate, TemplateLessonEntry
from lessonhub.domain.enums import ApplicationStatus, CancelResultStatus


@dataclass(slots=True)
class CancelResult:
    status: CancelResultStatus
    booking_id: UUID
    refunded_credits: int = 0
    message: str = ""


@dataclass(slots=True)
class CreationStats:
    created_lessons: int = 0
    created_bookings: int = 0
    deducted_credits: int = 0


@dataclass(slots=True)
class ApplicationResult:
    application_id: UUID | None
    template_id: UUID
    week_start_date: date
    status: ApplicationStatus
    stats: CreationStats
    lesson_ids: list[UUID] = field(default_factory=list)

    @property
    def created_lessons_count(self) -> int:
        return self.stats.created_lessons

    @property
    def dry_run(self) -> bool:
        return self.status == ApplicationStatus.PREVIEW


@dataclass(slots=True)
class RollbackResult:
    application_id: UUID
    deleted_lessons: int = 0
    cancelled_bookings: int = 0
    refunded_credits: int = 0


@dataclass(slots=True)
class ReleasedSeat:
    booking_id: UUID
    student_id: UUID
    refunded_credits: int


@dataclass(slots=True)
class TemplateEntryView:
    entry: TemplateLessonEntry
    student_ids: list[UUID] = field(default_factory=list)


@dataclass(slots=True)
class TemplateDetails:
    template: LessonTemplate
    entries: list[TemplateEntryView] = field(default_factory=list)

    @property
    def lesson_count(self) -> int:
        return len(self.entries)
