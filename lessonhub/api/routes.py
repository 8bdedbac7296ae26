from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.contextvars import bound_contextvars

from lessonhub.api.deps import get_container, get_current_user, get_db_session
from lessonhub.core.container import AppContainer
from lessonhub.db.models import (
    Booking,
    CreditTransaction,
    Lesson,
    LessonModification,
    LessonTemplate,
    TemplateApplication,
    User,
)
from lessonhub.domain.commands import (
    ApplyTemplateCommand,
    BulkEditCommand,
    CreateBookingCommand,
    CreateLessonCommand,
    CreateRecurringLessonsCommand,
    CreateTemplateCommand,
    CreditChangeCommand,
    ListBookingsQuery,
    RollbackTemplateCommand,
    TemplateEntryInput,
    UpdateLessonCommand,
    UpdateTemplateCommand,
    UpdateTemplateEntryCommand,
)
from lessonhub.domain.enums import BookingStatus, CreditOperation
from lessonhub.domain.results import ApplicationResult, TemplateEntryView

logger = structlog.get_logger(__name__)
router = APIRouter()


class AssignStudentsRequest(BaseModel):
    student_ids: list[UUID] = Field(min_length=1)


@router.get("/health/live")
async def health_live() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready")
async def health_ready(session: AsyncSession = Depends(get_db_session)) -> dict[str, str]:
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.exception("health.ready_failed", error=str(exc))
        raise HTTPException(status_code=503, detail="database unavailable") from exc
    return {"status": "ready"}


# bookings


@router.post("/bookings", status_code=201)
async def create_booking(
    payload: CreateBookingCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_booking_service(session)
    with bound_contextvars(lesson_id=str(payload.lesson_id)):
        booking = await service.create_booking(
            payload.student_id,
            payload.lesson_id,
            acting_user_id=user.id,
            is_admin=user.is_admin,
        )
    return _booking_payload(booking)


@router.post("/bookings/{booking_id}/cancel")
async def cancel_booking(
    booking_id: UUID,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_booking_service(session)
    result = await service.cancel_booking(booking_id, acting_user_id=user.id, is_admin=user.is_admin)
    return {
        "status": result.status.value,
        "booking_id": str(result.booking_id),
        "refunded_credits": result.refunded_credits,
        "message": result.message,
    }


@router.get("/bookings/{booking_id}")
async def get_booking(
    booking_id: UUID,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    booking = await container.create_booking_service(session).get_booking(booking_id)
    return _booking_payload(booking)


@router.get("/bookings")
async def list_bookings(
    student_id: UUID | None = None,
    lesson_id: UUID | None = None,
    status: BookingStatus | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    query = ListBookingsQuery(student_id=student_id, lesson_id=lesson_id, status=status, limit=limit)
    bookings = await container.create_booking_service(session).list_bookings(query)
    return {"items": [_booking_payload(item) for item in bookings]}


# credits


@router.get("/credits/{user_id}")
async def get_credit_balance(
    user_id: UUID,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    balance = await container.create_credit_ledger_service(session).get_balance(user_id)
    return {"user_id": str(user_id), "balance": balance}


@router.post("/credits/add")
async def add_credits(
    payload: CreditChangeCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    _require_admin(user)
    service = container.create_credit_ledger_service(session)
    item = await service.add_credits(payload.user_id, payload.amount, payload.reason, performed_by=user.id)
    return _credit_transaction_payload(item)


@router.post("/credits/deduct")
async def deduct_credits(
    payload: CreditChangeCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    _require_admin(user)
    service = container.create_credit_ledger_service(session)
    item = await service.deduct_credits(payload.user_id, payload.amount, payload.reason, performed_by=user.id)
    return _credit_transaction_payload(item)


@router.get("/credits/{user_id}/history")
async def credit_history(
    user_id: UUID,
    operation: CreditOperation | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = Query(default=None, ge=1),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_credit_ledger_service(session)
    items = await service.get_history(user_id, operation=operation, start=start, end=end, limit=limit)
    return {"items": [_credit_transaction_payload(item) for item in items]}


# lessons


@router.post("/lessons", status_code=201)
async def create_lesson(
    payload: CreateLessonCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    lesson = await container.create_lesson_service(session).create_lesson(user.id, payload)
    return _lesson_payload(lesson)


@router.post("/lessons/recurring", status_code=201)
async def create_recurring_lessons(
    payload: CreateRecurringLessonsCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    lessons = await container.create_lesson_service(session).create_recurring_lessons(user.id, payload)
    return {"items": [_lesson_payload(lesson) for lesson in lessons]}


@router.get("/lessons/{lesson_id}")
async def get_lesson(
    lesson_id: UUID,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    lesson = await container.create_lesson_service(session).get_lesson(lesson_id)
    return _lesson_payload(lesson)


@router.patch("/lessons/{lesson_id}")
async def update_lesson(
    lesson_id: UUID,
    payload: UpdateLessonCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    lesson = await container.create_lesson_service(session).update_lesson(user.id, lesson_id, payload)
    return _lesson_payload(lesson)


@router.delete("/lessons/{lesson_id}")
async def delete_lesson(
    lesson_id: UUID,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    await container.create_lesson_service(session).delete_lesson(user.id, lesson_id)
    return {"status": "deleted", "lesson_id": str(lesson_id)}


@router.post("/lessons/{lesson_id}/apply-to-subsequent")
async def apply_to_all_subsequent(
    lesson_id: UUID,
    payload: BulkEditCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_bulk_edit_service(session)
    with bound_contextvars(lesson_id=str(lesson_id), modification_type=payload.modification_type.value):
        modification = await service.apply_to_all_subsequent(user.id, lesson_id, payload)
    return _modification_payload(modification)


@router.get("/lessons/{lesson_id}/modifications")
async def list_lesson_modifications(
    lesson_id: UUID,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    items = await container.create_bulk_edit_service(session).list_modifications(lesson_id)
    return {"items": [_modification_payload(item) for item in items]}


# templates


@router.post("/templates", status_code=201)
async def create_template(
    payload: CreateTemplateCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    template = await container.create_template_service(session).create_template(user.id, payload)
    return _template_payload(template)


@router.get("/templates")
async def list_templates(
    owner_id: UUID | None = None,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    templates = await container.create_template_service(session).list_templates(owner_id=owner_id)
    return {"items": [_template_payload(item) for item in templates]}


@router.get("/templates/{template_id}")
async def get_template(
    template_id: UUID,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    details = await container.create_template_service(session).get_template(template_id)
    payload = _template_payload(details.template)
    payload["lesson_count"] = details.lesson_count
    payload["lessons"] = [_entry_payload(view) for view in details.entries]
    return payload


@router.patch("/templates/{template_id}")
async def update_template(
    template_id: UUID,
    payload: UpdateTemplateCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    template = await container.create_template_service(session).update_template(user.id, template_id, payload)
    return _template_payload(template)


@router.delete("/templates/{template_id}")
async def delete_template(
    template_id: UUID,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    await container.create_template_service(session).delete_template(user.id, template_id)
    return {"status": "deleted", "template_id": str(template_id)}


@router.post("/templates/{template_id}/lessons", status_code=201)
async def add_template_entry(
    template_id: UUID,
    payload: TemplateEntryInput,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    view = await container.create_template_service(session).add_entry(user.id, template_id, payload)
    return _entry_payload(view)


@router.patch("/templates/lessons/{entry_id}")
async def update_template_entry(
    entry_id: UUID,
    payload: UpdateTemplateEntryCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    view = await container.create_template_service(session).update_entry(user.id, entry_id, payload)
    return _entry_payload(view)


@router.delete("/templates/lessons/{entry_id}")
async def remove_template_entry(
    entry_id: UUID,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    await container.create_template_service(session).remove_entry(user.id, entry_id)
    return {"status": "deleted", "entry_id": str(entry_id)}


@router.post("/templates/lessons/{entry_id}/students")
async def assign_template_students(
    entry_id: UUID,
    payload: AssignStudentsRequest,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    view = await container.create_template_service(session).assign_students(user.id, entry_id, payload.student_ids)
    return _entry_payload(view)


@router.delete("/templates/lessons/{entry_id}/students/{student_id}")
async def unassign_template_student(
    entry_id: UUID,
    student_id: UUID,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    view = await container.create_template_service(session).unassign_student(user.id, entry_id, student_id)
    return _entry_payload(view)


@router.post("/templates/apply")
async def apply_template(
    payload: ApplyTemplateCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_template_application_service(session)
    with bound_contextvars(template_id=str(payload.template_id)):
        result = await service.apply_template_to_week(
            user.id,
            payload.template_id,
            payload.week_start_date,
            dry_run=payload.dry_run,
        )
    return _application_result_payload(result)


@router.post("/templates/rollback")
async def rollback_template(
    payload: RollbackTemplateCommand,
    user: User = Depends(get_current_user),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_rollback_service(session)
    with bound_contextvars(template_id=str(payload.template_id)):
        result = await service.rollback_week_to_template(user.id, payload.week_start_date, payload.template_id)
    return {
        "application_id": str(result.application_id),
        "deleted_lessons": result.deleted_lessons,
        "cancelled_bookings": result.cancelled_bookings,
        "refunded_credits": result.refunded_credits,
    }


@router.get("/templates/{template_id}/applications")
async def list_template_applications(
    template_id: UUID,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    items = await container.create_template_application_service(session).list_applications(template_id)
    return {"items": [_application_payload(item) for item in items]}


def _require_admin(user: User) -> None:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="admin only")


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _booking_payload(booking: Booking) -> dict[str, Any]:
    return {
        "id": str(booking.id),
        "student_id": str(booking.student_id),
        "lesson_id": str(booking.lesson_id),
        "status": booking.status,
        "booked_at": _iso(booking.booked_at),
        "cancelled_at": _iso(booking.cancelled_at),
    }


def _credit_transaction_payload(item: CreditTransaction) -> dict[str, Any]:
    return {
        "id": str(item.id),
        "user_id": str(item.user_id),
        "operation": item.operation,
        "amount": item.amount,
        "reason": item.reason,
        "performed_by": str(item.performed_by) if item.performed_by else None,
        "booking_id": str(item.booking_id) if item.booking_id else None,
        "balance_before": item.balance_before,
        "balance_after": item.balance_after,
        "created_at": _iso(item.created_at),
    }


def _lesson_payload(lesson: Lesson) -> dict[str, Any]:
    return {
        "id": str(lesson.id),
        "teacher_id": str(lesson.teacher_id),
        "start_time": _iso(lesson.start_time),
        "end_time": _iso(lesson.end_time),
        "lesson_type": lesson.lesson_type,
        "max_students": lesson.max_students,
        "current_students": lesson.current_students,
        "is_individual": lesson.is_individual,
        "credits_cost": lesson.credits_cost,
        "color": lesson.color,
        "subject": lesson.subject,
        "homework_text": lesson.homework_text,
        "report_text": lesson.report_text,
        "recurring_group_id": str(lesson.recurring_group_id) if lesson.recurring_group_id else None,
        "template_application_id": str(lesson.template_application_id) if lesson.template_application_id else None,
    }


def _modification_payload(item: LessonModification) -> dict[str, Any]:
    return {
        "id": str(item.id),
        "original_lesson_id": str(item.original_lesson_id),
        "modification_type": item.modification_type,
        "applied_by_id": str(item.applied_by_id),
        "applied_at": _iso(item.applied_at),
        "affected_lessons_count": item.affected_lessons_count,
        "changes": item.changes,
        "notes": item.notes,
    }


def _template_payload(template: LessonTemplate) -> dict[str, Any]:
    return {
        "id": str(template.id),
        "owner_id": str(template.owner_id),
        "name": template.name,
        "description": template.description,
    }


def _entry_payload(view: TemplateEntryView) -> dict[str, Any]:
    entry = view.entry
    return {
        "id": str(entry.id),
        "template_id": str(entry.template_id),
        "day_of_week": entry.day_of_week,
        "start_time": entry.start_time,
        "end_time": entry.end_time,
        "teacher_id": str(entry.teacher_id),
        "lesson_type": entry.lesson_type,
        "max_students": entry.max_students,
        "credits_cost": entry.credits_cost,
        "color": entry.color,
        "subject": entry.subject,
        "student_ids": [str(student_id) for student_id in view.student_ids],
    }


def _application_payload(item: TemplateApplication) -> dict[str, Any]:
    return {
        "id": str(item.id),
        "template_id": str(item.template_id),
        "applied_by_id": str(item.applied_by_id),
        "week_start_date": _iso(item.week_start_date),
        "status": item.status,
        "created_lessons_count": item.created_lessons_count,
        "applied_at": _iso(item.applied_at),
        "rolled_back_at": _iso(item.rolled_back_at),
    }


def _application_result_payload(result: ApplicationResult) -> dict[str, Any]:
    return {
        "id": str(result.application_id) if result.application_id is not None else None,
        "template_id": str(result.template_id),
        "week_start_date": result.week_start_date.isoformat(),
        "status": result.status.value,
        "created_lessons_count": result.created_lessons_count,
        "creation_stats": {
            "created_lessons": result.stats.created_lessons,
            "created_bookings": result.stats.created_bookings,
            "deducted_credits": result.stats.deducted_credits,
        },
        "lesson_ids": [str(lesson_id) for lesson_id in result.lesson_ids],
    }
