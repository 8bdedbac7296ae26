from __future__ import annotations

from enum import StrEnum
from typing import Any
from uuid import UUID


class ErrorKind(StrEnum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    STATE = "state"
    RESOURCE = "resource"
    FORBIDDEN = "forbidden"
    CONCURRENCY = "concurrency"


class DomainError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION
    code: str = "domain_error"
    default_message: str = "Operation failed"
    retryable: bool = False

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "kind": self.kind.value, "message": self.message}
        if self.details:
            payload["details"] = {key: _jsonable(value) for key, value in self.details.items()}
        return payload


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, list | tuple):
        return [_jsonable(item) for item in value]
    return value


# validation


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION
    code = "invalid_input"
    default_message = "Invalid input"


class InvalidCreditAmount(ValidationError):
    code = "invalid_credit_amount"
    default_message = "Credit amount must be between 1 and 100"


class BalanceLimitExceeded(ValidationError):
    code = "balance_limit_exceeded"
    default_message = "Resulting balance exceeds the allowed maximum"


class InvalidWeekStart(ValidationError):
    code = "invalid_week_start"
    default_message = "Week start date must be a Monday"


class InvalidLessonCapacity(ValidationError):
    code = "invalid_lesson_capacity"
    default_message = "Invalid lesson capacity"


# not found


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND
    code = "not_found"
    default_message = "Not found"


class UserNotFound(NotFoundError):
    code = "user_not_found"
    default_message = "User not found"


class LessonNotFound(NotFoundError):
    code = "lesson_not_found"
    default_message = "Lesson not found"


class BookingNotFound(NotFoundError):
    code = "booking_not_found"
    default_message = "Booking not found"


class TemplateNotFound(NotFoundError):
    code = "template_not_found"
    default_message = "Template not found"


class TemplateEntryNotFound(NotFoundError):
    code = "template_entry_not_found"
    default_message = "Template lesson not found"


class ApplicationNotFound(NotFoundError):
    code = "application_not_found"
    default_message = "No applied template found for this week"


# conflict


class ConflictError(DomainError):
    kind = ErrorKind.CONFLICT
    code = "conflict"
    default_message = "Conflict"


class LessonFull(ConflictError):
    code = "lesson_full"
    default_message = "Lesson is full"


class AlreadyBooked(ConflictError):
    code = "already_booked"
    default_message = "Student already has an active booking for this lesson"


class ScheduleConflict(ConflictError):
    code = "schedule_conflict"
    default_message = "Lesson overlaps with another booked lesson"


class LessonPreviouslyCancelled(ConflictError):
    code = "lesson_previously_cancelled"
    default_message = "Student cancelled this lesson before and cannot book it again"


class TemplateAlreadyApplied(ConflictError):
    code = "template_already_applied"
    default_message = "Template is already applied to this week"


class HasDependents(ConflictError):
    code = "has_dependents"
    default_message = "Record still has dependent data"


# state


class StateError(DomainError):
    kind = ErrorKind.STATE
    code = "invalid_state"
    default_message = "Operation is not allowed in the current state"


class BookingNotActive(StateError):
    code = "booking_not_active"
    default_message = "Booking is not active"


class LessonInPast(StateError):
    code = "lesson_in_past"
    default_message = "Lesson has already started"


# resource


class InsufficientCredits(DomainError):
    kind = ErrorKind.RESOURCE
    code = "insufficient_credits"
    default_message = "Insufficient credits"

    def __init__(self, message: str | None = None, *, required: int = 0, available: int = 0, **details: Any) -> None:
        self.required = required
        self.available = available
        super().__init__(message, required=required, available=available, **details)


# forbidden


class Unauthorized(DomainError):
    kind = ErrorKind.FORBIDDEN
    code = "unauthorized"
    default_message = "Not allowed to perform this operation"


# concurrency


class ConcurrencyConflict(DomainError):
    kind = ErrorKind.CONCURRENCY
    code = "concurrency_conflict"
    default_message = "Concurrent update detected, retry the operation"
    retryable = True
