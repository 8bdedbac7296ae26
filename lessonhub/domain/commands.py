from __future__ import annotations

import re
from datetime import date, datetime
from typing import Self
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from lessonhub.core.datetime_utils import format_time_of_day, parse_time_of_day
from lessonhub.domain.enums import BookingStatus, LessonType, ModificationType

COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
DEFAULT_COLOR = "#3B82F6"


def _validate_color(value: str) -> str:
    if not COLOR_PATTERN.match(value):
        msg = "Color must be in #RRGGBB format"
        raise ValueError(msg)
    return value.upper()


def _normalize_time(value: str) -> str:
    return format_time_of_day(parse_time_of_day(value))


class CreateBookingCommand(BaseModel):
    student_id: UUID
    lesson_id: UUID


class ListBookingsQuery(BaseModel):
    student_id: UUID | None = None
    lesson_id: UUID | None = None
    status: BookingStatus | None = None
    limit: int = Field(default=100, ge=1, le=500)


class CreditChangeCommand(BaseModel):
    user_id: UUID
    amount: int = Field(ge=1, le=100)
    reason: str = Field(min_length=1, max_length=255)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            msg = "Reason is required"
            raise ValueError(msg)
        return stripped


class CreateLessonCommand(BaseModel):
    teacher_id: UUID
    start_time: datetime
    end_time: datetime | None = None
    lesson_type: LessonType | None = None
    max_students: int = Field(default=1, ge=1)
    credits_cost: int = Field(default=1, ge=1, le=100)
    color: str = DEFAULT_COLOR
    subject: str | None = Field(default=None, max_length=200)

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: str) -> str:
        return _validate_color(value)

    @model_validator(mode="after")
    def validate_range(self) -> Self:
        if self.end_time is not None and self.end_time <= self.start_time:
            msg = "end_time must be after start_time"
            raise ValueError(msg)
        return self


class CreateRecurringLessonsCommand(CreateLessonCommand):
    weeks: int | None = Field(default=None, ge=1)


class UpdateLessonCommand(BaseModel):
    subject: str | None = Field(default=None, max_length=200)
    color: str | None = None
    homework_text: str | None = Field(default=None, max_length=10000)
    report_text: str | None = Field(default=None, max_length=10000)

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _validate_color(value)


class CreateTemplateCommand(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None


class UpdateTemplateCommand(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None


class TemplateEntryInput(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str | None = None
    teacher_id: UUID
    lesson_type: LessonType | None = None
    max_students: int = Field(default=1, ge=1)
    credits_cost: int = Field(default=1, ge=1, le=100)
    color: str = DEFAULT_COLOR
    subject: str | None = Field(default=None, max_length=200)
    description: str | None = None
    student_ids: list[UUID] = Field(default_factory=list)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_time(value)

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: str) -> str:
        return _validate_color(value)

    @field_validator("student_ids")
    @classmethod
    def validate_students(cls, value: list[UUID]) -> list[UUID]:
        if len(set(value)) != len(value):
            msg = "Duplicate students in template lesson"
            raise ValueError(msg)
        return value


class UpdateTemplateEntryCommand(BaseModel):
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: str | None = None
    end_time: str | None = None
    teacher_id: UUID | None = None
    lesson_type: LessonType | None = None
    max_students: int | None = Field(default=None, ge=1)
    credits_cost: int | None = Field(default=None, ge=1, le=100)
    color: str | None = None
    subject: str | None = Field(default=None, max_length=200)
    description: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_time(value)

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _validate_color(value)


class ApplyTemplateCommand(BaseModel):
    template_id: UUID
    week_start_date: date
    dry_run: bool = False


class RollbackTemplateCommand(BaseModel):
    template_id: UUID
    week_start_date: date


class BulkEditCommand(BaseModel):
    modification_type: ModificationType
    student_id: UUID | None = None
    teacher_id: UUID | None = None
    new_start_time: str | None = None
    new_max_students: int | None = Field(default=None, ge=1)
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("new_start_time")
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_time(value)

    @model_validator(mode="after")
    def validate_payload(self) -> Self:
        required = {
            ModificationType.ADD_STUDENT: "student_id",
            ModificationType.REMOVE_STUDENT: "student_id",
            ModificationType.CHANGE_TEACHER: "teacher_id",
            ModificationType.CHANGE_TIME: "new_start_time",
            ModificationType.CHANGE_CAPACITY: "new_max_students",
        }[self.modification_type]
        if getattr(self, required) is None:
            msg = f"{required} is required for {self.modification_type.value}"
            raise ValueError(msg)
        return self
