from __future__ import annotations

from datetime import date

from lessonhub.core.datetime_utils import is_monday, parse_iso_date
from lessonhub.domain.enums import LessonType
from lessonhub.domain.errors import InvalidCreditAmount, InvalidLessonCapacity, InvalidWeekStart

MIN_CREDITS_COST = 1
MAX_CREDITS_COST = 100
MIN_GROUP_STUDENTS = 4


def resolve_lesson_type(lesson_type: LessonType | str | None, max_students: int) -> LessonType:
    if max_students < 1:
        raise InvalidLessonCapacity("max_students must be at least 1", max_students=max_students)
    if lesson_type is None:
        if max_students == 1:
            return LessonType.INDIVIDUAL
        if max_students >= MIN_GROUP_STUDENTS:
            return LessonType.GROUP
        raise InvalidLessonCapacity(
            f"Group lessons need at least {MIN_GROUP_STUDENTS} seats",
            max_students=max_students,
        )

    resolved = LessonType(lesson_type)
    if resolved == LessonType.INDIVIDUAL and max_students != 1:
        raise InvalidLessonCapacity("Individual lessons must have exactly 1 seat", max_students=max_students)
    if resolved == LessonType.GROUP and max_students < MIN_GROUP_STUDENTS:
        raise InvalidLessonCapacity(
            f"Group lessons need at least {MIN_GROUP_STUDENTS} seats",
            max_students=max_students,
        )
    return resolved


def validate_credits_cost(credits_cost: int) -> int:
    if not MIN_CREDITS_COST <= credits_cost <= MAX_CREDITS_COST:
        raise InvalidCreditAmount(
            f"credits_cost must be between {MIN_CREDITS_COST} and {MAX_CREDITS_COST}",
            credits_cost=credits_cost,
        )
    return credits_cost


def require_week_start(value: date | str) -> date:
    try:
        week_start = parse_iso_date(value)
    except ValueError as exc:
        raise InvalidWeekStart(f"Invalid week start date: {value!r}") from exc
    if not is_monday(week_start):
        raise InvalidWeekStart(
            f"Week start date must be a Monday, got {week_start:%A}",
            week_start_date=week_start.isoformat(),
        )
    return week_start
