from enum import StrEnum


class UserRole(StrEnum):
    STUDENT = "student"
    TEACHER = "teacher"
    METHODOLOGIST = "methodologist"
    ADMIN = "admin"


class BookingStatus(StrEnum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class CancelResultStatus(StrEnum):
    SUCCESS = "success"
    ALREADY_CANCELLED = "already_cancelled"


class CreditOperation(StrEnum):
    ADD = "add"
    DEDUCT = "deduct"
    REFUND = "refund"


class LessonType(StrEnum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class ApplicationStatus(StrEnum):
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    PREVIEW = "preview"


class ModificationType(StrEnum):
    ADD_STUDENT = "add_student"
    REMOVE_STUDENT = "remove_student"
    CHANGE_TEACHER = "change_teacher"
    CHANGE_TIME = "change_time"
    CHANGE_CAPACITY = "change_capacity"


TEACHING_ROLES = frozenset({UserRole.TEACHER, UserRole.METHODOLOGIST, UserRole.ADMIN})
TEMPLATE_EDITOR_ROLES = frozenset({UserRole.ADMIN, UserRole.METHODOLOGIST})
