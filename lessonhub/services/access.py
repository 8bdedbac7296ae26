from __future__ import annotations

from collections.abc import Collection
from uuid import UUID

from lessonhub.db.models import User
from lessonhub.domain.enums import UserRole
from lessonhub.domain.errors import Unauthorized, UserNotFound
from lessonhub.repositories.user_repository import UserRepository


async def require_role(
    users: UserRepository,
    user_id: UUID,
    roles: Collection[UserRole],
    action: str,
) -> User:
    user = await users.get_by_id(user_id)
    if user is None:
        raise UserNotFound(user_id=user_id)
    if user.role not in {role.value for role in roles}:
        raise Unauthorized(f"Role {user.role} cannot {action}", user_id=user_id)
    return user
