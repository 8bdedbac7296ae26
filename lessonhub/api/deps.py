from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import cast
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.container import AppContainer
from lessonhub.db.models import User
from lessonhub.repositories.user_repository import UserRepository


def get_container(request: Request) -> AppContainer:
    return cast(AppContainer, request.app.state.container)


async def get_db_session(
    container: AppContainer = Depends(get_container),
) -> AsyncGenerator[AsyncSession, None]:
    async with container.session_factory() as session:
        yield session


async def get_current_user(
    x_user_id: UUID | None = Header(default=None),
    container: AppContainer = Depends(get_container),
) -> User:
    # Identity is resolved upstream by the auth gateway, which forwards the user id.
    # A separate session keeps the request session free of an open transaction.
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="missing user identity")
    async with container.session_factory() as session:
        user = await UserRepository(session).get_by_id(x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="unknown user")
    return user
