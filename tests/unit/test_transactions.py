from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.db.models import User
from lessonhub.db.transactions import SERIALIZABLE, is_serialization_failure, unit_of_work
from lessonhub.domain.enums import UserRole
from lessonhub.domain.errors import ConcurrencyConflict, ErrorKind


class FakeDriverError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _dbapi_error(sqlstate: str) -> DBAPIError:
    return DBAPIError("UPDATE credit_balances", {}, FakeDriverError(sqlstate))


@pytest.mark.parametrize(("sqlstate", "expected"), [("40001", True), ("40P01", True), ("23505", False)])
def test_is_serialization_failure(sqlstate: str, expected: bool) -> None:
    assert is_serialization_failure(_dbapi_error(sqlstate)) is expected


def test_is_serialization_failure_follows_driver_cause() -> None:
    wrapper = RuntimeError("adapter error")
    wrapper.__cause__ = FakeDriverError("40001")

    assert is_serialization_failure(DBAPIError("SELECT 1", {}, wrapper))


@pytest.mark.asyncio
async def test_unit_of_work_commits(db_session: AsyncSession) -> None:
    async with unit_of_work(db_session, isolation_level=SERIALIZABLE):
        db_session.add(User(email="kept@example.com", full_name="Kept", role=UserRole.STUDENT.value))

    stored = (await db_session.execute(select(User.email))).scalars().all()
    assert stored == ["kept@example.com"]


@pytest.mark.asyncio
async def test_unit_of_work_without_commit_discards_changes(db_session: AsyncSession) -> None:
    async with unit_of_work(db_session, commit=False):
        db_session.add(User(email="preview@example.com", full_name="Preview", role=UserRole.STUDENT.value))
        await db_session.flush()

    assert (await db_session.execute(select(User))).first() is None


@pytest.mark.asyncio
async def test_serialization_failure_becomes_retryable_conflict(db_session: AsyncSession) -> None:
    with pytest.raises(ConcurrencyConflict) as exc_info:
        async with unit_of_work(db_session):
            db_session.add(User(email="lost@example.com", full_name="Lost", role=UserRole.STUDENT.value))
            await db_session.flush()
            raise _dbapi_error("40001")

    assert exc_info.value.retryable
    assert exc_info.value.kind == ErrorKind.CONCURRENCY
    assert (await db_session.execute(select(User))).first() is None


@pytest.mark.asyncio
async def test_other_database_errors_propagate(db_session: AsyncSession) -> None:
    with pytest.raises(DBAPIError):
        async with unit_of_work(db_session):
            raise _dbapi_error("23505")


@pytest.mark.asyncio
async def test_isolation_level_requires_fresh_transaction(db_session: AsyncSession) -> None:
    db_session.add(User(email="pending@example.com", full_name="Pending", role=UserRole.STUDENT.value))
    await db_session.flush()
    assert db_session.in_transaction()

    with pytest.raises(RuntimeError, match="SERIALIZABLE"):
        async with unit_of_work(db_session, isolation_level=SERIALIZABLE):
            db_session.add(User(email="inner@example.com", full_name="Inner", role=UserRole.STUDENT.value))

    assert db_session.in_transaction()
    await db_session.rollback()
    assert (await db_session.execute(select(User))).first() is None
