from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.domain.errors import ConcurrencyConflict

logger = structlog.get_logger(__name__)

SERIALIZABLE = "SERIALIZABLE"

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_serialization_failure(exc: DBAPIError) -> bool:
    candidates = [exc.orig, getattr(exc.orig, "__cause__", None)]
    for candidate in candidates:
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode"):
            if getattr(candidate, attr, None) in RETRYABLE_SQLSTATES:
                return True
    return False


@asynccontextmanager
async def unit_of_work(
    session: AsyncSession,
    *,
    isolation_level: str | None = None,
    commit: bool = True,
) -> AsyncIterator[AsyncSession]:
    if isolation_level is not None:
        if session.in_transaction():
            msg = f"Cannot switch to {isolation_level} isolation inside an open transaction"
            raise RuntimeError(msg)
        await session.connection(execution_options={"isolation_level": isolation_level})

    try:
        yield session
        if commit:
            await session.commit()
        else:
            await session.rollback()
    except DBAPIError as exc:
        await session.rollback()
        if is_serialization_failure(exc):
            logger.warning("tx.serialization_failure", isolation_level=isolation_level, error=str(exc))
            raise ConcurrencyConflict() from exc
        raise
    except BaseException:
        await session.rollback()
        raise
