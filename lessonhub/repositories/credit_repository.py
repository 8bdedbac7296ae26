from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Insert, func, insert, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.db.models import CreditBalance, CreditTransaction
from lessonhub.domain.enums import CreditOperation


class CreditRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_balance(self, user_id: UUID) -> CreditBalance | None:
        stmt = select(CreditBalance).where(CreditBalance.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_update(self, user_id: UUID) -> CreditBalance:
        balance = await self._select_for_update(user_id)
        if balance is not None:
            return balance
        # Concurrent first use must not fail the transaction, so the insert skips conflicts.
        await self._session.execute(self._insert_empty_balance(user_id))
        balance = await self._select_for_update(user_id)
        if balance is None:
            msg = f"Credit balance for {user_id} could not be created"
            raise RuntimeError(msg)
        return balance

    async def lock_many(self, user_ids: Iterable[UUID]) -> dict[UUID, CreditBalance]:
        # Fixed order so two transactions touching the same students cannot deadlock.
        locked: dict[UUID, CreditBalance] = {}
        for user_id in sorted(set(user_ids)):
            locked[user_id] = await self.get_for_update(user_id)
        return locked

    async def add_transaction(self, item: CreditTransaction) -> CreditTransaction:
        self._session.add(item)
        await self._session.flush()
        return item

    async def list_transactions(
        self,
        user_id: UUID,
        operation: CreditOperation | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[CreditTransaction]:
        stmt = select(CreditTransaction).where(CreditTransaction.user_id == user_id)
        if operation is not None:
            stmt = stmt.where(CreditTransaction.operation == operation.value)
        if start is not None:
            stmt = stmt.where(CreditTransaction.created_at >= start)
        if end is not None:
            stmt = stmt.where(CreditTransaction.created_at < end)
        stmt = stmt.order_by(CreditTransaction.created_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def net_charged_for_booking(self, booking_id: UUID) -> int:
        totals = await self._sum_by_operation(CreditTransaction.booking_id == booking_id)
        return totals.get(CreditOperation.DEDUCT, 0) - totals.get(CreditOperation.REFUND, 0)

    async def _sum_by_operation(self, condition: object) -> dict[CreditOperation, int]:
        stmt = (
            select(CreditTransaction.operation, func.coalesce(func.sum(CreditTransaction.amount), 0))
            .where(condition)  # type: ignore[arg-type]
            .group_by(CreditTransaction.operation)
        )
        result = await self._session.execute(stmt)
        return {CreditOperation(operation): int(total) for operation, total in result.all()}

    async def _select_for_update(self, user_id: UUID) -> CreditBalance | None:
        stmt = select(CreditBalance).where(CreditBalance.user_id == user_id).with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    def _insert_empty_balance(self, user_id: UUID) -> Insert:
        values = {"id": uuid4(), "user_id": user_id, "balance": 0}
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql_insert(CreditBalance).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
        if dialect == "sqlite":
            return sqlite_insert(CreditBalance).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
        return insert(CreditBalance).values(**values)
