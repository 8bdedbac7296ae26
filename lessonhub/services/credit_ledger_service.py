from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.datetime_utils import ensure_utc, utc_now
from lessonhub.db.models import CreditBalance, CreditTransaction
from lessonhub.db.transactions import unit_of_work
from lessonhub.domain.enums import CreditOperation
from lessonhub.domain.errors import (
    BalanceLimitExceeded,
    InsufficientCredits,
    InvalidCreditAmount,
    UserNotFound,
    ValidationError,
)
from lessonhub.domain.rules import MAX_CREDITS_COST, MIN_CREDITS_COST
from lessonhub.repositories.credit_repository import CreditRepository
from lessonhub.repositories.user_repository import UserRepository

logger = structlog.get_logger(__name__)


class CreditLedgerService:
    def __init__(
        self,
        session: AsyncSession,
        credit_repository: CreditRepository,
        user_repository: UserRepository | None = None,
        max_balance: int = 10000,
        history_default_limit: int = 50,
        history_max_limit: int = 500,
    ) -> None:
        self._session = session
        self._credits = credit_repository
        self._users = user_repository
        self._max_balance = max_balance
        self._history_default_limit = max(1, history_default_limit)
        self._history_max_limit = max(self._history_default_limit, history_max_limit)

    async def get_balance(self, user_id: UUID) -> int:
        balance = await self._credits.get_balance(user_id)
        return balance.balance if balance is not None else 0

    async def lock_balances(self, user_ids: Iterable[UUID]) -> dict[UUID, int]:
        locked = await self._credits.lock_many(user_ids)
        return {user_id: row.balance for user_id, row in locked.items()}

    async def deduct(
        self,
        user_id: UUID,
        amount: int,
        reason: str,
        performed_by: UUID | None = None,
        booking_id: UUID | None = None,
        template_application_id: UUID | None = None,
    ) -> CreditTransaction:
        if amount < 1:
            raise InvalidCreditAmount("Deduction must be positive", amount=amount)
        balance = await self._credits.get_for_update(user_id)
        if balance.balance < amount:
            raise InsufficientCredits(
                f"Insufficient credits: balance {balance.balance}, required {amount}",
                required=amount,
                available=balance.balance,
                user_id=user_id,
            )
        return await self._record(
            balance,
            CreditOperation.DEDUCT,
            amount,
            reason,
            performed_by=performed_by,
            booking_id=booking_id,
            template_application_id=template_application_id,
        )

    async def refund(
        self,
        user_id: UUID,
        amount: int,
        reason: str,
        performed_by: UUID | None = None,
        booking_id: UUID | None = None,
        template_application_id: UUID | None = None,
    ) -> CreditTransaction:
        if amount < 1:
            raise InvalidCreditAmount("Refund must be positive", amount=amount)
        balance = await self._credits.get_for_update(user_id)
        return await self._record(
            balance,
            CreditOperation.REFUND,
            amount,
            reason,
            performed_by=performed_by,
            booking_id=booking_id,
            template_application_id=template_application_id,
        )

    async def charged_for_booking(self, booking_id: UUID) -> int:
        return max(0, await self._credits.net_charged_for_booking(booking_id))

    async def add_credits(
        self,
        user_id: UUID,
        amount: int,
        reason: str,
        performed_by: UUID,
    ) -> CreditTransaction:
        self._validate_admin_change(amount, reason)
        async with unit_of_work(self._session):
            await self._require_user(user_id)
            balance = await self._credits.get_for_update(user_id)
            if balance.balance + amount > self._max_balance:
                raise BalanceLimitExceeded(
                    f"Balance would exceed the maximum of {self._max_balance} credits",
                    balance=balance.balance,
                    amount=amount,
                    max_balance=self._max_balance,
                )
            item = await self._record(
                balance,
                CreditOperation.ADD,
                amount,
                reason.strip(),
                performed_by=performed_by,
            )
        return item

    async def deduct_credits(
        self,
        user_id: UUID,
        amount: int,
        reason: str,
        performed_by: UUID,
    ) -> CreditTransaction:
        self._validate_admin_change(amount, reason)
        async with unit_of_work(self._session):
            await self._require_user(user_id)
            item = await self.deduct(user_id, amount, reason.strip(), performed_by=performed_by)
        return item

    async def get_history(
        self,
        user_id: UUID,
        operation: CreditOperation | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[CreditTransaction]:
        effective_limit = self._history_default_limit if limit is None or limit < 1 else limit
        effective_limit = min(effective_limit, self._history_max_limit)
        return await self._credits.list_transactions(
            user_id,
            operation=operation,
            start=ensure_utc(start) if start is not None else None,
            end=ensure_utc(end) if end is not None else None,
            limit=effective_limit,
        )

    async def _record(
        self,
        balance: CreditBalance,
        operation: CreditOperation,
        amount: int,
        reason: str,
        performed_by: UUID | None = None,
        booking_id: UUID | None = None,
        template_application_id: UUID | None = None,
    ) -> CreditTransaction:
        before = balance.balance
        after = before - amount if operation == CreditOperation.DEDUCT else before + amount
        balance.balance = after
        item = await self._credits.add_transaction(
            CreditTransaction(
                user_id=balance.user_id,
                operation=operation.value,
                amount=amount,
                reason=reason,
                performed_by=performed_by,
                booking_id=booking_id,
                template_application_id=template_application_id,
                balance_before=before,
                balance_after=after,
                created_at=utc_now(),
            )
        )
        logger.info(
            f"ledger.{operation.value}",
            user_id=str(balance.user_id),
            amount=amount,
            balance_before=before,
            balance_after=after,
            booking_id=str(booking_id) if booking_id else None,
        )
        return item

    async def _require_user(self, user_id: UUID) -> None:
        if self._users is None:
            return
        if await self._users.get_by_id(user_id) is None:
            raise UserNotFound(user_id=user_id)

    @staticmethod
    def _validate_admin_change(amount: int, reason: str) -> None:
        if not MIN_CREDITS_COST <= amount <= MAX_CREDITS_COST:
            raise InvalidCreditAmount(amount=amount)
        if not reason or not reason.strip():
            raise ValidationError("Reason is required")
