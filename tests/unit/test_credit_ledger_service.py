from __future__ import annotations

from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from lessonhub.core.container import AppContainer
from lessonhub.db.transactions import unit_of_work
from lessonhub.domain.enums import CreditOperation, UserRole
from lessonhub.domain.errors import (
    BalanceLimitExceeded,
    InsufficientCredits,
    InvalidCreditAmount,
    UserNotFound,
    ValidationError,
)
from lessonhub.repositories.credit_repository import CreditRepository
from lessonhub.repositories.user_repository import UserRepository
from lessonhub.services.credit_ledger_service import CreditLedgerService


@pytest.mark.asyncio
async def test_balance_defaults_to_zero(db_session: AsyncSession, container: AppContainer, make_user: Any) -> None:
    student = await make_user()
    ledger = container.create_credit_ledger_service(db_session)

    assert await ledger.get_balance(student.id) == 0


@pytest.mark.asyncio
async def test_add_credits_records_transaction(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
) -> None:
    admin = await make_user(UserRole.ADMIN)
    student = await make_user(credits=5)
    ledger = container.create_credit_ledger_service(db_session)

    item = await ledger.add_credits(student.id, 10, "  top up  ", performed_by=admin.id)

    assert item.operation == CreditOperation.ADD.value
    assert item.reason == "top up"
    assert (item.balance_before, item.balance_after) == (5, 15)
    assert item.performed_by == admin.id
    assert await ledger.get_balance(student.id) == 15


@pytest.mark.asyncio
async def test_add_credits_rejects_limit_and_bad_input(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
) -> None:
    admin = await make_user(UserRole.ADMIN)
    student = await make_user(credits=9_950)
    ledger = container.create_credit_ledger_service(db_session)

    with pytest.raises(BalanceLimitExceeded):
        await ledger.add_credits(student.id, 100, "bonus", performed_by=admin.id)
    with pytest.raises(InvalidCreditAmount):
        await ledger.add_credits(student.id, 0, "bonus", performed_by=admin.id)
    with pytest.raises(InvalidCreditAmount):
        await ledger.add_credits(student.id, 101, "bonus", performed_by=admin.id)
    with pytest.raises(ValidationError):
        await ledger.add_credits(student.id, 5, "   ", performed_by=admin.id)

    assert await ledger.get_balance(student.id) == 9_950
    assert await ledger.get_history(student.id) == []


@pytest.mark.asyncio
async def test_add_credits_unknown_user(db_session: AsyncSession, container: AppContainer, make_user: Any) -> None:
    admin = await make_user(UserRole.ADMIN)
    ledger = container.create_credit_ledger_service(db_session)

    with pytest.raises(UserNotFound):
        await ledger.add_credits(uuid4(), 5, "bonus", performed_by=admin.id)


@pytest.mark.asyncio
async def test_deduct_never_goes_negative(db_session: AsyncSession, container: AppContainer, make_user: Any) -> None:
    admin = await make_user(UserRole.ADMIN)
    student = await make_user(credits=3)
    ledger = container.create_credit_ledger_service(db_session)

    with pytest.raises(InsufficientCredits) as exc_info:
        await ledger.deduct_credits(student.id, 4, "penalty", performed_by=admin.id)

    assert exc_info.value.required == 4
    assert exc_info.value.available == 3
    assert await ledger.get_balance(student.id) == 3

    item = await ledger.deduct_credits(student.id, 3, "penalty", performed_by=admin.id)
    assert item.balance_after == 0


@pytest.mark.asyncio
async def test_deduct_and_refund_join_caller_transaction(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
) -> None:
    student = await make_user(credits=10)
    ledger = container.create_credit_ledger_service(db_session)

    with pytest.raises(RuntimeError):
        async with unit_of_work(db_session):
            await ledger.deduct(student.id, 4, "lesson")
            await ledger.refund(student.id, 1, "partial")
            raise RuntimeError("abort")

    assert await ledger.get_balance(student.id) == 10

    async with unit_of_work(db_session):
        await ledger.deduct(student.id, 4, "lesson")
        await ledger.refund(student.id, 1, "partial")

    assert await ledger.get_balance(student.id) == 7


@pytest.mark.asyncio
async def test_refund_requires_positive_amount(
    db_session: AsyncSession,
    container: AppContainer,
    make_user: Any,
) -> None:
    student = await make_user(credits=1)
    ledger = container.create_credit_ledger_service(db_session)

    with pytest.raises(InvalidCreditAmount):
        await ledger.refund(student.id, 0, "nothing")


@pytest.mark.asyncio
async def test_history_filters_and_clamps(db_session: AsyncSession, make_user: Any) -> None:
    admin = await make_user(UserRole.ADMIN)
    student = await make_user()
    ledger = CreditLedgerService(
        db_session,
        CreditRepository(db_session),
        user_repository=UserRepository(db_session),
        history_default_limit=2,
        history_max_limit=3,
    )
    for amount in (1, 2, 3, 4):
        await ledger.add_credits(student.id, amount, f"grant {amount}", performed_by=admin.id)
    await ledger.deduct_credits(student.id, 5, "penalty", performed_by=admin.id)

    assert len(await ledger.get_history(student.id)) == 2
    assert len(await ledger.get_history(student.id, limit=100)) == 3

    deducts = await ledger.get_history(student.id, operation=CreditOperation.DEDUCT)
    assert [item.amount for item in deducts] == [5]

    latest = await ledger.get_history(student.id, limit=1)
    assert latest[0].operation == CreditOperation.DEDUCT.value
    assert latest[0].balance_after == 5
