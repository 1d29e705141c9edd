"""
Budget ledger tests.

Covers the lock / consume state machine and historical reconciliation.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from billing_backend.app.core.exceptions import (
    ConflictError, InvalidArgumentError, ResourceNotFoundError, StorageError
)
from billing_backend.app.db.session import transaction
from billing_backend.app.domain.billing.budget_aggregator import AccountAggregator
from billing_backend.app.domain.billing.ledger_service import BudgetLedgerService, LedgerState, to_money
from billing_backend.app.models.billing_account import BillingAccount
from billing_backend.app.models.client import Client
from billing_backend.app.models.consumed_amount import ConsumedAmount
from billing_backend.app.models.locked_amount import LockedAmount


async def _budget(db, account_id):
    # Reload: a rolled back transaction expires every instance in the session
    account = await db.get(BillingAccount, account_id)
    summary = await AccountAggregator.summarize(db, account)
    return summary.locked_budget, summary.consumed_budget, summary.total_budget_remaining


@pytest.mark.asyncio
async def test_lock_then_consume(db_session, billing_account):
    """Lock 100, consume 80: the lock disappears and only the consumed amount remains."""
    locked = await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", Decimal("100.00"))
    assert locked.amount == Decimal("100.00")
    assert await _budget(db_session, billing_account.id) == (Decimal("100"), Decimal("0"), Decimal("900"))
    
    consumed = await BudgetLedgerService.consume(db_session, billing_account.id, "ch-1", Decimal("80.00"))
    assert consumed.amount == Decimal("80.00")
    assert await _budget(db_session, billing_account.id) == (Decimal("0"), Decimal("80"), Decimal("920"))
    assert await BudgetLedgerService.get_state(db_session, billing_account.id, "ch-1") == LedgerState.CONSUMED


@pytest.mark.asyncio
async def test_lock_overwrites_amount(db_session, billing_account):
    await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", 100)
    updated = await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", "250.50")
    
    assert updated.amount == Decimal("250.50")
    rows = (await db_session.execute(select(LockedAmount))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_unlock_with_zero_is_idempotent(db_session, billing_account):
    await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", 100)
    
    assert await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", 0) is None
    assert await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", 0) is None
    assert await BudgetLedgerService.get_state(db_session, billing_account.id, "ch-1") == LedgerState.EMPTY


@pytest.mark.asyncio
async def test_lock_after_consume_conflicts(db_session, billing_account):
    ba = billing_account.id
    await BudgetLedgerService.consume(db_session, ba, "ch-1", 50)
    
    with pytest.raises(ConflictError):
        await BudgetLedgerService.lock(db_session, ba, "ch-1", 10)
    with pytest.raises(ConflictError):
        await BudgetLedgerService.lock(db_session, ba, "ch-1", 0)
    
    # Failed lock leaves the consumed entry untouched
    assert await _budget(db_session, ba) == (Decimal("0"), Decimal("50"), Decimal("950"))


@pytest.mark.asyncio
async def test_consume_without_lock_and_overwrite(db_session, billing_account):
    await BudgetLedgerService.consume(db_session, billing_account.id, "ch-1", 30)
    entry = await BudgetLedgerService.consume(db_session, billing_account.id, "ch-1", 45)
    
    assert entry.amount == Decimal("45")
    rows = (await db_session.execute(select(ConsumedAmount))).scalars().all()
    assert [row.amount for row in rows] == [Decimal("45")]


@pytest.mark.asyncio
async def test_over_budget_is_allowed(db_session, billing_account):
    await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", 1500)
    
    locked, consumed, remaining = await _budget(db_session, billing_account.id)
    assert remaining == Decimal("-500")


@pytest.mark.asyncio
async def test_negative_amount_rejected(db_session, billing_account):
    with pytest.raises(InvalidArgumentError):
        await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", -1)
    assert await BudgetLedgerService.get_state(db_session, billing_account.id, "ch-1") == LedgerState.EMPTY


@pytest.mark.asyncio
async def test_sub_cent_amounts_rejected(db_session, billing_account):
    for amount in (Decimal("0.001"), "10.005"):
        with pytest.raises(InvalidArgumentError):
            await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", amount)
        with pytest.raises(InvalidArgumentError):
            await BudgetLedgerService.consume(db_session, billing_account.id, "ch-1", amount)
    
    rows = (await db_session.execute(select(LockedAmount))).scalars().all()
    assert rows == []
    # Trailing zeros are still whole cents
    entry = await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", "12.500")
    assert entry.amount == Decimal("12.50")
    assert await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", "0.000") is None

@pytest.mark.asyncio
async def test_unknown_account_not_found(db_session):
    with pytest.raises(ResourceNotFoundError):
        await BudgetLedgerService.lock(db_session, 4242, "ch-1", 10)
    with pytest.raises(ResourceNotFoundError):
        await BudgetLedgerService.consume(db_session, 4242, "ch-1", 10)


@pytest.mark.asyncio
async def test_keys_are_scoped_per_account(db_session, billing_account, test_client_record):
    other = BillingAccount(name="Other", client_id=test_client_record.id, budget=Decimal("10"), markup=Decimal("0"))
    db_session.add(other)
    await db_session.commit()
    
    await BudgetLedgerService.consume(db_session, other.id, "ch-1", 5)
    # Same challenge on a different account is still lockable
    entry = await BudgetLedgerService.lock(db_session, billing_account.id, "ch-1", 20)
    assert entry.amount == Decimal("20")


@pytest.mark.asyncio
async def test_independent_sessions_last_writer_wins(session_factory, billing_account):
    """Writers in separate sessions converge on one row holding the last amount."""
    for amount in (10, 20, 30):
        async with session_factory() as session:
            await BudgetLedgerService.lock(session, billing_account.id, "ch-race", amount)

    async with session_factory() as session:
        rows = (await session.execute(
            select(LockedAmount).where(LockedAmount.challenge_id == "ch-race")
        )).scalars().all()
    assert len(rows) == 1
    assert rows[0].amount == Decimal("30")


@pytest.mark.asyncio
async def test_reconcile_rules(db_session, billing_account):
    ba = billing_account.id
    
    assert await BudgetLedgerService.reconcile(db_session, ba, "ch-1", "10.00", "0.00") == LedgerState.LOCKED
    # Consumed wins and clears the lock, even though a lock exists
    assert await BudgetLedgerService.reconcile(db_session, ba, "ch-1", "10.00", "7.50") == LedgerState.CONSUMED
    assert await _budget(db_session, ba) == (Decimal("0"), Decimal("7.5"), Decimal("992.5"))
    
    assert await BudgetLedgerService.reconcile(db_session, ba, "ch-1", "0", "0") == LedgerState.EMPTY
    assert await _budget(db_session, ba) == (Decimal("0"), Decimal("0"), Decimal("1000"))


def test_to_money_rejects_non_numbers():
    assert to_money("12.30") == Decimal("12.30")
    with pytest.raises(InvalidArgumentError):
        to_money("abc")
    with pytest.raises(InvalidArgumentError):
        to_money(True)
    with pytest.raises(InvalidArgumentError):
        to_money("NaN")


@pytest.mark.asyncio
async def test_failed_consume_keeps_lock(db_session, billing_account, mocker):
    """A storage failure after the lock delete rolls the whole consume back."""
    ba = billing_account.id
    await BudgetLedgerService.lock(db_session, ba, "ch-1", 100)
    mocker.patch(
        "billing_backend.app.domain.billing.ledger_service._upsert_entry",
        side_effect=OperationalError("INSERT INTO consumed_amounts", {}, Exception("disk I/O error")),
    )
    
    with pytest.raises(StorageError):
        await BudgetLedgerService.consume(db_session, ba, "ch-1", 80)
    
    mocker.stopall()
    assert await BudgetLedgerService.get_state(db_session, ba, "ch-1") == LedgerState.LOCKED
    assert await _budget(db_session, ba) == (Decimal("100"), Decimal("0"), Decimal("900"))


@pytest.mark.asyncio
async def test_transaction_timeout_rolls_back(db_session):
    with pytest.raises(StorageError) as excinfo:
        async with transaction(db_session, timeout=0.05):
            db_session.add(Client(id="slow-client", name="Slow"))
            await db_session.flush()
            await asyncio.sleep(1)
    
    assert excinfo.value.message == "Transaction timed out"
    assert excinfo.value.details == {"timeout_seconds": 0.05}
    assert await db_session.get(Client, "slow-client") is None
