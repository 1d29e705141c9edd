"""
Budget Ledger Service (Domain Logic).

Enforces the lock / consume state machine for one (billing account, challenge)
key:

    EMPTY --lock(>0)--> LOCKED --consume--> CONSUMED
    LOCKED --lock(0)--> EMPTY
    EMPTY --consume--> CONSUMED

CONSUMED is terminal: a later lock on the same key is a conflict.
Every call runs as one transaction. The billing account row is taken FOR
UPDATE first, which serialises ledger writes per account on PostgreSQL.
"""

import enum
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Type, Union

from sqlalchemy import select, delete, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backend.app.core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    ResourceNotFoundError,
    StorageError,
)
from billing_backend.app.db.session import transaction
from billing_backend.app.models.billing_account import BillingAccount
from billing_backend.app.models.consumed_amount import ConsumedAmount
from billing_backend.app.models.locked_amount import LockedAmount

logger = logging.getLogger(__name__)

LedgerModel = Union[Type[LockedAmount], Type[ConsumedAmount]]

# Ledger columns store whole cents
CENT = Decimal("0.01")


class LedgerState(str, enum.Enum):
    """Ledger state of a single (billing account, challenge) key."""
    EMPTY = "EMPTY"
    LOCKED = "LOCKED"
    CONSUMED = "CONSUMED"


def to_money(value, field: str = "amount") -> Decimal:
    """
    Coerce a number or numeric string to Decimal without going through float.
    
    Amounts must be finite and hold whole cents; "10.500" is accepted, "0.001" is not.
    """
    if isinstance(value, bool):
        raise InvalidArgumentError(f"{field} must be a number", field=field)
    if isinstance(value, Decimal):
        money = value
    else:
        try:
            money = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidArgumentError(f"{field} must be a number", field=field)
    if not money.is_finite():
        raise InvalidArgumentError(f"{field} must be a finite number", field=field)
    try:
        whole_cents = money == money.quantize(CENT)
    except InvalidOperation:
        raise InvalidArgumentError(f"{field} is out of range", field=field)
    if not whole_cents:
        raise InvalidArgumentError(f"{field} must not have more than 2 decimal places", field=field)
    return money


def _dialect_insert(db: AsyncSession, model: LedgerModel):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise StorageError(f"Ledger upserts are not supported on {dialect}")


async def _lock_account_row(db: AsyncSession, billing_account_id: int) -> None:
    """Take the billing account row FOR UPDATE, or fail if it does not exist."""
    found = await db.scalar(
        select(BillingAccount.id)
        .where(BillingAccount.id == billing_account_id)
        .with_for_update()
    )
    if found is None:
        raise ResourceNotFoundError("Billing account", billing_account_id)


async def _upsert_entry(
    db: AsyncSession,
    model: LedgerModel,
    billing_account_id: int,
    challenge_id: str,
    amount: Decimal,
):
    """Insert or overwrite the amount for a key and return the stored row."""
    stmt = _dialect_insert(db, model).values(
        billing_account_id=billing_account_id,
        challenge_id=challenge_id,
        amount=amount,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[model.billing_account_id, model.challenge_id],
        set_={"amount": stmt.excluded.amount, "updated_at": func.now()},
    )
    await db.execute(stmt)

    result = await db.execute(
        select(model)
        .where(model.billing_account_id == billing_account_id, model.challenge_id == challenge_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _delete_entry(db: AsyncSession, model: LedgerModel, billing_account_id: int, challenge_id: str) -> int:
    result = await db.execute(
        delete(model).where(
            model.billing_account_id == billing_account_id,
            model.challenge_id == challenge_id,
        )
    )
    return result.rowcount or 0


class BudgetLedgerService:
    """Lock, consume and reconcile operations on the budget ledger."""

    @staticmethod
    async def lock(
        db: AsyncSession,
        billing_account_id: int,
        challenge_id: str,
        amount,
    ) -> Optional[LockedAmount]:
        """
        Reserve ``amount`` of the account budget for a challenge.
        
        Flow (single transaction):
        1. Reject negative amounts before touching storage
        2. Lock the billing account row (NotFound if missing)
        3. Refuse if the challenge is already consumed (Conflict)
        4. amount == 0: release any lock and return None
        5. amount > 0: upsert the lock and return it
        
        Args:
            db: Database session
            billing_account_id: Account to reserve against
            challenge_id: Challenge the funds are reserved for
            amount: Money amount (Decimal, int or numeric string)
            
        Returns:
            The stored LockedAmount, or None when the lock was released
        """
        amount = to_money(amount)
        if amount < 0:
            raise InvalidArgumentError("amount must not be negative", field="amount")
        
        async with transaction(db):
            await _lock_account_row(db, billing_account_id)
            
            consumed_id = await db.scalar(
                select(ConsumedAmount.id).where(
                    ConsumedAmount.billing_account_id == billing_account_id,
                    ConsumedAmount.challenge_id == challenge_id,
                )
            )
            if consumed_id is not None:
                raise ConflictError(
                    "Challenge already consumed against this billing account",
                    details={"billing_account_id": billing_account_id, "challenge_id": challenge_id},
                )
            
            if amount == 0:
                removed = await _delete_entry(db, LockedAmount, billing_account_id, challenge_id)
                entry = None
            else:
                entry = await _upsert_entry(db, LockedAmount, billing_account_id, challenge_id, amount)
        
        if entry is None:
            logger.info(
                "Unlocked challenge %s on billing account %s (rows removed: %s)",
                challenge_id, billing_account_id, removed,
            )
        else:
            logger.info("Locked %s for challenge %s on billing account %s", amount, challenge_id, billing_account_id)
        return entry
    
    @staticmethod
    async def consume(
        db: AsyncSession,
        billing_account_id: int,
        challenge_id: str,
        amount,
    ) -> ConsumedAmount:
        """
        Record the final spend for a challenge.
        
        Any pending lock for the challenge is removed regardless of its amount,
        and the consumed row is created or overwritten, in one transaction.
        """
        amount = to_money(amount)
        
        async with transaction(db):
            await _lock_account_row(db, billing_account_id)
            await _delete_entry(db, LockedAmount, billing_account_id, challenge_id)
            entry = await _upsert_entry(db, ConsumedAmount, billing_account_id, challenge_id, amount)
        
        logger.info("Consumed %s for challenge %s on billing account %s", amount, challenge_id, billing_account_id)
        return entry
    
    @staticmethod
    async def reconcile(
        db: AsyncSession,
        billing_account_id: int,
        challenge_id: str,
        locked_amount,
        consumed_amount,
    ) -> LedgerState:
        """
        Establish the ledger state for a key from a historical record.
        
        Used by bulk imports. Unlike ``lock`` there is no "already consumed"
        guard: the record is ground truth and may overwrite either state.
        
        Rules:
        - consumed > 0: consumed wins, any lock is deleted
        - else locked > 0: lock is upserted
        - else: both entry kinds are deleted
        
        Returns:
            The resulting LedgerState for the key
        """
        locked = to_money(locked_amount, field="locked_amount")
        consumed = to_money(consumed_amount, field="consumed_amount")
        
        async with transaction(db):
            await _lock_account_row(db, billing_account_id)
            
            if consumed > 0:
                await _delete_entry(db, LockedAmount, billing_account_id, challenge_id)
                await _upsert_entry(db, ConsumedAmount, billing_account_id, challenge_id, consumed)
                state = LedgerState.CONSUMED
            elif locked > 0:
                await _upsert_entry(db, LockedAmount, billing_account_id, challenge_id, locked)
                state = LedgerState.LOCKED
            else:
                await _delete_entry(db, LockedAmount, billing_account_id, challenge_id)
                await _delete_entry(db, ConsumedAmount, billing_account_id, challenge_id)
                state = LedgerState.EMPTY
        
        return state
    
    @staticmethod
    async def get_state(db: AsyncSession, billing_account_id: int, challenge_id: str) -> LedgerState:
        """Read the current state of a key."""
        consumed_id = await db.scalar(
            select(ConsumedAmount.id).where(
                ConsumedAmount.billing_account_id == billing_account_id,
                ConsumedAmount.challenge_id == challenge_id,
            )
        )
        if consumed_id is not None:
            return LedgerState.CONSUMED
        
        locked_id = await db.scalar(
            select(LockedAmount.id).where(
                LockedAmount.billing_account_id == billing_account_id,
                LockedAmount.challenge_id == challenge_id,
            )
        )
        return LedgerState.LOCKED if locked_id is not None else LedgerState.EMPTY
