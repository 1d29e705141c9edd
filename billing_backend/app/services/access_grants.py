"""
Access grant service.

Manages which users may act on a billing account. A grant is a presence-only
(billing account, user) pair; the composite unique key guarantees at most one
grant per pair, so add and remove are both idempotent.
"""

import logging
from typing import List

from sqlalchemy import select, delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backend.app.core.exceptions import InvalidArgumentError, ResourceNotFoundError, StorageError
from billing_backend.app.db.session import transaction
from billing_backend.app.models.billing_account import BillingAccount
from billing_backend.app.models.billing_account_access import BillingAccountAccess
from billing_backend.app.services.member_lookup import MemberLookupService

logger = logging.getLogger(__name__)


async def _ensure_account(db: AsyncSession, billing_account_id: int) -> None:
    found = await db.scalar(select(BillingAccount.id).where(BillingAccount.id == billing_account_id))
    if found is None:
        raise ResourceNotFoundError("Billing account", billing_account_id)


def _insert_ignore(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(BillingAccountAccess)
    if dialect == "sqlite":
        return sqlite.insert(BillingAccountAccess)
    raise StorageError(f"Access grant upserts are not supported on {dialect}")


async def list_users(
    db: AsyncSession,
    billing_account_id: int,
    member_lookup: MemberLookupService,
) -> List[dict]:
    """
    List users granted on a billing account, oldest grant first.
    
    Each entry carries its 1-based position, the user id, a display name (the
    member handle when it can be resolved, otherwise the raw user id) and
    status "active".
    """
    await _ensure_account(db, billing_account_id)
    
    result = await db.execute(
        select(BillingAccountAccess.user_id)
        .where(BillingAccountAccess.billing_account_id == billing_account_id)
        .order_by(BillingAccountAccess.created_at.asc(), BillingAccountAccess.id.asc())
    )
    user_ids = list(result.scalars().all())
    handles = await member_lookup.get_handles(user_ids)
    
    return [
        {
            "id": position,
            "user_id": user_id,
            "name": handles.get(user_id) or user_id,
            "status": "active",
        }
        for position, user_id in enumerate(user_ids, start=1)
    ]


async def add_user(db: AsyncSession, billing_account_id: int, user_id: str) -> BillingAccountAccess:
    """Grant access; re-adding an existing grant returns it unchanged."""
    user_id = (user_id or "").strip()
    if not user_id:
        raise InvalidArgumentError("userId is required", field="userId")
    
    async with transaction(db):
        await _ensure_account(db, billing_account_id)
        stmt = _insert_ignore(db).values(billing_account_id=billing_account_id, user_id=user_id)
        await db.execute(stmt.on_conflict_do_nothing(index_elements=["billing_account_id", "user_id"]))
        result = await db.execute(
            select(BillingAccountAccess).where(
                BillingAccountAccess.billing_account_id == billing_account_id,
                BillingAccountAccess.user_id == user_id,
            )
        )
        grant = result.scalar_one()
    
    logger.info("Granted user %s access to billing account %s", user_id, billing_account_id)
    return grant


async def remove_user(db: AsyncSession, billing_account_id: int, user_id: str) -> bool:
    """
    Revoke access. Removing a grant that does not exist is a no-op.
    
    Returns:
        True if a grant was deleted, False if there was nothing to delete
    """
    async with transaction(db):
        await _ensure_account(db, billing_account_id)
        result = await db.execute(
            delete(BillingAccountAccess).where(
                BillingAccountAccess.billing_account_id == billing_account_id,
                BillingAccountAccess.user_id == user_id,
            )
        )
    
    removed = (result.rowcount or 0) > 0
    if removed:
        logger.info("Revoked user %s access to billing account %s", user_id, billing_account_id)
    return removed


async def has_access(db: AsyncSession, billing_account_id: int, user_id: str) -> bool:
    """Whether the user holds a grant on the account (False for unknown accounts)."""
    found = await db.scalar(
        select(BillingAccountAccess.id).where(
            BillingAccountAccess.billing_account_id == billing_account_id,
            BillingAccountAccess.user_id == user_id,
        )
    )
    return found is not None
