"""
Billing account directory service.

Create / read / update over billing account records. Reads always return the
account enriched with its derived budget figures.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backend.app.core.exceptions import InvalidArgumentError, ResourceNotFoundError
from billing_backend.app.db.session import transaction
from billing_backend.app.domain.billing.budget_aggregator import AccountAggregator, AccountBudget
from billing_backend.app.models.billing_account import BillingAccount
from billing_backend.app.models.client import Client
from billing_backend.app.schemas.billing_account import BillingAccountCreate, BillingAccountUpdate

logger = logging.getLogger(__name__)

# Columns that may not be cleared with an explicit null on update
NON_NULLABLE_FIELDS = {"name", "status", "budget", "markup", "client_id", "is_manual_prize", "billable"}


async def _ensure_client(db: AsyncSession, client_id: str) -> None:
    if await db.get(Client, client_id) is None:
        raise ResourceNotFoundError("Client", client_id)


async def fetch_billing_account(db: AsyncSession, billing_account_id: int) -> BillingAccount:
    """
    Load a billing account (with its client) or raise NotFound.
    
    Always re-reads the row so callers never see values cached in the session.
    """
    result = await db.execute(
        select(BillingAccount)
        .where(BillingAccount.id == billing_account_id)
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise ResourceNotFoundError("Billing account", billing_account_id)
    return account


async def get_billing_account(db: AsyncSession, billing_account_id: int) -> AccountBudget:
    """Get one billing account with lockedBudget / consumedBudget / totalBudgetRemaining."""
    account = await fetch_billing_account(db, billing_account_id)
    return await AccountAggregator.summarize(db, account)


async def create_billing_account(
    db: AsyncSession,
    data: BillingAccountCreate,
    created_by: str = None,
) -> AccountBudget:
    """
    Create a billing account.
    
    Args:
        db: Database session
        data: Validated request payload
        created_by: Handle or user id of the caller, recorded on the account
        
    Raises:
        ResourceNotFoundError: If the referenced client does not exist
    """
    async with transaction(db):
        await _ensure_client(db, data.client_id)
        
        account = BillingAccount(
            name=data.name,
            description=data.description,
            status=data.status,
            start_date=data.start_date,
            end_date=data.end_date,
            budget=data.budget,
            markup=data.markup,
            client_id=data.client_id,
            project_id=data.project_id,
            po_number=data.po_number,
            subscription_number=data.subscription_number,
            is_manual_prize=data.is_manual_prize,
            payment_terms=data.payment_terms,
            sales_tax=data.sales_tax,
            billable=data.billable,
            created_by=created_by,
        )
        db.add(account)
        await db.flush()
        account_id = account.id
    
    logger.info("Created billing account %s (%s) for client %s", account_id, data.name, data.client_id)
    return await get_billing_account(db, account_id)


async def update_billing_account(
    db: AsyncSession,
    billing_account_id: int,
    data: BillingAccountUpdate,
) -> AccountBudget:
    """
    Apply a partial update. Only fields present in the payload change.
    
    Raises:
        ResourceNotFoundError: Unknown billing account or client
        InvalidArgumentError: Null given for a required field
    """
    update_data = data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if value is None and field in NON_NULLABLE_FIELDS:
            raise InvalidArgumentError(f"{field} cannot be null", field=field)
    
    async with transaction(db):
        account = await fetch_billing_account(db, billing_account_id)
        if "client_id" in update_data and update_data["client_id"] != account.client_id:
            await _ensure_client(db, update_data["client_id"])
        
        for field, value in update_data.items():
            setattr(account, field, value)
        await db.flush()
    
    logger.info("Updated billing account %s: %s", billing_account_id, sorted(update_data))
    return await get_billing_account(db, billing_account_id)
