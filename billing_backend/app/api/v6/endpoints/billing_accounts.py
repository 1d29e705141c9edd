"""
Billing Account API Endpoints.

Account directory, budget ledger (lock / consume) and access grants.
"""

from typing import List, Optional, Union
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backend.app.db.session import get_db
from billing_backend.app.core.dependencies import AuthUser
from billing_backend.app.core.guards import require_access
from billing_backend.app.core.permissions import ADMIN_ROLE, COPILOT_ROLE, Scope
from billing_backend.app.domain.billing.budget_aggregator import AccountAggregator
from billing_backend.app.domain.billing.ledger_service import BudgetLedgerService
from billing_backend.app.schemas.access import (
    AccessGrantResponse, AddUserRequest, BillingAccountUserResponse
)
from billing_backend.app.schemas.billing_account import (
    BillingAccountCreate, BillingAccountListResponse, BillingAccountQuery,
    BillingAccountResponse, BillingAccountUpdate
)
from billing_backend.app.schemas.ledger import (
    ConsumeAmountRequest, LedgerEntryResponse, LockAmountRequest, UnlockResponse
)
from billing_backend.app.services import access_grants
from billing_backend.app.services.billing_accounts import (
    create_billing_account, get_billing_account, update_billing_account
)
from billing_backend.app.services.member_lookup import MemberLookupService, get_member_lookup

router = APIRouter(prefix="/billing-accounts", tags=["Billing Accounts"])

can_read = require_access([ADMIN_ROLE, COPILOT_ROLE], [Scope.READ_BA, Scope.ALL_BA])
can_create = require_access([ADMIN_ROLE], [Scope.CREATE_BA, Scope.ALL_BA])
can_update = require_access([ADMIN_ROLE], [Scope.UPDATE_BA, Scope.ALL_BA])

AccountId = Path(..., description="Billing Account ID")


@router.get("", response_model=BillingAccountListResponse)
async def list_billing_accounts(
    client_id: Optional[str] = Query(None, alias="clientId"),
    user_id: Optional[str] = Query(None, alias="userId", description="Only accounts this user can access"),
    status: Optional[str] = Query(None, description="ACTIVE or INACTIVE"),
    name: Optional[str] = Query(None, description="Filter by name (contains, case-insensitive)"),
    start_date_from: Optional[str] = Query(None, alias="startDateFrom"),
    start_date_to: Optional[str] = Query(None, alias="startDateTo"),
    end_date_from: Optional[str] = Query(None, alias="endDateFrom"),
    end_date_to: Optional[str] = Query(None, alias="endDateTo"),
    sort_by: Optional[str] = Query(
        None, alias="sortBy",
        description="id, name, createdAt, createdBy, startDate, endDate or remainingBudget",
    ),
    sort_order: Optional[str] = Query(None, alias="sortOrder", description="asc or desc"),
    page: int = Query(1, description="Page number (1-based)"),
    per_page: int = Query(20, alias="perPage", description="Items per page"),
    current_user: AuthUser = Depends(can_read),
    db: AsyncSession = Depends(get_db)
):
    """
    List billing accounts with filters, sorting and pagination.
    
    Every item carries lockedBudget, consumedBudget and totalBudgetRemaining.
    Sorting by remainingBudget orders items within the returned page only.
    """
    query = BillingAccountQuery(
        client_id=client_id,
        user_id=user_id,
        status=status,
        name=name,
        start_date_from=start_date_from,
        start_date_to=start_date_to,
        end_date_from=end_date_from,
        end_date_to=end_date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        per_page=per_page,
    )
    result = await AccountAggregator.list_accounts(db, query)
    
    return BillingAccountListResponse(
        page=result.page,
        per_page=result.per_page,
        total=result.total,
        total_pages=result.total_pages,
        data=[BillingAccountResponse.from_summary(item) for item in result.items],
    )


@router.post("", response_model=BillingAccountResponse)
async def create_account(
    data: BillingAccountCreate,
    current_user: AuthUser = Depends(can_create),
    db: AsyncSession = Depends(get_db)
):
    """Create a billing account for an existing client."""
    summary = await create_billing_account(db, data, created_by=current_user.actor)
    return BillingAccountResponse.from_summary(summary)


@router.get("/{billing_account_id}", response_model=BillingAccountResponse)
async def get_account(
    billing_account_id: int = AccountId,
    current_user: AuthUser = Depends(can_read),
    db: AsyncSession = Depends(get_db)
):
    """Fetch a billing account, including client and budget figures."""
    summary = await get_billing_account(db, billing_account_id)
    return BillingAccountResponse.from_summary(summary)


@router.patch("/{billing_account_id}", response_model=BillingAccountResponse)
async def update_account(
    data: BillingAccountUpdate,
    billing_account_id: int = AccountId,
    current_user: AuthUser = Depends(can_update),
    db: AsyncSession = Depends(get_db)
):
    """Update billing account metadata or budget."""
    summary = await update_billing_account(db, billing_account_id, data)
    return BillingAccountResponse.from_summary(summary)


@router.patch(
    "/{billing_account_id}/lock-amount",
    response_model=Union[LedgerEntryResponse, UnlockResponse],
)
async def lock_amount(
    data: LockAmountRequest,
    billing_account_id: int = AccountId,
    current_user: AuthUser = Depends(can_update),
    db: AsyncSession = Depends(get_db)
):
    """
    Reserve funds for a challenge.
    
    An amount of 0 releases the reservation. Returns 409 if the challenge has
    already been consumed against this account.
    """
    entry = await BudgetLedgerService.lock(db, billing_account_id, data.challenge_id, data.amount)
    if entry is None:
        return UnlockResponse()
    return LedgerEntryResponse.model_validate(entry)


@router.patch("/{billing_account_id}/consume-amount", response_model=LedgerEntryResponse)
async def consume_amount(
    data: ConsumeAmountRequest,
    billing_account_id: int = AccountId,
    current_user: AuthUser = Depends(can_update),
    db: AsyncSession = Depends(get_db)
):
    """Record the final spend for a challenge, clearing any pending lock."""
    entry = await BudgetLedgerService.consume(db, billing_account_id, data.challenge_id, data.amount)
    return LedgerEntryResponse.model_validate(entry)


# --- Access grants ---

@router.get("/{billing_account_id}/users", response_model=List[BillingAccountUserResponse])
async def list_account_users(
    billing_account_id: int = AccountId,
    current_user: AuthUser = Depends(can_read),
    db: AsyncSession = Depends(get_db),
    member_lookup: MemberLookupService = Depends(get_member_lookup)
):
    """List users assigned to a billing account, with member handles where known."""
    users = await access_grants.list_users(db, billing_account_id, member_lookup)
    return [BillingAccountUserResponse.model_validate(user) for user in users]


@router.post("/{billing_account_id}/users", response_model=AccessGrantResponse)
async def add_account_user(
    data: AddUserRequest,
    billing_account_id: int = AccountId,
    current_user: AuthUser = Depends(can_update),
    db: AsyncSession = Depends(get_db)
):
    """Grant a user access to the billing account (idempotent)."""
    grant = await access_grants.add_user(db, billing_account_id, data.user_id)
    return AccessGrantResponse.model_validate(grant)


@router.delete("/{billing_account_id}/users/{user_id}")
async def remove_account_user(
    billing_account_id: int = AccountId,
    user_id: str = Path(..., description="User ID"),
    current_user: AuthUser = Depends(can_update),
    db: AsyncSession = Depends(get_db)
):
    """Revoke a user's access (idempotent)."""
    removed = await access_grants.remove_user(db, billing_account_id, user_id)
    return {"removed": removed}


@router.get("/{billing_account_id}/users/{user_id}/access", response_model=bool)
async def check_account_access(
    billing_account_id: int = AccountId,
    user_id: str = Path(..., description="User ID"),
    current_user: AuthUser = Depends(can_read),
    db: AsyncSession = Depends(get_db)
):
    """Whether the user has access to the billing account."""
    return await access_grants.has_access(db, billing_account_id, user_id)
