"""
Account Aggregator (Domain Logic).

Derives lockedBudget / consumedBudget / totalBudgetRemaining for billing
accounts and serves the filtered, sorted, paginated account listing.

Remaining budget is never stored. It is recomputed on every read with one
grouped sum per ledger table over the ids being returned, so a single-account
read and a page read go through the same computation.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backend.app.core.exceptions import InvalidArgumentError
from billing_backend.app.models.billing_account import BillingAccount
from billing_backend.app.models.billing_account_access import BillingAccountAccess
from billing_backend.app.models.consumed_amount import ConsumedAmount
from billing_backend.app.models.enums import AccountStatus, BillingAccountSortField, SortOrder
from billing_backend.app.models.locked_amount import LockedAmount
from billing_backend.app.schemas.billing_account import BillingAccountQuery

ZERO = Decimal("0")

_SORT_COLUMNS = {
    BillingAccountSortField.ID: BillingAccount.id,
    BillingAccountSortField.NAME: BillingAccount.name,
    BillingAccountSortField.CREATED_AT: BillingAccount.created_at,
    BillingAccountSortField.CREATED_BY: BillingAccount.created_by,
    BillingAccountSortField.START_DATE: BillingAccount.start_date,
    BillingAccountSortField.END_DATE: BillingAccount.end_date,
}


@dataclass
class AccountBudget:
    """A billing account together with its derived budget figures."""
    account: BillingAccount
    locked_budget: Decimal = ZERO
    consumed_budget: Decimal = ZERO
    
    @property
    def total_budget_remaining(self) -> Decimal:
        return self.account.budget - self.consumed_budget - self.locked_budget


@dataclass
class AccountPage:
    page: int
    per_page: int
    total: int
    total_pages: int
    items: List[AccountBudget] = field(default_factory=list)


def _to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_date_bound(value, field_name: str, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a date filter into an aware UTC datetime.
    
    Accepts ISO-8601 dates or datetimes. A bare date used as an upper bound
    covers the whole day (the UI sends From/To as the same day).
    
    Raises:
        InvalidArgumentError: If the value is not a valid date
    """
    if value is None or value == "":
        return None
    
    if isinstance(value, datetime):
        parsed, date_only = value, False
    elif isinstance(value, date):
        parsed, date_only = datetime.combine(value, time.min), True
    else:
        text = str(value).strip()
        try:
            if len(text) == 10:
                parsed, date_only = datetime.combine(date.fromisoformat(text), time.min), True
            else:
                parsed, date_only = datetime.fromisoformat(text), False
        except ValueError:
            raise InvalidArgumentError(f"{field_name} is not a valid ISO-8601 date", field=field_name)
    
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    
    if date_only and end_of_day:
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


def validate_pagination(page, per_page) -> None:
    if page is None or page < 1:
        raise InvalidArgumentError("page must be >= 1", field="page")
    if per_page is None or per_page < 1:
        raise InvalidArgumentError("perPage must be >= 1", field="perPage")


def parse_sort_order(value) -> SortOrder:
    try:
        return SortOrder(value or SortOrder.ASC.value)
    except ValueError:
        raise InvalidArgumentError("sortOrder must be 'asc' or 'desc'", field="sortOrder")


def date_range_filters(column, date_from, date_to, from_field: str, to_field: str) -> list:
    """Build inclusive range clauses for a date column."""
    clauses = []
    lower = parse_date_bound(date_from, from_field)
    upper = parse_date_bound(date_to, to_field, end_of_day=True)
    if lower is not None:
        clauses.append(column >= lower)
    if upper is not None:
        clauses.append(column <= upper)
    return clauses


def build_account_filters(query: BillingAccountQuery) -> list:
    """
    Translate a listing query into WHERE clauses.
    
    All parsing happens here, before any statement is executed.
    """
    clauses = []
    
    if query.client_id:
        clauses.append(BillingAccount.client_id == query.client_id)
    
    if query.status:
        try:
            clauses.append(BillingAccount.status == AccountStatus(query.status))
        except ValueError:
            raise InvalidArgumentError("status must be ACTIVE or INACTIVE", field="status")
    
    if query.name:
        clauses.append(BillingAccount.name.icontains(query.name, autoescape=True))
    
    if query.user_id:
        clauses.append(
            BillingAccount.id.in_(
                select(BillingAccountAccess.billing_account_id).where(
                    BillingAccountAccess.user_id == query.user_id
                )
            )
        )
    
    clauses += date_range_filters(
        BillingAccount.start_date, query.start_date_from, query.start_date_to,
        "startDateFrom", "startDateTo",
    )
    clauses += date_range_filters(
        BillingAccount.end_date, query.end_date_from, query.end_date_to,
        "endDateFrom", "endDateTo",
    )
    return clauses


class AccountAggregator:
    
    @staticmethod
    async def budget_sums(db: AsyncSession, account_ids: Iterable[int]) -> Dict[int, Dict[str, Decimal]]:
        """
        Sum locked and consumed amounts per billing account.
        
        Returns:
            {account_id: {"locked": Decimal, "consumed": Decimal}} for every id given
        """
        ids = list(account_ids)
        sums = {account_id: {"locked": ZERO, "consumed": ZERO} for account_id in ids}
        if not ids:
            return sums
        
        for key, model in (("locked", LockedAmount), ("consumed", ConsumedAmount)):
            result = await db.execute(
                select(model.billing_account_id, func.sum(model.amount))
                .where(model.billing_account_id.in_(ids))
                .group_by(model.billing_account_id)
            )
            for account_id, total in result.all():
                sums[account_id][key] = _to_decimal(total)
        return sums
    
    @staticmethod
    async def summarize_many(db: AsyncSession, accounts: List[BillingAccount]) -> List[AccountBudget]:
        """Attach derived budget figures to each account, preserving order."""
        sums = await AccountAggregator.budget_sums(db, [account.id for account in accounts])
        return [
            AccountBudget(
                account=account,
                locked_budget=sums[account.id]["locked"],
                consumed_budget=sums[account.id]["consumed"],
            )
            for account in accounts
        ]
    
    @staticmethod
    async def summarize(db: AsyncSession, account: BillingAccount) -> AccountBudget:
        """Derived budget figures for a single account."""
        summaries = await AccountAggregator.summarize_many(db, [account])
        return summaries[0]
    
    @staticmethod
    async def list_accounts(db: AsyncSession, query: BillingAccountQuery) -> AccountPage:
        """
        Return one page of billing accounts with derived budget fields.
        
        Flow:
        1. Validate filters, sort and pagination (InvalidArgument, no storage access)
        2. Count the filtered set
        3. Fetch the page:
           - stored sort key: ORDER BY key + LIMIT/OFFSET in the database
           - remainingBudget: page by id, then sort that page in memory
        4. Batch-sum locked / consumed amounts for the page ids
        
        Sorting by remainingBudget orders rows only within the fetched page,
        not across the whole result set.
        """
        validate_pagination(query.page, query.per_page)
        sort_order = parse_sort_order(query.sort_order)
        
        sort_field = None
        if query.sort_by:
            try:
                sort_field = BillingAccountSortField(query.sort_by)
            except ValueError:
                allowed = ", ".join(f.value for f in BillingAccountSortField)
                raise InvalidArgumentError(f"sortBy must be one of: {allowed}", field="sortBy")
        
        filters = build_account_filters(query)
        
        total = await db.scalar(select(func.count(BillingAccount.id)).where(*filters))
        
        if sort_field is None:
            order_by = [BillingAccount.created_at.desc(), BillingAccount.id.desc()]
        elif sort_field == BillingAccountSortField.REMAINING_BUDGET:
            order_by = [BillingAccount.id.asc()]
        else:
            column = _SORT_COLUMNS[sort_field]
            if sort_order == SortOrder.DESC:
                order_by = [column.desc(), BillingAccount.id.desc()]
            else:
                order_by = [column.asc(), BillingAccount.id.asc()]
        
        offset = (query.page - 1) * query.per_page
        result = await db.execute(
            select(BillingAccount)
            .where(*filters)
            .order_by(*order_by)
            .offset(offset)
            .limit(query.per_page)
        )
        accounts = list(result.scalars().all())
        
        items = await AccountAggregator.summarize_many(db, accounts)
        
        if sort_field == BillingAccountSortField.REMAINING_BUDGET:
            items.sort(
                key=lambda item: item.total_budget_remaining,
                reverse=sort_order == SortOrder.DESC,
            )
        
        return AccountPage(
            page=query.page,
            per_page=query.per_page,
            total=total or 0,
            total_pages=math.ceil((total or 0) / query.per_page),
            items=items,
        )
