"""
Billing Account Pydantic schemas.

Defines request and response models for billing account management.
"""

from pydantic import Field
from datetime import datetime
from typing import Optional, List
from billing_backend.app.models.enums import AccountStatus
from billing_backend.app.schemas.common import CamelModel, Money
from billing_backend.app.schemas.client import ClientResponse


class BillingAccountCreate(CamelModel):
    """Schema for creating a billing account."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: AccountStatus = AccountStatus.ACTIVE
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    budget: Money = Field(..., ge=0, decimal_places=2)
    markup: Money = Field(..., decimal_places=4)
    client_id: str = Field(..., min_length=1)
    project_id: Optional[str] = None
    po_number: Optional[str] = None
    subscription_number: Optional[str] = None
    is_manual_prize: bool = False
    payment_terms: Optional[str] = None
    sales_tax: Optional[Money] = Field(None, decimal_places=4)
    billable: bool = True


class BillingAccountUpdate(CamelModel):
    """
    Schema for updating a billing account.
    
    Only fields present in the request body are applied; an explicit null
    clears nullable columns such as sales_tax or end_date.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[AccountStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    budget: Optional[Money] = Field(None, ge=0, decimal_places=2)
    markup: Optional[Money] = Field(None, decimal_places=4)
    client_id: Optional[str] = Field(None, min_length=1)
    project_id: Optional[str] = None
    po_number: Optional[str] = None
    subscription_number: Optional[str] = None
    is_manual_prize: Optional[bool] = None
    payment_terms: Optional[str] = None
    sales_tax: Optional[Money] = Field(None, decimal_places=4)
    billable: Optional[bool] = None


class BillingAccountResponse(CamelModel):
    """Billing account enriched with budget figures derived from the ledger."""
    id: int
    name: str
    description: Optional[str] = None
    status: AccountStatus
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    budget: Money
    markup: Money
    client_id: str
    project_id: Optional[str] = None
    po_number: Optional[str] = None
    subscription_number: Optional[str] = None
    is_manual_prize: bool
    payment_terms: Optional[str] = None
    sales_tax: Optional[Money] = None
    billable: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    client: Optional[ClientResponse] = None
    
    locked_budget: Money
    consumed_budget: Money
    total_budget_remaining: Money

    @classmethod
    def from_summary(cls, summary) -> "BillingAccountResponse":
        """Build a response from an AccountBudget (account plus derived sums)."""
        account = summary.account
        data = {column.key: getattr(account, column.key) for column in account.__table__.columns}
        data["client"] = ClientResponse.model_validate(account.client) if account.client is not None else None
        data["locked_budget"] = summary.locked_budget
        data["consumed_budget"] = summary.consumed_budget
        data["total_budget_remaining"] = summary.total_budget_remaining
        return cls.model_validate(data)


class BillingAccountListResponse(CamelModel):
    """Schema for paginated billing account list."""
    page: int
    per_page: int
    total: int
    total_pages: int
    data: List[BillingAccountResponse]


class BillingAccountQuery(CamelModel):
    """
    Filters, sorting and pagination for the billing account listing.
    
    Values are kept raw here and validated by the aggregator so bad input is
    reported as an invalid argument before any query runs.
    """
    client_id: Optional[str] = None
    user_id: Optional[str] = None
    status: Optional[str] = None
    name: Optional[str] = None
    start_date_from: Optional[str] = None
    start_date_to: Optional[str] = None
    end_date_from: Optional[str] = None
    end_date_to: Optional[str] = None
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    page: int = 1
    per_page: int = 20
