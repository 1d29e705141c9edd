"""
Client Pydantic schemas.

Defines request and response models for the client directory.
"""

from pydantic import Field
from datetime import datetime
from typing import Optional, List
from billing_backend.app.models.enums import AccountStatus
from billing_backend.app.schemas.common import CamelModel


class ClientCreate(CamelModel):
    """Schema for creating a client."""
    name: str = Field(..., min_length=1, max_length=255)
    code_name: Optional[str] = Field(None, max_length=255)
    status: AccountStatus = AccountStatus.ACTIVE
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ClientUpdate(CamelModel):
    """Schema for updating a client. Only provided fields are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    code_name: Optional[str] = Field(None, max_length=255)
    status: Optional[AccountStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ClientResponse(CamelModel):
    """Schema for client response."""
    id: str
    name: str
    code_name: Optional[str] = None
    status: AccountStatus
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ClientListResponse(CamelModel):
    """Schema for paginated client list."""
    page: int
    per_page: int
    total: int
    total_pages: int
    data: List[ClientResponse]


class ClientQuery(CamelModel):
    """Filters, sorting and pagination for the client listing."""
    name: Optional[str] = None
    code_name: Optional[str] = None
    status: Optional[str] = None
    start_date_from: Optional[str] = None
    start_date_to: Optional[str] = None
    end_date_from: Optional[str] = None
    end_date_to: Optional[str] = None
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    page: int = 1
    per_page: int = 20
