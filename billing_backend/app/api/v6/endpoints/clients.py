"""
Client API Endpoints.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backend.app.db.session import get_db
from billing_backend.app.core.dependencies import AuthUser
from billing_backend.app.core.guards import require_access
from billing_backend.app.core.permissions import ADMIN_ROLE, Scope
from billing_backend.app.schemas.client import (
    ClientCreate, ClientListResponse, ClientQuery, ClientResponse, ClientUpdate
)
from billing_backend.app.services import clients as client_service

router = APIRouter(prefix="/clients", tags=["Clients"])

can_read = require_access([ADMIN_ROLE], [Scope.READ_CLIENT, Scope.ALL_CLIENT])
can_create = require_access([ADMIN_ROLE], [Scope.CREATE_CLIENT, Scope.ALL_CLIENT])
can_update = require_access([ADMIN_ROLE], [Scope.UPDATE_CLIENT, Scope.ALL_CLIENT])


@router.get("", response_model=ClientListResponse)
async def list_clients(
    name: Optional[str] = Query(None, description="Filter by name (contains, case-insensitive)"),
    code_name: Optional[str] = Query(None, alias="codeName"),
    status: Optional[str] = Query(None, description="ACTIVE or INACTIVE"),
    start_date_from: Optional[str] = Query(None, alias="startDateFrom"),
    start_date_to: Optional[str] = Query(None, alias="startDateTo"),
    end_date_from: Optional[str] = Query(None, alias="endDateFrom"),
    end_date_to: Optional[str] = Query(None, alias="endDateTo"),
    sort_by: Optional[str] = Query(None, alias="sortBy", description="name, startDate, endDate, status or createdAt"),
    sort_order: Optional[str] = Query(None, alias="sortOrder", description="asc or desc"),
    page: int = Query(1, description="Page number (1-based)"),
    per_page: int = Query(20, alias="perPage", description="Items per page"),
    current_user: AuthUser = Depends(can_read),
    db: AsyncSession = Depends(get_db)
):
    """List clients with filters, sorting and pagination."""
    query = ClientQuery(
        name=name,
        code_name=code_name,
        status=status,
        start_date_from=start_date_from,
        start_date_to=start_date_to,
        end_date_from=end_date_from,
        end_date_to=end_date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        per_page=per_page,
    )
    result = await client_service.list_clients(db, query)
    result["data"] = [ClientResponse.model_validate(client) for client in result["data"]]
    return ClientListResponse(**result)


@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def create_client(
    data: ClientCreate,
    current_user: AuthUser = Depends(can_create),
    db: AsyncSession = Depends(get_db)
):
    """Create a client."""
    client = await client_service.create_client(db, data)
    return ClientResponse.model_validate(client)


@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: str = Path(..., description="Client ID"),
    current_user: AuthUser = Depends(can_read),
    db: AsyncSession = Depends(get_db)
):
    """Fetch a client by id."""
    client = await client_service.get_client(db, client_id)
    return ClientResponse.model_validate(client)


@router.patch("/{client_id}", response_model=ClientResponse)
async def update_client(
    data: ClientUpdate,
    client_id: str = Path(..., description="Client ID"),
    current_user: AuthUser = Depends(can_update),
    db: AsyncSession = Depends(get_db)
):
    """Update a client. Only provided fields change."""
    client = await client_service.update_client(db, client_id, data)
    return ClientResponse.model_validate(client)
