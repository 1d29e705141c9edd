"""
Client directory service.
"""

import logging
import math

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from billing_backend.app.core.exceptions import InvalidArgumentError, ResourceNotFoundError
from billing_backend.app.db.session import transaction
from billing_backend.app.domain.billing.budget_aggregator import (
    date_range_filters,
    parse_sort_order,
    validate_pagination,
)
from billing_backend.app.models.client import Client
from billing_backend.app.models.enums import AccountStatus, ClientSortField, SortOrder
from billing_backend.app.schemas.client import ClientCreate, ClientQuery, ClientUpdate

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    ClientSortField.NAME: Client.name,
    ClientSortField.START_DATE: Client.start_date,
    ClientSortField.END_DATE: Client.end_date,
    ClientSortField.STATUS: Client.status,
    ClientSortField.CREATED_AT: Client.created_at,
}

NON_NULLABLE_FIELDS = {"name", "status"}


async def list_clients(db: AsyncSession, query: ClientQuery) -> dict:
    """
    List clients with filters, sorting and pagination.
    
    Returns:
        dict with page, per_page, total, total_pages and data (Client rows)
    """
    validate_pagination(query.page, query.per_page)
    sort_order = parse_sort_order(query.sort_order)
    
    filters = []
    if query.name:
        filters.append(Client.name.icontains(query.name, autoescape=True))
    if query.code_name:
        filters.append(Client.code_name.icontains(query.code_name, autoescape=True))
    if query.status:
        try:
            filters.append(Client.status == AccountStatus(query.status))
        except ValueError:
            raise InvalidArgumentError("status must be ACTIVE or INACTIVE", field="status")
    filters += date_range_filters(
        Client.start_date, query.start_date_from, query.start_date_to, "startDateFrom", "startDateTo"
    )
    filters += date_range_filters(
        Client.end_date, query.end_date_from, query.end_date_to, "endDateFrom", "endDateTo"
    )
    
    if query.sort_by:
        try:
            column = _SORT_COLUMNS[ClientSortField(query.sort_by)]
        except ValueError:
            allowed = ", ".join(f.value for f in ClientSortField)
            raise InvalidArgumentError(f"sortBy must be one of: {allowed}", field="sortBy")
        if sort_order == SortOrder.DESC:
            order_by = [column.desc(), Client.id.desc()]
        else:
            order_by = [column.asc(), Client.id.asc()]
    else:
        order_by = [Client.created_at.desc(), Client.id.desc()]
    
    total = await db.scalar(select(func.count(Client.id)).where(*filters))
    
    offset = (query.page - 1) * query.per_page
    result = await db.execute(
        select(Client).where(*filters).order_by(*order_by).offset(offset).limit(query.per_page)
    )
    
    return {
        "page": query.page,
        "per_page": query.per_page,
        "total": total or 0,
        "total_pages": math.ceil((total or 0) / query.per_page),
        "data": list(result.scalars().all()),
    }


async def get_client(db: AsyncSession, client_id: str) -> Client:
    result = await db.execute(
        select(Client).where(Client.id == client_id).execution_options(populate_existing=True)
    )
    client = result.scalar_one_or_none()
    if client is None:
        raise ResourceNotFoundError("Client", client_id)
    return client


async def create_client(db: AsyncSession, data: ClientCreate) -> Client:
    async with transaction(db):
        client = Client(
            name=data.name,
            code_name=data.code_name,
            status=data.status,
            start_date=data.start_date,
            end_date=data.end_date,
        )
        db.add(client)
        await db.flush()
        client_id = client.id
    
    logger.info("Created client %s (%s)", client_id, data.name)
    return await get_client(db, client_id)


async def update_client(db: AsyncSession, client_id: str, data: ClientUpdate) -> Client:
    """Apply a partial update to a client."""
    update_data = data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if value is None and field in NON_NULLABLE_FIELDS:
            raise InvalidArgumentError(f"{field} cannot be null", field=field)
    
    async with transaction(db):
        client = await get_client(db, client_id)
        for field, value in update_data.items():
            setattr(client, field, value)
        await db.flush()
    
    return await get_client(db, client_id)
