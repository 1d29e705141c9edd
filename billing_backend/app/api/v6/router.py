"""
API v6 Router.

Aggregates all v6 API endpoints.
"""

from fastapi import APIRouter
from billing_backend.app.api.v6.endpoints import health, billing_accounts, clients

router = APIRouter()

# Health first: "/billing-accounts/health" must win over "/billing-accounts/{id}"
router.include_router(health.router)

router.include_router(billing_accounts.router)
router.include_router(clients.router)
