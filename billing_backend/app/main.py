"""
FastAPI Application Entry Point.

This is the main application file for the Billing Accounts service.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError

from billing_backend.app.core.config import settings
from billing_backend.app.api.v6.router import router as api_v6_router
from billing_backend.app.db.session import engine, Base
from billing_backend.app.core.observability import ObservabilityMiddleware
from billing_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    integrity_exception_handler,
    generic_exception_handler
)
from billing_backend.app.services.health import HealthMonitor
from billing_backend.app.services.member_lookup import member_lookup

# Import models to ensure they are registered with Base
from billing_backend.app.models.client import Client
from billing_backend.app.models.billing_account import BillingAccount
from billing_backend.app.models.locked_amount import LockedAmount
from billing_backend.app.models.consumed_amount import ConsumedAmount
from billing_backend.app.models.billing_account_access import BillingAccountAccess

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def cors_origin_regex(domains) -> str:
    """Allow http(s) origins on the given domains, their subdomains and any port."""
    hosts = "|".join(domain.replace(".", r"\.") for domain in domains)
    return rf"^https?://([a-z0-9-]+\.)*({hosts})(:\d+)?$"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.
    
    1. Creates database tables on startup.
    2. Closes the members database engine on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s started (api %s)", settings.app_name, settings.api_version)
    yield
    await member_lookup.close()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Billing accounts, budget ledger and client directory",
    lifespan=lifespan,
)

app.state.health_monitor = HealthMonitor()

app.add_middleware(ObservabilityMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=cors_origin_regex(settings.cors_allowed_domains),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(IntegrityError, integrity_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


# Include API v6 router
app.include_router(api_v6_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """Welcome message and documentation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "docs": "/docs",
        "health": f"/{settings.api_version}/billing-accounts/health",
    }
