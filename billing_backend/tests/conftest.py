"""
Centralized Test Configuration.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from billing_backend.app.main import app
from billing_backend.app.db.session import get_db, Base
from billing_backend.app.core.jwt import create_access_token
from billing_backend.app.core.permissions import ADMIN_ROLE, COPILOT_ROLE
import billing_backend.app.core.redis_client as redis_client_module
from billing_backend.app.models.billing_account import BillingAccount
from billing_backend.app.models.client import Client
from billing_backend.app.models.enums import AccountStatus
from billing_backend.app.services.member_lookup import get_member_lookup

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)

# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
    
    async def get(self, key):
        return self.store.get(key)
        
    async def set(self, key, value, ex=None):
        self.store[key] = value
        return True
    
    async def flushdb(self):
        self.store = {}


class FakeMemberLookup:
    """Stands in for the members database: a fixed userId -> handle map."""
    
    def __init__(self, handles=None):
        self.handles = dict(handles or {})
        self.calls = []
    
    async def get_handles(self, user_ids):
        ids = [str(user_id) for user_id in user_ids]
        self.calls.append(ids)
        return {user_id: self.handles[user_id] for user_id in ids if user_id in self.handles}
    
    async def find_user_id(self, handle):
        for user_id, known in self.handles.items():
            if known.lower() == handle.lower():
                return user_id
        return None
    
    async def close(self):
        pass


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session")
def member_lookup_stub():
    return FakeMemberLookup({"1001": "alice", "1002": "bob"})


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session, member_lookup_stub):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """
    
    # Patch the global redis client used by the member handle cache
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session
    
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_member_lookup():
        return member_lookup_stub

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_member_lookup] = override_get_member_lookup
    yield
    
    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client

@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    await redis_client_session.flushdb()
    
    yield
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    return TestingSessionLocal


# --- Tokens ---

def bearer(claims: dict) -> dict:
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def make_headers():
    """Build Authorization headers for arbitrary claims."""
    return bearer


@pytest.fixture
def admin_headers():
    return bearer({"userId": "1001", "handle": "alice", "roles": [ADMIN_ROLE]})


@pytest.fixture
def copilot_headers():
    return bearer({"userId": "1002", "handle": "bob", "roles": COPILOT_ROLE})


@pytest.fixture
def member_headers():
    return bearer({"userId": "1003", "handle": "carol", "roles": ["Topcoder User"]})


@pytest.fixture
def m2m_headers():
    """Machine token allowed to read and update billing accounts."""
    return bearer({"sub": "svc@clients", "scope": "read:billing-account update:billing-account"})


# --- Data ---

@pytest.fixture
async def test_client_record(db_session):
    client = Client(id="client-1", name="Acme Corp", code_name="ACME", status=AccountStatus.ACTIVE)
    db_session.add(client)
    await db_session.commit()
    return client


@pytest.fixture
async def billing_account(db_session, test_client_record):
    account = BillingAccount(
        name="Acme Q1",
        client_id=test_client_record.id,
        budget=Decimal("1000.00"),
        markup=Decimal("0.5"),
        status=AccountStatus.ACTIVE,
        created_by="alice",
    )
    db_session.add(account)
    await db_session.commit()
    return account
