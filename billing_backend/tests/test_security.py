"""
Authentication and authorization tests.
"""

from datetime import timedelta

import pytest
from jose import jwt

from billing_backend.app.core.config import settings
from billing_backend.app.core.dependencies import build_auth_user
from billing_backend.app.core.jwt import create_access_token, decode_access_token
from billing_backend.app.core.permissions import ADMIN_ROLE, Scope

API = "/v6/billing-accounts"


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized(client):
    response = await client.get(API)
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_AUTH_001"


@pytest.mark.asyncio
async def test_expired_token_is_unauthorized(client):
    token = create_access_token({"userId": "1001", "roles": [ADMIN_ROLE]}, expires_delta=timedelta(minutes=-1))
    response = await client.get(API, headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_untrusted_issuer_is_unauthorized(client, make_headers):
    headers = make_headers({"userId": "1001", "roles": [ADMIN_ROLE], "iss": "https://evil.example.com"})
    response = await client.get(API, headers=headers)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_member_without_role_is_forbidden(client, member_headers):
    response = await client.get(API, headers=member_headers)
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_001"


@pytest.mark.asyncio
async def test_copilot_can_read_but_not_create(client, copilot_headers, test_client_record):
    assert (await client.get(API, headers=copilot_headers)).status_code == 200
    
    response = await client.post(API, headers=copilot_headers, json={
        "name": "Nope", "clientId": test_client_record.id, "budget": 1, "markup": 0,
    })
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_machine_token_uses_scopes(client, m2m_headers, billing_account):
    response = await client.patch(f"{API}/{billing_account.id}/lock-amount", headers=m2m_headers,
                                  json={"challengeId": "ch-1", "amount": 10})
    assert response.status_code == 200
    
    # No client scopes on this token
    assert (await client.get("/v6/clients", headers=m2m_headers)).status_code == 403


def test_claims_normalisation():
    user = build_auth_user({
        "https://topcoder.com/userId": 1001,
        "https://topcoder.com/handle": "alice",
        "https://topcoder.com/roles": "Administrator, copilot",
    })
    assert user.user_id == "1001"
    assert user.actor == "alice"
    assert user.roles == frozenset({"Administrator", "copilot"})
    assert user.has_any_role(["administrator"])
    assert not user.is_machine
    
    machine = build_auth_user({"sub": "svc@clients", "scopes": ["read:client"]})
    assert machine.is_machine
    assert machine.user_id is None
    assert machine.has_any_scope([Scope.READ_CLIENT])
    assert not machine.has_any_scope([Scope.UPDATE_CLIENT])


def test_decode_rejects_foreign_signature():
    token = create_access_token({"userId": "1001"})
    assert decode_access_token(token)["userId"] == "1001"
    
    forged = jwt.encode(
        {"userId": "1001", "iss": settings.valid_issuers[0]}, "not-the-secret", algorithm=settings.auth_algorithm
    )
    assert decode_access_token(forged) is None
