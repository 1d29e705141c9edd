"""
Authentication dependencies for FastAPI.

Tokens come in two shapes: user JWTs carrying roles, and machine-to-machine
tokens carrying scopes. Both are normalised exactly once here into an
immutable AuthUser; guards only ever look at its sets.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from billing_backend.app.core.exceptions import AuthenticationError
from billing_backend.app.core.jwt import decode_access_token

# HTTP Bearer security scheme (missing header handled below as a 401)
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    """Caller identity and permissions resolved from a verified token."""
    user_id: Optional[str]
    handle: Optional[str]
    roles: FrozenSet[str]
    scopes: FrozenSet[str]
    is_machine: bool = False
    
    @property
    def actor(self) -> Optional[str]:
        """Name recorded as creator of new records."""
        return self.handle or self.user_id
    
    def has_any_role(self, roles) -> bool:
        wanted = {role.lower() for role in roles}
        return any(role.lower() in wanted for role in self.roles)
    
    def has_any_scope(self, scopes) -> bool:
        return any(getattr(scope, "value", scope) in self.scopes for scope in scopes)


def _claim(payload: Dict[str, Any], name: str) -> Any:
    """Read a claim that may be namespaced (e.g. "https://topcoder.com/roles")."""
    if name in payload:
        return payload[name]
    for key, value in payload.items():
        if isinstance(key, str) and key.endswith(f"/{name}"):
            return value
    return None


def _split(value: Any, separator: str) -> FrozenSet[str]:
    if value is None:
        return frozenset()
    if isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        items = str(value).split(separator)
    return frozenset(str(item).strip() for item in items if str(item).strip())


def build_auth_user(payload: Dict[str, Any]) -> AuthUser:
    """
    Normalise token claims.
    
    - roles: list, comma-separated string, or singular "role"
    - scopes: "scopes" list or space-delimited "scope" string
    """
    roles = _claim(payload, "roles")
    if roles is None:
        roles = _claim(payload, "role")
    scopes = payload.get("scopes")
    if scopes is None:
        scopes = payload.get("scope")
    
    user_id = _claim(payload, "userId")
    handle = _claim(payload, "handle")
    is_machine = user_id is None and scopes is not None
    if user_id is None and not is_machine:
        user_id = payload.get("sub")
    
    return AuthUser(
        user_id=str(user_id) if user_id is not None else None,
        handle=str(handle) if handle is not None else None,
        roles=_split(roles, ","),
        scopes=_split(scopes, " "),
        is_machine=is_machine,
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthUser:
    """
    FastAPI dependency for JWT authentication.
    
    Raises:
        AuthenticationError: 401 if the token is missing, invalid or expired
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token")
    
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")
    
    return build_auth_user(payload)
