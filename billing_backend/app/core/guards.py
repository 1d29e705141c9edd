"""
Security guards for role- and scope-based access control.
"""

from typing import Iterable
from fastapi import Depends
from billing_backend.app.core.dependencies import AuthUser, get_current_user
from billing_backend.app.core.exceptions import InsufficientPermissionsError
from billing_backend.app.core.permissions import Scope


def require_access(roles: Iterable[str] = (), scopes: Iterable[Scope] = ()):
    """
    Dependency factory for endpoint authorization.
    
    A caller passes when it holds any of ``roles`` (user tokens) or any of
    ``scopes`` (machine tokens).
    
    Usage:
        @router.get("/billing-accounts")
        async def list_accounts(
            user: AuthUser = Depends(require_access([ADMIN_ROLE], [Scope.READ_BA, Scope.ALL_BA]))
        ):
            ...
    
    Raises:
        InsufficientPermissionsError: 403 when neither check passes
    """
    allowed_roles = tuple(roles)
    allowed_scopes = tuple(scopes)
    
    async def access_checker(current_user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if allowed_roles and current_user.has_any_role(allowed_roles):
            return current_user
        if allowed_scopes and current_user.has_any_scope(allowed_scopes):
            return current_user
        raise InsufficientPermissionsError(
            "Insufficient role or scope",
            details={
                "required_roles": list(allowed_roles),
                "required_scopes": [scope.value for scope in allowed_scopes],
            },
        )
    
    return access_checker
