"""
Access grant schemas.
"""

from pydantic import Field, model_validator
from datetime import datetime
from typing import Any
from billing_backend.app.schemas.common import CamelModel


class AddUserRequest(CamelModel):
    """
    Grant a user access to a billing account.
    
    Accepts both ``{"userId": "..."}`` and the wrapped
    ``{"param": {"userId": "..."}}`` body sent by older clients.
    """
    user_id: str = Field(..., min_length=1, max_length=64)
    
    @model_validator(mode="before")
    @classmethod
    def unwrap_param(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("param"), dict):
            return data["param"]
        return data


class AccessGrantResponse(CamelModel):
    """Schema for an access grant."""
    billing_account_id: int
    user_id: str
    created_at: datetime


class BillingAccountUserResponse(CamelModel):
    """A user assigned to a billing account, with a resolved display handle."""
    id: int
    user_id: str
    name: str
    status: str = "active"
