"""
Budget ledger schemas (lock / consume).
"""

from pydantic import Field
from datetime import datetime
from billing_backend.app.schemas.common import CamelModel, Money


class LockAmountRequest(CamelModel):
    """Reserve funds for a challenge. An amount of 0 releases the lock."""
    challenge_id: str = Field(..., min_length=1, max_length=64, examples=["12345abcde"])
    amount: Money = Field(..., examples=[1500])


class ConsumeAmountRequest(CamelModel):
    """Record the final spend for a challenge."""
    challenge_id: str = Field(..., min_length=1, max_length=64, examples=["12345abcde"])
    amount: Money = Field(..., examples=[1500])


class LedgerEntryResponse(CamelModel):
    """A locked or consumed row."""
    id: int
    billing_account_id: int
    challenge_id: str
    amount: Money
    created_at: datetime
    updated_at: datetime


class UnlockResponse(CamelModel):
    """Returned when a lock of zero released the reservation."""
    unlocked: bool = True
