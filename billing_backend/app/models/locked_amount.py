"""
Locked Amount database model.

Funds reserved against a billing account for one challenge.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from billing_backend.app.db.session import Base


class LockedAmount(Base):
    """
    Locked Amount model.
    
    At most one row per (billing account, challenge), enforced by a unique
    constraint. A lock of zero is represented by the absence of a row.
    """
    __tablename__ = "locked_amounts"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    billing_account_id = Column(Integer, ForeignKey('billing_accounts.id'), nullable=False, index=True)
    challenge_id = Column(String(64), nullable=False)
    
    amount = Column(Numeric(20, 2), nullable=False)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    __table_args__ = (
        UniqueConstraint('billing_account_id', 'challenge_id', name='locked_unique_challenge'),
    )
    
    def __repr__(self):
        return f"<LockedAmount(billing_account_id={self.billing_account_id}, challenge_id='{self.challenge_id}', amount={self.amount})>"
