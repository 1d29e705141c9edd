"""
Consumed Amount database model.

Finalized spend of a challenge against a billing account.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from billing_backend.app.db.session import Base


class ConsumedAmount(Base):
    """
    Consumed Amount model.
    
    Terminal ledger state: once a challenge has a consumed row, no new lock
    may be placed for it on the same billing account.
    """
    __tablename__ = "consumed_amounts"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    billing_account_id = Column(Integer, ForeignKey('billing_accounts.id'), nullable=False, index=True)
    challenge_id = Column(String(64), nullable=False)
    
    amount = Column(Numeric(20, 2), nullable=False)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    __table_args__ = (
        UniqueConstraint('billing_account_id', 'challenge_id', name='consumed_unique_challenge'),
    )
    
    def __repr__(self):
        return f"<ConsumedAmount(billing_account_id={self.billing_account_id}, challenge_id='{self.challenge_id}', amount={self.amount})>"
