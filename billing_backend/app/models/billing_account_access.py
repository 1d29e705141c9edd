"""
Billing Account Access database model.

Membership of a user in a billing account.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from billing_backend.app.db.session import Base


class BillingAccountAccess(Base):
    """Presence-only grant; one row per (billing account, user)."""
    __tablename__ = "billing_account_access"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    billing_account_id = Column(Integer, ForeignKey('billing_accounts.id'), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    __table_args__ = (
        UniqueConstraint('billing_account_id', 'user_id', name='ba_access_unique'),
    )
    
    def __repr__(self):
        return f"<BillingAccountAccess(billing_account_id={self.billing_account_id}, user_id='{self.user_id}')>"
