"""
Billing Account database model.

A billing account holds the budget that challenges lock and consume against.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, ForeignKey, Numeric, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from billing_backend.app.db.session import Base
from billing_backend.app.models.enums import AccountStatus


class BillingAccount(Base):
    """
    Billing Account model.
    
    Budget figures are stored as NUMERIC and surface as Decimal.
    Locked / consumed / remaining totals are never stored here; they are
    derived from the ledger tables on every read.
    """
    __tablename__ = "billing_accounts"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # Details
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    status = Column(Enum(AccountStatus), default=AccountStatus.ACTIVE, nullable=False, index=True)
    start_date = Column(DateTime(timezone=True), nullable=True, index=True)
    end_date = Column(DateTime(timezone=True), nullable=True, index=True)
    
    # Financials
    budget = Column(Numeric(20, 2), nullable=False, default=0)
    markup = Column(Numeric(20, 4), nullable=False, default=0)
    sales_tax = Column(Numeric(20, 4), nullable=True)
    
    # Linkage
    client_id = Column(String(64), ForeignKey('clients.id'), nullable=False, index=True)
    project_id = Column(String(64), nullable=True)
    
    # Contract details
    po_number = Column(String(255), nullable=True)
    subscription_number = Column(String(255), nullable=True)
    is_manual_prize = Column(Boolean, default=False, nullable=False)
    payment_terms = Column(String(255), nullable=True)
    billable = Column(Boolean, default=True, nullable=False)
    
    created_by = Column(String(100), nullable=True)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    client = relationship("Client", lazy="joined", innerjoin=True)
    
    def __repr__(self):
        return f"<BillingAccount(id={self.id}, name='{self.name}', budget={self.budget})>"
