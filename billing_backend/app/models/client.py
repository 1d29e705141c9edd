"""
Client database model.

A client owns one or more billing accounts.
"""

import uuid

from sqlalchemy import Column, String, DateTime, Enum
from sqlalchemy.sql import func
from billing_backend.app.db.session import Base
from billing_backend.app.models.enums import AccountStatus


def _new_client_id() -> str:
    return str(uuid.uuid4())


class Client(Base):
    """
    Client model.
    
    Legacy clients keep their numeric identifiers as strings; new clients get a UUID.
    """
    __tablename__ = "clients"
    
    id = Column(String(64), primary_key=True, default=_new_client_id)
    
    name = Column(String(255), nullable=False)
    code_name = Column(String(255), nullable=True)
    status = Column(Enum(AccountStatus), default=AccountStatus.ACTIVE, nullable=False, index=True)
    
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Client(id={self.id!r}, name='{self.name}', status='{self.status.value}')>"
