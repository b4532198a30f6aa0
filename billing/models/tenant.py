"""Tenant model - each company using the ledger."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from billing.database import Base, BigIntId


class Tenant(Base):
    """Tenant (company). Every catalog and invoice row hangs off one."""

    __tablename__ = 'company'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Tenant(id={self.id}, name='{self.name}')>"
