"""Party model (customers and suppliers)."""
from sqlalchemy import Column, BigInteger, String, Text, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from billing.database import Base, BigIntId
import enum


class PartyKind(enum.Enum):
    """Party kind enum."""
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class Party(Base):
    """Party (customer or supplier) referenced by invoices."""

    __tablename__ = 'party'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('company.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    kind = Column(Enum(PartyKind, name='party_type'), nullable=False)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    billing_address = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    tenant = relationship('Tenant')
    invoices = relationship('Invoice', back_populates='party')

    def __repr__(self):
        return f"<Party(id={self.id}, name='{self.name}', kind={self.kind.value})>"
