"""Invoice model."""
from datetime import date
from sqlalchemy import (
    Column, BigInteger, String, Date, Numeric, DateTime, Enum, ForeignKey,
    CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from billing.database import Base, BigIntId
import enum


class InvoiceStatus(enum.Enum):
    """Invoice lifecycle status. Transitions carry no stock side effects."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


class Invoice(Base):
    """Invoice issued by a tenant to a party."""

    __tablename__ = 'invoice'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'invoice_number', name='uq_invoice_tenant_number'),
        CheckConstraint('total_amount >= 0', name='ck_invoice_total_non_negative'),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('company.id', ondelete='CASCADE'), nullable=False, index=True)
    party_id = Column(BigInteger, ForeignKey('party.id', ondelete='RESTRICT'), nullable=False)
    invoice_number = Column(String(50), nullable=False)
    invoice_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=True)
    # Derived from the stored lines; only the invoice service writes it
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(Enum(InvoiceStatus, name='invoice_status'), nullable=False, default=InvoiceStatus.DRAFT)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    tenant = relationship('Tenant')
    party = relationship('Party', back_populates='invoices')
    lines = relationship('InvoiceLine', back_populates='invoice', cascade='all', order_by='InvoiceLine.id')

    def __repr__(self):
        return f"<Invoice(id={self.id}, invoice_number='{self.invoice_number}', status={self.status.value})>"
