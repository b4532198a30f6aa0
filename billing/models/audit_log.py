"""
Audit Log model for tracking invoice mutations.
"""
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from billing.database import Base, BigIntId


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_UPDATED = "INVOICE_UPDATED"
    INVOICE_STATUS_CHANGED = "INVOICE_STATUS_CHANGED"
    INVOICE_DELETED = "INVOICE_DELETED"


class AuditLog(Base):
    """
    Audit log for tracking user actions.
    Multi-tenant: filtered by tenant_id.
    """
    __tablename__ = 'audit_log'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('company.id', ondelete='CASCADE'), nullable=False, index=True)
    # Users live with the auth collaborator, so no foreign key here
    user_id = Column(BigInteger, nullable=True)
    action = Column(SQLEnum(AuditAction, name='audit_action'), nullable=False, index=True)
    resource_type = Column(String(50))
    resource_id = Column(BigInteger)
    details = Column(Text)  # JSON encoded
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    # Relationships
    tenant = relationship('Tenant')

    def __repr__(self):
        return f"<AuditLog {self.action.value} by user {self.user_id} on {self.resource_type} {self.resource_id}>"
