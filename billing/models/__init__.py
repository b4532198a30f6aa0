"""Models package - exports all SQLAlchemy models."""
from billing.models.tenant import Tenant
from billing.models.item import Item
from billing.models.party import Party, PartyKind
from billing.models.invoice import Invoice, InvoiceStatus
from billing.models.invoice_line import InvoiceLine
from billing.models.audit_log import AuditLog, AuditAction

__all__ = [
    'Tenant',
    'Item', 'Party', 'PartyKind',
    'Invoice', 'InvoiceStatus', 'InvoiceLine',
    'AuditLog', 'AuditAction',
]
