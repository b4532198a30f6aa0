"""
Audit trail for invoice mutations.

Entries are added to the caller's session, so they commit or roll back with
the mutation they describe.
"""
import json
import logging

from billing.models import AuditLog, AuditAction

logger = logging.getLogger(__name__)


def record_invoice_event(
    session,
    tenant_id: int,
    user_id: int,
    action: AuditAction,
    invoice_id: int,
    details: dict = None
) -> AuditLog:
    """
    Add an audit entry for an invoice.

    Args:
        session: Database session (caller commits)
        tenant_id: Tenant ID
        user_id: Acting user from the auth context, may be None for CLI/system calls
        action: AuditAction enum value
        invoice_id: ID of the affected invoice
        details: extra context, JSON encoded (non-JSON values are stringified)
    """
    entry = AuditLog(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        resource_type='invoice',
        resource_id=invoice_id,
        details=json.dumps(details, default=str) if details else None
    )
    session.add(entry)
    logger.info(f"Audit: {action.value} by user {user_id} on invoice {invoice_id} (tenant {tenant_id})")
    return entry


def get_audit_logs(
    session,
    tenant_id: int,
    limit: int = 100,
    offset: int = 0,
    action_filter: AuditAction = None,
    resource_id_filter: int = None
):
    """
    Retrieve audit logs for a tenant, newest first.

    Returns:
        List of AuditLog objects
    """
    query = session.query(AuditLog).filter(AuditLog.tenant_id == tenant_id)

    if action_filter:
        query = query.filter(AuditLog.action == action_filter)

    if resource_id_filter:
        query = query.filter(AuditLog.resource_id == resource_id_filter)

    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).offset(offset).all()


def serialize_audit_entry(entry: AuditLog) -> dict:
    return {
        'id': entry.id,
        'action': entry.action.value,
        'user_id': entry.user_id,
        'details': json.loads(entry.details) if entry.details else None,
        'created_at': entry.created_at,
    }
