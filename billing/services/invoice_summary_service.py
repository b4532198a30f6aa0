"""
Invoice summary (read-only aggregates over committed invoices).
"""
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, case, and_
from sqlalchemy.exc import SQLAlchemyError

from billing.models import Invoice, InvoiceStatus
from billing.exceptions import InternalError
from billing.services.cache_service import get_cache

logger = logging.getLogger(__name__)

CACHE_MODULE = 'invoices'


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal('0.01'))


def compute_invoice_summary(session, tenant_id: int, today: date = None) -> dict:
    """
    Aggregate a tenant's invoices straight from the database.

    Args:
        session: SQLAlchemy session
        tenant_id: Tenant ID
        today: reference date for overdue (defaults to date.today())

    Returns:
        dict with keys:
            - total_invoices: int
            - total_amount: Decimal
            - paid_amount: Decimal
            - overdue: int (not paid, due_date before today)
    """
    if today is None:
        today = date.today()

    is_paid = Invoice.status == InvoiceStatus.PAID
    is_overdue = and_(
        Invoice.status != InvoiceStatus.PAID,
        Invoice.due_date.isnot(None),
        Invoice.due_date < today
    )

    row = session.query(
        func.count(Invoice.id).label('total_invoices'),
        func.coalesce(func.sum(Invoice.total_amount), 0).label('total_amount'),
        func.coalesce(func.sum(case((is_paid, Invoice.total_amount), else_=0)), 0).label('paid_amount'),
        func.coalesce(func.sum(case((is_overdue, 1), else_=0)), 0).label('overdue')
    ).filter(
        Invoice.tenant_id == tenant_id
    ).one()

    return {
        'total_invoices': int(row.total_invoices or 0),
        'total_amount': _money(row.total_amount),
        'paid_amount': _money(row.paid_amount),
        'overdue': int(row.overdue or 0),
    }


def get_invoice_summary(session, tenant_id: int, today: date = None) -> dict:
    """
    Cached invoice summary for the tenant (see compute_invoice_summary).

    The key carries the tenant's cache generation, read before computing.
    A summary computed before a commit but stored after that commit's
    invalidation lands under the old generation and is never served.
    """
    if today is None:
        today = date.today()

    cache = get_cache()
    generation = cache.generation(tenant_id, CACHE_MODULE)
    try:
        return cache.memoize(
            tenant_id,
            CACHE_MODULE,
            f'summary:g{generation}:{today.isoformat()}',
            lambda: compute_invoice_summary(session, tenant_id, today)
        )
    except SQLAlchemyError as e:
        logger.exception(f"Error computing invoice summary for tenant {tenant_id}")
        raise InternalError() from e


def invalidate_invoice_summary(tenant_id: int) -> None:
    cache = get_cache()
    cache.bump_generation(tenant_id, CACHE_MODULE)
    cache.invalidate_module(tenant_id, CACHE_MODULE)


def is_invoice_overdue(invoice, today: date = None) -> bool:
    """
    Check if an invoice is overdue.

    Args:
        invoice: Invoice instance
        today: Date to use as reference (defaults to date.today())
    """
    if today is None:
        today = date.today()

    return (
        invoice.status != InvoiceStatus.PAID and
        invoice.due_date is not None and
        invoice.due_date < today
    )
