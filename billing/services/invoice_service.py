"""
Invoice service with transactional logic - Multi-Tenant.

Creates, updates and deletes invoices while keeping item stock, line totals
and invoice totals consistent. Every mutation is one unit of work: it either
commits completely or leaves no trace (no invoice, no lines, no stock change).
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from billing.models import Invoice, InvoiceLine, InvoiceStatus, Item, Party, AuditAction
from billing.exceptions import (
    ValidationError, InvalidStatusError, InvoiceNotFoundError,
    DuplicateInvoiceNumberError, InsufficientStockError, InternalError
)
from billing.services.catalog_service import lookup_items, lookup_party
from billing.services.line_reconciler import ExistingLine, LinePlan, coerce_id, normalize_lines, reconcile
from billing.services.stock_ledger import apply_stock_deltas
from billing.services.unit_of_work import Stage, unit_of_work
from billing.services.audit_service import record_invoice_event, get_audit_logs, serialize_audit_entry
from billing.services.invoice_summary_service import invalidate_invoice_summary, is_invoice_overdue

logger = logging.getLogger(__name__)

INVOICE_NUMBER_MAX_LENGTH = 50
AUDIT_PAGE_MAX = 500
STATUS_VALUES = tuple(status.value for status in InvoiceStatus)


# =====================================================
# PAYLOAD PARSING
# =====================================================

def parse_status(value: Any) -> InvoiceStatus:
    """Map 'draft' / 'sent' / 'paid' / 'cancelled' (any case) to InvoiceStatus."""
    if isinstance(value, InvoiceStatus):
        return value
    if isinstance(value, str):
        try:
            return InvoiceStatus(value.strip().lower())
        except ValueError:
            pass
    raise InvalidStatusError(value, STATUS_VALUES)


def _parse_date(value: Any, field_name: str) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            pass
    raise ValidationError(f'{field_name} must be an ISO date (YYYY-MM-DD)', payload={'field': field_name})


def _clean_invoice_number(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError('invoice_number is required', payload={'field': 'invoice_number'})
    number = str(value).strip()
    if not number:
        raise ValidationError('invoice_number is required', payload={'field': 'invoice_number'})
    if len(number) > INVOICE_NUMBER_MAX_LENGTH:
        raise ValidationError(
            f'invoice_number must be at most {INVOICE_NUMBER_MAX_LENGTH} characters',
            payload={'field': 'invoice_number'}
        )
    return number


def _raw_lines(payload: dict) -> Optional[Any]:
    """Line list from the payload ('lines', or the legacy 'items'); None when omitted."""
    if payload.get('lines') is not None:
        return payload['lines']
    return payload.get('items')


# =====================================================
# MUTATIONS
# =====================================================

def create_invoice(payload: dict, session, tenant_id: int, user_id: int = None) -> int:
    """
    Create an invoice with its lines and take the stock (tenant-scoped).

    Args:
        payload: Dictionary with:
            - party_id: int (REQUIRED, must belong to tenant)
            - invoice_number: str (REQUIRED, unique per tenant)
            - lines: list of {item_id, quantity} (REQUIRED, may be empty)
            - invoice_date: date | ISO str | None (defaults to today)
            - due_date: date | ISO str | None
            - status: 'draft' | 'sent' | 'paid' | 'cancelled' | None (defaults to draft)
        session: SQLAlchemy session
        tenant_id: Tenant ID from the auth context
        user_id: Acting user, recorded in the audit trail

    Returns:
        invoice_id: ID of created invoice

    Raises:
        PartyNotFoundError, DuplicateInvoiceNumberError, ValidationError,
        InvalidLineQuantityError, DuplicateLineItemError, ItemNotFoundError,
        InsufficientStockError
    """
    if not tenant_id:
        raise ValidationError('tenant_id is required')

    with unit_of_work(session, 'create_invoice', tenant_id) as uow:
        # Step 1: Party and invoice number belong to / are free in the tenant
        uow.advance(Stage.VALIDATE_TENANT_OWNERSHIP)
        party = lookup_party(session, tenant_id, coerce_id(payload.get('party_id'), 'party_id'))

        invoice_number = _clean_invoice_number(payload.get('invoice_number'))
        uow.invoice_number = invoice_number
        _ensure_invoice_number_free(session, tenant_id, invoice_number)

        status = InvoiceStatus.DRAFT
        if payload.get('status') is not None:
            status = parse_status(payload['status'])
        due_date = _parse_date(payload.get('due_date'), 'due_date')
        invoice_date = _parse_date(payload.get('invoice_date'), 'invoice_date') or date.today()

        # Step 2: Lines are well formed before anything is written
        uow.advance(Stage.VALIDATE_LINES)
        raw_lines = _raw_lines(payload)
        if raw_lines is None:
            raise ValidationError('lines is required', payload={'field': 'lines'})
        desired = normalize_lines(raw_lines)

        # Step 3: Invoice row, total starts at zero
        invoice = Invoice(
            tenant_id=tenant_id,
            party_id=party.id,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            due_date=due_date,
            total_amount=Decimal('0.00'),
            status=status
        )
        session.add(invoice)
        session.flush()  # Get invoice.id
        uow.invoice_id = invoice.id

        # Steps 4-7: Reconcile against an empty line set
        plan = _apply_lines(session, uow, invoice, desired, stored_lines={})

        record_invoice_event(session, tenant_id, user_id, AuditAction.INVOICE_CREATED, invoice.id, {
            'invoice_number': invoice_number,
            'total_amount': invoice.total_amount,
            'lines': [{'item_id': u.item_id, 'quantity': u.quantity} for u in plan.upserts],
        })
        uow.after_commit(lambda: invalidate_invoice_summary(tenant_id))

    return uow.invoice_id


def update_invoice(invoice_id: int, payload: dict, session, tenant_id: int, user_id: int = None) -> dict:
    """
    Update invoice fields and, optionally, replace its line set (tenant-scoped).

    Only fields present and not null in the payload are written. When
    'lines' is a list (possibly empty), the stored lines are reconciled to it:
    stock moves by the per-item difference, surviving lines keep their
    original price_at_purchase, and total_amount is re-summed from the
    stored lines. Without 'lines', lines and total are untouched.

    Args:
        invoice_id: Invoice to update
        payload: Dictionary with optional party_id, due_date, status, lines
        session: SQLAlchemy session
        tenant_id: Tenant ID (REQUIRED for multi-tenant enforcement)
        user_id: Acting user, recorded in the audit trail

    Returns:
        The updated invoice as returned by get_invoice

    Raises:
        InvoiceNotFoundError, PartyNotFoundError, InvalidStatusError,
        ValidationError, InvalidLineQuantityError, DuplicateLineItemError,
        ItemNotFoundError, InsufficientStockError
    """
    with unit_of_work(session, 'update_invoice', tenant_id) as uow:
        uow.invoice_id = invoice_id

        # Step 1: Lock invoice and validate tenant
        uow.advance(Stage.VALIDATE_TENANT_OWNERSHIP)
        invoice = _get_owned_invoice(session, tenant_id, invoice_id, lock=True)
        uow.invoice_number = invoice.invoice_number
        changes = {}

        if payload.get('party_id') is not None:
            party = lookup_party(session, tenant_id, coerce_id(payload['party_id'], 'party_id'))
            if party.id != invoice.party_id:
                changes['party_id'] = party.id
                invoice.party_id = party.id

        if payload.get('due_date') is not None:
            due_date = _parse_date(payload['due_date'], 'due_date')
            if due_date != invoice.due_date:
                changes['due_date'] = due_date
                invoice.due_date = due_date

        if payload.get('status') is not None:
            status = parse_status(payload['status'])
            if status != invoice.status:
                changes['status'] = status.value
                invoice.status = status

        # Step 2: Line set, only when provided
        raw_lines = _raw_lines(payload)
        if raw_lines is not None:
            uow.advance(Stage.VALIDATE_LINES)
            desired = normalize_lines(raw_lines)

            stored_lines = {
                line.item_id: line
                for line in session.query(InvoiceLine).filter(
                    InvoiceLine.invoice_id == invoice.id
                ).all()
            }
            previous_total = invoice.total_amount
            plan = _apply_lines(session, uow, invoice, desired, stored_lines)
            changes['lines'] = {
                'stock_deltas': plan.stock_deltas,
                'deleted_items': plan.deletes,
                'previous_total': previous_total,
                'total_amount': invoice.total_amount,
            }

        invoice.updated_at = func.now()
        record_invoice_event(session, tenant_id, user_id, AuditAction.INVOICE_UPDATED, invoice.id, changes)
        uow.after_commit(lambda: invalidate_invoice_summary(tenant_id))

    return get_invoice(invoice_id, session, tenant_id)


def update_invoice_status(invoice_id: int, status: Any, session, tenant_id: int, user_id: int = None) -> dict:
    """
    Set the invoice status. No line or stock interaction.

    Setting the status the invoice already has is a no-op (no audit entry,
    updated_at unchanged).

    Raises:
        InvalidStatusError: status not one of draft/sent/paid/cancelled
        InvoiceNotFoundError: invoice missing or owned by another tenant
    """
    new_status = parse_status(status)

    with unit_of_work(session, 'update_invoice_status', tenant_id) as uow:
        uow.invoice_id = invoice_id
        uow.advance(Stage.VALIDATE_TENANT_OWNERSHIP)
        invoice = _get_owned_invoice(session, tenant_id, invoice_id, lock=True)

        previous_status = invoice.status
        if previous_status != new_status:
            invoice.status = new_status
            invoice.updated_at = func.now()
            record_invoice_event(session, tenant_id, user_id, AuditAction.INVOICE_STATUS_CHANGED, invoice.id, {
                'from': previous_status.value,
                'to': new_status.value,
            })
            uow.after_commit(lambda: invalidate_invoice_summary(tenant_id))

    return get_invoice(invoice_id, session, tenant_id)


def delete_invoice(invoice_id: int, session, tenant_id: int, user_id: int = None) -> dict:
    """
    Delete an invoice, returning every line's quantity to stock first.

    Steps:
    1. Lock invoice and validate tenant
    2. Read its lines
    3. Lock the line items, then return each quantity through the stock ledger
    4. Delete lines, then the invoice
    5. Commit

    Returns:
        dict with invoice_id and the restored quantities per item

    Raises:
        InvoiceNotFoundError: invoice missing or owned by another tenant
    """
    with unit_of_work(session, 'delete_invoice', tenant_id) as uow:
        uow.invoice_id = invoice_id

        # Step 1: Lock invoice and validate tenant
        uow.advance(Stage.VALIDATE_TENANT_OWNERSHIP)
        invoice = _get_owned_invoice(session, tenant_id, invoice_id, lock=True)
        uow.invoice_number = invoice.invoice_number

        # Step 2: Lines before deletion
        lines = session.query(InvoiceLine).filter(
            InvoiceLine.invoice_id == invoice.id
        ).all()

        # Step 3: Lock the line items in ascending order, then return the stock
        uow.advance(Stage.COMPUTE_DELTAS)
        restored = {line.item_id: line.quantity for line in lines}
        lookup_items(session, tenant_id, restored, lock=True)

        uow.advance(Stage.APPLY_STOCK_DELTAS)
        apply_stock_deltas(session, tenant_id, restored)

        # Step 4: Lines first, then the invoice
        uow.advance(Stage.PERSIST_LINES)
        for line in lines:
            session.delete(line)
        session.flush()
        session.delete(invoice)

        record_invoice_event(session, tenant_id, user_id, AuditAction.INVOICE_DELETED, invoice_id, {
            'invoice_number': invoice.invoice_number,
            'restored': restored,
        })
        uow.after_commit(lambda: invalidate_invoice_summary(tenant_id))

    return {
        'invoice_id': invoice_id,
        'restored': [
            {'item_id': item_id, 'quantity': quantity}
            for item_id, quantity in sorted(restored.items())
        ],
    }


# =====================================================
# READS
# =====================================================

def get_invoice(invoice_id: int, session, tenant_id: int) -> dict:
    """
    Invoice detail with its lines (tenant-scoped).

    Raises:
        InvoiceNotFoundError, InternalError
    """
    try:
        invoice = _get_owned_invoice(session, tenant_id, invoice_id)
        rows = session.query(InvoiceLine, Item.name).join(
            Item, Item.id == InvoiceLine.item_id
        ).filter(
            InvoiceLine.invoice_id == invoice.id
        ).order_by(InvoiceLine.id).all()
    except SQLAlchemyError as e:
        logger.exception(f"Error loading invoice {invoice_id} for tenant {tenant_id}")
        raise InternalError() from e

    data = serialize_invoice(invoice)
    data['lines'] = [
        {
            'id': line.id,
            'item_id': line.item_id,
            'item_name': item_name,
            'quantity': line.quantity,
            'price_at_purchase': Decimal(str(line.price_at_purchase)),
            'total_line_amount': Decimal(str(line.total_line_amount)),
        }
        for line, item_name in rows
    ]
    return data


def list_invoices(session, tenant_id: int, status: Any = None) -> List[dict]:
    """
    All invoices of the tenant, newest first, with the party name.

    Args:
        session: SQLAlchemy session
        tenant_id: Tenant ID
        status: optional status filter

    Raises:
        InvalidStatusError, InternalError
    """
    try:
        query = session.query(Invoice, Party.name).join(
            Party, Party.id == Invoice.party_id
        ).filter(
            Invoice.tenant_id == tenant_id
        )
        if status:
            query = query.filter(Invoice.status == parse_status(status))
        rows = query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()
    except SQLAlchemyError as e:
        logger.exception(f"Error listing invoices for tenant {tenant_id}")
        raise InternalError() from e

    today = date.today()
    result = []
    for invoice, party_name in rows:
        data = serialize_invoice(invoice, today)
        data['party_name'] = party_name
        result.append(data)
    return result


def get_invoice_audit_trail(invoice_id: int, session, tenant_id: int, limit: int = 100, offset: int = 0) -> List[dict]:
    """
    Audit entries of one of the tenant's invoices, newest first.

    Raises:
        InvoiceNotFoundError, ValidationError, InternalError
    """
    if limit < 1 or limit > AUDIT_PAGE_MAX or offset < 0:
        raise ValidationError(f'limit must be 1-{AUDIT_PAGE_MAX} and offset non-negative')

    try:
        invoice = _get_owned_invoice(session, tenant_id, invoice_id)
        entries = get_audit_logs(session, tenant_id, limit=limit, offset=offset, resource_id_filter=invoice.id)
    except SQLAlchemyError as e:
        logger.exception(f"Error loading audit trail of invoice {invoice_id} for tenant {tenant_id}")
        raise InternalError() from e
    return [serialize_audit_entry(entry) for entry in entries]


def find_total_mismatches(session, tenant_id: int = None) -> List[dict]:
    """
    Invoices whose stored total differs from the sum of their stored lines.

    Args:
        session: SQLAlchemy session
        tenant_id: restrict to one tenant (all tenants when None)

    Returns:
        list of {invoice_id, tenant_id, invoice_number, stored, computed}
    """
    line_sums = session.query(
        InvoiceLine.invoice_id.label('invoice_id'),
        func.sum(InvoiceLine.total_line_amount).label('line_total')
    ).group_by(InvoiceLine.invoice_id).subquery()

    query = session.query(
        Invoice.id, Invoice.tenant_id, Invoice.invoice_number, Invoice.total_amount,
        func.coalesce(line_sums.c.line_total, 0)
    ).outerjoin(line_sums, line_sums.c.invoice_id == Invoice.id)
    if tenant_id is not None:
        query = query.filter(Invoice.tenant_id == tenant_id)

    mismatches = []
    for inv_id, inv_tenant, number, stored, computed in query.order_by(Invoice.id).all():
        stored = _money(stored)
        computed = _money(computed)
        if stored != computed:
            mismatches.append({
                'invoice_id': inv_id,
                'tenant_id': inv_tenant,
                'invoice_number': number,
                'stored': stored,
                'computed': computed,
            })
    return mismatches


def serialize_invoice(invoice: Invoice, today: date = None) -> dict:
    return {
        'id': invoice.id,
        'tenant_id': invoice.tenant_id,
        'party_id': invoice.party_id,
        'invoice_number': invoice.invoice_number,
        'invoice_date': invoice.invoice_date,
        'due_date': invoice.due_date,
        'total_amount': _money(invoice.total_amount),
        'status': invoice.status.value,
        'is_overdue': is_invoice_overdue(invoice, today),
        'created_at': invoice.created_at,
        'updated_at': invoice.updated_at,
    }


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal('0.01'))


def _get_owned_invoice(session, tenant_id: int, invoice_id: Any, lock: bool = False) -> Invoice:
    """Invoice scoped by tenant, optionally locked FOR UPDATE."""
    try:
        invoice_id = int(invoice_id)
    except (TypeError, ValueError):
        raise InvoiceNotFoundError(invoice_id)

    query = session.query(Invoice).filter(
        Invoice.id == invoice_id,
        Invoice.tenant_id == tenant_id
    )
    if lock:
        query = query.with_for_update()
    invoice = query.first()
    if invoice is None:
        raise InvoiceNotFoundError(invoice_id)
    return invoice


def _ensure_invoice_number_free(session, tenant_id: int, invoice_number: str) -> None:
    """Explicit check for a clear error; the unique constraint still backs it."""
    existing = session.query(Invoice.id).filter(
        Invoice.tenant_id == tenant_id,
        Invoice.invoice_number == invoice_number
    ).first()
    if existing:
        raise DuplicateInvoiceNumberError(invoice_number)


def _sum_stored_lines(session, invoice_id: int) -> Decimal:
    total = session.query(
        func.coalesce(func.sum(InvoiceLine.total_line_amount), 0)
    ).filter(
        InvoiceLine.invoice_id == invoice_id
    ).scalar()
    return _money(total)


def _apply_lines(session, uow, invoice: Invoice, desired, stored_lines: Dict[int, InvoiceLine]) -> LinePlan:
    """
    Reconcile the stored lines to the desired ones and persist the result.

    Drives stages COMPUTE_DELTAS through RECOMPUTE_TOTAL of the caller's
    unit of work. Leaves invoice.total_amount equal to the sum of the
    stored lines after the flush.
    """
    tenant_id = invoice.tenant_id

    # Step 4: Lock every item the plan can touch (kept, added or removed) in
    # one ascending pass before any stock write, then build the delta plan
    uow.advance(Stage.COMPUTE_DELTAS)
    touched = {line.item_id for line in desired} | set(stored_lines)
    snapshots = lookup_items(session, tenant_id, touched, lock=True)
    existing = {
        item_id: ExistingLine(quantity=line.quantity, price_at_purchase=Decimal(str(line.price_at_purchase)))
        for item_id, line in stored_lines.items()
    }
    plan = reconcile(existing, desired, {item_id: snap.price for item_id, snap in snapshots.items()})

    # Descriptive pre-check; the ledger's conditional update is the real guard
    for item_id, required in sorted(plan.consumption.items()):
        snapshot = snapshots[item_id]
        if snapshot.stock_quantity < required:
            raise InsufficientStockError(snapshot.name, required, snapshot.stock_quantity)

    # Step 5: Stock
    uow.advance(Stage.APPLY_STOCK_DELTAS)
    apply_stock_deltas(session, tenant_id, plan.stock_deltas)

    # Step 6: Lines
    uow.advance(Stage.PERSIST_LINES)
    for upsert in plan.upserts:
        line = stored_lines.get(upsert.item_id)
        if line is None:
            session.add(InvoiceLine(
                invoice_id=invoice.id,
                item_id=upsert.item_id,
                quantity=upsert.quantity,
                price_at_purchase=upsert.price_at_purchase,
                total_line_amount=upsert.total_line_amount
            ))
        elif upsert.quantity_delta:
            line.quantity = upsert.quantity
            line.total_line_amount = upsert.total_line_amount
    for item_id in plan.deletes:
        session.delete(stored_lines[item_id])
    session.flush()

    # Step 7: Total from what is stored, not from the plan
    uow.advance(Stage.RECOMPUTE_TOTAL)
    invoice.total_amount = _sum_stored_lines(session, invoice.id)
    session.flush()

    logger.info(
        f"Invoice {invoice.id} lines reconciled (tenant {tenant_id}): "
        f"{len(plan.upserts)} kept/added, {len(plan.deletes)} removed, total={invoice.total_amount}"
    )
    return plan
