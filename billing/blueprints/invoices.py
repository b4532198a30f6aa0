"""Invoices blueprint - JSON API, Multi-Tenant."""
from flask import Blueprint, request, jsonify, g

from billing.database import get_session
from billing.exceptions import ValidationError
from billing.middleware import require_tenant
from billing.services.invoice_service import (
    create_invoice, update_invoice, update_invoice_status, delete_invoice,
    get_invoice, list_invoices, get_invoice_audit_trail
)
from billing.services.invoice_summary_service import get_invoice_summary
from billing.utils.formatters import to_json

invoices_bp = Blueprint('invoices', __name__, url_prefix='/api/invoices')


def _json_body():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload


@invoices_bp.route('', methods=['POST'])
@require_tenant
def create():
    """Create invoice with lines (tenant-scoped)."""
    invoice_id = create_invoice(_json_body(), get_session(), g.tenant_id, g.user_id)
    return jsonify({'message': 'Invoice created successfully', 'invoice_id': invoice_id}), 201


@invoices_bp.route('', methods=['GET'])
@require_tenant
def index():
    """List invoices, newest first. Optional ?status= filter."""
    status = request.args.get('status', '').strip() or None
    invoices = list_invoices(get_session(), g.tenant_id, status=status)
    return jsonify(to_json(invoices))


@invoices_bp.route('/summary', methods=['GET'])
@require_tenant
def summary():
    return jsonify(to_json(get_invoice_summary(get_session(), g.tenant_id)))


@invoices_bp.route('/<int:invoice_id>', methods=['GET'])
@require_tenant
def detail(invoice_id):
    return jsonify(to_json(get_invoice(invoice_id, get_session(), g.tenant_id)))


@invoices_bp.route('/<int:invoice_id>', methods=['PUT'])
@require_tenant
def update(invoice_id):
    """
    Update invoice fields; 'lines' (when given) replaces the line set.

    Fields omitted or null are left unchanged.
    """
    invoice = update_invoice(invoice_id, _json_body(), get_session(), g.tenant_id, g.user_id)
    return jsonify({'message': 'Invoice updated successfully', 'invoice': to_json(invoice)})


@invoices_bp.route('/<int:invoice_id>/status', methods=['PATCH'])
@require_tenant
def change_status(invoice_id):
    payload = _json_body()
    if payload.get('status') is None:
        raise ValidationError('status is required', payload={'field': 'status'})
    invoice = update_invoice_status(invoice_id, payload['status'], get_session(), g.tenant_id, g.user_id)
    return jsonify({'message': 'Invoice status updated successfully', 'invoice': to_json(invoice)})


@invoices_bp.route('/<int:invoice_id>', methods=['DELETE'])
@require_tenant
def delete(invoice_id):
    """Delete invoice and return its quantities to stock."""
    result = delete_invoice(invoice_id, get_session(), g.tenant_id, g.user_id)
    result['message'] = 'Invoice deleted successfully'
    return jsonify(to_json(result))


@invoices_bp.route('/<int:invoice_id>/audit', methods=['GET'])
@require_tenant
def audit_trail(invoice_id):
    """Audit entries of the invoice, newest first. Optional ?limit= and ?offset=."""
    entries = get_invoice_audit_trail(
        invoice_id,
        get_session(),
        g.tenant_id,
        limit=request.args.get('limit', 100, type=int),
        offset=request.args.get('offset', 0, type=int)
    )
    return jsonify(to_json(entries))
