"""Custom exceptions for the billing ledger."""


class BillingError(Exception):
    """Base exception for all application errors."""
    code = 'internal_error'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['code'] = self.code
        rv['status'] = 'error'
        return rv


class ValidationError(BillingError):
    """Raised for missing fields or malformed values in a request."""
    code = 'validation_error'

    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class InvalidLineQuantityError(ValidationError):
    """A line quantity is missing, not an integer, or not positive."""
    code = 'invalid_line_quantity'

    def __init__(self, item_id, quantity):
        super().__init__(
            f'Quantity must be a positive integer for item {item_id} (got {quantity!r})',
            payload={'item_id': item_id}
        )


class DuplicateLineItemError(ValidationError):
    """The same item appears twice in one desired line list."""
    code = 'duplicate_line_item'

    def __init__(self, item_id):
        super().__init__(
            f'Item {item_id} appears more than once in the line list',
            payload={'item_id': item_id}
        )


class InvalidStatusError(ValidationError):
    code = 'invalid_status'

    def __init__(self, status, allowed):
        super().__init__(
            f'Invalid status value {status!r}. Allowed: {", ".join(allowed)}',
            payload={'allowed': list(allowed)}
        )


class NotFoundError(BillingError):
    """Exception raised when a resource is not found."""
    code = 'not_found'

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InvoiceNotFoundError(NotFoundError):
    code = 'invoice_not_found'

    def __init__(self, invoice_id):
        super().__init__(f'Invoice {invoice_id} not found', payload={'invoice_id': invoice_id})


class PartyNotFoundError(NotFoundError):
    code = 'party_not_found'

    def __init__(self, party_id):
        super().__init__(f'Party {party_id} not found', payload={'party_id': party_id})


class ItemNotFoundError(NotFoundError):
    code = 'item_not_found'

    def __init__(self, item_id):
        super().__init__(f'Item not found: {item_id}', payload={'item_id': item_id})


class DuplicateInvoiceNumberError(BillingError):
    """Raised when the tenant already has an invoice with this number."""
    code = 'duplicate_invoice_number'

    def __init__(self, invoice_number):
        super().__init__(
            f'Invoice number "{invoice_number}" is already in use',
            409,
            payload={'invoice_number': invoice_number}
        )


class InsufficientStockError(BillingError):
    """Raised when an operation fails due to lack of stock."""
    code = 'insufficient_stock'

    def __init__(self, item_name, required, available):
        message = f"Insufficient stock for {item_name}"
        if required is not None:
            message += f": {required} required"
        if available is not None:
            message += f", {available} available"
        super().__init__(
            message,
            409,
            payload={'item': item_name, 'required': required, 'available': available}
        )


class StorageConflictError(BillingError):
    """A storage constraint rejected the write (e.g. a lost race)."""
    code = 'storage_conflict'

    def __init__(self, message="The request conflicted with a concurrent change, please retry"):
        super().__init__(message, 409)


class AuthenticationError(BillingError):
    """Raised when the request carries no valid tenant context."""
    code = 'unauthorized'

    def __init__(self, message="Authentication required"):
        super().__init__(message, 401)


class InternalError(BillingError):
    """Opaque failure; details stay in the logs."""

    def __init__(self, message="Internal Server Error"):
        super().__init__(message, 500)
