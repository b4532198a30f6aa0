"""
Line reconciler for invoice mutations.

Given the lines an invoice currently has and the lines the caller wants it to
have, computes which lines to insert, update and delete and the signed stock
delta per item. Pure: no session, no I/O. Prices for new lines are passed in
by the caller.

Stock deltas use the ledger's sign convention:
    negative -> stock leaves the warehouse (more units sold)
    positive -> stock is returned (quantity lowered or line removed)
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping

from billing.exceptions import (
    ValidationError, InvalidLineQuantityError, DuplicateLineItemError, ItemNotFoundError
)

CENT = Decimal('0.01')


@dataclass(frozen=True)
class ExistingLine:
    """A line already stored on the invoice."""
    quantity: int
    price_at_purchase: Decimal


@dataclass(frozen=True)
class DesiredLine:
    """A line the caller wants on the invoice."""
    item_id: int
    quantity: int


@dataclass(frozen=True)
class LineUpsert:
    item_id: int
    quantity: int
    previous_quantity: int
    price_at_purchase: Decimal

    @property
    def is_new(self) -> bool:
        return self.previous_quantity == 0

    @property
    def quantity_delta(self) -> int:
        """Units sold on top of what the stored line already consumed."""
        return self.quantity - self.previous_quantity

    @property
    def total_line_amount(self) -> Decimal:
        return (self.price_at_purchase * self.quantity).quantize(CENT)


@dataclass
class LinePlan:
    """Result of a reconciliation."""
    upserts: List[LineUpsert] = field(default_factory=list)
    deletes: List[int] = field(default_factory=list)
    stock_deltas: Dict[int, int] = field(default_factory=dict)

    @property
    def consumption(self) -> Dict[int, int]:
        """Items whose stock goes down, with the units required."""
        return {item_id: -delta for item_id, delta in self.stock_deltas.items() if delta < 0}

    @property
    def total_amount(self) -> Decimal:
        return sum((u.total_line_amount for u in self.upserts), Decimal('0.00'))


def _coerce_quantity(item_id, raw) -> int:
    # bool is an int subclass; True is not a quantity
    if isinstance(raw, bool) or raw is None:
        raise InvalidLineQuantityError(item_id, raw)
    if isinstance(raw, int):
        quantity = raw
    elif isinstance(raw, (Decimal, float)):
        try:
            quantity = int(raw)
        except (ValueError, OverflowError, ArithmeticError):
            raise InvalidLineQuantityError(item_id, raw)
        if quantity != raw:
            raise InvalidLineQuantityError(item_id, raw)
    elif isinstance(raw, str) and raw.strip().lstrip('-').isdigit():
        quantity = int(raw.strip())
    else:
        raise InvalidLineQuantityError(item_id, raw)

    if quantity <= 0:
        raise InvalidLineQuantityError(item_id, raw)
    return quantity


def coerce_id(raw: Any, field_name: str) -> int:
    """Row id from a JSON value. Fractional numbers are rejected, never truncated."""
    if isinstance(raw, bool) or raw is None or raw == '':
        raise ValidationError(f'{field_name} is required', payload={'field': field_name})
    if isinstance(raw, int):
        return raw
    if isinstance(raw, (Decimal, float)):
        try:
            value = int(raw)
        except (ValueError, OverflowError, ArithmeticError):
            value = None
        if value is not None and value == raw:
            return value
    elif isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    raise ValidationError(f'Invalid {field_name}: {raw!r}', payload={'field': field_name})


def normalize_lines(raw_lines: Any) -> List[DesiredLine]:
    """
    Validate a request payload's line list.

    Args:
        raw_lines: list of dicts with 'item_id' and 'quantity'

    Returns:
        list of DesiredLine, in request order

    Raises:
        ValidationError: payload is not a list, or a line's item_id is missing or not an integer
        InvalidLineQuantityError: quantity missing, fractional or <= 0
        DuplicateLineItemError: same item_id twice
    """
    if not isinstance(raw_lines, list):
        raise ValidationError('lines must be a list of {item_id, quantity} objects')

    desired = []
    seen = set()
    for raw in raw_lines:
        if not isinstance(raw, dict):
            raise ValidationError('Each line must be an object with item_id and quantity')
        item_id = coerce_id(raw.get('item_id'), 'item_id')
        quantity = _coerce_quantity(item_id, raw.get('quantity'))
        if item_id in seen:
            raise DuplicateLineItemError(item_id)
        seen.add(item_id)
        desired.append(DesiredLine(item_id=item_id, quantity=quantity))
    return desired


def reconcile(
    existing: Mapping[int, ExistingLine],
    desired: Iterable[DesiredLine],
    catalog_prices: Mapping[int, Decimal] = None
) -> LinePlan:
    """
    Diff the stored line set against the desired one.

    Item identity is the only matching key. Lines that survive keep their
    stored price_at_purchase; only new lines are priced from the catalog.

    Args:
        existing: {item_id: ExistingLine} currently stored on the invoice
        desired: DesiredLine entries, item ids unique
        catalog_prices: {item_id: current price}, required for new items

    Returns:
        LinePlan with upserts, deletes and stock deltas (zero deltas omitted)

    Raises:
        InvalidLineQuantityError, DuplicateLineItemError, ItemNotFoundError
    """
    catalog_prices = catalog_prices or {}
    plan = LinePlan()
    seen = set()

    for line in desired:
        if line.item_id in seen:
            raise DuplicateLineItemError(line.item_id)
        seen.add(line.item_id)
        if line.quantity <= 0:
            raise InvalidLineQuantityError(line.item_id, line.quantity)

        stored = existing.get(line.item_id)
        if stored is not None:
            previous_quantity = stored.quantity
            price = stored.price_at_purchase
        else:
            if line.item_id not in catalog_prices:
                raise ItemNotFoundError(line.item_id)
            previous_quantity = 0
            price = catalog_prices[line.item_id]

        plan.upserts.append(LineUpsert(
            item_id=line.item_id,
            quantity=line.quantity,
            previous_quantity=previous_quantity,
            price_at_purchase=Decimal(str(price))
        ))
        delta = previous_quantity - line.quantity
        if delta:
            plan.stock_deltas[line.item_id] = delta

    for item_id, stored in existing.items():
        if item_id not in seen:
            plan.deletes.append(item_id)
            plan.stock_deltas[item_id] = stored.quantity  # Full return

    return plan
