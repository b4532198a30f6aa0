"""
Stock ledger - the only write path to Item.stock_quantity.

Each adjustment is a single conditional UPDATE (compare-and-adjust): the
WHERE clause refuses any delta that would take stock below zero, so the
availability check and the write are one atomic statement. Callers still
pre-check for a descriptive error; this is what holds under concurrency.
"""
import logging
from typing import Mapping

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from billing.models import Item
from billing.exceptions import InsufficientStockError, ItemNotFoundError

logger = logging.getLogger(__name__)


def adjust_stock(session, tenant_id: int, item_id: int, delta: int) -> None:
    """
    Apply stock_quantity += delta for one item of the tenant.

    Args:
        session: SQLAlchemy session (must be in the caller's transaction)
        tenant_id: Tenant ID (REQUIRED for multi-tenant enforcement)
        item_id: Item to adjust
        delta: signed units; negative consumes, positive returns

    Raises:
        ItemNotFoundError: item does not exist under the tenant
        InsufficientStockError: the delta would drive stock below zero
    """
    if not delta:
        return

    stmt = (
        update(Item)
        .where(
            Item.id == item_id,
            Item.tenant_id == tenant_id,
            Item.stock_quantity + delta >= 0
        )
        .values(stock_quantity=Item.stock_quantity + delta)
        .execution_options(synchronize_session=False)
    )

    try:
        result = session.execute(stmt)
    except IntegrityError:
        # Check constraint tripped instead of the WHERE guard; the transaction
        # is now unusable, so no follow-up query for the on-hand figure
        raise InsufficientStockError(f'item {item_id}', -delta, None)

    if result.rowcount != 1:
        raise _insufficient(session, tenant_id, item_id, delta)

    logger.debug(f"[STOCK] tenant={tenant_id} item={item_id} delta={delta:+d}")


def apply_stock_deltas(session, tenant_id: int, deltas: Mapping[int, int]) -> None:
    """Apply a map of {item_id: delta}, locking rows in ascending item order."""
    for item_id in sorted(deltas):
        adjust_stock(session, tenant_id, item_id, deltas[item_id])


def _insufficient(session, tenant_id: int, item_id: int, delta: int):
    """Build the error for a rejected adjustment."""
    row = session.query(Item.name, Item.stock_quantity).filter(
        Item.id == item_id,
        Item.tenant_id == tenant_id
    ).first()
    if row is None:
        return ItemNotFoundError(item_id)
    logger.warning(
        f"[STOCK] Conditional update rejected: tenant={tenant_id} item={item_id} "
        f"delta={delta:+d} on_hand={row.stock_quantity}"
    )
    return InsufficientStockError(row.name, -delta, row.stock_quantity)
