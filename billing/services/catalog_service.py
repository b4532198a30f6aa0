"""Tenant-scoped catalog lookups used by the invoice service."""
from collections import namedtuple
from decimal import Decimal
from typing import Dict, Iterable

from billing.models import Item, Party
from billing.exceptions import ItemNotFoundError, PartyNotFoundError

# Column snapshot, never an identity-mapped entity: reads always reflect the
# current transaction's writes, including ledger updates issued as SQL.
ItemSnapshot = namedtuple('ItemSnapshot', ['id', 'name', 'price', 'stock_quantity'])


def _snapshot_query(session, tenant_id: int):
    return session.query(
        Item.id, Item.name, Item.price, Item.stock_quantity
    ).filter(Item.tenant_id == tenant_id)


def _to_snapshot(row) -> ItemSnapshot:
    return ItemSnapshot(
        id=row.id,
        name=row.name,
        price=Decimal(str(row.price)),
        stock_quantity=int(row.stock_quantity)
    )


def lookup_item(session, tenant_id: int, item_id: int) -> ItemSnapshot:
    """Return price and stock for one item of the tenant, or raise ItemNotFoundError."""
    row = _snapshot_query(session, tenant_id).filter(Item.id == item_id).first()
    if row is None:
        raise ItemNotFoundError(item_id)
    return _to_snapshot(row)


def lookup_items(session, tenant_id: int, item_ids: Iterable[int], lock: bool = False) -> Dict[int, ItemSnapshot]:
    """
    Batch variant of lookup_item.

    Args:
        session: SQLAlchemy session (caller's transaction)
        tenant_id: Tenant ID
        item_ids: ids to fetch; every one must belong to the tenant
        lock: take row locks (SELECT ... FOR UPDATE) where the store supports them

    Returns:
        {item_id: ItemSnapshot}

    Raises:
        ItemNotFoundError: for the first id (ascending) missing from the tenant
    """
    wanted = sorted(set(item_ids))
    if not wanted:
        return {}

    query = _snapshot_query(session, tenant_id).filter(Item.id.in_(wanted)).order_by(Item.id)
    if lock:
        query = query.with_for_update()

    snapshots = {row.id: _to_snapshot(row) for row in query.all()}
    for item_id in wanted:
        if item_id not in snapshots:
            raise ItemNotFoundError(item_id)
    return snapshots


def lookup_party(session, tenant_id: int, party_id: int) -> Party:
    """Return the tenant's party, or raise PartyNotFoundError."""
    party = None
    if party_id is not None:
        party = session.query(Party).filter(
            Party.id == party_id,
            Party.tenant_id == tenant_id
        ).first()
    if party is None:
        raise PartyNotFoundError(party_id)
    return party
