# Overview: Persistence access for inventory items and their tenant scoping.

"""
Item store: the only place the services load inventory rows.

- get_item_for_update() is the read half of the conditional update: the row
  is locked (where the database supports it) and its version_id is held by
  the session, so the later flush only succeeds if nobody else committed in
  between.
- count_by_status() is the aggregate the daily stock session builds its
  opening/closing counts from.
"""

from __future__ import annotations

from sqlalchemy import func

from ..errors import NotFound
from ..extensions import db
from ..identity import Actor, ensure_same_company
from ..models import InventoryItem
from .concurrency import lock_for_update


def get_item(item_id: int, actor: Actor | None = None) -> InventoryItem:
    """Load an item; NotFound when missing, Unauthorized when another company owns it."""
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise NotFound(f"Inventory item {item_id} not found", entity="InventoryItem", entity_id=item_id)
    if actor is not None:
        ensure_same_company(actor, item.company_id, entity="InventoryItem", entity_id=item_id)
    return item


def get_item_for_update(item_id: int, actor: Actor) -> InventoryItem:
    item = lock_for_update(
        db.session.query(InventoryItem).filter_by(id=item_id)
    ).populate_existing().first()
    if item is None:
        raise NotFound(f"Inventory item {item_id} not found", entity="InventoryItem", entity_id=item_id)
    ensure_same_company(actor, item.company_id, entity="InventoryItem", entity_id=item_id)
    return item


def find_by_serial(company_id: int, serial_number: str) -> InventoryItem | None:
    return db.session.query(InventoryItem).filter_by(
        company_id=company_id,
        serial_number=serial_number,
    ).first()


def count_by_status(company_id: int) -> dict[str, int]:
    """{status: item count} for one company, computed in the database."""
    rows = (
        db.session.query(InventoryItem.status, func.count(InventoryItem.id))
        .filter(InventoryItem.company_id == company_id)
        .group_by(InventoryItem.status)
        .all()
    )
    return {status: count for status, count in rows}
