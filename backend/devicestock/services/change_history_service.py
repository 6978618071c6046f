# Overview: Field-level change history for inventory items (append-only audit).

"""
Change History Recorder

- snapshot() and diff() are pure: no database access, callable from tests.
- A field is recorded only when its before/after values differ by deep
  value comparison (dicts compared structurally, datetimes compared as
  their full-precision ISO-8601 rendering).
- Recording never fails a mutation: malformed input degrades to zero
  records with a warning.
- Order: chronological (append). Records are read back sorted by
  (changed_at, id); callers may request newest-first.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable

from flask import current_app

from ..extensions import db
from ..identity import Actor
from ..models import ChangeRecord, InventoryItem
from ..time_utils import to_utc_z, utcnow
from .item_store import get_item

logger = logging.getLogger(__name__)


# Item fields whose changes are audited
TRACKED_FIELDS = (
    "status",
    "repair_status",
    "payment_status",
    "purchase_price_cents",
    "selling_price_cents",
    "total_amount_paid_cents",
    "total_repair_cost_cents",
    "trusted_collector",
    "collected_by",
    "customer_details",
    "sales_date",
    "name",
    "brand",
    "model_name",
    "color",
    "condition",
    "specifications",
    "notes",
)


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_utc_z(value, keep_microseconds=True)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def snapshot(item: InventoryItem, fields: Iterable[str] = TRACKED_FIELDS) -> dict:
    """JSON-safe copy of the tracked fields, taken before and after a mutation."""
    return {field: _json_safe(getattr(item, field)) for field in fields}


def diff(before: dict, after: dict) -> list[dict]:
    """
    Compare two snapshots field by field.

    Only keys present in `after` are considered. Returns one
    {"field", "old_value", "new_value"} entry per changed field, in the
    order the fields appear in `after`.
    """
    try:
        changes = []
        for field, new_value in after.items():
            old_value = before.get(field)
            if old_value != new_value:
                changes.append({"field": field, "old_value": old_value, "new_value": new_value})
        return changes
    except (AttributeError, TypeError, ValueError):
        logger.warning("could not diff item snapshots; recording no changes", exc_info=True)
        return []


def record_changes(item: InventoryItem, changes: list[dict], actor: Actor) -> list[ChangeRecord]:
    """
    Append ChangeRecord rows for an approved mutation.

    Rows join the caller's unit of work: they commit or roll back together
    with the item change itself.
    """
    now = utcnow()
    records = []
    for change in changes:
        record = ChangeRecord(
            item_id=item.id,
            company_id=item.company_id,
            field=change["field"],
            old_value=change["old_value"],
            new_value=change["new_value"],
            changed_by_id=actor.id,
            changed_by_name=actor.name,
            changed_by_email=actor.email,
            changed_at=now,
        )
        db.session.add(record)
        records.append(record)
    return records


def diff_and_record(item: InventoryItem, before: dict, actor: Actor) -> list[ChangeRecord]:
    """Snapshot the item again, diff against `before`, and append the result."""
    after = snapshot(item, before.keys())
    return record_changes(item, diff(before, after), actor)


def get_change_history(
    item_id: int,
    actor: Actor,
    *,
    newest_first: bool = False,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[ChangeRecord]:
    """
    Change history for one item, chronological unless newest_first.

    start/end bound changed_at inclusively.
    """
    item = get_item(item_id, actor)

    q = db.session.query(ChangeRecord).filter_by(item_id=item.id)
    if start is not None:
        q = q.filter(ChangeRecord.changed_at >= start)
    if end is not None:
        q = q.filter(ChangeRecord.changed_at <= end)

    if newest_first:
        q = q.order_by(ChangeRecord.changed_at.desc(), ChangeRecord.id.desc())
    else:
        q = q.order_by(ChangeRecord.changed_at.asc(), ChangeRecord.id.asc())

    cap = current_app.config.get("CHANGE_HISTORY_PAGE_LIMIT", 500)
    return q.limit(min(limit, cap) if limit else cap).all()
