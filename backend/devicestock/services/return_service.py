# Overview: Customer returns: restock the item at the refund amount and count the return.

"""
Return Processing Service

WHY: A returned device goes back on the sale floor. The refund paid to the
customer becomes the device's new cost basis.

DESIGN PRINCIPLES:
- Returns are accepted from SOLD or AVAILABLE; UNDER_REPAIR is rejected
- The ReturnRecord is immutable (cannot modify completed returns)
- Restock semantics: status AVAILABLE, purchase price := refund amount,
  selling price := 0 until the item is re-priced
- The sale is unwound: a new payment cycle starts (payment_status NOT_PAID,
  paid total 0) and the customer, collector and sales date are cleared so
  a resale is settled only by payments taken after the return
- The return is counted on today's daily stock session; without an open
  session nothing is applied (PreconditionFailed)
"""

from __future__ import annotations

import logging

from ..errors import ValidationError
from ..extensions import db
from ..identity import Actor, require_actor
from ..models import InventoryItem, ReturnRecord
from ..models.documents import REFUND_TYPES
from ..models.inventory import STATUS_AVAILABLE, STATUS_SOLD
from ..time_utils import utcnow
from ..validation import validate_price_cents
from . import daily_stock_service, payment_service
from .change_history_service import diff_and_record, snapshot
from .concurrency import run_with_retry
from .item_store import get_item, get_item_for_update
from .lifecycle_service import apply_status, reject_transition

logger = logging.getLogger(__name__)


RETURNABLE_STATUSES = {STATUS_SOLD, STATUS_AVAILABLE}


def validate_refund_type(refund_type: str) -> str:
    if refund_type not in REFUND_TYPES:
        raise ValidationError(
            f"Invalid refund type '{refund_type}'. Must be one of: {', '.join(REFUND_TYPES)}",
            field="refund_type",
        )
    return refund_type


def process_return(
    item_id: int,
    actor: Actor,
    refund_amount_cents: int,
    refund_type: str,
    reason: str | None = None,
    notes: str | None = None,
) -> tuple[ReturnRecord, InventoryItem]:
    """
    Take an item back from a customer.

    Returns (return_record, item). Raises Unauthorized for another
    company's item, StateConflict unless the item is SOLD or AVAILABLE,
    and PreconditionFailed when today's stock session is not open.
    """
    require_actor(actor)
    refund = validate_price_cents(refund_amount_cents, "refund_amount_cents", allow_zero=True)
    refund_type = validate_refund_type(refund_type)

    def _op():
        item = get_item_for_update(item_id, actor)
        if item.status not in RETURNABLE_STATUSES:
            reject_transition(item, "process_return")
        before = snapshot(item)

        record = ReturnRecord(
            item_id=item.id,
            company_id=item.company_id,
            refund_amount_cents=refund,
            refund_type=refund_type,
            reason=reason,
            notes=notes,
            return_date=utcnow(),
            processed_by_id=actor.id,
        )
        db.session.add(record)

        item.purchase_price_cents = refund
        item.selling_price_cents = 0
        payment_service.start_new_cycle(item)
        item.customer_details = None
        item.collected_by = None
        item.trusted_collector = False
        item.sales_date = None
        apply_status(item, STATUS_AVAILABLE, actor)

        daily_stock_service.record_transaction(
            item.company_id, daily_stock_service.TX_RETURN, commit=False,
        )
        diff_and_record(item, before, actor)
        db.session.commit()
        return record, item

    record, item = run_with_retry(_op)
    logger.info(
        "processed %s return %s for item %s (refund %s cents)",
        refund_type, record.id, item.id, refund,
    )
    return record, item


def get_item_returns(item_id: int, actor: Actor) -> list[ReturnRecord]:
    """All returns recorded for one item, oldest first."""
    item = get_item(item_id, actor)
    return (
        db.session.query(ReturnRecord)
        .filter_by(item_id=item.id)
        .order_by(ReturnRecord.return_date.asc(), ReturnRecord.id.asc())
        .all()
    )
