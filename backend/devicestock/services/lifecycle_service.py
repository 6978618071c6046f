# Overview: Inventory item lifecycle state machine (repair, sale, collection, payments).

"""
Inventory Lifecycle Engine

================================================================================
PURPOSE: Move serialized devices through their commercial lifecycle
================================================================================

STATE MACHINE:

    IN_STOCK --make_available--> AVAILABLE --mark_sold--> SOLD
        |                            |
        +------send_to_repair--------+--> UNDER_REPAIR --complete_repair--> AVAILABLE
        |                            |
        +------collect_unpaid--------+--> COLLECTED_UNPAID <--> COLLECTED --(fully paid)--> SOLD

    SOLD / AVAILABLE --process_return--> AVAILABLE   (see return_service)
    COLLECTED* / SOLD --remove_collector--> AVAILABLE

RULES (NON-NEGOTIABLE):
1. A transition from a disallowed status raises StateConflict naming the
   current status and the attempted action; nothing is applied
2. An item UNDER_REPAIR is never eligible for sale, collection or payment
3. Every status change appends a StatusLog row
4. Change history is computed by value comparison of before/after
   snapshots, never by intent
5. Counted events (sale, repair sent/completed) increment today's daily
   stock session inside the same unit of work; without an open session
   the whole operation fails with PreconditionFailed

UNIT OF WORK:
    lock item -> guard -> snapshot -> mutate -> ledger -> session counters
    -> change records -> single commit

Each operation runs under run_with_retry: a writer that loses an
optimistic-lock race re-runs the guard against the winner's state and
fails with StateConflict.

================================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateKey, NotFound, StateConflict, ValidationError
from ..extensions import db
from ..identity import Actor, require_actor
from ..models import Company, InventoryItem, RepairEntry, StatusLog
from ..models.inventory import (
    PAYMENT_INSTALLMENT,
    PAYMENT_NOT_PAID,
    PAYMENT_PAID,
    REPAIR_COMPLETED,
    REPAIR_IN_PROGRESS,
    STATUS_AVAILABLE,
    STATUS_COLLECTED,
    STATUS_COLLECTED_UNPAID,
    STATUS_IN_STOCK,
    STATUS_SOLD,
    STATUS_UNDER_REPAIR,
)
from ..time_utils import utcnow
from ..validation import (
    ITEM_CREATE_POLICY,
    ITEM_DETAILS_POLICY,
    coerce_datetime,
    validate_device_type,
    validate_party,
    validate_payload,
    validate_price_cents,
    validate_specifications,
)
from . import daily_stock_service, payment_service
from .change_history_service import diff_and_record, snapshot
from .concurrency import run_with_retry
from .item_store import find_by_serial, get_item_for_update
from .item_store import get_item as _load_item

logger = logging.getLogger(__name__)


# Source statuses each action may start from
ALLOWED_FROM = {
    "make_available": {STATUS_IN_STOCK, STATUS_AVAILABLE},
    "send_to_repair": {STATUS_AVAILABLE, STATUS_IN_STOCK},
    "complete_repair": {STATUS_UNDER_REPAIR},
    "mark_sold": {STATUS_AVAILABLE},
    "collect_unpaid": {STATUS_AVAILABLE, STATUS_IN_STOCK, STATUS_COLLECTED, STATUS_COLLECTED_UNPAID},
    "record_payment": {STATUS_COLLECTED, STATUS_COLLECTED_UNPAID},
}

# Requested payment status -> resulting item status
PAYMENT_STATUS_TARGETS = {
    PAYMENT_NOT_PAID: STATUS_COLLECTED_UNPAID,
    PAYMENT_INSTALLMENT: STATUS_COLLECTED,
    PAYMENT_PAID: STATUS_SOLD,
}

# Statuses from which remove_collector may return an item to AVAILABLE
COLLECTOR_STATUSES = {STATUS_COLLECTED, STATUS_COLLECTED_UNPAID, STATUS_SOLD}

UPDATE_STATUS_FIELDS = {
    "payment_status",
    "collected_by",
    "trusted_collector",
    "bank_details",
    "installment_payment",
    "selling_price_cents",
    "customer_details",
    "sales_date",
    "remove_collector",
}


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def reject_transition(item: InventoryItem, action: str, reason: str | None = None):
    logger.info(
        "rejected %s on item %s (company %s) in status %s",
        action, item.id, item.company_id, item.status,
    )
    message = f"Cannot {action.replace('_', ' ')} item {item.id} in status {item.status}"
    if reason:
        message = f"{message}: {reason}"
    raise StateConflict(message, current_state=item.status, action=action, item_id=item.id)


def _guard(item: InventoryItem, action: str) -> None:
    if item.status not in ALLOWED_FROM[action]:
        reject_transition(item, action)


def apply_status(item: InventoryItem, new_status: str, actor: Actor) -> None:
    """Change status and append a StatusLog row (no-op when unchanged)."""
    if item.status == new_status:
        return
    old_status = item.status
    item.status = new_status
    item.status_logs.append(StatusLog(status=new_status, date=utcnow(), changed_by_id=actor.id))
    logger.info(
        "item %s (company %s): %s -> %s by user %s",
        item.id, item.company_id, old_status, new_status, actor.id,
    )


def _recompute_repair_cost(item: InventoryItem) -> int:
    item.total_repair_cost_cents = sum(r.repair_cost_cents or 0 for r in item.repair_history)
    return item.total_repair_cost_cents


def _complete_sale(item: InventoryItem, price_cents: int, sales_date: datetime | None = None) -> None:
    """SOLD bookkeeping: stamp sales_date if absent and count the sale for today."""
    if sales_date is not None:
        item.sales_date = sales_date
    elif item.sales_date is None:
        item.sales_date = utcnow()
    daily_stock_service.record_transaction(
        item.company_id,
        daily_stock_service.TX_SALE,
        quantity=1,
        amount_cents=price_cents,
        commit=False,
    )


def _optional_datetime(value, field: str) -> datetime | None:
    if value is None:
        return None
    return coerce_datetime(value, field)


# =============================================================================
# CREATE / EDIT
# =============================================================================

def create_item(actor: Actor, payload: dict) -> InventoryItem:
    """
    Register a new device in IN_STOCK.

    Serial numbers are unique per company (DuplicateKey). A new addition is
    counted on today's stock session when one is open; creating stock
    outside business hours is allowed.
    """
    require_actor(actor)
    patch = validate_payload(
        model=InventoryItem,
        payload=payload,
        policy=ITEM_CREATE_POLICY,
        partial=False,
    )
    patch["device_type"] = validate_device_type(patch["device_type"])
    patch["specifications"] = validate_specifications(patch["device_type"], patch.get("specifications"))
    if patch.get("purchase_price_cents") is not None:
        patch["purchase_price_cents"] = validate_price_cents(
            patch["purchase_price_cents"], "purchase_price_cents", allow_zero=True,
        )
    else:
        patch.pop("purchase_price_cents", None)

    def _op():
        if db.session.get(Company, actor.company_id) is None:
            raise NotFound(f"Company {actor.company_id} not found", entity="Company", entity_id=actor.company_id)
        if find_by_serial(actor.company_id, patch["serial_number"]) is not None:
            raise DuplicateKey(
                f"Serial number '{patch['serial_number']}' already exists",
                field="serial_number",
                serial_number=patch["serial_number"],
            )

        item = InventoryItem(
            company_id=actor.company_id,
            status=STATUS_IN_STOCK,
            payment_status=PAYMENT_NOT_PAID,
            **patch,
        )
        item.status_logs.append(StatusLog(status=STATUS_IN_STOCK, date=utcnow(), changed_by_id=actor.id))
        db.session.add(item)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise DuplicateKey(
                f"Serial number '{patch['serial_number']}' already exists",
                field="serial_number",
                serial_number=patch["serial_number"],
            ) from exc

        if daily_stock_service.has_open_session(actor.company_id):
            daily_stock_service.record_transaction(
                actor.company_id, daily_stock_service.TX_NEW_ADDITION, commit=False,
            )
        else:
            logger.debug("no open stock session for company %s; new addition not counted", actor.company_id)

        db.session.commit()
        return item

    item = run_with_retry(_op)
    logger.info("created item %s serial=%s company=%s", item.id, item.serial_number, item.company_id)
    return item


def make_available(
    item_id: int,
    actor: Actor,
    purchase_price_cents: int,
    selling_price_cents: int,
) -> InventoryItem:
    """Price an item and release it to the sale floor."""
    require_actor(actor)
    purchase = validate_price_cents(purchase_price_cents, "purchase_price_cents")
    selling = validate_price_cents(selling_price_cents, "selling_price_cents")

    def _op():
        item = get_item_for_update(item_id, actor)
        _guard(item, "make_available")
        before = snapshot(item)

        item.purchase_price_cents = purchase
        item.selling_price_cents = selling
        apply_status(item, STATUS_AVAILABLE, actor)

        diff_and_record(item, before, actor)
        db.session.commit()
        return item

    return run_with_retry(_op)


def update_item_details(item_id: int, actor: Actor, patch: dict) -> InventoryItem:
    """Edit descriptive fields; status, prices and payments are not reachable here."""
    require_actor(actor)
    clean = validate_payload(
        model=InventoryItem,
        payload=patch,
        policy=ITEM_DETAILS_POLICY,
        partial=True,
    )

    def _op():
        item = get_item_for_update(item_id, actor)
        if "specifications" in clean:
            clean["specifications"] = validate_specifications(item.device_type, clean["specifications"])
        before = snapshot(item, clean.keys())

        for key, value in clean.items():
            setattr(item, key, value)

        diff_and_record(item, before, actor)
        db.session.commit()
        return item

    return run_with_retry(_op)


# =============================================================================
# REPAIR
# =============================================================================

def send_to_repair(item_id: int, actor: Actor, repair_entry: dict) -> InventoryItem:
    """
    AVAILABLE / IN_STOCK -> UNDER_REPAIR.

    repair_entry: {"technician_name", "description"?, "repair_cost_cents"?, "date"?}
    The entry is stamped with the actor as assigner.
    """
    require_actor(actor)
    if not isinstance(repair_entry, dict):
        raise ValidationError("repair entry must be an object", field="repair_entry")
    technician = str(repair_entry.get("technician_name") or "").strip()
    if not technician:
        raise ValidationError("technician_name is required", field="technician_name")
    cost = repair_entry.get("repair_cost_cents")
    cost = validate_price_cents(cost, "repair_cost_cents", allow_zero=True) if cost is not None else 0
    repair_date = _optional_datetime(repair_entry.get("date"), "date")

    def _op():
        item = get_item_for_update(item_id, actor)
        _guard(item, "send_to_repair")
        before = snapshot(item)

        item.repair_history.append(RepairEntry(
            date=repair_date or utcnow(),
            description=repair_entry.get("description"),
            technician_name=technician,
            assigned_by_id=actor.id,
            assigned_by_name=actor.name,
            repair_cost_cents=cost,
        ))
        _recompute_repair_cost(item)
        item.repair_status = REPAIR_IN_PROGRESS
        apply_status(item, STATUS_UNDER_REPAIR, actor)

        daily_stock_service.record_transaction(
            item.company_id, daily_stock_service.TX_REPAIR, commit=False,
        )
        diff_and_record(item, before, actor)
        db.session.commit()
        return item

    return run_with_retry(_op)


def complete_repair(item_id: int, actor: Actor, repair_cost_cents: int | None = None) -> InventoryItem:
    """
    UNDER_REPAIR (IN_PROGRESS) -> AVAILABLE.

    A final repair cost, when given, replaces the cost on the latest repair
    entry and the item total is recomputed.
    """
    require_actor(actor)
    if repair_cost_cents is not None:
        repair_cost_cents = validate_price_cents(repair_cost_cents, "repair_cost_cents", allow_zero=True)

    def _op():
        item = get_item_for_update(item_id, actor)
        _guard(item, "complete_repair")
        if item.repair_status != REPAIR_IN_PROGRESS:
            reject_transition(item, "complete_repair", f"repair status is {item.repair_status}")
        before = snapshot(item)

        if repair_cost_cents is not None and item.repair_history:
            item.repair_history[-1].repair_cost_cents = repair_cost_cents
            _recompute_repair_cost(item)
        if item.repair_history:
            item.repair_history[-1].completed_at = utcnow()
        item.repair_status = REPAIR_COMPLETED
        apply_status(item, STATUS_AVAILABLE, actor)

        daily_stock_service.record_transaction(
            item.company_id, daily_stock_service.TX_REPAIR_COMPLETE, commit=False,
        )
        diff_and_record(item, before, actor)
        db.session.commit()
        return item

    return run_with_retry(_op)


# =============================================================================
# SALE / COLLECTION
# =============================================================================

def mark_sold(
    item_id: int,
    actor: Actor,
    selling_price_cents: int,
    customer_details: dict,
    sales_date=None,
) -> InventoryItem:
    """AVAILABLE -> SOLD; counts the sale and its amount on today's session."""
    require_actor(actor)
    price = validate_price_cents(selling_price_cents, "selling_price_cents")
    customer = validate_party(customer_details, "customer_details")
    sold_at = _optional_datetime(sales_date, "sales_date")

    def _op():
        item = get_item_for_update(item_id, actor)
        _guard(item, "mark_sold")
        before = snapshot(item)

        item.selling_price_cents = price
        item.customer_details = customer
        apply_status(item, STATUS_SOLD, actor)
        payment_service.settle(item, price)
        _complete_sale(item, price, sold_at)

        diff_and_record(item, before, actor)
        db.session.commit()
        return item

    return run_with_retry(_op)


def collect_unpaid(
    item_id: int,
    actor: Actor,
    collected_by: dict,
    trusted_collector: bool = False,
) -> InventoryItem:
    """
    Hand an item to a collector before payment: -> COLLECTED_UNPAID.

    An item that already has payments in its current cycle goes to
    COLLECTED / INSTALLMENT instead.
    """
    require_actor(actor)
    collector = validate_party(collected_by, "collected_by")
    if not isinstance(trusted_collector, bool):
        raise ValidationError("trusted_collector must be a boolean", field="trusted_collector")

    def _op():
        item = get_item_for_update(item_id, actor)
        _guard(item, "collect_unpaid")
        before = snapshot(item)

        item.collected_by = collector
        item.trusted_collector = trusted_collector
        item.payment_status = payment_service.requested_payment_status(PAYMENT_NOT_PAID, item)
        apply_status(item, PAYMENT_STATUS_TARGETS[item.payment_status], actor)

        diff_and_record(item, before, actor)
        db.session.commit()
        return item

    return run_with_retry(_op)


# =============================================================================
# STATUS + PAYMENTS
# =============================================================================

def update_status_and_payments(item_id: int, actor: Actor, payload: dict) -> InventoryItem:
    """
    Drive collection status from the payment ledger.

    payload keys: payment_status, collected_by, trusted_collector,
    bank_details (list), installment_payment, selling_price_cents,
    customer_details, sales_date, remove_collector.

    - remove_collector=True clears the collector and returns the item to
      AVAILABLE whatever its payment state (also from SOLD); other keys are
      ignored in that case
    - remove_collector needs a collector or a collected/sold item; an
      unpriced IN_STOCK item cannot reach AVAILABLE this way
    - otherwise the requested payment status picks the target:
      NOT_PAID -> COLLECTED_UNPAID, INSTALLMENT -> COLLECTED, PAID -> SOLD
    - payments are appended to the ledger; once the total reaches the
      effective selling price the item is promoted to PAID + SOLD
    - UNDER_REPAIR is always rejected; SOLD only accepts remove_collector
    """
    require_actor(actor)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")
    unknown = sorted(k for k in payload if k not in UPDATE_STATUS_FIELDS)
    if unknown:
        raise ValidationError(f"Fields not allowed: {', '.join(unknown)}", fields=unknown)

    remove_collector = bool(payload.get("remove_collector"))

    def _op():
        item = get_item_for_update(item_id, actor)
        if item.status == STATUS_UNDER_REPAIR:
            reject_transition(item, "update_status_and_payments", "item is under repair")
        if item.status == STATUS_SOLD and not remove_collector:
            reject_transition(item, "update_status_and_payments", "item is already sold")
        if remove_collector and item.collected_by is None and item.status not in COLLECTOR_STATUSES:
            reject_transition(item, "update_status_and_payments", "item has no collector")
        before = snapshot(item)

        if remove_collector:
            item.collected_by = None
            apply_status(item, STATUS_AVAILABLE, actor)
        else:
            _apply_payment_update(item, actor, payload)

        diff_and_record(item, before, actor)
        db.session.commit()
        return item

    return run_with_retry(_op)


def _apply_payment_update(item: InventoryItem, actor: Actor, payload: dict) -> None:
    if "collected_by" in payload:
        item.collected_by = validate_party(payload["collected_by"], "collected_by", required=False)
    if "trusted_collector" in payload:
        if not isinstance(payload["trusted_collector"], bool):
            raise ValidationError("trusted_collector must be a boolean", field="trusted_collector")
        item.trusted_collector = payload["trusted_collector"]
    if payload.get("selling_price_cents") is not None:
        item.selling_price_cents = validate_price_cents(payload["selling_price_cents"], "selling_price_cents")
    if "customer_details" in payload:
        item.customer_details = validate_party(payload["customer_details"], "customer_details", required=False)

    bank_details = payload.get("bank_details") or []
    if not isinstance(bank_details, list):
        raise ValidationError("bank_details must be a list", field="bank_details")
    for entry in bank_details:
        payment_service.record_bank_payment(item, entry)
    if payload.get("installment_payment") is not None:
        payment_service.record_installment(item, payload["installment_payment"])

    requested = payment_service.requested_payment_status(payload.get("payment_status"), item)
    price = payment_service.effective_selling_price(item)
    if requested == PAYMENT_PAID and (price is None or price <= 0):
        raise ValidationError(
            "selling_price_cents is required to mark an item paid",
            field="selling_price_cents",
        )

    item.payment_status = requested
    target = PAYMENT_STATUS_TARGETS[requested]
    if payment_service.settle(item, price).fully_paid:
        target = STATUS_SOLD

    if target == STATUS_SOLD:
        item.payment_status = PAYMENT_PAID
        apply_status(item, STATUS_SOLD, actor)
        _complete_sale(item, price, _optional_datetime(payload.get("sales_date"), "sales_date"))
    else:
        apply_status(item, target, actor)


def record_payment(
    item_id: int,
    actor: Actor,
    installment: dict | None = None,
    bank_payment: dict | None = None,
) -> InventoryItem:
    """
    Add a payment against a collected item.

    Leaves the item COLLECTED / INSTALLMENT until the ledger total reaches
    the selling price, then promotes it to PAID + SOLD.
    """
    require_actor(actor)
    if installment is None and bank_payment is None:
        raise ValidationError("installment or bank_payment is required")

    def _op():
        item = get_item_for_update(item_id, actor)
        _guard(item, "record_payment")
        before = snapshot(item)

        if bank_payment is not None:
            payment_service.record_bank_payment(item, bank_payment)
        if installment is not None:
            payment_service.record_installment(item, installment)

        price = payment_service.effective_selling_price(item)
        if payment_service.settle(item, price).fully_paid:
            apply_status(item, STATUS_SOLD, actor)
            _complete_sale(item, price)
        else:
            item.payment_status = PAYMENT_INSTALLMENT
            apply_status(item, STATUS_COLLECTED, actor)

        diff_and_record(item, before, actor)
        db.session.commit()
        return item

    return run_with_retry(_op)


# =============================================================================
# QUERY HELPERS
# =============================================================================

def get_item(item_id: int, actor: Actor) -> InventoryItem:
    require_actor(actor)
    return _load_item(item_id, actor)


def get_status_logs(item_id: int, actor: Actor) -> list[StatusLog]:
    return list(get_item(item_id, actor).status_logs)
