# Overview: Payment ledger for inventory items (bank payments + installments).

"""
Payment Ledger

Tracks what has been paid against an item and decides when an item is
fully paid.

DESIGN PRINCIPLES:
- Two entry kinds: bank-detail payments and installment payments
- Every entry is stamped with the item's payment_cycle; a return starts a
  new cycle, so a resale begins with an empty ledger while earlier
  payments stay on record
- total_amount_paid_cents is ALWAYS recomputed as the exact sum over both
  lists for the current cycle; it is never incremented in place, so
  repeated recomputation cannot drift
- An explicit NOT_PAID is only honoured while the current cycle has no
  payments; once money has changed hands it reads as INSTALLMENT
- This module is the only writer of total_amount_paid_cents
- "Fully paid" means total >= effective selling price; overpayment is
  accepted and never refunded automatically
- The ledger does not change item.status itself: settle() reports that the
  item must be promoted and the lifecycle engine forces SOLD
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import ValidationError
from ..models import BankPayment, InstallmentPayment, InventoryItem
from ..models.inventory import (
    PAYMENT_INSTALLMENT,
    PAYMENT_NOT_PAID,
    PAYMENT_PAID,
    VALID_PAYMENT_STATUSES,
)
from ..time_utils import utcnow
from ..validation import coerce_datetime, coerce_int, validate_payment_method

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settlement:
    """Outcome of evaluating an item's payments against its price."""
    total_paid_cents: int
    effective_price_cents: int | None
    fully_paid: bool

    @property
    def outstanding_cents(self) -> int | None:
        if self.effective_price_cents is None:
            return None
        return max(0, self.effective_price_cents - self.total_paid_cents)


def validate_payment_status(payment_status: str) -> str:
    if payment_status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment status '{payment_status}'. "
            f"Must be one of: {', '.join(sorted(VALID_PAYMENT_STATUSES))}",
            field="payment_status",
        )
    return payment_status


def _positive_amount(value, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    cents = coerce_int(value, field)
    if cents <= 0:
        raise ValidationError(f"{field} must be > 0", field=field)
    return cents


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

def record_bank_payment(item: InventoryItem, entry: dict) -> BankPayment:
    """
    Append a bank-detail payment and recompute the paid total.

    entry: {"amount_cents", "payment_method", "bank_name"?, "account_number"?, "date"?}
    """
    if not isinstance(entry, dict):
        raise ValidationError("bank payment entry must be an object", field="bank_details")

    payment = BankPayment(
        amount_cents=_positive_amount(entry.get("amount_cents"), "amount_cents"),
        payment_method=validate_payment_method(entry.get("payment_method")),
        bank_name=entry.get("bank_name"),
        account_number=entry.get("account_number"),
        date=coerce_datetime(entry["date"], "date") if entry.get("date") else utcnow(),
        payment_cycle=item.payment_cycle or 0,
    )
    item.bank_details.append(payment)
    recompute_total_paid(item)
    return payment


def record_installment(item: InventoryItem, entry: dict) -> InstallmentPayment:
    """
    Append an installment payment and recompute the paid total.

    entry: {"amount_paid_cents", "payment_method"?, "bank_name"?, "description"?, "date"?}
    """
    if not isinstance(entry, dict):
        raise ValidationError("installment entry must be an object", field="installment_payment")

    payment = InstallmentPayment(
        amount_paid_cents=_positive_amount(entry.get("amount_paid_cents"), "amount_paid_cents"),
        payment_method=validate_payment_method(entry.get("payment_method"), required=False),
        bank_name=entry.get("bank_name"),
        description=entry.get("description"),
        date=coerce_datetime(entry["date"], "date") if entry.get("date") else utcnow(),
        payment_cycle=item.payment_cycle or 0,
    )
    item.installment_payments.append(payment)
    recompute_total_paid(item)
    return payment


def recompute_total_paid(item: InventoryItem) -> int:
    """Single writer of total_amount_paid_cents: exact sum over both ledgers for the current cycle."""
    cycle = item.payment_cycle or 0
    total = sum(p.amount_cents for p in item.bank_details if (p.payment_cycle or 0) == cycle)
    total += sum(
        p.amount_paid_cents for p in item.installment_payments if (p.payment_cycle or 0) == cycle
    )
    item.total_amount_paid_cents = total
    return total


def start_new_cycle(item: InventoryItem) -> int:
    """
    Open a fresh payment cycle after a return.

    Earlier entries are kept but no longer count toward the total, and
    payment_status goes back to NOT_PAID.
    """
    item.payment_cycle = (item.payment_cycle or 0) + 1
    recompute_total_paid(item)
    item.payment_status = PAYMENT_NOT_PAID
    logger.info("item %s payment cycle %s started", item.id, item.payment_cycle)
    return item.payment_cycle


# =============================================================================
# SETTLEMENT
# =============================================================================

def effective_selling_price(item: InventoryItem, selling_price_cents: int | None = None) -> int | None:
    """Caller-supplied price wins over the stored one."""
    if selling_price_cents is not None:
        return selling_price_cents
    return item.selling_price_cents


def is_fully_paid(item: InventoryItem, effective_price_cents: int | None) -> bool:
    if effective_price_cents is None or effective_price_cents <= 0:
        return False
    return item.total_amount_paid_cents >= effective_price_cents


def settle(item: InventoryItem, effective_price_cents: int | None) -> Settlement:
    """
    Evaluate payments against the effective price.

    When fully paid, payment_status becomes PAID and the returned
    Settlement tells the caller to force status SOLD. Otherwise
    payment_status is left as the caller set it.
    """
    fully_paid = is_fully_paid(item, effective_price_cents)
    if fully_paid and item.payment_status != PAYMENT_PAID:
        logger.info(
            "item %s fully paid (%s >= %s)",
            item.id, item.total_amount_paid_cents, effective_price_cents,
        )
        item.payment_status = PAYMENT_PAID
    return Settlement(
        total_paid_cents=item.total_amount_paid_cents,
        effective_price_cents=effective_price_cents,
        fully_paid=fully_paid,
    )


def outstanding_balance_cents(item: InventoryItem) -> int | None:
    """Amount still owed against the stored selling price (None when unpriced)."""
    return settle_preview(item).outstanding_cents


def settle_preview(item: InventoryItem) -> Settlement:
    """Like settle() but without touching payment_status."""
    price = item.selling_price_cents
    return Settlement(
        total_paid_cents=item.total_amount_paid_cents,
        effective_price_cents=price,
        fully_paid=is_fully_paid(item, price),
    )


def requested_payment_status(payment_status: str | None, item: InventoryItem) -> str:
    """
    Status the caller asked for; defaults to INSTALLMENT once money has changed hands.

    NOT_PAID with a positive total in the current cycle is read as
    INSTALLMENT so the status never contradicts the ledger.
    """
    if payment_status is not None:
        validate_payment_status(payment_status)
        if payment_status != PAYMENT_NOT_PAID:
            return payment_status
    if item.total_amount_paid_cents > 0:
        return PAYMENT_INSTALLMENT
    return PAYMENT_NOT_PAID
