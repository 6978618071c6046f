# Overview: Daily stock open/close sessions and transaction counters.

"""
Daily Stock Session Service

WHY: Reconcile what is physically on the shelf against what the system
recorded during one business day, per company.

DESIGN PRINCIPLES:
- One session per (company, business_date); open is insert-if-absent and
  relies on the unique constraint, so two concurrent opens cannot both win
- Counters are incremented in the database (UPDATE ... SET n = n + k) and
  only while the session is open; no read-modify-write in Python
- Closing is terminal: closing counts and discrepancies are captured once
  and the row is frozen
- Status buckets are coarser than item statuses; SOLD is not counted
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, PreconditionFailed, StateConflict, ValidationError
from ..extensions import db
from ..identity import Actor, require_actor
from ..models import Company, DailyStockSession
from ..models.daily_stock import STATUS_BUCKETS
from ..models.inventory import (
    STATUS_AVAILABLE,
    STATUS_COLLECTED,
    STATUS_COLLECTED_UNPAID,
    STATUS_IN_STOCK,
    STATUS_RETURNED,
    STATUS_UNDER_REPAIR,
)
from ..time_utils import business_today, utcnow
from ..validation import coerce_int
from .concurrency import run_with_retry
from .item_store import count_by_status

logger = logging.getLogger(__name__)


# Item status -> reporting bucket (SOLD has no bucket)
STATUS_TO_BUCKET = {
    STATUS_AVAILABLE: "available",
    STATUS_IN_STOCK: "available",
    STATUS_UNDER_REPAIR: "in_repair",
    STATUS_COLLECTED_UNPAID: "reserved",
    STATUS_COLLECTED: "reserved",
    STATUS_RETURNED: "damaged",
}

BUCKET_LABELS = {
    "available": "available",
    "in_repair": "in-repair",
    "reserved": "reserved",
    "damaged": "damaged",
}

TX_SALE = "sale"
TX_REPAIR = "repair"
TX_REPAIR_COMPLETE = "repair_complete"
TX_RETURN = "return"
TX_NEW_ADDITION = "new_addition"

# transaction type -> (counter column, cash flow column or None)
TRANSACTION_COLUMNS = {
    TX_SALE: ("sales", "cash_flow_sales_cents"),
    TX_REPAIR: ("repairs_sent", "cash_flow_repairs_cents"),
    TX_REPAIR_COMPLETE: ("repairs_completed", None),
    TX_RETURN: ("returns", None),
    TX_NEW_ADDITION: ("new_additions", None),
}


# =============================================================================
# COUNTS
# =============================================================================

def bucket_counts(company_id: int) -> dict:
    """Current inventory grouped into reporting buckets, plus their total."""
    counts = {bucket: 0 for bucket in STATUS_BUCKETS}
    for status, n in count_by_status(company_id).items():
        bucket = STATUS_TO_BUCKET.get(status)
        if bucket is not None:
            counts[bucket] += n
    counts["total"] = sum(counts[b] for b in STATUS_BUCKETS)
    return counts


def compute_discrepancies(opening: dict, closing: dict) -> list[dict]:
    """One entry per bucket whose closing count differs from its opening count."""
    discrepancies = []
    for bucket in STATUS_BUCKETS:
        delta = closing[bucket] - opening[bucket]
        if delta == 0:
            continue
        direction = "increased" if delta > 0 else "decreased"
        discrepancies.append({
            "type": bucket,
            "description": (
                f"{BUCKET_LABELS[bucket].capitalize()} stock {direction} by {abs(delta)} "
                f"(opening {opening[bucket]}, closing {closing[bucket]})"
            ),
            "quantity": abs(delta),
            "delta": delta,
        })
    return discrepancies


# =============================================================================
# OPEN / CLOSE
# =============================================================================

def open_day(company_id: int, actor: Actor, business_date: date | None = None) -> DailyStockSession:
    """
    Open the stock session for a company-day and capture opening counts.

    Raises StateConflict if a session already exists for that day, open or
    closed (a closed day is never reopened).
    """
    require_actor(actor)
    day = business_date or business_today()

    if db.session.get(Company, company_id) is None:
        raise NotFound(f"Company {company_id} not found", entity="Company", entity_id=company_id)

    existing = _find_session(company_id, day)
    if existing is not None:
        raise StateConflict(
            f"Daily stock session for {day.isoformat()} already exists",
            current_state="CLOSED" if existing.is_closed else "OPEN",
            action="open_day",
        )

    counts = bucket_counts(company_id)
    session = DailyStockSession(
        company_id=company_id,
        business_date=day,
        opening_time=utcnow(),
        opened_by_id=actor.id,
        opening_total=counts["total"],
        opening_available=counts["available"],
        opening_in_repair=counts["in_repair"],
        opening_reserved=counts["reserved"],
        opening_damaged=counts["damaged"],
        discrepancies=[],
    )
    db.session.add(session)
    try:
        db.session.commit()
    except IntegrityError as exc:
        # Lost the insert race against a concurrent open
        db.session.rollback()
        raise StateConflict(
            f"Daily stock session for {day.isoformat()} already exists",
            current_state="OPEN",
            action="open_day",
        ) from exc

    logger.info(
        "opened daily stock session %s for company %s on %s (opening total %s)",
        session.id, company_id, day, counts["total"],
    )
    return session


def close_day(
    company_id: int,
    actor: Actor,
    business_date: date | None = None,
    notes: str | None = None,
) -> DailyStockSession:
    """
    Close the session: capture closing counts and per-bucket discrepancies.

    Raises PreconditionFailed if no session was opened for the day and
    StateConflict if it is already closed.
    """
    require_actor(actor)
    day = business_date or business_today()

    def _op():
        session = (
            db.session.query(DailyStockSession)
            .filter_by(company_id=company_id, business_date=day)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if session is None:
            raise PreconditionFailed(
                f"No daily stock session open for {day.isoformat()}",
                company_id=company_id,
                date=day.isoformat(),
            )
        if session.is_closed:
            raise StateConflict(
                f"Daily stock session for {day.isoformat()} is already closed",
                current_state="CLOSED",
                action="close_day",
            )

        counts = bucket_counts(company_id)
        opening = {b: getattr(session, f"opening_{b}") for b in STATUS_BUCKETS}

        session.closing_total = counts["total"]
        for bucket in STATUS_BUCKETS:
            setattr(session, f"closing_{bucket}", counts[bucket])
        session.discrepancies = compute_discrepancies(opening, counts)
        session.notes = notes
        session.closed_by_id = actor.id
        session.closing_time = utcnow()

        db.session.commit()
        return session

    session = run_with_retry(_op)
    if session.discrepancies:
        logger.warning(
            "daily stock session %s for company %s closed with %d discrepancies",
            session.id, company_id, len(session.discrepancies),
        )
    else:
        logger.info("daily stock session %s for company %s closed clean", session.id, company_id)
    return session


# =============================================================================
# TRANSACTIONS
# =============================================================================

def record_transaction(
    company_id: int,
    transaction_type: str,
    quantity: int = 1,
    amount_cents: int = 0,
    *,
    business_date: date | None = None,
    commit: bool = True,
) -> None:
    """
    Increment the session counters for one transaction.

    The increment is a single UPDATE guarded by "closing_time IS NULL", so
    concurrent callers never lose updates. With commit=False the UPDATE
    joins the caller's unit of work and is rolled back with it.

    Raises PreconditionFailed when no session exists for the day and
    StateConflict when that session is already closed.
    """
    if transaction_type not in TRANSACTION_COLUMNS:
        raise ValidationError(
            f"Invalid transaction type '{transaction_type}'. "
            f"Must be one of: {', '.join(TRANSACTION_COLUMNS)}",
            field="type",
        )
    quantity = coerce_int(quantity, "quantity")
    if quantity < 1:
        raise ValidationError("quantity must be >= 1", field="quantity")
    amount_cents = coerce_int(amount_cents, "amount_cents")
    if amount_cents < 0:
        raise ValidationError("amount_cents must be >= 0", field="amount_cents")

    day = business_date or business_today()
    counter, cash_column = TRANSACTION_COLUMNS[transaction_type]

    values = {counter: getattr(DailyStockSession, counter) + quantity}
    if cash_column is not None and amount_cents:
        values[cash_column] = getattr(DailyStockSession, cash_column) + amount_cents
        values["cash_flow_total_cents"] = DailyStockSession.cash_flow_total_cents + amount_cents

    stmt = (
        update(DailyStockSession)
        .where(
            DailyStockSession.company_id == company_id,
            DailyStockSession.business_date == day,
            DailyStockSession.closing_time.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount == 0:
        session = _find_session(company_id, day)
        if session is None:
            logger.info(
                "rejected %s transaction for company %s: no session for %s",
                transaction_type, company_id, day,
            )
            raise PreconditionFailed(
                f"No daily stock session open for {day.isoformat()}",
                company_id=company_id,
                date=day.isoformat(),
            )
        raise StateConflict(
            f"Daily stock session for {day.isoformat()} is closed",
            current_state="CLOSED",
            action=f"record_transaction:{transaction_type}",
        )

    logger.debug(
        "company %s %s: %s += %d (amount %d)",
        company_id, day, counter, quantity, amount_cents,
    )
    if commit:
        db.session.commit()


# =============================================================================
# QUERY HELPERS
# =============================================================================

def _find_session(company_id: int, day: date) -> DailyStockSession | None:
    return db.session.query(DailyStockSession).filter_by(
        company_id=company_id,
        business_date=day,
    ).first()


def has_open_session(company_id: int, business_date: date | None = None) -> bool:
    return get_open_session(company_id, business_date) is not None


def get_open_session(company_id: int, business_date: date | None = None) -> DailyStockSession | None:
    day = business_date or business_today()
    return db.session.query(DailyStockSession).filter(
        DailyStockSession.company_id == company_id,
        DailyStockSession.business_date == day,
        DailyStockSession.closing_time.is_(None),
    ).first()


def get_session(company_id: int, business_date: date) -> DailyStockSession:
    session = _find_session(company_id, business_date)
    if session is None:
        raise NotFound(
            f"No daily stock session for {business_date.isoformat()}",
            entity="DailyStockSession",
            company_id=company_id,
        )
    return session


def list_sessions(company_id: int, limit: int = 30) -> list[DailyStockSession]:
    """Most recent sessions first."""
    return (
        db.session.query(DailyStockSession)
        .filter_by(company_id=company_id)
        .order_by(DailyStockSession.business_date.desc())
        .limit(limit)
        .all()
    )
