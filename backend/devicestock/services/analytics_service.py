# Overview: Aggregate sales, repair and collection figures for a company.

"""
Inventory Analytics

Read-only aggregates over inventory items, repair entries and returns.

DESIGN PRINCIPLES:
- Sales figures count SOLD items only, bucketed by sales_date; date ranges
  are inclusive on both ends
- Net profit is selling price - purchase price - repair cost - partial
  refunds, the same rule calculate_profit_cents applies to one item
- Average repair time covers completed repairs only (completed_at set)
- All money is integer cents; averages are rounded to the nearest cent
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import func, select

from ..extensions import db
from ..identity import Actor, ensure_same_company
from ..models import InventoryItem, RepairEntry, ReturnRecord
from ..models.documents import REFUND_PARTIAL
from ..models.inventory import (
    STATUS_AVAILABLE,
    STATUS_COLLECTED,
    STATUS_COLLECTED_UNPAID,
    STATUS_SOLD,
)
from ..time_utils import business_today, to_utc_z

logger = logging.getLogger(__name__)


def _scope(company_id: int, actor: Actor | None) -> None:
    if actor is not None:
        ensure_same_company(actor, company_id, entity="Company", entity_id=company_id)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[start of day, start of next day) as UTC-naive datetimes."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def month_bounds(day: date) -> tuple[datetime, datetime]:
    """[first instant of the month, first instant of the next month)."""
    start = datetime.combine(day.replace(day=1), time.min)
    if start.month == 12:
        next_start = start.replace(year=start.year + 1, month=1)
    else:
        next_start = start.replace(month=start.month + 1)
    return start, next_start


def _sold_filter(query, company_id: int, start: datetime | None, end: datetime | None, *, end_inclusive: bool = True):
    query = query.filter(
        InventoryItem.company_id == company_id,
        InventoryItem.status == STATUS_SOLD,
    )
    if start is not None:
        query = query.filter(InventoryItem.sales_date >= start)
    if end is not None:
        if end_inclusive:
            query = query.filter(InventoryItem.sales_date <= end)
        else:
            query = query.filter(InventoryItem.sales_date < end)
    return query


# =============================================================================
# SALES
# =============================================================================

def total_sales_revenue_cents(
    company_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    actor: Actor | None = None,
) -> int:
    _scope(company_id, actor)
    query = _sold_filter(
        db.session.query(func.coalesce(func.sum(InventoryItem.selling_price_cents), 0)),
        company_id, start, end,
    )
    return int(query.scalar() or 0)


def gadgets_sold(
    company_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    actor: Actor | None = None,
) -> int:
    _scope(company_id, actor)
    query = _sold_filter(db.session.query(func.count(InventoryItem.id)), company_id, start, end)
    return int(query.scalar() or 0)


def average_selling_price_cents(
    company_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    actor: Actor | None = None,
) -> int | None:
    """Mean selling price of sold items; None when nothing sold."""
    _scope(company_id, actor)
    query = _sold_filter(db.session.query(func.avg(InventoryItem.selling_price_cents)), company_id, start, end)
    value = query.scalar()
    return int(round(value)) if value is not None else None


def net_profit_cents(
    company_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    actor: Actor | None = None,
) -> int:
    _scope(company_id, actor)
    totals = _sold_filter(
        db.session.query(
            func.coalesce(func.sum(InventoryItem.selling_price_cents), 0),
            func.coalesce(func.sum(InventoryItem.purchase_price_cents), 0),
            func.coalesce(func.sum(InventoryItem.total_repair_cost_cents), 0),
        ),
        company_id, start, end,
    ).one()
    revenue, cost, repairs = (int(v or 0) for v in totals)

    sold_ids = _sold_filter(select(InventoryItem.id), company_id, start, end)
    partial_refunds = db.session.query(
        func.coalesce(func.sum(ReturnRecord.refund_amount_cents), 0)
    ).filter(
        ReturnRecord.item_id.in_(sold_ids),
        ReturnRecord.refund_type == REFUND_PARTIAL,
    ).scalar()

    return revenue - cost - repairs - int(partial_refunds or 0)


def revenue_in_date_range(
    company_id: int,
    start: datetime,
    end: datetime,
    *,
    actor: Actor | None = None,
) -> dict:
    """Revenue and unit count of items sold between start and end (inclusive)."""
    _scope(company_id, actor)
    if end < start:
        start, end = end, start
    row = _sold_filter(
        db.session.query(
            func.count(InventoryItem.id),
            func.coalesce(func.sum(InventoryItem.selling_price_cents), 0),
        ),
        company_id, start, end,
    ).one()
    return {
        "company_id": company_id,
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "gadgets_sold": int(row[0] or 0),
        "revenue_cents": int(row[1] or 0),
    }


def sales_for_date(company_id: int, day: date, *, actor: Actor | None = None) -> list[InventoryItem]:
    """Items sold on one calendar day, earliest sale first."""
    _scope(company_id, actor)
    start, next_day = day_bounds(day)
    return (
        _sold_filter(db.session.query(InventoryItem), company_id, start, next_day, end_inclusive=False)
        .order_by(InventoryItem.sales_date.asc(), InventoryItem.id.asc())
        .all()
    )


# =============================================================================
# REPAIRS / COLLECTIONS
# =============================================================================

def repair_metrics(
    company_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    actor: Actor | None = None,
) -> dict:
    """
    Repair entries started between start and end (inclusive).

    average_repair_seconds is None when none of them has completed.
    """
    _scope(company_id, actor)
    base = db.session.query(RepairEntry).join(
        InventoryItem, RepairEntry.item_id == InventoryItem.id,
    ).filter(InventoryItem.company_id == company_id)
    if start is not None:
        base = base.filter(RepairEntry.date >= start)
    if end is not None:
        base = base.filter(RepairEntry.date <= end)

    count, cost = base.with_entities(
        func.count(RepairEntry.id),
        func.coalesce(func.sum(RepairEntry.repair_cost_cents), 0),
    ).one()

    durations = [
        (completed_at - started).total_seconds()
        for started, completed_at in base.filter(RepairEntry.completed_at.isnot(None))
        .with_entities(RepairEntry.date, RepairEntry.completed_at)
        .all()
    ]
    average = round(sum(durations) / len(durations)) if durations else None

    return {
        "total_repairs": int(count or 0),
        "completed_repairs": len(durations),
        "average_repair_seconds": average,
        "total_repair_cost_cents": int(cost or 0),
    }


def collected_unpaid_total(company_id: int, *, actor: Actor | None = None) -> dict:
    """Items out with a collector and not yet settled: count, value and balance still owed."""
    _scope(company_id, actor)
    count, value, paid = db.session.query(
        func.count(InventoryItem.id),
        func.coalesce(func.sum(InventoryItem.selling_price_cents), 0),
        func.coalesce(func.sum(InventoryItem.total_amount_paid_cents), 0),
    ).filter(
        InventoryItem.company_id == company_id,
        InventoryItem.status.in_([STATUS_COLLECTED, STATUS_COLLECTED_UNPAID]),
    ).one()
    value, paid = int(value or 0), int(paid or 0)
    return {
        "count": int(count or 0),
        "value_cents": value,
        "paid_cents": paid,
        "outstanding_cents": max(0, value - paid),
    }


# =============================================================================
# MONTHLY SUMMARY
# =============================================================================

def monthly_sales_metrics(company_id: int, *, month_of: date | None = None, actor: Actor | None = None) -> dict:
    """
    Sales, repair and stock figures for the calendar month containing month_of
    (default: the current business day).

    Inventory and availability counts are current, not month-bounded.
    """
    _scope(company_id, actor)
    start, next_month = month_bounds(month_of or business_today())
    end = next_month - timedelta(microseconds=1)

    revenue = total_sales_revenue_cents(company_id, start=start, end=end)
    sold = gadgets_sold(company_id, start=start, end=end)
    repairs = repair_metrics(company_id, start=start, end=end)

    returns = db.session.query(func.count(ReturnRecord.id)).filter(
        ReturnRecord.company_id == company_id,
        ReturnRecord.return_date >= start,
        ReturnRecord.return_date < next_month,
    ).scalar()
    inventory_count = db.session.query(func.count(InventoryItem.id)).filter(
        InventoryItem.company_id == company_id,
        InventoryItem.status != STATUS_SOLD,
    ).scalar()
    available = db.session.query(func.count(InventoryItem.id)).filter(
        InventoryItem.company_id == company_id,
        InventoryItem.status == STATUS_AVAILABLE,
    ).scalar()

    metrics = {
        "company_id": company_id,
        "month": start.strftime("%Y-%m"),
        "total_revenue_cents": revenue,
        "net_profit_cents": net_profit_cents(company_id, start=start, end=end),
        "total_gadgets_sold": sold,
        "average_selling_price_cents": average_selling_price_cents(company_id, start=start, end=end),
        "total_repairs": repairs["total_repairs"],
        "average_repair_seconds": repairs["average_repair_seconds"],
        "total_repair_cost_cents": repairs["total_repair_cost_cents"],
        "total_inventory_count": int(inventory_count or 0),
        "total_available_devices": int(available or 0),
        "returns": int(returns or 0),
        "collected_unpaid": collected_unpaid_total(company_id),
    }
    logger.debug("monthly metrics for company %s (%s): %s sold", company_id, metrics["month"], sold)
    return metrics
