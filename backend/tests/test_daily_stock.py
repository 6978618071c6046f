"""
Daily stock session tests: open/close, counters, buckets, discrepancies.
"""

from datetime import date, timedelta

import pytest

from devicestock.errors import (
    ImmutableRecordError,
    NotFound,
    PreconditionFailed,
    StateConflict,
    ValidationError,
)
from devicestock.models import DailyStockSession
from devicestock.services import daily_stock_service, lifecycle_service
from devicestock.services.daily_stock_service import compute_discrepancies
from devicestock.time_utils import business_today


def _set_status(db_session, item, status):
    item.status = status
    db_session.commit()


# =============================================================================
# OPEN
# =============================================================================

def test_open_day_captures_bucket_counts(db_session, company, actor, make_item):
    statuses = ["IN_STOCK", "AVAILABLE", "UNDER_REPAIR", "COLLECTED", "COLLECTED_UNPAID", "RETURNED", "SOLD"]
    for status in statuses:
        _set_status(db_session, make_item(), status)

    session = daily_stock_service.open_day(company.id, actor)

    assert session.business_date == business_today()
    assert session.opened_by_id == actor.id
    assert session.opening_count == {
        "total": 6,
        "by_status": {"available": 2, "in_repair": 1, "reserved": 2, "damaged": 1},
    }
    assert session.is_closed is False


def test_open_day_twice_conflicts(db_session, company, actor):
    daily_stock_service.open_day(company.id, actor)

    with pytest.raises(StateConflict) as exc_info:
        daily_stock_service.open_day(company.id, actor)
    assert exc_info.value.current_state == "OPEN"
    assert db_session.query(DailyStockSession).count() == 1


def test_closed_day_is_never_reopened(db_session, company, actor):
    daily_stock_service.open_day(company.id, actor)
    daily_stock_service.close_day(company.id, actor)

    with pytest.raises(StateConflict) as exc_info:
        daily_stock_service.open_day(company.id, actor)
    assert exc_info.value.current_state == "CLOSED"


def test_sessions_are_per_company_and_day(db_session, company, other_company, actor, other_actor):
    yesterday = business_today() - timedelta(days=1)
    daily_stock_service.open_day(company.id, actor)
    daily_stock_service.open_day(company.id, actor, business_date=yesterday)
    daily_stock_service.open_day(other_company.id, other_actor)

    assert [s.business_date for s in daily_stock_service.list_sessions(company.id)] == [
        business_today(), yesterday,
    ]


def test_open_day_for_unknown_company(db_session, actor):
    with pytest.raises(NotFound):
        daily_stock_service.open_day(424242, actor)


# =============================================================================
# TRANSACTIONS
# =============================================================================

def test_record_transaction_increments_counters(db_session, company, open_session):
    daily_stock_service.record_transaction(company.id, "sale", 2, 150000)
    daily_stock_service.record_transaction(company.id, "repair", 1, 2500)
    daily_stock_service.record_transaction(company.id, "repair_complete")
    daily_stock_service.record_transaction(company.id, "return")
    daily_stock_service.record_transaction(company.id, "new_addition", 3)

    session = daily_stock_service.get_session(company.id, business_today())
    assert session.to_dict()["transactions"] == {
        "sales": 2,
        "repairs_sent": 1,
        "repairs_completed": 1,
        "returns": 1,
        "new_additions": 3,
    }
    assert session.to_dict()["cash_flow"] == {
        "sales_cents": 150000,
        "repairs_cents": 2500,
        "total_cents": 152500,
    }


def test_record_transaction_without_session(db_session, company):
    with pytest.raises(PreconditionFailed):
        daily_stock_service.record_transaction(company.id, "sale", 1, 100)


def test_record_transaction_after_close(db_session, company, actor, open_session):
    daily_stock_service.close_day(company.id, actor)

    with pytest.raises(StateConflict):
        daily_stock_service.record_transaction(company.id, "sale", 1, 100)

    session = daily_stock_service.get_session(company.id, business_today())
    assert session.sales == 0


@pytest.mark.parametrize("tx_type, quantity, amount", [
    ("refund", 1, 0),
    ("sale", 0, 0),
    ("sale", 1, -1),
    ("sale", 1.5, 0),
])
def test_record_transaction_validates_input(db_session, company, open_session, tx_type, quantity, amount):
    with pytest.raises(ValidationError):
        daily_stock_service.record_transaction(company.id, tx_type, quantity, amount)


# =============================================================================
# CLOSE
# =============================================================================

def test_close_with_unchanged_counts_has_no_discrepancies(db_session, company, actor, make_item):
    make_item()
    daily_stock_service.open_day(company.id, actor)

    session = daily_stock_service.close_day(company.id, actor, notes="quiet day")

    assert session.is_closed
    assert session.closed_by_id == actor.id
    assert session.closing_count == session.opening_count
    assert session.discrepancies == []
    assert session.notes == "quiet day"


def test_close_reports_per_bucket_discrepancy(db_session, company, actor, make_available_item):
    first = make_available_item()
    make_available_item()
    daily_stock_service.open_day(company.id, actor)

    lifecycle_service.send_to_repair(first.id, actor, {"technician_name": "Tina Tech"})
    lifecycle_service.create_item(actor, {
        "serial_number": "LATE-1",
        "device_type": "ROUTER",
        "brand": "Netgear",
        "model_name": "R7000",
        "name": "Nighthawk",
        "color": "Black",
        "condition": "New",
    })

    session = daily_stock_service.close_day(company.id, actor)

    assert session.opening_count["by_status"] == {"available": 2, "in_repair": 0, "reserved": 0, "damaged": 0}
    assert session.closing_count["by_status"] == {"available": 2, "in_repair": 1, "reserved": 0, "damaged": 0}
    assert session.closing_total - session.opening_total == 1

    by_bucket = {d["type"]: d for d in session.discrepancies}
    assert set(by_bucket) == {"in_repair"}
    assert by_bucket["in_repair"]["delta"] == 1
    assert by_bucket["in_repair"]["quantity"] == 1
    assert "increased by 1" in by_bucket["in_repair"]["description"]
    assert session.repairs_sent == 1
    assert session.new_additions == 1


def test_compute_discrepancies_uses_closing_minus_opening():
    opening = {"available": 5, "in_repair": 1, "reserved": 2, "damaged": 0}
    closing = {"available": 3, "in_repair": 1, "reserved": 2, "damaged": 1}

    result = compute_discrepancies(opening, closing)

    assert [(d["type"], d["delta"], d["quantity"]) for d in result] == [
        ("available", -2, 2),
        ("damaged", 1, 1),
    ]
    assert "decreased by 2" in result[0]["description"]


def test_close_without_open_session(db_session, company, actor):
    with pytest.raises(PreconditionFailed):
        daily_stock_service.close_day(company.id, actor)


def test_close_twice_conflicts(db_session, company, actor, open_session):
    daily_stock_service.close_day(company.id, actor)

    with pytest.raises(StateConflict):
        daily_stock_service.close_day(company.id, actor)


def test_closed_session_is_frozen(db_session, company, actor, open_session):
    session = daily_stock_service.close_day(company.id, actor)

    session.notes = "rewritten"
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    db_session.delete(daily_stock_service.get_session(company.id, business_today()))
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()


def test_open_session_lookup(db_session, company, actor):
    assert daily_stock_service.get_open_session(company.id) is None
    assert not daily_stock_service.has_open_session(company.id)

    daily_stock_service.open_day(company.id, actor)
    assert daily_stock_service.has_open_session(company.id)

    daily_stock_service.close_day(company.id, actor)
    assert daily_stock_service.get_open_session(company.id) is None


def test_get_session_not_found(db_session, company):
    with pytest.raises(NotFound):
        daily_stock_service.get_session(company.id, date(2001, 1, 1))
