"""
Return processor tests.
"""

import pytest

from devicestock.errors import (
    ImmutableRecordError,
    PreconditionFailed,
    StateConflict,
    Unauthorized,
    ValidationError,
)
from devicestock.models import DailyStockSession, InventoryItem, ReturnRecord
from devicestock.services import lifecycle_service, payment_service, return_service
from devicestock.services.change_history_service import get_change_history


def test_return_of_sold_item_restocks_at_refund_price(db_session, actor, open_session, make_available_item):
    item = make_available_item(purchase_price_cents=20000, selling_price_cents=50000)
    lifecycle_service.mark_sold(item.id, actor, 50000, {"name": "Ruth"})

    record, item = return_service.process_return(
        item.id, actor, 200, "PARTIAL", reason="Scratched housing",
    )

    assert item.status == "AVAILABLE"
    assert item.purchase_price_cents == 200
    assert item.selling_price_cents == 0
    assert record.item_id == item.id
    assert record.company_id == item.company_id
    assert record.refund_amount_cents == 200
    assert record.refund_type == "PARTIAL"
    assert record.reason == "Scratched housing"
    assert record.processed_by_id == actor.id
    assert db_session.query(ReturnRecord).filter_by(item_id=item.id).count() == 1
    assert [r.id for r in item.returns] == [record.id]


def test_return_counts_on_session_and_logs_changes(db_session, actor, open_session, make_available_item):
    item = make_available_item()
    lifecycle_service.mark_sold(item.id, actor, 50000, {"name": "Ruth"})

    return_service.process_return(item.id, actor, 45000, "FULL")

    assert db_session.get(DailyStockSession, open_session.id).returns == 1
    latest = {r.field: r for r in get_change_history(item.id, actor)}
    assert latest["status"].old_value == "SOLD"
    assert latest["status"].new_value == "AVAILABLE"
    assert latest["purchase_price_cents"].new_value == 45000
    assert latest["selling_price_cents"].new_value == 0
    statuses = [log.status for log in lifecycle_service.get_status_logs(item.id, actor)]
    assert statuses[-2:] == ["SOLD", "AVAILABLE"]


def test_return_resets_payment_state(db_session, actor, open_session, make_available_item):
    item = make_available_item(selling_price_cents=50000)
    lifecycle_service.collect_unpaid(item.id, actor, {"name": "Carl"}, trusted_collector=True)
    sold = lifecycle_service.update_status_and_payments(item.id, actor, {
        "customer_details": {"name": "Ruth"},
        "installment_payment": {"amount_paid_cents": 50000},
    })
    assert (sold.status, sold.payment_status) == ("SOLD", "PAID")

    _, item = return_service.process_return(item.id, actor, 40000, "FULL")

    assert item.status == "AVAILABLE"
    assert item.payment_status == "NOT_PAID"
    assert item.total_amount_paid_cents == 0
    assert item.payment_cycle == 1
    assert item.customer_details is None
    assert item.collected_by is None
    assert item.trusted_collector is False
    assert item.sales_date is None
    # earlier payments stay on record
    assert [p.amount_paid_cents for p in item.installment_payments] == [50000]
    assert item.installment_payments[0].payment_cycle == 0


def test_resale_after_return_is_not_paid(db_session, actor, open_session, make_available_item):
    item = make_available_item(selling_price_cents=50000)
    lifecycle_service.collect_unpaid(item.id, actor, {"name": "Carl"})
    lifecycle_service.record_payment(item.id, actor, installment={"amount_paid_cents": 50000})

    return_service.process_return(item.id, actor, 40000, "FULL")
    lifecycle_service.make_available(item.id, actor, 40000, 45000)
    item = lifecycle_service.mark_sold(item.id, actor, 45000, {"name": "New buyer"})

    assert item.status == "SOLD"
    assert item.payment_status == "NOT_PAID"
    assert item.total_amount_paid_cents == 0
    assert payment_service.outstanding_balance_cents(item) == 45000
    assert item.customer_details["name"] == "New buyer"


def test_resale_after_return_settles_on_new_payments_only(db_session, actor, open_session, make_available_item):
    item = make_available_item(selling_price_cents=50000)
    lifecycle_service.collect_unpaid(item.id, actor, {"name": "Carl"})
    lifecycle_service.record_payment(item.id, actor, installment={"amount_paid_cents": 50000})
    return_service.process_return(item.id, actor, 40000, "FULL")
    lifecycle_service.make_available(item.id, actor, 40000, 45000)

    lifecycle_service.collect_unpaid(item.id, actor, {"name": "Second Collector"})
    item = lifecycle_service.record_payment(item.id, actor, installment={"amount_paid_cents": 20000})
    assert (item.status, item.payment_status) == ("COLLECTED", "INSTALLMENT")
    assert item.total_amount_paid_cents == 20000

    item = lifecycle_service.record_payment(item.id, actor, bank_payment={"amount_cents": 25000, "payment_method": "TRANSFER"})
    assert (item.status, item.payment_status) == ("SOLD", "PAID")
    assert item.total_amount_paid_cents == 45000
    assert len(item.installment_payments) == 2


def test_return_from_available_is_allowed(db_session, actor, open_session, make_available_item):
    item = make_available_item()

    record, item = return_service.process_return(item.id, actor, 0, "FULL")

    assert item.status == "AVAILABLE"
    assert item.purchase_price_cents == 0
    assert record.refund_amount_cents == 0


def test_return_rejected_while_under_repair(db_session, actor, open_session, make_available_item):
    item = make_available_item()
    lifecycle_service.send_to_repair(item.id, actor, {"technician_name": "Tina Tech"})

    with pytest.raises(StateConflict) as exc_info:
        return_service.process_return(item.id, actor, 100, "FULL")

    assert exc_info.value.current_state == "UNDER_REPAIR"
    assert db_session.query(ReturnRecord).count() == 0


def test_return_rejected_for_collected_item(db_session, actor, open_session, make_available_item):
    item = make_available_item()
    lifecycle_service.collect_unpaid(item.id, actor, {"name": "Carl"})

    with pytest.raises(StateConflict):
        return_service.process_return(item.id, actor, 100, "FULL")


def test_return_without_open_session_applies_nothing(db_session, actor, make_available_item):
    item = make_available_item(purchase_price_cents=20000)

    with pytest.raises(PreconditionFailed):
        return_service.process_return(item.id, actor, 100, "FULL")

    assert db_session.query(ReturnRecord).count() == 0
    fresh = db_session.get(InventoryItem, item.id)
    assert fresh.purchase_price_cents == 20000
    assert fresh.selling_price_cents == 50000


def test_return_is_company_scoped(db_session, other_actor, make_available_item):
    item = make_available_item()

    with pytest.raises(Unauthorized):
        return_service.process_return(item.id, other_actor, 100, "FULL")


@pytest.mark.parametrize("refund, refund_type", [
    (-1, "FULL"),
    (100, "STORE_CREDIT"),
    ("12.50", "PARTIAL"),
])
def test_return_validates_input(db_session, actor, open_session, make_available_item, refund, refund_type):
    item = make_available_item()

    with pytest.raises(ValidationError):
        return_service.process_return(item.id, actor, refund, refund_type)


def test_return_records_are_immutable(db_session, actor, open_session, make_available_item):
    item = make_available_item()
    record, _ = return_service.process_return(item.id, actor, 100, "FULL")

    record.refund_amount_cents = 1
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()


def test_get_item_returns_lists_every_return(db_session, actor, open_session, make_available_item):
    item = make_available_item()
    first, _ = return_service.process_return(item.id, actor, 100, "PARTIAL")
    lifecycle_service.mark_sold(item.id, actor, 900, {"name": "Sam"})
    second, _ = return_service.process_return(item.id, actor, 800, "FULL")

    returns = return_service.get_item_returns(item.id, actor)

    assert [r.id for r in returns] == [first.id, second.id]
