"""
Change history recorder tests.

snapshot() and diff() are pure; recorded history is append-only and read
back chronologically unless newest-first is requested.
"""

from datetime import datetime, timedelta

import pytest

from devicestock.errors import ImmutableRecordError, Unauthorized
from devicestock.models import ChangeRecord
from devicestock.services import lifecycle_service
from devicestock.time_utils import utcnow
from devicestock.services.change_history_service import (
    diff,
    get_change_history,
    snapshot,
)


# =============================================================================
# PURE DIFF
# =============================================================================

def test_diff_records_only_changed_fields():
    before = {"status": "AVAILABLE", "selling_price_cents": 500, "notes": None}
    after = {"status": "SOLD", "selling_price_cents": 500, "notes": None}

    assert diff(before, after) == [
        {"field": "status", "old_value": "AVAILABLE", "new_value": "SOLD"},
    ]


def test_diff_compares_nested_values_structurally():
    before = {"customer_details": {"name": "A", "contact": "123"}}
    same = {"customer_details": {"contact": "123", "name": "A"}}
    changed = {"customer_details": {"name": "A", "contact": "456"}}

    assert diff(before, same) == []
    assert diff(before, changed) == [{
        "field": "customer_details",
        "old_value": {"name": "A", "contact": "123"},
        "new_value": {"name": "A", "contact": "456"},
    }]


def test_diff_only_considers_keys_present_after():
    before = {"status": "AVAILABLE", "color": "Red"}
    after = {"status": "AVAILABLE"}

    assert diff(before, after) == []


def test_diff_degrades_to_no_records_on_malformed_input(caplog):
    assert diff(None, {"status": "SOLD"}) == []
    assert diff({"status": "SOLD"}, "not-a-dict") == []
    assert "could not diff" in caplog.text


def test_snapshot_renders_datetimes_as_utc_z(db_session, make_item):
    item = make_item()
    item.sales_date = datetime(2024, 5, 1, 10, 30, 15, 999)

    snap = snapshot(item, ["sales_date", "status"])

    assert snap == {"sales_date": "2024-05-01T10:30:15.000999Z", "status": "IN_STOCK"}
    db_session.rollback()


def test_sub_second_datetime_change_is_a_difference():
    before = {"sales_date": "2024-05-01T10:30:15.000100Z"}
    after = {"sales_date": "2024-05-01T10:30:15.000900Z"}

    assert diff(before, after) == [{
        "field": "sales_date",
        "old_value": "2024-05-01T10:30:15.000100Z",
        "new_value": "2024-05-01T10:30:15.000900Z",
    }]


# =============================================================================
# RECORDED HISTORY
# =============================================================================

def test_mutation_records_one_entry_per_changed_field(db_session, actor, make_item):
    item = make_item()

    lifecycle_service.make_available(item.id, actor, 20000, 45000)

    history = get_change_history(item.id, actor)
    by_field = {r.field: r for r in history}
    assert set(by_field) == {"status", "purchase_price_cents", "selling_price_cents"}
    assert by_field["status"].old_value == "IN_STOCK"
    assert by_field["status"].new_value == "AVAILABLE"
    assert by_field["purchase_price_cents"].old_value == 0
    assert by_field["selling_price_cents"].old_value is None
    assert by_field["selling_price_cents"].new_value == 45000
    assert by_field["status"].changed_by_id == actor.id
    assert by_field["status"].changed_by_name == "Alice Admin"
    assert by_field["status"].changed_by_email == "alice@acme.test"


def test_mutation_without_value_change_records_nothing(db_session, actor, make_item):
    item = make_item(color="Blue")

    lifecycle_service.update_item_details(item.id, actor, {"color": "Blue", "notes": None})

    assert get_change_history(item.id, actor) == []


def test_history_is_chronological_by_default(db_session, actor, make_item):
    item = make_item()
    lifecycle_service.update_item_details(item.id, actor, {"color": "Red"})
    lifecycle_service.update_item_details(item.id, actor, {"color": "Green"})

    oldest_first = [r.new_value for r in get_change_history(item.id, actor)]
    newest_first = [r.new_value for r in get_change_history(item.id, actor, newest_first=True)]

    assert oldest_first == ["Red", "Green"]
    assert newest_first == ["Green", "Red"]


def test_history_date_range_filter(db_session, actor, make_item):
    item = make_item()
    lifecycle_service.update_item_details(item.id, actor, {"color": "Red"})

    now = utcnow()
    assert len(get_change_history(item.id, actor, start=now - timedelta(hours=1))) == 1
    assert get_change_history(item.id, actor, start=now + timedelta(hours=1)) == []
    assert get_change_history(item.id, actor, end=now - timedelta(hours=1)) == []


def test_history_limit_is_capped_by_config(app, db_session, actor, make_item):
    item = make_item()
    for color in ("Red", "Green", "Blue"):
        lifecycle_service.update_item_details(item.id, actor, {"color": color})

    app.config["CHANGE_HISTORY_PAGE_LIMIT"] = 2
    try:
        assert len(get_change_history(item.id, actor)) == 2
        assert len(get_change_history(item.id, actor, limit=1)) == 1
    finally:
        app.config["CHANGE_HISTORY_PAGE_LIMIT"] = 500


def test_history_is_company_scoped(db_session, actor, other_actor, make_item):
    item = make_item()

    with pytest.raises(Unauthorized):
        get_change_history(item.id, other_actor)


# =============================================================================
# IMMUTABILITY
# =============================================================================

def test_change_records_cannot_be_updated(db_session, actor, make_item):
    item = make_item()
    lifecycle_service.update_item_details(item.id, actor, {"color": "Red"})
    record = db_session.query(ChangeRecord).filter_by(item_id=item.id).one()

    record.new_value = "Tampered"
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()


def test_change_records_cannot_be_deleted(db_session, actor, make_item):
    item = make_item()
    lifecycle_service.update_item_details(item.id, actor, {"color": "Red"})
    record = db_session.query(ChangeRecord).filter_by(item_id=item.id).one()

    db_session.delete(record)
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()
