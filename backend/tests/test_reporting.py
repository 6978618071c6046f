"""
Daily report data, rendering and delivery seam tests.
"""

import pytest

from devicestock.errors import NotFound, Unauthorized
from devicestock.services import daily_stock_service, lifecycle_service, return_service
from devicestock.services.reporting_service import (
    ReportSender,
    calculate_profit_cents,
    deliver_daily_report,
    deliver_discrepancy_alert,
    format_cents,
    get_daily_report,
    render_daily_report_html,
)
from devicestock.time_utils import business_today


class RecordingSender(ReportSender):
    def __init__(self):
        self.sent = []

    def send_report(self, html, recipient, subject):
        self.sent.append({"html": html, "recipient": recipient, "subject": subject})


@pytest.fixture
def closed_day(db_session, company, actor, make_available_item):
    """Two available items at open; one sold and one sent to repair before close."""
    sold = make_available_item()
    repaired = make_available_item()
    daily_stock_service.open_day(company.id, actor)
    lifecycle_service.mark_sold(sold.id, actor, 65000, {"name": "Quinn"})
    lifecycle_service.send_to_repair(repaired.id, actor, {"technician_name": "Tina Tech"})
    return daily_stock_service.close_day(company.id, actor)


def test_daily_report_metrics(db_session, company, actor, closed_day):
    report = get_daily_report(company.id, business_today(), actor)

    assert report["status"] == "CLOSED"
    assert report["opening_count"]["total"] == 2
    assert report["closing_count"]["total"] == 1
    assert report["net_inventory_change"] == -1
    assert report["total_transactions"] == 2
    assert report["cash_flow"]["sales_cents"] == 65000
    assert {d["type"] for d in report["discrepancies"]} == {"available", "in_repair"}


def test_report_for_open_day_has_no_net_change(db_session, company, actor, open_session):
    report = get_daily_report(company.id, business_today())

    assert report["status"] == "OPEN"
    assert report["closing_count"] is None
    assert report["net_inventory_change"] is None


def test_report_is_company_scoped(db_session, company, other_actor, open_session):
    with pytest.raises(Unauthorized):
        get_daily_report(company.id, business_today(), other_actor)


def test_report_for_missing_day(db_session, company):
    with pytest.raises(NotFound):
        get_daily_report(company.id, business_today())


def test_rendered_report_contains_summary(db_session, company, closed_day):
    html = render_daily_report_html(get_daily_report(company.id, business_today()))

    assert f"Daily Stock Report - {business_today().isoformat()}" in html
    assert "Opening Stock: 2" in html
    assert "Net Change: -1" in html
    assert "Total Sales Revenue: $650.00" in html
    assert "<h3>Discrepancies</h3>" in html


def test_deliver_daily_report_hands_html_to_sender(db_session, company, closed_day):
    sender = RecordingSender()
    report = get_daily_report(company.id, business_today())

    html = deliver_daily_report(report, sender, "owner@acme.test")

    assert sender.sent == [{
        "html": html,
        "recipient": "owner@acme.test",
        "subject": f"Daily Stock Report - {business_today().isoformat()}",
    }]


def test_discrepancy_alert_only_sent_when_needed(db_session, company, actor, closed_day, other_company, other_actor):
    sender = RecordingSender()

    html = deliver_discrepancy_alert(get_daily_report(company.id, business_today()), sender, "ops@acme.test")
    assert "Stock Discrepancy Alert" in html
    assert "In-repair stock increased by 1" in html
    assert len(sender.sent) == 1

    daily_stock_service.open_day(other_company.id, other_actor)
    daily_stock_service.close_day(other_company.id, other_actor)
    clean = get_daily_report(other_company.id, business_today())
    assert deliver_discrepancy_alert(clean, sender, "ops@beta.test") is None
    assert len(sender.sent) == 1


def test_format_cents():
    assert format_cents(0) == "$0.00"
    assert format_cents(123456789) == "$1,234,567.89"
    assert format_cents(-5) == "-$0.05"
    assert format_cents(None) == "-"


# =============================================================================
# PROFIT
# =============================================================================

def test_profit_on_sold_item_subtracts_cost_and_repairs(db_session, actor, open_session, make_available_item):
    item = make_available_item(purchase_price_cents=20000, selling_price_cents=50000)
    lifecycle_service.send_to_repair(item.id, actor, {"technician_name": "Tina Tech", "repair_cost_cents": 3000})
    lifecycle_service.complete_repair(item.id, actor)
    item = lifecycle_service.mark_sold(item.id, actor, 52000, {"name": "Uma"})

    assert calculate_profit_cents(item) == 52000 - 20000 - 3000


def test_profit_subtracts_partial_refunds(db_session, actor, open_session, make_available_item):
    item = make_available_item(purchase_price_cents=20000)
    return_service.process_return(item.id, actor, 1500, "PARTIAL")
    item = lifecycle_service.mark_sold(item.id, actor, 30000, {"name": "Vic"})

    # cost basis is now the refund amount
    assert calculate_profit_cents(item) == 30000 - 1500 - 1500


def test_profit_is_zero_for_unsold_items(db_session, actor, make_available_item):
    item = make_available_item()

    assert calculate_profit_cents(item) == 0
    item.status = "RETURNED"
    assert calculate_profit_cents(item) == 0
    db_session.rollback()
