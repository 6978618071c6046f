# Overview: Daily stock report data, HTML rendering, and the report delivery seam.

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date

from flask import render_template_string

from ..identity import Actor, ensure_same_company
from ..models import InventoryItem
from ..models.documents import REFUND_PARTIAL
from ..models.inventory import STATUS_SOLD
from .daily_stock_service import get_session

logger = logging.getLogger(__name__)


class ReportSender(ABC):
    """
    Delivery seam for rendered reports (email, chat webhook, ...).

    The core renders HTML and hands it over; it never performs delivery.
    """

    @abstractmethod
    def send_report(self, html: str, recipient: str, subject: str) -> None:
        ...


DAILY_REPORT_TEMPLATE = """\
<h2>Daily Stock Report - {{ report.date }}</h2>

<h3>Inventory Summary</h3>
<ul>
    <li>Opening Stock: {{ report.opening_count.total }}</li>
    <li>Closing Stock: {{ report.closing_count.total if report.closing_count else "open" }}</li>
    <li>Net Change: {{ report.net_inventory_change if report.net_inventory_change is not none else "n/a" }}</li>
</ul>

<h3>Transactions</h3>
<ul>
    <li>Sales: {{ report.transactions.sales }}</li>
    <li>Repairs Sent: {{ report.transactions.repairs_sent }}</li>
    <li>Repairs Completed: {{ report.transactions.repairs_completed }}</li>
    <li>Returns: {{ report.transactions.returns }}</li>
    <li>New Additions: {{ report.transactions.new_additions }}</li>
</ul>

<h3>Financial Summary</h3>
<ul>
    <li>Total Sales Revenue: {{ cents(report.cash_flow.sales_cents) }}</li>
    <li>Repair Revenue: {{ cents(report.cash_flow.repairs_cents) }}</li>
    <li>Total Revenue: {{ cents(report.cash_flow.total_cents) }}</li>
</ul>
{% if report.discrepancies %}
<h3>Discrepancies</h3>
<ul>
{% for d in report.discrepancies %}    <li>{{ d.description }} ({{ d.type }})</li>
{% endfor %}</ul>
{% endif %}"""

DISCREPANCY_ALERT_TEMPLATE = """\
<h2>Stock Discrepancy Alert - {{ report.date }}</h2>

<h3>Detected Discrepancies:</h3>
<ul>
{% for d in report.discrepancies %}    <li>{{ d.description }} ({{ d.type }})</li>
{% endfor %}</ul>

<p>Please investigate these discrepancies and take necessary action.</p>"""


def format_cents(cents: int | None) -> str:
    if cents is None:
        return "-"
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}${whole:,}.{frac:02d}"


def get_daily_report(company_id: int, business_date: date, actor: Actor | None = None) -> dict:
    """
    Report data for one company-day.

    net_inventory_change is closing total minus opening total (None while
    the session is open). total_transactions counts sales, repairs sent and
    returns.
    """
    if actor is not None:
        ensure_same_company(actor, company_id, entity="Company", entity_id=company_id)

    report = get_session(company_id, business_date).to_dict()
    tx = report["transactions"]
    closing = report["closing_count"]
    report["net_inventory_change"] = (
        closing["total"] - report["opening_count"]["total"] if closing is not None else None
    )
    report["total_transactions"] = tx["sales"] + tx["repairs_sent"] + tx["returns"]
    return report


def render_daily_report_html(report: dict) -> str:
    return render_template_string(DAILY_REPORT_TEMPLATE, report=report, cents=format_cents)


def render_discrepancy_alert_html(report: dict) -> str:
    return render_template_string(DISCREPANCY_ALERT_TEMPLATE, report=report)


def deliver_daily_report(report: dict, sender: ReportSender, recipient: str) -> str:
    html = render_daily_report_html(report)
    sender.send_report(html, recipient, f"Daily Stock Report - {report['date']}")
    logger.info("daily report for company %s on %s handed to sender", report["company_id"], report["date"])
    return html


def deliver_discrepancy_alert(report: dict, sender: ReportSender, recipient: str) -> str | None:
    """Send an alert only when the day closed with discrepancies."""
    if not report.get("discrepancies"):
        return None
    html = render_discrepancy_alert_html(report)
    sender.send_report(html, recipient, f"Stock Discrepancy Alert - {report['date']}")
    logger.warning(
        "discrepancy alert for company %s on %s handed to sender (%d entries)",
        report["company_id"], report["date"], len(report["discrepancies"]),
    )
    return html


def calculate_profit_cents(item: InventoryItem) -> int:
    """
    Profit on one item.

    SOLD: selling price - purchase price - total repair cost - partial
    refunds. RETURNED and unsold items: 0.
    """
    if item.status != STATUS_SOLD:
        return 0
    profit = (item.selling_price_cents or 0) - (item.purchase_price_cents or 0)
    profit -= item.total_repair_cost_cents or 0
    profit -= sum(r.refund_amount_cents for r in item.returns if r.refund_type == REFUND_PARTIAL)
    return profit
