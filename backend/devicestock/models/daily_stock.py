from __future__ import annotations

from ..extensions import db
from devicestock.time_utils import to_utc_z


# Coarse reporting buckets; not every item status maps to one
STATUS_BUCKETS = ("available", "in_repair", "reserved", "damaged")


class DailyStockSession(db.Model):
    """
    Per-company, per-calendar-day stock reconciliation record.

    LIFECYCLE:
    - OPEN:   opening counts captured; transaction counters accumulate
    - CLOSED: closing counts captured, discrepancies computed (closing_time set)

    IMMUTABLE once closed: no transaction may be recorded against it and it
    is never reopened or deleted.

    CONCURRENCY: (company_id, business_date) is unique so two concurrent
    opens cannot both insert. Counters are updated with in-database
    increments, never read-modify-write in Python.
    """
    __tablename__ = "daily_stock_sessions"
    __table_args__ = (
        db.UniqueConstraint("company_id", "business_date", name="uq_daily_stock_sessions_company_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    business_date = db.Column(db.Date, nullable=False, index=True)

    opening_time = db.Column(db.DateTime(timezone=True), nullable=False)
    closing_time = db.Column(db.DateTime(timezone=True), nullable=True)  # NULL while open

    opened_by_id = db.Column(db.Integer, nullable=True)
    closed_by_id = db.Column(db.Integer, nullable=True)

    # Opening counts (captured at open)
    opening_total = db.Column(db.Integer, nullable=False, default=0)
    opening_available = db.Column(db.Integer, nullable=False, default=0)
    opening_in_repair = db.Column(db.Integer, nullable=False, default=0)
    opening_reserved = db.Column(db.Integer, nullable=False, default=0)
    opening_damaged = db.Column(db.Integer, nullable=False, default=0)

    # Closing counts (populated only at close)
    closing_total = db.Column(db.Integer, nullable=True)
    closing_available = db.Column(db.Integer, nullable=True)
    closing_in_repair = db.Column(db.Integer, nullable=True)
    closing_reserved = db.Column(db.Integer, nullable=True)
    closing_damaged = db.Column(db.Integer, nullable=True)

    # Transaction counters
    sales = db.Column(db.Integer, nullable=False, default=0)
    repairs_sent = db.Column(db.Integer, nullable=False, default=0)
    repairs_completed = db.Column(db.Integer, nullable=False, default=0)
    returns = db.Column(db.Integer, nullable=False, default=0)
    new_additions = db.Column(db.Integer, nullable=False, default=0)

    # Cash flow (cents); total == sales + repairs
    cash_flow_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_flow_repairs_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_flow_total_cents = db.Column(db.Integer, nullable=False, default=0)

    # [{"type": bucket, "description": str, "quantity": abs(delta), "delta": signed}]
    discrepancies = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)

    company = db.relationship("Company", backref=db.backref("daily_stock_sessions", lazy=True))

    @property
    def is_closed(self) -> bool:
        return self.closing_time is not None

    @property
    def opening_count(self) -> dict:
        return {
            "total": self.opening_total,
            "by_status": {b: getattr(self, f"opening_{b}") for b in STATUS_BUCKETS},
        }

    @property
    def closing_count(self) -> dict | None:
        if not self.is_closed:
            return None
        return {
            "total": self.closing_total,
            "by_status": {b: getattr(self, f"closing_{b}") for b in STATUS_BUCKETS},
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "date": self.business_date.isoformat(),
            "status": "CLOSED" if self.is_closed else "OPEN",
            "opening_time": to_utc_z(self.opening_time),
            "closing_time": to_utc_z(self.closing_time),
            "opened_by_id": self.opened_by_id,
            "closed_by_id": self.closed_by_id,
            "opening_count": self.opening_count,
            "closing_count": self.closing_count,
            "transactions": {
                "sales": self.sales,
                "repairs_sent": self.repairs_sent,
                "repairs_completed": self.repairs_completed,
                "returns": self.returns,
                "new_additions": self.new_additions,
            },
            "cash_flow": {
                "sales_cents": self.cash_flow_sales_cents,
                "repairs_cents": self.cash_flow_repairs_cents,
                "total_cents": self.cash_flow_total_cents,
            },
            "discrepancies": list(self.discrepancies or []),
            "notes": self.notes,
        }
