from __future__ import annotations

from ..extensions import db
from devicestock.time_utils import to_utc_z


REFUND_FULL = "FULL"
REFUND_PARTIAL = "PARTIAL"
REFUND_TYPES = (REFUND_FULL, REFUND_PARTIAL)


class ChangeRecord(db.Model):
    """
    One field-level audit entry for an inventory item.

    APPEND-ONLY: rows are written as a side effect of an approved mutation
    and never edited or deleted (see models/immutability.py).

    ORDER: chronological. Reads sort by (changed_at, id) ascending unless the
    caller asks for newest first.
    """
    __tablename__ = "change_records"
    __table_args__ = (
        db.Index("ix_change_records_item_changed", "item_id", "changed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    field = db.Column(db.String(64), nullable=False)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)

    # Actor snapshot at the time of change (identity is supplied by the caller)
    changed_by_id = db.Column(db.Integer, nullable=False)
    changed_by_name = db.Column(db.String(128), nullable=False)
    changed_by_email = db.Column(db.String(255), nullable=True)

    changed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by": {
                "id": self.changed_by_id,
                "name": self.changed_by_name,
                "email": self.changed_by_email,
            },
            "changed_at": to_utc_z(self.changed_at),
        }


class ReturnRecord(db.Model):
    """
    A customer return of a single item.

    Created exactly once per return event and never mutated. The refund
    amount becomes the item's new purchase price (cost basis on restock).
    """
    __tablename__ = "return_records"
    __table_args__ = (
        db.Index("ix_return_records_company_date", "company_id", "return_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    refund_amount_cents = db.Column(db.Integer, nullable=False)
    refund_type = db.Column(db.String(16), nullable=False)  # FULL, PARTIAL
    reason = db.Column(db.Text, nullable=True)  # damage / customer explanation
    notes = db.Column(db.Text, nullable=True)

    return_date = db.Column(db.DateTime(timezone=True), nullable=False)
    processed_by_id = db.Column(db.Integer, nullable=False)

    item = db.relationship(
        "InventoryItem",
        backref=db.backref("returns", lazy=True, order_by="ReturnRecord.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "company_id": self.company_id,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_type": self.refund_type,
            "reason": self.reason,
            "notes": self.notes,
            "return_date": to_utc_z(self.return_date),
            "processed_by_id": self.processed_by_id,
        }
