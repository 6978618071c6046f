from __future__ import annotations

from ..extensions import db
from devicestock.time_utils import to_utc_z


# =============================================================================
# ENUMERATIONS (stored as uppercase codes)
# =============================================================================

DEVICE_TYPES = (
    "PHONE",
    "LAPTOP",
    "SPEAKER",
    "HEADPHONE",
    "TABLET",
    "SMART_WATCH",
    "GAME_CONSOLE",
    "ROUTER",
)

STATUS_AVAILABLE = "AVAILABLE"
STATUS_IN_STOCK = "IN_STOCK"
STATUS_UNDER_REPAIR = "UNDER_REPAIR"
STATUS_SOLD = "SOLD"
STATUS_COLLECTED_UNPAID = "COLLECTED_UNPAID"
STATUS_COLLECTED = "COLLECTED"
STATUS_RETURNED = "RETURNED"

VALID_STATUSES = {
    STATUS_AVAILABLE,
    STATUS_IN_STOCK,
    STATUS_UNDER_REPAIR,
    STATUS_SOLD,
    STATUS_COLLECTED_UNPAID,
    STATUS_COLLECTED,
    STATUS_RETURNED,
}

REPAIR_IN_PROGRESS = "IN_PROGRESS"
REPAIR_COMPLETED = "COMPLETED"

PAYMENT_NOT_PAID = "NOT_PAID"
PAYMENT_INSTALLMENT = "INSTALLMENT"
PAYMENT_PAID = "PAID"

VALID_PAYMENT_STATUSES = {PAYMENT_NOT_PAID, PAYMENT_INSTALLMENT, PAYMENT_PAID}

PAYMENT_METHODS = ("CASH", "TRANSFER", "CARD")


class InventoryItem(db.Model):
    """
    A single serialized physical device (phone, laptop, accessory).

    MULTI-TENANT: scoped to a company; serial numbers are unique per company.

    INVARIANTS:
    - status only changes through lifecycle_service transitions
    - total_amount_paid_cents == sum(bank payments) + sum(installments) of
      the current payment_cycle, written only by payment_service
    - total_repair_cost_cents == sum(repair entry costs)
    - change history is append-only (see ChangeRecord)

    CONCURRENCY: version_id is an optimistic lock. A writer holding a stale
    version gets StaleDataError on flush, so two racing transitions cannot
    both win.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("company_id", "serial_number", name="uq_inventory_items_company_serial"),
        db.Index("ix_inventory_items_company_status", "company_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    # Classification
    serial_number = db.Column(db.String(128), nullable=False)
    device_type = db.Column(db.String(32), nullable=False, index=True)
    brand = db.Column(db.String(128), nullable=False)
    model_name = db.Column(db.String(128), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    color = db.Column(db.String(64), nullable=False)
    condition = db.Column(db.String(64), nullable=False)
    specifications = db.Column(db.JSON, nullable=False, default=dict)
    notes = db.Column(db.Text, nullable=True)

    # Commercial (all amounts in cents)
    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(32), nullable=False, default=STATUS_IN_STOCK)
    repair_status = db.Column(db.String(16), nullable=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_NOT_PAID)
    total_amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    # Bumped by each return; only payments from the current cycle count toward the total
    payment_cycle = db.Column(db.Integer, nullable=False, default=0)
    total_repair_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    trusted_collector = db.Column(db.Boolean, nullable=False, default=False)
    collected_by = db.Column(db.JSON, nullable=True)  # {"name": ..., "contact": ...}
    customer_details = db.Column(db.JSON, nullable=True)  # {"name": ..., "contact": ...}
    sales_date = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    company = db.relationship("Company", backref=db.backref("inventory_items", lazy=True))
    repair_history = db.relationship(
        "RepairEntry", back_populates="item", order_by="RepairEntry.id",
        cascade="all, delete-orphan", lazy="select",
    )
    bank_details = db.relationship(
        "BankPayment", back_populates="item", order_by="BankPayment.id",
        cascade="all, delete-orphan", lazy="select",
    )
    installment_payments = db.relationship(
        "InstallmentPayment", back_populates="item", order_by="InstallmentPayment.id",
        cascade="all, delete-orphan", lazy="select",
    )
    status_logs = db.relationship(
        "StatusLog", back_populates="item", order_by="StatusLog.id",
        cascade="all, delete-orphan", lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryItem id={self.id} serial={self.serial_number!r} "
            f"status={self.status} company_id={self.company_id}>"
        )

    def to_dict(self, *, include_history: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "serial_number": self.serial_number,
            "device_type": self.device_type,
            "brand": self.brand,
            "model_name": self.model_name,
            "name": self.name,
            "color": self.color,
            "condition": self.condition,
            "specifications": dict(self.specifications or {}),
            "notes": self.notes,
            "purchase_price_cents": self.purchase_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "status": self.status,
            "repair_status": self.repair_status,
            "payment_status": self.payment_status,
            "total_amount_paid_cents": self.total_amount_paid_cents,
            "payment_cycle": self.payment_cycle,
            "total_repair_cost_cents": self.total_repair_cost_cents,
            "trusted_collector": self.trusted_collector,
            "collected_by": self.collected_by,
            "customer_details": self.customer_details,
            "sales_date": to_utc_z(self.sales_date),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_history:
            data["repair_history"] = [r.to_dict() for r in self.repair_history]
            data["bank_details"] = [p.to_dict() for p in self.bank_details]
            data["installment_payments"] = [p.to_dict() for p in self.installment_payments]
            data["status_logs"] = [s.to_dict() for s in self.status_logs]
            data["returns"] = [r.id for r in self.returns]
        return data


class RepairEntry(db.Model):
    """One repair job performed on an item. Costs roll up into total_repair_cost_cents."""
    __tablename__ = "repair_entries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.Text, nullable=True)
    technician_name = db.Column(db.String(128), nullable=False)
    assigned_by_id = db.Column(db.Integer, nullable=True)
    assigned_by_name = db.Column(db.String(128), nullable=False)
    repair_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)  # NULL while in progress

    item = db.relationship("InventoryItem", back_populates="repair_history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": to_utc_z(self.date),
            "description": self.description,
            "technician": {"name": self.technician_name},
            "assigned_by": {"id": self.assigned_by_id, "name": self.assigned_by_name},
            "repair_cost_cents": self.repair_cost_cents,
            "completed_at": to_utc_z(self.completed_at),
        }


class BankPayment(db.Model):
    __tablename__ = "bank_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    bank_name = db.Column(db.String(128), nullable=True)
    account_number = db.Column(db.String(64), nullable=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    payment_cycle = db.Column(db.Integer, nullable=False, default=0)

    item = db.relationship("InventoryItem", back_populates="bank_details")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "date": to_utc_z(self.date),
            "payment_cycle": self.payment_cycle,
        }


class InstallmentPayment(db.Model):
    __tablename__ = "installment_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=True)
    bank_name = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    payment_cycle = db.Column(db.Integer, nullable=False, default=0)

    item = db.relationship("InventoryItem", back_populates="installment_payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_paid_cents": self.amount_paid_cents,
            "payment_method": self.payment_method,
            "bank_name": self.bank_name,
            "description": self.description,
            "date": to_utc_z(self.date),
            "payment_cycle": self.payment_cycle,
        }


class StatusLog(db.Model):
    __tablename__ = "status_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    changed_by_id = db.Column(db.Integer, nullable=False)

    item = db.relationship("InventoryItem", back_populates="status_logs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "date": to_utc_z(self.date),
            "changed_by_id": self.changed_by_id,
        }
