"""Add payment cycles to items/payments and completion time to repairs

Revision ID: ds002
Revises: ds001
Create Date: 2026-10-18

- inventory_items.payment_cycle: bumped on every return so a resale starts
  with an empty ledger
- bank_payments / installment_payments.payment_cycle: cycle the payment
  was taken in
- repair_entries.completed_at: set when the repair is completed
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "ds002"
down_revision = "ds001"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("inventory_items", schema=None) as batch_op:
        batch_op.add_column(sa.Column("payment_cycle", sa.Integer(), nullable=False, server_default="0"))

    with op.batch_alter_table("bank_payments", schema=None) as batch_op:
        batch_op.add_column(sa.Column("payment_cycle", sa.Integer(), nullable=False, server_default="0"))

    with op.batch_alter_table("installment_payments", schema=None) as batch_op:
        batch_op.add_column(sa.Column("payment_cycle", sa.Integer(), nullable=False, server_default="0"))

    with op.batch_alter_table("repair_entries", schema=None) as batch_op:
        batch_op.add_column(sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True))


def downgrade():
    with op.batch_alter_table("repair_entries", schema=None) as batch_op:
        batch_op.drop_column("completed_at")

    with op.batch_alter_table("installment_payments", schema=None) as batch_op:
        batch_op.drop_column("payment_cycle")

    with op.batch_alter_table("bank_payments", schema=None) as batch_op:
        batch_op.drop_column("payment_cycle")

    with op.batch_alter_table("inventory_items", schema=None) as batch_op:
        batch_op.drop_column("payment_cycle")
