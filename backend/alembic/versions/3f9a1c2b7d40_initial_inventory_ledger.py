"""initial inventory ledger schema

Revision ID: 3f9a1c2b7d40
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2b7d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Valeurs persistées (et non les noms Python)
PO_STATUS = sa.Enum("Pending", "Approved", "Received", "Cancelled", name="po_status")
MOVEMENT_KIND = sa.Enum("RECEIPT", "RELEASE", "ADJUSTMENT", name="movement_kind")
ADJUSTMENT_TYPE = sa.Enum("Correction", "Disposal", "Return", name="adjustment_type")

PK = sa.BigInteger().with_variant(sa.Integer, "sqlite")
TS = sa.DateTime(timezone=True)
MONEY = sa.Numeric(14, 2)


def upgrade() -> None:
    # --- master data
    op.create_table(
        "categories",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(120), nullable=False, unique=True),
    )
    op.create_table(
        "suppliers",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("contact_person", sa.String(200)),
        sa.Column("phone", sa.String(64)),
        sa.Column("email", sa.String(255)),
        sa.Column("address", sa.Text()),
        sa.Column("active", sa.Boolean(), nullable=False),
    )
    op.create_table(
        "items",
        sa.Column("id", PK, primary_key=True),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category_id", sa.BigInteger(), sa.ForeignKey("categories.id", ondelete="SET NULL")),
        sa.Column("unit_of_measure", sa.String(32), nullable=False),
        sa.Column("reorder_level", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="SET NULL")),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint("reorder_level >= 0", name="ck_item_reorder_level_nonneg"),
    )

    # --- procurement
    op.create_table(
        "purchase_orders",
        sa.Column("id", PK, primary_key=True),
        sa.Column("po_number", sa.String(64), nullable=False, unique=True),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", PO_STATUS, nullable=False),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("expected_delivery_date", sa.Date()),
        sa.Column("remarks", sa.Text()),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.Column("approved_at", TS),
        sa.Column("approved_by", sa.String(100)),
        sa.Column("cancelled_at", TS),
        sa.Column("cancelled_by", sa.String(100)),
        sa.Column("received_at", TS),
    )
    op.create_index("ix_purchase_orders_status", "purchase_orders", ["status"])

    op.create_table(
        "purchase_order_lines",
        sa.Column("id", PK, primary_key=True),
        sa.Column("po_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_id", sa.BigInteger(), sa.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity_ordered", sa.Integer(), nullable=False),
        sa.Column("unit_cost", MONEY, nullable=False),
        sa.Column("quantity_received", sa.Integer(), nullable=False),
        sa.Column("remarks", sa.Text()),
        sa.UniqueConstraint("po_id", "item_id", name="uq_po_line_item"),
        sa.CheckConstraint("quantity_ordered > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_po_line_unit_cost_nonneg"),
        sa.CheckConstraint("quantity_received >= 0", name="ck_po_line_received_nonneg"),
    )

    # --- document headers
    op.create_table(
        "stock_in",
        sa.Column("id", PK, primary_key=True),
        sa.Column("stock_in_no", sa.String(64), nullable=False, unique=True),
        sa.Column("po_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT")),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT")),
        sa.Column("date_received", sa.Date(), nullable=False),
        sa.Column("received_by", sa.String(100), nullable=False),
        sa.Column("remarks", sa.Text()),
        sa.Column("total_items", sa.Integer(), nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_stock_in_po_id", "stock_in", ["po_id"])

    op.create_table(
        "stock_out",
        sa.Column("id", PK, primary_key=True),
        sa.Column("reference_no", sa.String(64), nullable=False, unique=True),
        sa.Column("stock_out_date", TS, nullable=False),
        sa.Column("released_to", sa.String(200), nullable=False),
        sa.Column("purpose", sa.Text()),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column("total_qty", sa.Integer(), nullable=False),
        sa.Column("is_treatment_usage", sa.Boolean(), nullable=False),
        sa.Column("patient_id", sa.BigInteger()),
        sa.Column("invoice_id", sa.BigInteger()),
        sa.Column("charge_id", sa.BigInteger()),
        sa.Column("service_id", sa.BigInteger()),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_stock_out_patient_id", "stock_out", ["patient_id"])
    op.create_index("ix_stock_out_invoice_id", "stock_out", ["invoice_id"])

    # --- inventory
    op.create_table(
        "stock_batches",
        sa.Column("id", PK, primary_key=True),
        sa.Column("item_id", sa.BigInteger(), sa.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("batch_no", sa.String(64), nullable=False),
        sa.Column("expiry_date", sa.Date()),
        sa.Column("qty_available", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("unit_cost", MONEY, nullable=False),
        sa.Column("stock_in_id", sa.BigInteger(), sa.ForeignKey("stock_in.id", ondelete="SET NULL")),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.UniqueConstraint("item_id", "batch_no", name="uq_batch_item_batch_no"),
        sa.CheckConstraint("qty_available >= 0", name="ck_batch_qty_available_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_batch_version_pos"),
    )
    op.create_index("ix_stock_batches_item_id", "stock_batches", ["item_id"])
    op.create_index("ix_stock_batches_expiry", "stock_batches", ["expiry_date"])

    op.create_table(
        "stock_movements",
        sa.Column("id", PK, primary_key=True),
        sa.Column("kind", MOVEMENT_KIND, nullable=False),
        sa.Column("batch_id", sa.BigInteger(), sa.ForeignKey("stock_batches.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("item_id", sa.BigInteger(), sa.ForeignKey("items.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity_delta", sa.Integer(), nullable=False),
        sa.Column("qty_before", sa.Integer(), nullable=False),
        sa.Column("qty_after", sa.Integer(), nullable=False),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("happened_at", TS, nullable=False),
        sa.Column("remarks", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
        # Receipt
        sa.Column("stock_in_id", sa.BigInteger(), sa.ForeignKey("stock_in.id", ondelete="RESTRICT")),
        sa.Column("po_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT")),
        sa.Column("unit_cost", MONEY),
        # Release
        sa.Column("stock_out_id", sa.BigInteger(), sa.ForeignKey("stock_out.id", ondelete="RESTRICT")),
        # Adjustment
        sa.Column("reason", sa.Text()),
        sa.Column("adjustment_type", ADJUSTMENT_TYPE),
        sa.CheckConstraint("qty_before >= 0", name="ck_movement_qty_before_nonneg"),
        sa.CheckConstraint("qty_after >= 0", name="ck_movement_qty_after_nonneg"),
        sa.CheckConstraint("qty_after = qty_before + quantity_delta", name="ck_movement_delta_consistent"),
    )
    op.create_index("ix_stock_movements_batch_id", "stock_movements", ["batch_id"])
    op.create_index("ix_stock_movements_item_time", "stock_movements", ["item_id", "happened_at"])
    op.create_index("ix_stock_movements_stock_in_id", "stock_movements", ["stock_in_id"])
    op.create_index("ix_stock_movements_stock_out_id", "stock_movements", ["stock_out_id"])

    # --- numbering
    op.create_table(
        "number_series",
        sa.Column("id", PK, primary_key=True),
        sa.Column("key", sa.String(32), nullable=False),
        sa.Column("date_key", sa.Integer(), nullable=False),
        sa.Column("next_seq", sa.Integer(), nullable=False),
        sa.UniqueConstraint("key", "date_key", name="uq_number_series_key_date"),
    )


def downgrade() -> None:
    op.drop_table("number_series")
    op.drop_index("ix_stock_movements_stock_out_id", table_name="stock_movements")
    op.drop_index("ix_stock_movements_stock_in_id", table_name="stock_movements")
    op.drop_index("ix_stock_movements_item_time", table_name="stock_movements")
    op.drop_index("ix_stock_movements_batch_id", table_name="stock_movements")
    op.drop_table("stock_movements")
    op.drop_index("ix_stock_batches_expiry", table_name="stock_batches")
    op.drop_index("ix_stock_batches_item_id", table_name="stock_batches")
    op.drop_table("stock_batches")
    op.drop_index("ix_stock_out_invoice_id", table_name="stock_out")
    op.drop_index("ix_stock_out_patient_id", table_name="stock_out")
    op.drop_table("stock_out")
    op.drop_index("ix_stock_in_po_id", table_name="stock_in")
    op.drop_table("stock_in")
    op.drop_table("purchase_order_lines")
    op.drop_index("ix_purchase_orders_status", table_name="purchase_orders")
    op.drop_table("purchase_orders")
    op.drop_table("items")
    op.drop_table("suppliers")
    op.drop_table("categories")

    bind = op.get_bind()
    for enum_type in (ADJUSTMENT_TYPE, MOVEMENT_KIND, PO_STATUS):
        enum_type.drop(bind, checkfirst=True)
