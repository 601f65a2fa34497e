from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, synonym

from backend.app.db.base import Base, BigIntPK
from backend.app.db.models.core_types import (
    POStatus,
    MovementKind,
    AdjustmentType,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls) -> list[str]:
    # On persiste les valeurs ("Pending") et non les noms ("pending")
    return [m.value for m in enum_cls]


# ---------- MASTER DATA ----------
class Category(Base):
    __tablename__ = "categories"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(200))
    phone: Mapped[str | None] = mapped_column(String(64))
    email: Mapped[str | None] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Item(Base):
    __tablename__ = "items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"))
    unit_of_measure: Mapped[str] = mapped_column(String(32), default="pcs", nullable=False)
    reorder_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="SET NULL"))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    category: Mapped[Category | None] = relationship()
    supplier: Mapped[Supplier | None] = relationship()

    __table_args__ = (CheckConstraint("reorder_level >= 0", name="ck_item_reorder_level_nonneg"),)


# ---------- PROCUREMENT ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[POStatus] = mapped_column(
        Enum(POStatus, name="po_status", values_callable=_enum_values),
        default=POStatus.pending,
        nullable=False,
    )
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    remarks: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(String(100))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[str | None] = mapped_column(String(100))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    supplier: Mapped[Supplier] = relationship()
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="po",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )

    __table_args__ = (Index("ix_purchase_orders_status", "status"),)

    @property
    def total_amount(self) -> Decimal:
        return sum((Decimal(l.quantity_ordered) * l.unit_cost for l in self.lines), Decimal("0"))

    @property
    def has_receipts(self) -> bool:
        return any(l.quantity_received > 0 for l in self.lines)

    @property
    def fully_received(self) -> bool:
        return bool(self.lines) and all(l.quantity_received >= l.quantity_ordered for l in self.lines)


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_id: Mapped[int] = mapped_column(ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    quantity_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    quantity_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)

    po: Mapped[PurchaseOrder] = relationship(back_populates="lines")
    item: Mapped[Item] = relationship()

    __table_args__ = (
        UniqueConstraint("po_id", "item_id", name="uq_po_line_item"),
        CheckConstraint("quantity_ordered > 0", name="ck_po_line_qty_pos"),
        CheckConstraint("unit_cost >= 0", name="ck_po_line_unit_cost_nonneg"),
        CheckConstraint("quantity_received >= 0", name="ck_po_line_received_nonneg"),
    )

    @property
    def over_received(self) -> bool:
        return self.quantity_received > self.quantity_ordered

    @property
    def outstanding(self) -> int:
        return max(self.quantity_ordered - self.quantity_received, 0)


# ---------- DOCUMENT HEADERS ----------
class StockIn(Base):
    __tablename__ = "stock_in"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    stock_in_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    po_id: Mapped[int | None] = mapped_column(ForeignKey("purchase_orders.id", ondelete="RESTRICT"), index=True)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"))
    date_received: Mapped[date] = mapped_column(Date, nullable=False)
    received_by: Mapped[str] = mapped_column(String(100), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    receipts: Mapped[list["ReceiptMovement"]] = relationship(
        back_populates="stock_in",
        order_by="StockMovement.id",
    )


class StockOut(Base):
    __tablename__ = "stock_out"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    reference_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    stock_out_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    released_to: Mapped[str] = mapped_column(String(200), nullable=False)
    purpose: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    total_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Treatment usage (métadonnée pure, hors invariants du ledger)
    is_treatment_usage: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    patient_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    invoice_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    charge_id: Mapped[int | None] = mapped_column(BigInteger)
    service_id: Mapped[int | None] = mapped_column(BigInteger)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    releases: Mapped[list["ReleaseMovement"]] = relationship(
        back_populates="stock_out",
        order_by="StockMovement.id",
    )


# ---------- INVENTORY ----------
class StockBatch(Base):
    __tablename__ = "stock_batches"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False, index=True)
    batch_no: Mapped[str] = mapped_column(String(64), nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date)

    # Modifié UNIQUEMENT par backend.services.inventory (credit / debit / adjust_to)
    qty_available: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    stock_in_id: Mapped[int | None] = mapped_column(ForeignKey("stock_in.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    item: Mapped[Item] = relationship()

    __table_args__ = (
        UniqueConstraint("item_id", "batch_no", name="uq_batch_item_batch_no"),
        CheckConstraint("qty_available >= 0", name="ck_batch_qty_available_nonneg"),
        CheckConstraint("version >= 1", name="ck_batch_version_pos"),
        Index("ix_stock_batches_expiry", "expiry_date"),
    )


class StockMovement(Base):
    """
    Ledger append-only : une ligne par modification de qty_available.

    Variantes (single table) : ReceiptMovement, ReleaseMovement, AdjustmentMovement.
    """

    __tablename__ = "stock_movements"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    kind: Mapped[MovementKind] = mapped_column(
        Enum(MovementKind, name="movement_kind", values_callable=_enum_values),
        nullable=False,
    )
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("stock_batches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)

    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_before: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_after: Mapped[int] = mapped_column(Integer, nullable=False)

    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    happened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    batch: Mapped[StockBatch] = relationship()
    item: Mapped[Item] = relationship()

    __mapper_args__ = {"polymorphic_on": "kind"}

    __table_args__ = (
        CheckConstraint("qty_before >= 0", name="ck_movement_qty_before_nonneg"),
        CheckConstraint("qty_after >= 0", name="ck_movement_qty_after_nonneg"),
        CheckConstraint("qty_after = qty_before + quantity_delta", name="ck_movement_delta_consistent"),
        Index("ix_stock_movements_item_time", "item_id", "happened_at"),
    )


class ReceiptMovement(StockMovement):
    stock_in_id: Mapped[int | None] = mapped_column(ForeignKey("stock_in.id", ondelete="RESTRICT"), index=True)
    po_id: Mapped[int | None] = mapped_column(ForeignKey("purchase_orders.id", ondelete="RESTRICT"))
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    stock_in: Mapped[StockIn] = relationship(back_populates="receipts")

    received_by = synonym("actor")

    __mapper_args__ = {"polymorphic_identity": MovementKind.receipt}

    @property
    def qty(self) -> int:
        return self.quantity_delta


class ReleaseMovement(StockMovement):
    stock_out_id: Mapped[int | None] = mapped_column(ForeignKey("stock_out.id", ondelete="RESTRICT"), index=True)

    stock_out: Mapped[StockOut] = relationship(back_populates="releases")

    __mapper_args__ = {"polymorphic_identity": MovementKind.release}

    @property
    def qty(self) -> int:
        return -self.quantity_delta

    @property
    def stock_out_ref(self) -> str:
        return self.stock_out.reference_no

    @property
    def released_to(self) -> str:
        return self.stock_out.released_to


class AdjustmentMovement(StockMovement):
    reason: Mapped[str | None] = mapped_column(Text)
    adjustment_type: Mapped[AdjustmentType | None] = mapped_column(
        Enum(AdjustmentType, name="adjustment_type", values_callable=_enum_values),
    )

    old_qty = synonym("qty_before")
    new_qty = synonym("qty_after")
    adjusted_by = synonym("actor")

    __mapper_args__ = {"polymorphic_identity": MovementKind.adjustment}

    @property
    def delta(self) -> int:
        return self.quantity_delta


# ---------- NUMBERING ----------
class NumberSeries(Base):
    __tablename__ = "number_series"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    key: Mapped[str] = mapped_column(String(32), nullable=False)
    date_key: Mapped[int] = mapped_column(Integer, nullable=False)
    next_seq: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (UniqueConstraint("key", "date_key", name="uq_number_series_key_date"),)
