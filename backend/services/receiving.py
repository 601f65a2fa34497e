"""
Réception de livraison (stock-in).

Une livraison = UNE transaction :
    pour chaque ligne : lot (créé à 0 si absent) -> credit() -> mouvement Receipt
    si PO : quantity_received += qty, PO -> Received quand tout est soldé

Tout ou rien : une ligne invalide ou une erreur en cours de route annule
toute la livraison. Pas de repli "ligne par ligne".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    line_error,
)
from backend.app.db.models.core_types import POStatus
from backend.app.db.models.models_v1 import (
    Item,
    PurchaseOrder,
    StockBatch,
    StockIn,
    Supplier,
    utcnow,
)
from backend.app.db.session import unit_of_work
from backend.services import inventory
from backend.services.numbering import STOCK_IN_SERIES, next_document_number
from backend.services.procurement import d, get_purchase_order, mark_received

logger = logging.getLogger(__name__)


@dataclass
class DeliveryLine:
    item_id: int
    batch_no: str
    qty_received: int
    unit_cost: Decimal | float | int = 0
    expiry_date: date | None = None
    remarks: str | None = None


@dataclass
class Delivery:
    date_received: date
    received_by: str
    lines: list[DeliveryLine] = field(default_factory=list)
    stock_in_no: str | None = None
    po_id: int | None = None
    supplier_id: int | None = None
    remarks: str | None = None


def _received_at(date_received: date) -> datetime:
    now = utcnow()
    if date_received == now.date():
        return now
    return datetime.combine(date_received, time.min, tzinfo=timezone.utc)


def _validate(db: Session, delivery: Delivery, po: PurchaseOrder | None) -> None:
    """Toutes les raisons, ligne par ligne, en une seule erreur."""
    errors: list[dict[str, Any]] = []

    if not delivery.received_by or not delivery.received_by.strip():
        errors.append({"field": "received_by", "message": "received_by is required"})
    if delivery.date_received is None:
        errors.append({"field": "date_received", "message": "date_received is required"})
    if not delivery.lines:
        errors.append({"field": "items", "message": "At least one item is required"})
    if delivery.supplier_id is not None and not db.get(Supplier, delivery.supplier_id):
        errors.append({"field": "supplier_id", "message": f"unknown supplier {delivery.supplier_id}"})

    po_item_ids: set[int] = set()
    if po is not None:
        po_item_ids = {l.item_id for l in po.lines}
        if delivery.supplier_id is not None and delivery.supplier_id != po.supplier_id:
            errors.append(
                {
                    "field": "supplier_id",
                    "message": f"supplier {delivery.supplier_id} does not match PO supplier {po.supplier_id}",
                }
            )

    for i, ln in enumerate(delivery.lines, start=1):
        if ln.qty_received is None or ln.qty_received <= 0:
            errors.append(line_error(i, "qty_received", "qty_received must be greater than 0"))
        if not ln.batch_no or not ln.batch_no.strip():
            errors.append(line_error(i, "batch_no", "batch_no is required"))
        try:
            cost = d(ln.unit_cost)
        except InvalidOperation:
            cost = Decimal("-1")
        if cost < 0:
            errors.append(line_error(i, "unit_cost", "unit_cost must be 0 or greater"))
        if not db.get(Item, ln.item_id):
            errors.append(line_error(i, "item_id", f"unknown item {ln.item_id}"))
        elif po is not None and ln.item_id not in po_item_ids:
            errors.append(line_error(i, "item_id", f"item {ln.item_id} is not on PO {po.po_number}"))

    if errors:
        raise ValidationError("Invalid delivery", errors=errors)


def _lock_batch_no(db: Session, batch_no: str) -> None:
    # PostgreSQL : deux livraisons sur le même batch_no passent l'une après l'autre
    # (aucune contrainte ne couvre batch_no entre items différents)
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:batch_no))"), {"batch_no": batch_no})


def _get_or_create_batch(
    db: Session,
    *,
    line_no: int,
    item_id: int,
    batch_no: str,
    expiry_date: date | None,
    unit_cost: Decimal,
    stock_in_id: int,
) -> StockBatch:
    _lock_batch_no(db, batch_no)

    # Un numéro de lot n'est pas réutilisé pour un autre item
    other = db.execute(
        select(StockBatch.id, StockBatch.item_id)
        .where(StockBatch.batch_no == batch_no)
        .where(StockBatch.item_id != item_id)
        .limit(1)
    ).first()
    if other:
        raise ConflictError(
            f"Batch number {batch_no} already belongs to item {other.item_id}",
            errors=[line_error(line_no, "batch_no", "batch number used by another item", batch_id=other.id)],
        )

    stmt = (
        select(StockBatch)
        .where(StockBatch.item_id == item_id, StockBatch.batch_no == batch_no)
        .with_for_update()
    )
    batch = db.execute(stmt).scalars().one_or_none()
    if batch is None:
        batch = StockBatch(
            item_id=item_id,
            batch_no=batch_no,
            expiry_date=expiry_date,
            qty_available=0,
            version=1,
            unit_cost=unit_cost,
            stock_in_id=stock_in_id,
        )
        try:
            with db.begin_nested():
                db.add(batch)
        except IntegrityError:
            # Créé en parallèle par une autre livraison : on reprend le lot existant
            batch = db.execute(stmt).scalars().one()
        else:
            return batch

    if expiry_date is not None and batch.expiry_date is not None and batch.expiry_date != expiry_date:
        raise ConflictError(
            f"Batch {batch_no} of item {item_id} already exists with expiry {batch.expiry_date.isoformat()}",
            errors=[
                line_error(
                    line_no,
                    "expiry_date",
                    "expiry date differs from the existing batch",
                    batch_id=batch.id,
                )
            ],
        )
    if batch.expiry_date is None and expiry_date is not None:
        # Lot reçu d'abord sans date : la première date connue s'applique
        batch.expiry_date = expiry_date
        batch.updated_at = utcnow()
        # flush avant credit() : _reload (populate_existing) écraserait l'affectation
        db.flush()
        logger.info("Batch %s of item %s: expiry set to %s", batch_no, item_id, expiry_date.isoformat())
    return batch


def receive_delivery(db: Session, delivery: Delivery) -> StockIn:
    with unit_of_work(db):
        po: PurchaseOrder | None = None
        if delivery.po_id is not None:
            po = get_purchase_order(db, delivery.po_id, lock=True)

        _validate(db, delivery, po)

        if po is not None and po.status != POStatus.approved:
            raise InvalidStateError(
                f"Purchase order {po.po_number} is {po.status.value}; only Approved orders can be received"
            )

        if delivery.stock_in_no and delivery.stock_in_no.strip():
            stock_in_no = delivery.stock_in_no.strip()
            if db.execute(select(StockIn.id).where(StockIn.stock_in_no == stock_in_no)).first():
                raise ConflictError(f"Stock-in number {stock_in_no} already exists")
        else:
            stock_in_no = next_document_number(db, STOCK_IN_SERIES, delivery.date_received)

        header = StockIn(
            stock_in_no=stock_in_no,
            po_id=po.id if po else None,
            supplier_id=delivery.supplier_id or (po.supplier_id if po else None),
            date_received=delivery.date_received,
            received_by=delivery.received_by.strip(),
            remarks=delivery.remarks,
            total_items=0,
            total_amount=Decimal("0"),
        )
        try:
            with db.begin_nested():
                db.add(header)
        except IntegrityError as exc:
            # Numéro pris entre la vérification et l'insertion
            raise ConflictError(f"Stock-in number {stock_in_no} already exists") from exc

        happened_at = _received_at(delivery.date_received)
        po_lines = {l.item_id: l for l in po.lines} if po else {}
        total_amount = Decimal("0")

        # Verrous des lots toujours dans le même ordre : pas d'inter-blocage entre livraisons
        ordered = sorted(
            enumerate(delivery.lines, start=1),
            key=lambda pair: (pair[1].item_id, pair[1].batch_no.strip()),
        )
        for i, ln in ordered:
            cost = d(ln.unit_cost)
            batch = _get_or_create_batch(
                db,
                line_no=i,
                item_id=ln.item_id,
                batch_no=ln.batch_no.strip(),
                expiry_date=ln.expiry_date,
                unit_cost=cost,
                stock_in_id=header.id,
            )
            inventory.credit(
                db,
                batch.id,
                int(ln.qty_received),
                actor=header.received_by,
                stock_in_id=header.id,
                po_id=po.id if po else None,
                unit_cost=cost,
                happened_at=happened_at,
                remarks=ln.remarks,
            )
            total_amount += cost * int(ln.qty_received)

            if po is not None:
                po_lines[ln.item_id].quantity_received += int(ln.qty_received)

        header.total_items = len(delivery.lines)
        header.total_amount = total_amount

        if po is not None:
            over = [l for l in po.lines if l.over_received]
            for l in over:
                logger.warning(
                    "PO %s over-received: item=%s ordered=%s received=%s",
                    po.po_number,
                    l.item_id,
                    l.quantity_ordered,
                    l.quantity_received,
                )
            if po.fully_received:
                mark_received(po)
        db.flush()

    logger.info(
        "Delivery received: %s (items=%s, amount=%s, po=%s)",
        header.stock_in_no,
        header.total_items,
        header.total_amount,
        delivery.po_id,
    )
    return header


def get_delivery(db: Session, stock_in_id: int) -> StockIn:
    header = db.get(StockIn, stock_in_id)
    if not header:
        raise NotFoundError(f"Stock-in {stock_in_id} not found")
    return header


def list_deliveries(
    db: Session,
    *,
    po_id: int | None = None,
    supplier_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[StockIn]:
    stmt = select(StockIn)
    if po_id is not None:
        stmt = stmt.where(StockIn.po_id == po_id)
    if supplier_id is not None:
        stmt = stmt.where(StockIn.supplier_id == supplier_id)
    if date_from is not None:
        stmt = stmt.where(StockIn.date_received >= date_from)
    if date_to is not None:
        stmt = stmt.where(StockIn.date_received <= date_to)
    return list(db.execute(stmt.order_by(StockIn.id.desc())).scalars().all())
