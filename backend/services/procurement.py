"""
Procurement service.

Ce module orchestre les bons de commande (PO) et leur machine à états :

    Pending --approve--> Approved --receive--> Approved | Received
    Pending | Approved --cancel--> Cancelled   (refusé si une réception existe)

Il ne contient AUCUNE logique de quantité en stock : la réception passe par
backend.services.receiving, qui appelle le ledger (backend.services.inventory).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

from sqlalchemy import or_, select
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
    PurchaseOrderLine,
    Supplier,
    utcnow,
)
from backend.app.db.session import unit_of_work
from backend.services.numbering import PO_SERIES, next_document_number

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[POStatus, set[POStatus]] = {
    POStatus.pending: {POStatus.approved, POStatus.cancelled},
    POStatus.approved: {POStatus.received, POStatus.cancelled},
    # Received / Cancelled : terminaux
}


def d(x: Any) -> Decimal:
    if x is None or x == "":
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


@dataclass
class POLineInput:
    item_id: int
    quantity_ordered: int
    unit_cost: Decimal | float | int
    remarks: str | None = None


# ---------- READ ----------
def get_purchase_order(db: Session, po_id: int, *, lock: bool = False) -> PurchaseOrder:
    stmt = select(PurchaseOrder).where(PurchaseOrder.id == po_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    po = db.execute(stmt).scalars().one_or_none()
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found")
    return po


def list_purchase_orders(
    db: Session,
    *,
    status: POStatus | None = None,
    supplier_id: int | None = None,
    search: str | None = None,
) -> list[PurchaseOrder]:
    stmt = select(PurchaseOrder).join(Supplier, Supplier.id == PurchaseOrder.supplier_id)
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if supplier_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(PurchaseOrder.po_number.ilike(pattern), Supplier.name.ilike(pattern)))
    return list(db.execute(stmt.order_by(PurchaseOrder.id.desc())).scalars().all())


# ---------- STATE MACHINE ----------
def transition(po: PurchaseOrder, target: POStatus) -> None:
    allowed = ALLOWED_TRANSITIONS.get(po.status, set())
    if target not in allowed:
        raise InvalidStateError(
            f"Purchase order {po.po_number} cannot go from {po.status.value} to {target.value}"
        )
    po.status = target


def mark_received(po: PurchaseOrder) -> None:
    """Utilisé par la réception quand toutes les lignes sont soldées (pas de commit)."""
    transition(po, POStatus.received)
    po.received_at = utcnow()


# ---------- WRITE ----------
def _build_lines(db: Session, lines: Sequence[POLineInput]) -> list[PurchaseOrderLine]:
    """Valide TOUTES les lignes (une seule erreur agrégée), puis construit les modèles."""
    errors: list[dict[str, Any]] = []
    if not lines:
        errors.append({"field": "lines", "message": "At least one line is required"})

    seen: set[int] = set()
    costs: list[Decimal] = []
    for i, ln in enumerate(lines, start=1):
        if ln.quantity_ordered is None or ln.quantity_ordered <= 0:
            errors.append(line_error(i, "quantity_ordered", "must be greater than 0"))

        try:
            cost = d(ln.unit_cost)
        except InvalidOperation:
            cost = Decimal("-1")
        if cost < 0:
            errors.append(line_error(i, "unit_cost", "must be 0 or greater"))
        costs.append(cost)

        if ln.item_id in seen:
            errors.append(line_error(i, "item_id", f"item {ln.item_id} appears more than once"))
        seen.add(ln.item_id)

        if not db.get(Item, ln.item_id):
            errors.append(line_error(i, "item_id", f"unknown item {ln.item_id}"))

    if errors:
        raise ValidationError("Invalid purchase order lines", errors=errors)

    return [
        PurchaseOrderLine(
            item_id=ln.item_id,
            quantity_ordered=int(ln.quantity_ordered),
            unit_cost=cost,
            quantity_received=0,
            remarks=ln.remarks,
        )
        for ln, cost in zip(lines, costs)
    ]


def create_purchase_order(
    db: Session,
    *,
    supplier_id: int,
    lines: Sequence[POLineInput],
    created_by: str,
    expected_delivery_date: date | None = None,
    remarks: str | None = None,
    order_date: date | None = None,
) -> PurchaseOrder:
    with unit_of_work(db):
        if not created_by or not created_by.strip():
            raise ValidationError("created_by is required")
        # FK checks (fail fast, message clair)
        if not db.get(Supplier, supplier_id):
            raise ValidationError(f"Invalid supplier_id {supplier_id}", errors=[{"field": "supplier_id"}])

        po_lines = _build_lines(db, lines)
        order_date = order_date or date.today()

        po = PurchaseOrder(
            po_number=next_document_number(db, PO_SERIES, order_date),
            supplier_id=supplier_id,
            status=POStatus.pending,
            order_date=order_date,
            expected_delivery_date=expected_delivery_date,
            remarks=remarks,
            created_by=created_by.strip(),
        )
        po.lines.extend(po_lines)
        db.add(po)
        db.flush()

    logger.info("PO created: %s (id=%s, supplier=%s, total=%s)", po.po_number, po.id, supplier_id, po.total_amount)
    return po


def approve_purchase_order(db: Session, po_id: int, *, actor: str) -> PurchaseOrder:
    with unit_of_work(db):
        po = get_purchase_order(db, po_id, lock=True)
        transition(po, POStatus.approved)
        po.approved_at = utcnow()
        po.approved_by = actor

    logger.info("PO approved: %s by %s", po.po_number, actor)
    return po


def cancel_purchase_order(db: Session, po_id: int, *, actor: str) -> PurchaseOrder:
    with unit_of_work(db):
        po = get_purchase_order(db, po_id, lock=True)
        if po.has_receipts:
            raise ConflictError(
                f"Purchase order {po.po_number} has recorded receipts and cannot be cancelled",
                errors=[
                    {"item_id": l.item_id, "quantity_received": l.quantity_received}
                    for l in po.lines
                    if l.quantity_received > 0
                ],
            )
        transition(po, POStatus.cancelled)
        po.cancelled_at = utcnow()
        po.cancelled_by = actor

    logger.info("PO cancelled: %s by %s", po.po_number, actor)
    return po


def update_purchase_order_lines(
    db: Session,
    po_id: int,
    lines: Sequence[POLineInput],
) -> PurchaseOrder:
    """Remplace les lignes ; autorisé uniquement en Pending."""
    with unit_of_work(db):
        po = get_purchase_order(db, po_id, lock=True)
        if po.status != POStatus.pending:
            raise InvalidStateError(
                f"Purchase order {po.po_number} is {po.status.value}; lines can only change while Pending"
            )

        new_lines = _build_lines(db, lines)
        po.lines.clear()
        # DELETE avant INSERT (UNIQUE(po_id, item_id))
        db.flush()
        po.lines.extend(new_lines)
        db.flush()

    logger.info("PO lines updated: %s (%s lines)", po.po_number, len(po.lines))
    return po
