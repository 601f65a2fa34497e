"""
Sorties de stock (usage général ou usage en soin).

- ligne avec batch_id : débit du lot choisi par l'opérateur
- ligne sans batch_id : allocation FEFO (premier périmé, premier sorti),
  éventuellement répartie sur plusieurs lots
- en-tête + tous les débits : UNE transaction
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.core.errors import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    line_error,
)
from backend.app.db.models.models_v1 import Item, StockBatch, StockOut, utcnow
from backend.app.db.session import unit_of_work
from backend.services import inventory
from backend.services.numbering import STOCK_OUT_SERIES, next_document_number

logger = logging.getLogger(__name__)


@dataclass
class TreatmentLink:
    """Traçabilité clinique : métadonnée pure, ignorée par les invariants du ledger."""

    patient_id: int | None = None
    invoice_id: int | None = None
    charge_id: int | None = None
    service_id: int | None = None


@dataclass
class ReleaseLine:
    item_id: int
    qty: int
    batch_id: int | None = None
    remarks: str | None = None


@dataclass
class ReleaseRequest:
    released_to: str
    created_by: str
    items: list[ReleaseLine] = field(default_factory=list)
    purpose: str | None = None
    treatment_link: TreatmentLink | None = None


@dataclass(frozen=True)
class Allocation:
    line_no: int
    item_id: int
    batch_id: int
    qty: int
    remarks: str | None = None


def _validate(db: Session, request: ReleaseRequest, today: date) -> tuple[list, list]:
    errors: list[dict[str, Any]] = []

    if not request.released_to or not request.released_to.strip():
        errors.append({"field": "released_to", "message": "released_to is required"})
    if not request.created_by or not request.created_by.strip():
        errors.append({"field": "created_by", "message": "created_by is required"})
    if not request.items:
        errors.append({"field": "items", "message": "At least one item is required"})

    link = request.treatment_link
    if link is not None and link.patient_id is None and link.invoice_id is None:
        errors.append({"field": "treatment_link", "message": "treatment usage needs a patient_id or an invoice_id"})

    pinned: list[tuple[int, ReleaseLine, StockBatch]] = []
    fefo: list[tuple[int, ReleaseLine]] = []

    for i, ln in enumerate(request.items, start=1):
        if ln.qty is None or ln.qty <= 0:
            errors.append(line_error(i, "qty_released", "qty_released must be greater than 0"))
            continue
        if not db.get(Item, ln.item_id):
            errors.append(line_error(i, "item_id", f"unknown item {ln.item_id}"))
            continue

        if ln.batch_id is None:
            fefo.append((i, ln))
            continue

        batch = db.get(StockBatch, ln.batch_id)
        if not batch:
            errors.append(line_error(i, "batch_id", f"batch {ln.batch_id} not found"))
        elif batch.item_id != ln.item_id:
            errors.append(line_error(i, "batch_id", f"batch {ln.batch_id} does not belong to item {ln.item_id}"))
        elif inventory.is_expired(batch, today):
            errors.append(
                line_error(
                    i,
                    "batch_id",
                    f"batch {batch.batch_no} expired on {batch.expiry_date.isoformat()}; use a Disposal adjustment",
                )
            )
        else:
            pinned.append((i, ln, batch))

    if errors:
        raise ValidationError("Invalid stock-out request", errors=errors)
    return pinned, fefo


def plan_allocations(db: Session, request: ReleaseRequest, *, today: date | None = None) -> list[Allocation]:
    """
    Valide la demande et calcule les débits, sans rien écrire.

    La demande est agrégée par lot (deux lignes sur le même lot s'additionnent).
    Le contrôle final reste celui du ledger au moment du débit.
    """
    today = today or date.today()
    pinned, fefo = _validate(db, request, today)

    demand: dict[int, int] = defaultdict(int)
    allocations: list[Allocation] = []
    shortages: list[dict[str, Any]] = []

    batches: dict[int, StockBatch] = {}
    for i, ln, batch in pinned:
        batches[batch.id] = batch
        demand[batch.id] += ln.qty
        allocations.append(Allocation(i, ln.item_id, batch.id, ln.qty, ln.remarks))

    for batch_id, requested in demand.items():
        available = batches[batch_id].qty_available
        if requested > available:
            shortages.append(
                {
                    "batch_id": batch_id,
                    "batch_no": batches[batch_id].batch_no,
                    "available": available,
                    "requested": requested,
                    "lines": [a.line_no for a in allocations if a.batch_id == batch_id],
                }
            )

    for i, ln in fefo:
        remaining = ln.qty
        candidates: list[dict[str, Any]] = []
        for b in inventory.list_available_batches(db, ln.item_id, today=today):
            free = b.qty_available - demand[b.id]
            candidates.append({"batch_id": b.id, "batch_no": b.batch_no, "available": max(free, 0)})
            if free <= 0:
                continue
            take = min(free, remaining)
            demand[b.id] += take
            allocations.append(Allocation(i, ln.item_id, b.id, take, ln.remarks))
            remaining -= take
            if remaining == 0:
                break
        if remaining > 0:
            shortages.append(
                {
                    "line": i,
                    "item_id": ln.item_id,
                    "available": ln.qty - remaining,
                    "requested": ln.qty,
                    "batches": candidates,
                }
            )

    if shortages:
        raise InsufficientStockError("Insufficient stock for stock-out request", errors=shortages)
    return allocations


def release(db: Session, request: ReleaseRequest, *, today: date | None = None) -> StockOut:
    today = today or date.today()
    with unit_of_work(db):
        allocations = plan_allocations(db, request, today=today)

        now = utcnow()
        link = request.treatment_link
        header = StockOut(
            reference_no=next_document_number(db, STOCK_OUT_SERIES, today),
            stock_out_date=now,
            released_to=request.released_to.strip(),
            purpose=request.purpose,
            created_by=request.created_by.strip(),
            total_qty=sum(a.qty for a in allocations),
            is_treatment_usage=link is not None,
            patient_id=link.patient_id if link else None,
            invoice_id=link.invoice_id if link else None,
            charge_id=link.charge_id if link else None,
            service_id=link.service_id if link else None,
        )
        db.add(header)
        db.flush()

        # Ordre des lots stable : pas d'inter-blocage entre deux sorties concurrentes
        for a in sorted(allocations, key=lambda a: (a.batch_id, a.line_no)):
            inventory.debit(
                db,
                a.batch_id,
                a.qty,
                actor=header.created_by,
                stock_out_id=header.id,
                happened_at=now,
                remarks=a.remarks,
            )

    logger.info(
        "Stock-out created: %s (released_to=%s, qty=%s, lines=%s, treatment=%s)",
        header.reference_no,
        header.released_to,
        header.total_qty,
        len(request.items),
        header.is_treatment_usage,
    )
    return header


def get_release(db: Session, stock_out_id: int) -> StockOut:
    header = db.get(StockOut, stock_out_id)
    if not header:
        raise NotFoundError(f"Stock-out {stock_out_id} not found")
    return header


def _day_bounds(date_from: date | None, date_to: date | None) -> tuple[datetime | None, datetime | None]:
    start = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
    end = datetime.combine(date_to, time.max, tzinfo=timezone.utc) if date_to else None
    return start, end


def list_releases(
    db: Session,
    *,
    released_to: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[StockOut]:
    stmt = select(StockOut)
    if released_to:
        stmt = stmt.where(StockOut.released_to.ilike(f"%{released_to.strip()}%"))
    start, end = _day_bounds(date_from, date_to)
    if start is not None:
        stmt = stmt.where(StockOut.stock_out_date >= start)
    if end is not None:
        stmt = stmt.where(StockOut.stock_out_date <= end)
    return list(db.execute(stmt.order_by(StockOut.id.desc())).scalars().all())


def list_treatment_usage(
    db: Session,
    *,
    patient_id: int | None = None,
    invoice_id: int | None = None,
) -> list[StockOut]:
    stmt = select(StockOut).where(StockOut.is_treatment_usage.is_(True))
    if patient_id is not None:
        stmt = stmt.where(StockOut.patient_id == patient_id)
    if invoice_id is not None:
        stmt = stmt.where(StockOut.invoice_id == invoice_id)
    return list(db.execute(stmt.order_by(StockOut.id.desc())).scalars().all())
