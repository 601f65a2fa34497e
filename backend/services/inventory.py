"""
Batch ledger.

Seul module autorisé à modifier StockBatch.qty_available.

Chaque opération (credit / debit / adjust_to) est :
- un read-modify-write atomique EN BASE (UPDATE conditionnelle ou CAS sur version)
- accompagnée d'exactement UNE ligne StockMovement, dans la même transaction

Aucune opération ne commit : la transaction appartient à l'appelant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.core.errors import (
    ConcurrentUpdateError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from backend.app.db import immutability  # noqa: F401  (enregistre les garde-fous ORM)
from backend.app.db.models.core_types import AdjustmentType, ExpiryStatus
from backend.app.db.models.models_v1 import (
    AdjustmentMovement,
    Item,
    ReceiptMovement,
    ReleaseMovement,
    StockBatch,
    StockMovement,
    utcnow,
)

logger = logging.getLogger(__name__)

EXPIRY_FILTERS = {s.value for s in ExpiryStatus}


# ---------- READ ----------
def get_batch(db: Session, batch_id: int) -> StockBatch:
    batch = db.get(StockBatch, batch_id)
    if not batch:
        raise NotFoundError(f"Stock batch {batch_id} not found")
    return batch


def _reload(db: Session, batch_id: int) -> StockBatch:
    # populate_existing : on écrase l'état en identity map par la vérité en base
    batch = (
        db.execute(
            select(StockBatch)
            .where(StockBatch.id == batch_id)
            .execution_options(populate_existing=True)
        )
        .scalars()
        .one_or_none()
    )
    if not batch:
        raise NotFoundError(f"Stock batch {batch_id} not found")
    return batch


def _read_for_update(db: Session, batch_id: int) -> tuple[int, int, int]:
    """(qty_available, version, item_id) sous verrou ligne (FOR UPDATE)."""
    row = db.execute(
        select(StockBatch.qty_available, StockBatch.version, StockBatch.item_id)
        .where(StockBatch.id == batch_id)
        .with_for_update()
    ).one_or_none()
    if row is None:
        raise NotFoundError(f"Stock batch {batch_id} not found")
    return int(row[0]), int(row[1]), int(row[2])


def batch_status(
    expiry_date: date | None,
    today: date | None = None,
    soon_days: int | None = None,
) -> ExpiryStatus:
    """Label dérivé (jamais stocké)."""
    if expiry_date is None:
        return ExpiryStatus.no_expiry

    today = today or date.today()
    window = settings.EXPIRING_SOON_DAYS if soon_days is None else soon_days
    if expiry_date < today:
        return ExpiryStatus.expired
    if expiry_date <= today + timedelta(days=window):
        return ExpiryStatus.expiring_soon
    return ExpiryStatus.good


def is_expired(batch: StockBatch, today: date | None = None) -> bool:
    return batch.expiry_date is not None and batch.expiry_date < (today or date.today())


def _fefo_order():
    # expiry ASC NULLS LAST (portable), puis batch_no
    return (
        StockBatch.expiry_date.is_(None),
        StockBatch.expiry_date.asc(),
        StockBatch.batch_no.asc(),
        StockBatch.id.asc(),
    )


def list_available_batches(
    db: Session,
    item_id: int | None = None,
    *,
    today: date | None = None,
) -> list[StockBatch]:
    """
    Candidats à l'allocation, ordre FEFO.

    Exclut qty_available == 0 et expiry_date < today.
    """
    today = today or date.today()
    stmt = (
        select(StockBatch)
        .join(Item, Item.id == StockBatch.item_id)
        .where(StockBatch.qty_available > 0)
        .where(or_(StockBatch.expiry_date.is_(None), StockBatch.expiry_date >= today))
    )
    if item_id is not None:
        stmt = stmt.where(StockBatch.item_id == item_id)

    stmt = stmt.order_by(Item.name.asc(), *_fefo_order())
    return list(db.execute(stmt).scalars().all())


def list_batches(
    db: Session,
    *,
    item_id: int | None = None,
    expiry_filter: str | None = None,
    search: str | None = None,
    include_empty: bool = True,
    today: date | None = None,
) -> list[StockBatch]:
    """Vue historique : les lots à zéro restent visibles (include_empty)."""
    today = today or date.today()
    soon = today + timedelta(days=settings.EXPIRING_SOON_DAYS)

    stmt = select(StockBatch).join(Item, Item.id == StockBatch.item_id)

    if item_id is not None:
        stmt = stmt.where(StockBatch.item_id == item_id)
    if not include_empty:
        stmt = stmt.where(StockBatch.qty_available > 0)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Item.name.ilike(pattern), StockBatch.batch_no.ilike(pattern)))

    if expiry_filter:
        if expiry_filter not in EXPIRY_FILTERS:
            raise ValidationError(
                f"Invalid expiry_filter '{expiry_filter}'",
                errors=[{"field": "expiry_filter", "allowed": sorted(EXPIRY_FILTERS)}],
            )
        if expiry_filter == ExpiryStatus.expired.value:
            stmt = stmt.where(StockBatch.expiry_date < today)
        elif expiry_filter == ExpiryStatus.expiring_soon.value:
            stmt = stmt.where(StockBatch.expiry_date >= today, StockBatch.expiry_date <= soon)
        elif expiry_filter == ExpiryStatus.good.value:
            stmt = stmt.where(or_(StockBatch.expiry_date.is_(None), StockBatch.expiry_date > soon))
        else:
            stmt = stmt.where(StockBatch.expiry_date.is_(None))

    stmt = stmt.order_by(Item.name.asc(), *_fefo_order())
    return list(db.execute(stmt).scalars().all())


def batch_movements(db: Session, batch_id: int) -> list[StockMovement]:
    get_batch(db, batch_id)
    return list(
        db.execute(
            select(StockMovement)
            .where(StockMovement.batch_id == batch_id)
            .order_by(StockMovement.id.asc())
        )
        .scalars()
        .all()
    )


@dataclass(frozen=True)
class BatchReconciliation:
    batch_id: int
    qty_available: int
    ledger_qty: int
    movement_count: int

    @property
    def balanced(self) -> bool:
        return self.qty_available == self.ledger_qty


def reconcile_batch(db: Session, batch_id: int) -> BatchReconciliation:
    """
    Contrôle d'audit : qty_available == SUM(quantity_delta) des mouvements.

    Un lot naît à 0, donc la somme des deltas doit redonner la quantité.
    """
    batch = _reload(db, batch_id)
    total, count = db.execute(
        select(
            func.coalesce(func.sum(StockMovement.quantity_delta), 0),
            func.count(StockMovement.id),
        ).where(StockMovement.batch_id == batch_id)
    ).one()
    return BatchReconciliation(
        batch_id=batch.id,
        qty_available=int(batch.qty_available),
        ledger_qty=int(total),
        movement_count=int(count),
    )


# ---------- WRITE ----------
def _require_positive(qty: int, op: str) -> None:
    if qty is None or int(qty) <= 0:
        raise ValidationError(f"{op}: quantity must be greater than 0 (got {qty})")


def credit(
    db: Session,
    batch_id: int,
    qty: int,
    *,
    actor: str,
    stock_in_id: int | None = None,
    po_id: int | None = None,
    unit_cost: Decimal | None = None,
    happened_at: datetime | None = None,
    remarks: str | None = None,
) -> ReceiptMovement:
    """Réception : qty_available += qty, + mouvement Receipt."""
    _require_positive(qty, "credit")

    values = {
        "qty_available": StockBatch.qty_available + qty,
        "version": StockBatch.version + 1,
        "updated_at": utcnow(),
    }
    if unit_cost is not None:
        values["unit_cost"] = unit_cost

    res = db.execute(
        update(StockBatch)
        .where(StockBatch.id == batch_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        raise NotFoundError(f"Stock batch {batch_id} not found")

    batch = _reload(db, batch_id)
    mv = ReceiptMovement(
        batch_id=batch.id,
        item_id=batch.item_id,
        quantity_delta=qty,
        qty_before=batch.qty_available - qty,
        qty_after=batch.qty_available,
        actor=actor,
        happened_at=happened_at or utcnow(),
        remarks=remarks,
        stock_in_id=stock_in_id,
        po_id=po_id,
        unit_cost=unit_cost,
    )
    db.add(mv)
    db.flush()

    logger.debug("credit batch=%s qty=%s -> %s", batch_id, qty, batch.qty_available)
    return mv


def debit(
    db: Session,
    batch_id: int,
    qty: int,
    *,
    actor: str,
    stock_out_id: int | None = None,
    happened_at: datetime | None = None,
    remarks: str | None = None,
) -> ReleaseMovement:
    """
    Sortie : qty_available -= qty, + mouvement Release.

    L'UPDATE ne passe que si qty_available >= qty au moment de l'écriture :
    deux débits concurrents ne peuvent pas rendre le stock négatif.
    """
    _require_positive(qty, "debit")

    res = db.execute(
        update(StockBatch)
        .where(StockBatch.id == batch_id)
        .where(StockBatch.qty_available >= qty)
        .values(
            qty_available=StockBatch.qty_available - qty,
            version=StockBatch.version + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        available = db.execute(
            select(StockBatch.qty_available).where(StockBatch.id == batch_id)
        ).scalar_one_or_none()
        if available is None:
            raise NotFoundError(f"Stock batch {batch_id} not found")
        raise InsufficientStockError(
            f"Insufficient quantity for batch {batch_id}. Available: {available}, Requested: {qty}",
            errors=[{"batch_id": batch_id, "available": int(available), "requested": int(qty)}],
        )

    batch = _reload(db, batch_id)
    mv = ReleaseMovement(
        batch_id=batch.id,
        item_id=batch.item_id,
        quantity_delta=-qty,
        qty_before=batch.qty_available + qty,
        qty_after=batch.qty_available,
        actor=actor,
        happened_at=happened_at or utcnow(),
        remarks=remarks,
        stock_out_id=stock_out_id,
    )
    db.add(mv)
    db.flush()

    logger.debug("debit batch=%s qty=%s -> %s", batch_id, qty, batch.qty_available)
    return mv


def adjust_to(
    db: Session,
    batch_id: int,
    new_qty: int,
    *,
    actor: str,
    reason: str,
    adjustment_type: AdjustmentType = AdjustmentType.correction,
    happened_at: datetime | None = None,
    remarks: str | None = None,
) -> AdjustmentMovement:
    """
    Ajustement : qty_available = new_qty, + mouvement Adjustment (old/new).

    old_qty est lu sous verrou, puis écrit en compare-and-swap sur version.
    """
    if new_qty is None or int(new_qty) < 0:
        raise ValidationError(f"New quantity cannot be negative (got {new_qty})")

    for attempt in range(1, settings.LEDGER_MAX_RETRIES + 1):
        old_qty, version, item_id = _read_for_update(db, batch_id)
        res = db.execute(
            update(StockBatch)
            .where(StockBatch.id == batch_id)
            .where(StockBatch.version == version)
            .values(qty_available=new_qty, version=version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            break
        logger.warning("adjust_to batch=%s lost CAS on version %s (attempt %s)", batch_id, version, attempt)
    else:
        raise ConcurrentUpdateError(
            f"Stock batch {batch_id} kept changing concurrently, adjustment not applied"
        )

    _reload(db, batch_id)
    mv = AdjustmentMovement(
        batch_id=batch_id,
        item_id=item_id,
        quantity_delta=new_qty - old_qty,
        qty_before=old_qty,
        qty_after=new_qty,
        actor=actor,
        happened_at=happened_at or utcnow(),
        remarks=remarks,
        reason=reason,
        adjustment_type=adjustment_type,
    )
    db.add(mv)
    db.flush()

    logger.debug("adjust_to batch=%s %s -> %s", batch_id, old_qty, new_qty)
    return mv
