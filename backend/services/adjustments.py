"""
Ajustements de stock (corrections manuelles, toujours motivées et auditées).

L'écriture passe par inventory.adjust_to : la ligne d'audit (old/new, motif,
type, auteur) est le mouvement Adjustment lui-même, jamais modifié ensuite.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.core.errors import InvalidStateError, NotFoundError, ValidationError
from backend.app.db.models.core_types import AdjustmentType
from backend.app.db.models.models_v1 import AdjustmentMovement, StockBatch
from backend.app.db.session import unit_of_work
from backend.services import inventory

logger = logging.getLogger(__name__)


def adjust_stock(
    db: Session,
    *,
    batch_id: int,
    new_qty: int,
    reason: str,
    adjustment_type: AdjustmentType = AdjustmentType.correction,
    adjusted_by: str,
    today: date | None = None,
) -> tuple[AdjustmentMovement, StockBatch]:
    with unit_of_work(db):
        if not reason or not reason.strip():
            raise InvalidStateError("A reason is required for every stock adjustment")
        if new_qty is None or new_qty < 0:
            raise ValidationError("New quantity cannot be negative")

        batch = inventory.get_batch(db, batch_id)
        if inventory.is_expired(batch, today) and adjustment_type != AdjustmentType.disposal:
            # Toléré (le moteur n'impose que le motif), mais signalé
            logger.warning(
                "Expired batch %s adjusted with type %s instead of Disposal",
                batch.batch_no,
                adjustment_type.value,
            )

        adjustment = inventory.adjust_to(
            db,
            batch_id,
            int(new_qty),
            actor=adjusted_by or "unknown",
            reason=reason.strip(),
            adjustment_type=adjustment_type,
        )
        batch = inventory.get_batch(db, batch_id)

    logger.info(
        "Stock adjustment: batch %s (%s) adjusted from %s to %s [%s] by %s",
        batch_id,
        batch.batch_no,
        adjustment.old_qty,
        adjustment.new_qty,
        adjustment.adjustment_type.value,
        adjustment.adjusted_by,
    )
    return adjustment, batch


def get_adjustment(db: Session, adjustment_id: int) -> AdjustmentMovement:
    adj = db.get(AdjustmentMovement, adjustment_id)
    if not adj:
        raise NotFoundError(f"Stock adjustment {adjustment_id} not found")
    return adj


def list_adjustments(
    db: Session,
    *,
    batch_id: int | None = None,
    item_id: int | None = None,
    adjusted_by: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[AdjustmentMovement]:
    stmt = select(AdjustmentMovement)
    if batch_id is not None:
        stmt = stmt.where(AdjustmentMovement.batch_id == batch_id)
    if item_id is not None:
        stmt = stmt.where(AdjustmentMovement.item_id == item_id)
    if adjusted_by:
        stmt = stmt.where(AdjustmentMovement.actor == adjusted_by)
    if date_from is not None:
        stmt = stmt.where(AdjustmentMovement.happened_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
    if date_to is not None:
        stmt = stmt.where(AdjustmentMovement.happened_at <= datetime.combine(date_to, time.max, tzinfo=timezone.utc))
    return list(db.execute(stmt.order_by(AdjustmentMovement.id.desc())).scalars().all())
