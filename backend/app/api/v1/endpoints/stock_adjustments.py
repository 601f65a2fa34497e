from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db
from backend.app.api.routing import ReadRetryRoute
from backend.app.db.models.core_types import AdjustmentType
from backend.app.db.models.models_v1 import AdjustmentMovement
from backend.services import adjustments

router = APIRouter(prefix="/stock-adjustments", route_class=ReadRetryRoute)


class AdjustmentIn(BaseModel):
    batch_id: int
    new_qty: int = Field(ge=0)
    reason: str = ""
    adjustment_type: AdjustmentType = AdjustmentType.correction
    adjusted_by: str | None = Field(default=None, max_length=100)


def _adjustment_out(a: AdjustmentMovement) -> dict:
    return {
        "adjustment_id": a.id,
        "batch_id": a.batch_id,
        "batch_no": a.batch.batch_no,
        "item_id": a.item_id,
        "old_qty": a.old_qty,
        "new_qty": a.new_qty,
        "delta": a.delta,
        "reason": a.reason,
        "adjustment_type": a.adjustment_type,
        "adjusted_by": a.adjusted_by,
        "adjusted_at": a.happened_at,
    }


@router.post("", status_code=201)
def create_adjustment(payload: AdjustmentIn, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    # reason vide : refusé par le service (InvalidStateError), pas par le schema
    adj, batch = adjustments.adjust_stock(
        db,
        batch_id=payload.batch_id,
        new_qty=payload.new_qty,
        reason=payload.reason,
        adjustment_type=payload.adjustment_type,
        adjusted_by=payload.adjusted_by or actor,
    )
    return {
        "adjustment_id": adj.id,
        "batch_id": batch.id,
        "old_qty": adj.old_qty,
        "new_qty": adj.new_qty,
        "qty_available": batch.qty_available,
    }


@router.get("")
def list_adjustments(
    batch_id: int | None = None,
    item_id: int | None = None,
    adjusted_by: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    db: Session = Depends(get_db),
):
    rows = adjustments.list_adjustments(
        db,
        batch_id=batch_id,
        item_id=item_id,
        adjusted_by=adjusted_by,
        date_from=date_from,
        date_to=date_to,
    )
    return [_adjustment_out(a) for a in rows]


@router.get("/{adjustment_id}")
def get_adjustment(adjustment_id: int, db: Session = Depends(get_db)):
    return _adjustment_out(adjustments.get_adjustment(db, adjustment_id))
