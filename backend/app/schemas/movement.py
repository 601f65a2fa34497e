from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from backend.app.db.models.core_types import AdjustmentType, MovementKind
from backend.app.db.models.models_v1 import StockMovement


class MovementRead(BaseModel):
    id: int
    kind: MovementKind
    batch_id: int
    item_id: int

    quantity_delta: int
    qty_before: int
    qty_after: int

    actor: str
    happened_at: datetime
    remarks: str | None = None

    # Receipt
    stock_in_id: int | None = None
    po_id: int | None = None
    unit_cost: float | None = None
    # Release
    stock_out_id: int | None = None
    # Adjustment
    reason: str | None = None
    adjustment_type: AdjustmentType | None = None

    @classmethod
    def from_movement(cls, mv: StockMovement) -> "MovementRead":
        unit_cost = getattr(mv, "unit_cost", None)
        return cls(
            id=mv.id,
            kind=mv.kind,
            batch_id=mv.batch_id,
            item_id=mv.item_id,
            quantity_delta=mv.quantity_delta,
            qty_before=mv.qty_before,
            qty_after=mv.qty_after,
            actor=mv.actor,
            happened_at=mv.happened_at,
            remarks=mv.remarks,
            stock_in_id=getattr(mv, "stock_in_id", None),
            po_id=getattr(mv, "po_id", None),
            unit_cost=float(unit_cost) if unit_cost is not None else None,
            stock_out_id=getattr(mv, "stock_out_id", None),
            reason=getattr(mv, "reason", None),
            adjustment_type=getattr(mv, "adjustment_type", None),
        )
