from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel

from backend.app.db.models.core_types import ExpiryStatus
from backend.app.db.models.models_v1 import StockBatch
from backend.services.inventory import batch_status


class BatchRead(BaseModel):
    batch_id: int
    item_id: int
    item_name: str | None = None
    batch_no: str
    expiry_date: date | None = None

    qty_available: int
    unit_cost: float
    status: ExpiryStatus  # READ ONLY : dérivé de expiry_date, jamais stocké
    created_at: datetime

    class Config:
        from_attributes = True

    @classmethod
    def from_batch(cls, b: StockBatch, today: date | None = None) -> "BatchRead":
        return cls(
            batch_id=b.id,
            item_id=b.item_id,
            item_name=b.item.name if b.item else None,
            batch_no=b.batch_no,
            expiry_date=b.expiry_date,
            qty_available=b.qty_available,
            unit_cost=float(b.unit_cost or 0),
            status=batch_status(b.expiry_date, today),
            created_at=b.created_at,
        )
