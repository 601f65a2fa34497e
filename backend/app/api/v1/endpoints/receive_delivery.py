from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db
from backend.app.api.routing import ReadRetryRoute
from backend.app.db.models.models_v1 import StockIn
from backend.services import receiving
from backend.services.receiving import Delivery, DeliveryLine

router = APIRouter(prefix="/receive-delivery", route_class=ReadRetryRoute)


# ---------- Schemas ----------
class DeliveryLineIn(BaseModel):
    item_id: int
    batch_no: str = Field(min_length=1, max_length=64)
    expiry_date: date | None = None
    qty_received: int = Field(gt=0)
    unit_cost: float = Field(default=0, ge=0)
    remarks: str | None = None


class DeliveryIn(BaseModel):
    stock_in_no: str | None = Field(default=None, max_length=64)
    po_id: int | None = None
    supplier_id: int | None = None
    date_received: date
    received_by: str | None = Field(default=None, max_length=100)
    remarks: str | None = None
    items: list[DeliveryLineIn] = Field(default_factory=list)


def _stock_in_out(si: StockIn, with_lines: bool = False) -> dict:
    out = {
        "stock_in_id": si.id,
        "stock_in_no": si.stock_in_no,
        "po_id": si.po_id,
        "supplier_id": si.supplier_id,
        "date_received": si.date_received,
        "received_by": si.received_by,
        "total_items": si.total_items,
        "total_amount": float(si.total_amount),
        "remarks": si.remarks,
    }
    if with_lines:
        out["items"] = [
            {
                "movement_id": r.id,
                "batch_id": r.batch_id,
                "batch_no": r.batch.batch_no,
                "item_id": r.item_id,
                "qty_received": r.qty,
                "unit_cost": float(r.unit_cost) if r.unit_cost is not None else None,
                "expiry_date": r.batch.expiry_date,
                "remarks": r.remarks,
            }
            for r in si.receipts
        ]
    return out


# ---------- Endpoints ----------
@router.post("", status_code=201)
def receive_delivery(payload: DeliveryIn, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    delivery = Delivery(
        date_received=payload.date_received,
        received_by=payload.received_by or actor,
        stock_in_no=payload.stock_in_no,
        po_id=payload.po_id,
        supplier_id=payload.supplier_id,
        remarks=payload.remarks,
        lines=[
            DeliveryLine(
                item_id=ln.item_id,
                batch_no=ln.batch_no,
                qty_received=ln.qty_received,
                unit_cost=ln.unit_cost,
                expiry_date=ln.expiry_date,
                remarks=ln.remarks,
            )
            for ln in payload.items
        ],
    )
    si = receiving.receive_delivery(db, delivery)
    return {
        "stock_in_id": si.id,
        "stock_in_no": si.stock_in_no,
        "total_items": si.total_items,
        "total_amount": float(si.total_amount),
    }


@router.get("")
def list_deliveries(
    po_id: int | None = None,
    supplier_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    db: Session = Depends(get_db),
):
    rows = receiving.list_deliveries(
        db, po_id=po_id, supplier_id=supplier_id, date_from=date_from, date_to=date_to
    )
    return [_stock_in_out(si) for si in rows]


@router.get("/{stock_in_id}")
def get_delivery(stock_in_id: int, db: Session = Depends(get_db)):
    return _stock_in_out(receiving.get_delivery(db, stock_in_id), with_lines=True)
