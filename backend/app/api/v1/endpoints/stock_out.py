from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db
from backend.app.api.routing import ReadRetryRoute
from backend.app.db.models.models_v1 import StockOut
from backend.app.schemas.batch import BatchRead
from backend.services import inventory, stock_out
from backend.services.stock_out import ReleaseLine, ReleaseRequest, TreatmentLink

router = APIRouter(route_class=ReadRetryRoute)


# ---------- Schemas ----------
class StockOutLineIn(BaseModel):
    item_id: int
    batch_id: int | None = None
    qty_released: int = Field(gt=0)
    remarks: str | None = None


class StockOutIn(BaseModel):
    released_to: str = Field(min_length=1, max_length=200)
    purpose: str | None = None
    created_by: str | None = Field(default=None, max_length=100)
    items: list[StockOutLineIn] = Field(default_factory=list)

    # Usage en soin (métadonnée)
    is_treatment_usage: bool = False
    patient_id: int | None = None
    invoice_id: int | None = None
    charge_id: int | None = None
    service_id: int | None = None


def _stock_out_out(so: StockOut, with_lines: bool = False) -> dict:
    out = {
        "stock_out_id": so.id,
        "reference_no": so.reference_no,
        "stock_out_date": so.stock_out_date,
        "released_to": so.released_to,
        "purpose": so.purpose,
        "created_by": so.created_by,
        "total_qty": so.total_qty,
        "is_treatment_usage": so.is_treatment_usage,
        "patient_id": so.patient_id,
        "invoice_id": so.invoice_id,
        "charge_id": so.charge_id,
        "service_id": so.service_id,
    }
    if with_lines:
        out["items"] = [
            {
                "movement_id": r.id,
                "batch_id": r.batch_id,
                "batch_no": r.batch.batch_no,
                "item_id": r.item_id,
                "qty_released": r.qty,
                "remarks": r.remarks,
            }
            for r in so.releases
        ]
    return out


# ---------- Endpoints ----------
@router.post("/stock-out-transaction", status_code=201)
def create_stock_out(payload: StockOutIn, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    link = None
    if payload.is_treatment_usage:
        link = TreatmentLink(
            patient_id=payload.patient_id,
            invoice_id=payload.invoice_id,
            charge_id=payload.charge_id,
            service_id=payload.service_id,
        )
    request = ReleaseRequest(
        released_to=payload.released_to,
        created_by=payload.created_by or actor,
        purpose=payload.purpose,
        treatment_link=link,
        items=[
            ReleaseLine(item_id=ln.item_id, qty=ln.qty_released, batch_id=ln.batch_id, remarks=ln.remarks)
            for ln in payload.items
        ],
    )
    so = stock_out.release(db, request)
    return {"stock_out_id": so.id, "reference_no": so.reference_no, "total_qty": so.total_qty}


@router.get("/stock-out-transactions")
def list_stock_outs(
    released_to: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    db: Session = Depends(get_db),
):
    rows = stock_out.list_releases(db, released_to=released_to, date_from=date_from, date_to=date_to)
    return [_stock_out_out(so) for so in rows]


@router.get("/stock-out-transactions/{stock_out_id}")
def get_stock_out(stock_out_id: int, db: Session = Depends(get_db)):
    return _stock_out_out(stock_out.get_release(db, stock_out_id), with_lines=True)


@router.get("/available-batches", response_model=list[BatchRead])
def available_batches(item_id: int | None = None, db: Session = Depends(get_db)):
    """Lots allouables (qty > 0, non périmés), ordre FEFO."""
    return [BatchRead.from_batch(b) for b in inventory.list_available_batches(db, item_id)]


@router.get("/treatment-stock-usage")
def treatment_stock_usage(
    patient_id: int | None = None,
    invoice_id: int | None = None,
    db: Session = Depends(get_db),
):
    rows = stock_out.list_treatment_usage(db, patient_id=patient_id, invoice_id=invoice_id)
    return [_stock_out_out(so, with_lines=True) for so in rows]
