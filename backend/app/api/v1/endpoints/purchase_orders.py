from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db
from backend.app.api.routing import ReadRetryRoute
from backend.app.db.models.core_types import POStatus
from backend.app.db.models.models_v1 import PurchaseOrder
from backend.services import procurement
from backend.services.procurement import POLineInput

router = APIRouter(prefix="/purchase-orders", route_class=ReadRetryRoute)


class POLineCreate(BaseModel):
    item_id: int
    quantity_ordered: int = Field(gt=0)
    unit_cost: float = Field(ge=0)
    remarks: str | None = None


class POCreate(BaseModel):
    supplier_id: int
    order_date: date | None = None
    expected_delivery_date: date | None = None
    remarks: str | None = None
    created_by: str | None = Field(default=None, max_length=100)
    lines: list[POLineCreate] = Field(default_factory=list)


class POLinesReplace(BaseModel):
    lines: list[POLineCreate] = Field(default_factory=list)


class POAction(BaseModel):
    actor: str | None = Field(default=None, max_length=100)


def _line_inputs(lines: list[POLineCreate]) -> list[POLineInput]:
    return [
        POLineInput(
            item_id=ln.item_id,
            quantity_ordered=ln.quantity_ordered,
            unit_cost=ln.unit_cost,
            remarks=ln.remarks,
        )
        for ln in lines
    ]


def _po_summary(po: PurchaseOrder) -> dict:
    return {
        "id": po.id,
        "po_number": po.po_number,
        "supplier_id": po.supplier_id,
        "supplier": po.supplier.name if po.supplier else None,
        "status": po.status,
        "order_date": po.order_date,
        "expected_delivery_date": po.expected_delivery_date,
        "total_amount": float(po.total_amount),
        "created_by": po.created_by,
        "created_at": po.created_at,
    }


def _po_detail(po: PurchaseOrder) -> dict:
    out = _po_summary(po)
    out.update(
        {
            "remarks": po.remarks,
            "approved_at": po.approved_at,
            "approved_by": po.approved_by,
            "cancelled_at": po.cancelled_at,
            "cancelled_by": po.cancelled_by,
            "received_at": po.received_at,
            "lines": [
                {
                    "id": l.id,
                    "item_id": l.item_id,
                    "item_name": l.item.name if l.item else None,
                    "quantity_ordered": l.quantity_ordered,
                    "unit_cost": float(l.unit_cost),
                    "quantity_received": l.quantity_received,
                    "outstanding": l.outstanding,
                    "over_received": l.over_received,
                    "remarks": l.remarks,
                }
                for l in po.lines
            ],
        }
    )
    return out


@router.get("")
def list_pos(
    status: POStatus | None = None,
    supplier_id: int | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
):
    rows = procurement.list_purchase_orders(db, status=status, supplier_id=supplier_id, search=search)
    return [_po_summary(po) for po in rows]


@router.get("/{po_id}")
def get_po(po_id: int, db: Session = Depends(get_db)):
    return _po_detail(procurement.get_purchase_order(db, po_id))


@router.post("", status_code=201)
def create_po(payload: POCreate, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    po = procurement.create_purchase_order(
        db,
        supplier_id=payload.supplier_id,
        lines=_line_inputs(payload.lines),
        created_by=payload.created_by or actor,
        expected_delivery_date=payload.expected_delivery_date,
        remarks=payload.remarks,
        order_date=payload.order_date,
    )
    return {"po_id": po.id, "po_number": po.po_number, "status": po.status}


@router.put("/{po_id}/lines")
def replace_po_lines(po_id: int, payload: POLinesReplace, db: Session = Depends(get_db)):
    po = procurement.update_purchase_order_lines(db, po_id, _line_inputs(payload.lines))
    return _po_detail(po)


@router.post("/{po_id}/approve")
def approve_po(
    po_id: int,
    payload: POAction | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    po = procurement.approve_purchase_order(db, po_id, actor=(payload and payload.actor) or actor)
    return {"po_id": po.id, "po_number": po.po_number, "status": po.status}


@router.post("/{po_id}/cancel")
def cancel_po(
    po_id: int,
    payload: POAction | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    po = procurement.cancel_purchase_order(db, po_id, actor=(payload and payload.actor) or actor)
    return {"po_id": po.id, "po_number": po.po_number, "status": po.status}
