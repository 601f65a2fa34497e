from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.routing import ReadRetryRoute
from backend.app.db.models.models_v1 import Supplier
from backend.services import catalog

router = APIRouter(prefix="/suppliers", route_class=ReadRetryRoute)


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    contact_person: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    address: str | None = None


class SupplierUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    contact_person: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    address: str | None = None
    active: bool | None = None


def _supplier_out(s: Supplier) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "contact_person": s.contact_person,
        "phone": s.phone,
        "email": s.email,
        "address": s.address,
        "active": s.active,
    }


@router.get("")
def list_suppliers(active: bool | None = None, db: Session = Depends(get_db)):
    return [_supplier_out(s) for s in catalog.list_suppliers(db, active=active)]


@router.get("/{supplier_id}")
def get_supplier(supplier_id: int, db: Session = Depends(get_db)):
    s = catalog.get_supplier(db, supplier_id)
    return {**_supplier_out(s), "usage": catalog.supplier_usage(db, s.id)}


@router.post("", status_code=201)
def create_supplier(payload: SupplierCreate, db: Session = Depends(get_db)):
    s = catalog.create_supplier(db, **payload.model_dump())
    return {"id": s.id, "name": s.name}


@router.put("/{supplier_id}")
def update_supplier(supplier_id: int, payload: SupplierUpdate, db: Session = Depends(get_db)):
    # Seuls les champs envoyés sont modifiés
    s = catalog.update_supplier(db, supplier_id, **payload.model_dump(exclude_unset=True))
    return _supplier_out(s)


@router.delete("/{supplier_id}", status_code=204)
def delete_supplier(supplier_id: int, db: Session = Depends(get_db)):
    # 409 si items / PO / réceptions y font référence
    catalog.delete_supplier(db, supplier_id)
    return Response(status_code=204)
