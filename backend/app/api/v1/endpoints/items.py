from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.routing import ReadRetryRoute
from backend.app.db.models.models_v1 import Item
from backend.services import catalog

router = APIRouter(prefix="/items", route_class=ReadRetryRoute)


class ItemCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    unit_of_measure: str = Field(default="pcs", min_length=1, max_length=32)
    reorder_level: int = Field(default=0, ge=0)
    category_id: int | None = None
    supplier_id: int | None = None
    active: bool = True


class ItemUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    unit_of_measure: str | None = Field(default=None, min_length=1, max_length=32)
    reorder_level: int | None = Field(default=None, ge=0)
    category_id: int | None = None
    supplier_id: int | None = None
    active: bool | None = None


def _item_out(db: Session, i: Item) -> dict:
    qty = catalog.on_hand(db, i.id)
    return {
        "id": i.id,
        "code": i.code,
        "name": i.name,
        "category_id": i.category_id,
        "category": i.category.name if i.category else None,
        "unit_of_measure": i.unit_of_measure,
        "reorder_level": i.reorder_level,
        "supplier_id": i.supplier_id,
        "active": i.active,
        "on_hand": qty,
        "below_reorder": qty <= i.reorder_level,
    }


@router.get("")
def list_items(
    search: str | None = None,
    category_id: int | None = None,
    active: bool | None = None,
    db: Session = Depends(get_db),
):
    rows = catalog.list_items(db, search=search, category_id=category_id, active=active)
    return [_item_out(db, i) for i in rows]


@router.get("/{item_id}")
def get_item(item_id: int, db: Session = Depends(get_db)):
    return _item_out(db, catalog.get_item(db, item_id))


@router.post("", status_code=201)
def create_item(payload: ItemCreate, db: Session = Depends(get_db)):
    i = catalog.create_item(db, **payload.model_dump())
    return {"id": i.id, "code": i.code, "name": i.name}


@router.put("/{item_id}")
def update_item(item_id: int, payload: ItemUpdate, db: Session = Depends(get_db)):
    # Seuls les champs envoyés sont modifiés
    i = catalog.update_item(db, item_id, **payload.model_dump(exclude_unset=True))
    return _item_out(db, i)
