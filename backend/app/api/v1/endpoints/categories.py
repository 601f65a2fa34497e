from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.routing import ReadRetryRoute
from backend.services import catalog

router = APIRouter(prefix="/categories", route_class=ReadRetryRoute)


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)


@router.get("")
def list_categories(db: Session = Depends(get_db)):
    return [{"id": c.id, "name": c.name} for c in catalog.list_categories(db)]


@router.post("", status_code=201)
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)):
    c = catalog.create_category(db, name=payload.name)
    return {"id": c.id, "name": c.name}
