from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.routing import ReadRetryRoute
from backend.app.schemas.batch import BatchRead
from backend.app.schemas.movement import MovementRead
from backend.services import inventory

router = APIRouter(prefix="/batches", route_class=ReadRetryRoute)


@router.get("", response_model=list[BatchRead])
def list_batches(
    item_id: int | None = None,
    expiry_filter: str | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Lots (READ ONLY)
    - qty_available n'est modifiable que via réception / sortie / ajustement
    - status est calculé à la lecture, jamais stocké
    """
    rows = inventory.list_batches(db, item_id=item_id, expiry_filter=expiry_filter, search=search)
    return [BatchRead.from_batch(b) for b in rows]


@router.get("/{batch_id}", response_model=BatchRead)
def get_batch(batch_id: int, db: Session = Depends(get_db)):
    return BatchRead.from_batch(inventory.get_batch(db, batch_id))


@router.get("/{batch_id}/movements", response_model=list[MovementRead])
def get_batch_movements(batch_id: int, db: Session = Depends(get_db)):
    return [MovementRead.from_movement(mv) for mv in inventory.batch_movements(db, batch_id)]
