from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.routing import ReadRetryRoute
from backend.app.core.config import settings

router = APIRouter(prefix="/health", route_class=ReadRetryRoute)


@router.get("")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok", "service": settings.SERVICE_NAME}
