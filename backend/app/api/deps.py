from __future__ import annotations

from typing import Generator

from fastapi import Header

from backend.app.db.session import SessionLocal


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(x_user: str | None = Header(default=None, alias="X-User")) -> str:
    # L'auth est gérée en amont (gateway) ; on ne lit que l'identité transmise
    if not x_user or not x_user.strip():
        return "unknown"
    return x_user.strip()
