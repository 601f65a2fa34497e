from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend.app.core.config import settings
from backend.app.core.errors import PersistenceError

logger = logging.getLogger(__name__)

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, echo=settings.DB_ECHO)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Frontière transactionnelle d'une opération métier.

    - commit si tout passe
    - rollback COMPLET sinon (jamais d'application partielle)
    - les erreurs SQLAlchemy remontent en PersistenceError
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Transaction rolled back: %s", exc.__class__.__name__)
        raise PersistenceError("Database transaction failed") from exc
    except Exception:
        db.rollback()
        raise
