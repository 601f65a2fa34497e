from __future__ import annotations

from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import NumberSeries

# Clés de séries (préfixe == clé)
PO_SERIES = "PO"
STOCK_IN_SERIES = "SI"
STOCK_OUT_SERIES = "SO"


def _date_key(d: date) -> int:
    return int(d.strftime("%Y%m%d"))


def _bump(db: Session, key: str, dk: int) -> int | None:
    """UPDATE atomique : incrémente et verrouille la ligne (key, date_key)."""
    res = db.execute(
        update(NumberSeries)
        .where(NumberSeries.key == key, NumberSeries.date_key == dk)
        .values(next_seq=NumberSeries.next_seq + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        return None

    # La ligne est verrouillée par notre UPDATE : la relecture est cohérente
    current = db.execute(
        select(NumberSeries.next_seq).where(NumberSeries.key == key, NumberSeries.date_key == dk)
    ).scalar_one()
    return int(current) - 1


def next_document_number(
    db: Session,
    key: str,
    doc_date: date,
    *,
    prefix: str | None = None,
    pad: int = 3,
) -> str:
    """
    Générateur de numéros concurrency-safe (séquence en base, UNIQUE(key, date_key)).

    Exemple : PO-20251214-001

    Ne commit pas : la séquence avance dans la transaction de l'appelant.
    """
    dk = _date_key(doc_date)

    seq = _bump(db, key, dk)
    if seq is None:
        # Première émission du jour. Deux créateurs simultanés : un seul INSERT passe.
        try:
            with db.begin_nested():
                db.add(NumberSeries(key=key, date_key=dk, next_seq=1))
        except IntegrityError:
            pass
        seq = _bump(db, key, dk)
        if seq is None:
            raise RuntimeError(f"Number series {key}/{dk} could not be initialised")

    return f"{prefix or key}-{doc_date.strftime('%Y%m%d')}-{seq:0{pad}d}"
