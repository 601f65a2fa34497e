"""
Balayage périodique des dates de péremption (LECTURE SEULE).

Ne modifie aucun lot : le statut expired / expiring-soon reste dérivé.
Sert au reporting et aux alertes ; les lots périmés doivent ensuite passer
par un ajustement de type Disposal.

    python -m backend.services.expiry_sweep --days 30
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.core.logging import configure_logging
from backend.app.db.models.core_types import ExpiryStatus
from backend.app.db.models.models_v1 import StockBatch
from backend.services import inventory

logger = logging.getLogger(__name__)


@dataclass
class ExpirySweepReport:
    today: date
    expired: list[StockBatch] = field(default_factory=list)
    expiring_soon: list[StockBatch] = field(default_factory=list)

    @property
    def expired_qty(self) -> int:
        return sum(b.qty_available for b in self.expired)


def sweep_expiry(db: Session, *, today: date | None = None, soon_days: int | None = None) -> ExpirySweepReport:
    today = today or date.today()
    report = ExpirySweepReport(today=today)

    # Seuls les lots encore en stock comptent
    for batch in inventory.list_batches(db, include_empty=False, today=today):
        status = inventory.batch_status(batch.expiry_date, today, soon_days)
        if status == ExpiryStatus.expired:
            report.expired.append(batch)
        elif status == ExpiryStatus.expiring_soon:
            report.expiring_soon.append(batch)

    for batch in report.expired:
        logger.warning(
            "Expired batch still on hand: %s item=%s qty=%s expiry=%s",
            batch.batch_no,
            batch.item_id,
            batch.qty_available,
            batch.expiry_date,
        )
    logger.info(
        "Expiry sweep %s: %s expired (%s units), %s expiring soon",
        today.isoformat(),
        len(report.expired),
        report.expired_qty,
        len(report.expiring_soon),
    )
    return report


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Report expired and expiring-soon stock batches")
    parser.add_argument("--days", type=int, default=settings.EXPIRING_SOON_DAYS, help="expiring-soon window")
    args = parser.parse_args(argv)

    configure_logging()

    from backend.app.db.session import SessionLocal

    db = SessionLocal()
    try:
        report = sweep_expiry(db, soon_days=args.days)
    finally:
        db.close()
    return 1 if report.expired else 0


if __name__ == "__main__":
    raise SystemExit(main())
