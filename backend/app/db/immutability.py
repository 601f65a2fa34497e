"""
Garde-fous ORM du ledger.

- StockMovement : append-only, jamais modifié ni supprimé
- StockBatch : jamais supprimé, qty_available/version jamais assignés via l'ORM
  (seules les UPDATE conditionnelles de backend.services.inventory les modifient)

Les UPDATE émises en Core/ORM-bulk ne passent pas par ces events.
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import attributes

from backend.app.core.errors import ImmutableRecordError
from backend.app.db.models.models_v1 import StockBatch, StockMovement

_LEDGER_OWNED_COLUMNS = ("qty_available", "version")


@event.listens_for(StockMovement, "before_update", propagate=True)
def _block_movement_update(mapper, connection, target):
    raise ImmutableRecordError(f"Stock movement {target.id} is immutable")


@event.listens_for(StockMovement, "before_delete", propagate=True)
def _block_movement_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Stock movement {target.id} cannot be deleted")


@event.listens_for(StockBatch, "before_delete")
def _block_batch_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Stock batch {target.id} cannot be deleted (history must remain queryable)")


@event.listens_for(StockBatch, "before_update")
def _block_batch_qty_assignment(mapper, connection, target):
    for name in _LEDGER_OWNED_COLUMNS:
        if attributes.get_history(target, name).has_changes():
            raise ImmutableRecordError(
                f"Stock batch {target.id}: {name} is owned by the ledger (use credit/debit/adjust_to)"
            )
