"""Typed errors raised by the inventory services.

Each error carries a machine-readable ``code``, the HTTP status the API layer
maps it to, and an optional list of structured per-line reasons so that a
multi-line request can be corrected in one round trip.
"""

from __future__ import annotations

from typing import Any


class InventoryError(Exception):
    code = "inventory_error"
    status_code = 400

    def __init__(self, detail: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.errors = list(errors or [])

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "detail": self.detail}
        if self.errors:
            payload["errors"] = self.errors
        return payload


class ValidationError(InventoryError):
    """Malformed or missing fields, non-positive quantities. Raised before any write."""

    code = "validation_error"
    status_code = 400


class NotFoundError(InventoryError):
    code = "not_found"
    status_code = 404


class InvalidStateError(InventoryError):
    """The target is not in a state that allows the operation (e.g. editing a non-Pending PO)."""

    code = "invalid_state"
    status_code = 409


class ConflictError(InventoryError):
    """Cancelling a received PO, batch number owned by another item, duplicate document number."""

    code = "conflict"
    status_code = 409


class InsufficientStockError(InventoryError):
    """A debit exceeds the available quantity, including a race lost to a concurrent debit."""

    code = "insufficient_stock"
    status_code = 422


class ImmutableRecordError(InventoryError):
    code = "immutable_record"
    status_code = 409


class PersistenceError(InventoryError):
    """Transaction / commit failure. Reads are replayed by the API route, writes are never retried."""

    code = "persistence_error"
    status_code = 503


class ConcurrentUpdateError(PersistenceError):
    """Compare-and-swap on a batch kept losing against concurrent writers."""


def line_error(index: int, field: str, message: str, **extra: Any) -> dict[str, Any]:
    """Per-line reason, ``index`` is 1-based like the UI line numbers."""
    err: dict[str, Any] = {"line": index, "field": field, "message": message}
    err.update(extra)
    return err
