import random
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from backend.app.core.config import settings
from backend.app.core.errors import (
    ConcurrentUpdateError,
    ImmutableRecordError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from backend.app.db.models.core_types import ExpiryStatus, MovementKind
from backend.app.db.models.models_v1 import StockMovement
from backend.app.db.session import unit_of_work
from backend.services import inventory


def _qty(db, batch_id):
    return inventory.get_batch(db, batch_id).qty_available


def test_random_credits_and_debits_conserve_quantity(db_session, item, receive_stock):
    """
    GIVEN
    - un lot reçu à 100
    - 300 crédits / débits tirés au hasard (seed fixe)

    THEN
    - qty_available == 100 + Σ crédits - Σ débits acceptés
    - jamais négatif, un débit trop gros est refusé sans effet
    - le ledger se réconcilie (Σ deltas == qty_available)
    """
    batch = receive_stock(item, 100)
    rng = random.Random(20260203)

    expected = 100
    accepted = 1  # la réception
    for _ in range(300):
        qty = rng.randint(1, 40)
        if rng.random() < 0.45:
            with unit_of_work(db_session):
                inventory.credit(db_session, batch.id, qty, actor="tester")
            expected += qty
            accepted += 1
        elif qty <= expected:
            with unit_of_work(db_session):
                inventory.debit(db_session, batch.id, qty, actor="tester")
            expected -= qty
            accepted += 1
        else:
            with pytest.raises(InsufficientStockError):
                with unit_of_work(db_session):
                    inventory.debit(db_session, batch.id, qty, actor="tester")

        assert _qty(db_session, batch.id) == expected
        assert expected >= 0

    rec = inventory.reconcile_batch(db_session, batch.id)
    assert rec.balanced
    assert rec.ledger_qty == expected
    assert rec.movement_count == accepted


def test_debit_beyond_available_is_rejected_without_movement(db_session, item, receive_stock):
    batch = receive_stock(item, 5)

    with pytest.raises(InsufficientStockError) as exc:
        with unit_of_work(db_session):
            inventory.debit(db_session, batch.id, 6, actor="tester")

    assert exc.value.errors == [{"batch_id": batch.id, "available": 5, "requested": 6}]
    assert _qty(db_session, batch.id) == 5
    assert len(inventory.batch_movements(db_session, batch.id)) == 1


@pytest.mark.parametrize("qty", [0, -3])
def test_credit_and_debit_require_positive_quantity(db_session, item, receive_stock, qty):
    batch = receive_stock(item, 5)

    with pytest.raises(ValidationError):
        inventory.credit(db_session, batch.id, qty, actor="tester")
    with pytest.raises(ValidationError):
        inventory.debit(db_session, batch.id, qty, actor="tester")


def test_unknown_batch_raises_not_found(db_session):
    with pytest.raises(NotFoundError):
        inventory.credit(db_session, 999, 1, actor="tester")
    with pytest.raises(NotFoundError):
        inventory.debit(db_session, 999, 1, actor="tester")
    with pytest.raises(NotFoundError):
        inventory.get_batch(db_session, 999)


def test_every_quantity_change_has_exactly_one_chained_movement(db_session, item, receive_stock):
    batch = receive_stock(item, 10)
    with unit_of_work(db_session):
        inventory.credit(db_session, batch.id, 7, actor="a")
        inventory.debit(db_session, batch.id, 4, actor="b")
        inventory.adjust_to(db_session, batch.id, 11, actor="c", reason="recount")
        inventory.debit(db_session, batch.id, 11, actor="d")

    movements = inventory.batch_movements(db_session, batch.id)
    assert [m.kind for m in movements] == [
        MovementKind.receipt,
        MovementKind.receipt,
        MovementKind.release,
        MovementKind.adjustment,
        MovementKind.release,
    ]

    previous_after = 0
    for mv in movements:
        assert mv.qty_before == previous_after
        assert mv.qty_after - mv.qty_before == mv.quantity_delta
        previous_after = mv.qty_after

    assert previous_after == _qty(db_session, batch.id) == 0


def test_movements_are_immutable(db_session, item, receive_stock):
    batch = receive_stock(item, 3)
    mv = inventory.batch_movements(db_session, batch.id)[0]

    mv.remarks = "edited"
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    db_session.delete(mv)
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    assert db_session.execute(select(func.count(StockMovement.id))).scalar_one() == 1


def test_batch_quantity_cannot_be_assigned_or_deleted(db_session, item, receive_stock):
    batch = receive_stock(item, 3)

    batch.qty_available = 1000
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    db_session.delete(inventory.get_batch(db_session, batch.id))
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    assert _qty(db_session, batch.id) == 3


def test_adjust_to_retries_after_lost_compare_and_swap(db_session, item, receive_stock, monkeypatch):
    batch = receive_stock(item, 20)
    real_read = inventory._read_for_update
    reads = []

    def stale_first(db, batch_id):
        qty, version, item_id = real_read(db, batch_id)
        reads.append(version)
        # 1ère lecture : version périmée, comme si un autre writer était passé entre-temps
        if len(reads) == 1:
            return qty, version - 1, item_id
        return qty, version, item_id

    monkeypatch.setattr(inventory, "_read_for_update", stale_first)
    with unit_of_work(db_session):
        mv = inventory.adjust_to(db_session, batch.id, 15, actor="tester", reason="damaged")

    assert len(reads) == 2
    assert (mv.qty_before, mv.qty_after, mv.quantity_delta) == (20, 15, -5)
    assert _qty(db_session, batch.id) == 15


def test_adjust_to_gives_up_after_max_retries(db_session, item, receive_stock, monkeypatch):
    batch = receive_stock(item, 20)
    real_read = inventory._read_for_update
    reads = []

    def always_stale(db, batch_id):
        qty, version, item_id = real_read(db, batch_id)
        reads.append(version)
        return qty, version + 100, item_id

    monkeypatch.setattr(inventory, "_read_for_update", always_stale)
    with pytest.raises(ConcurrentUpdateError):
        with unit_of_work(db_session):
            inventory.adjust_to(db_session, batch.id, 0, actor="tester", reason="lost")

    assert len(reads) == settings.LEDGER_MAX_RETRIES
    assert _qty(db_session, batch.id) == 20
    assert len(inventory.batch_movements(db_session, batch.id)) == 1


def test_available_batches_are_fefo_and_exclude_expired_or_empty(db_session, item, receive_stock):
    today = date.today()
    late = receive_stock(item, 5, batch_no="LATE", expiry_date=today + timedelta(days=100))
    soon = receive_stock(item, 5, batch_no="SOON", expiry_date=today + timedelta(days=10))
    never = receive_stock(item, 5, batch_no="NOEXP")
    receive_stock(item, 5, batch_no="OLD", expiry_date=today - timedelta(days=1))
    empty = receive_stock(item, 5, batch_no="EMPTY", expiry_date=today + timedelta(days=1))
    with unit_of_work(db_session):
        inventory.debit(db_session, empty.id, 5, actor="tester")

    rows = inventory.list_available_batches(db_session, item.id, today=today)

    assert [b.id for b in rows] == [soon.id, late.id, never.id]
    assert all(b.expiry_date is None or b.expiry_date >= today for b in rows)


def test_batch_expiring_today_is_still_available(db_session, item, receive_stock):
    today = date.today()
    batch = receive_stock(item, 5, expiry_date=today)

    assert [b.id for b in inventory.list_available_batches(db_session, item.id, today=today)] == [batch.id]
    assert inventory.batch_status(batch.expiry_date, today) == ExpiryStatus.expiring_soon


@pytest.mark.parametrize(
    "offset, expected",
    [
        (-1, ExpiryStatus.expired),
        (0, ExpiryStatus.expiring_soon),
        (30, ExpiryStatus.expiring_soon),
        (31, ExpiryStatus.good),
        (None, ExpiryStatus.no_expiry),
    ],
)
def test_batch_status_labels(offset, expected):
    today = date(2026, 3, 1)
    expiry = None if offset is None else today + timedelta(days=offset)

    assert inventory.batch_status(expiry, today, soon_days=30) == expected


def test_list_batches_expiry_filters(db_session, item, receive_stock):
    today = date.today()
    days = settings.EXPIRING_SOON_DAYS
    expired = receive_stock(item, 1, batch_no="E", expiry_date=today - timedelta(days=3))
    soon = receive_stock(item, 1, batch_no="S", expiry_date=today + timedelta(days=days))
    good = receive_stock(item, 1, batch_no="G", expiry_date=today + timedelta(days=days + 1))
    none = receive_stock(item, 1, batch_no="N")

    def ids(flt):
        return {b.id for b in inventory.list_batches(db_session, expiry_filter=flt, today=today)}

    assert ids("expired") == {expired.id}
    assert ids("expiring-soon") == {soon.id}
    # "good" inclut les lots sans péremption
    assert ids("good") == {good.id, none.id}
    assert ids("no-expiry") == {none.id}
    assert ids(None) == {expired.id, soon.id, good.id, none.id}

    with pytest.raises(ValidationError):
        inventory.list_batches(db_session, expiry_filter="rotten")


def test_list_batches_keeps_empty_batches_unless_asked(db_session, make_item, receive_stock):
    gloves = make_item("Nitrile gloves")
    mirror = make_item("Mouth mirror")
    b1 = receive_stock(gloves, 2, batch_no="GL-1")
    b2 = receive_stock(mirror, 2, batch_no="MI-1")
    with unit_of_work(db_session):
        inventory.debit(db_session, b1.id, 2, actor="tester")

    assert {b.id for b in inventory.list_batches(db_session)} == {b1.id, b2.id}
    assert [b.id for b in inventory.list_batches(db_session, include_empty=False)] == [b2.id]
    assert [b.id for b in inventory.list_batches(db_session, search="gloves")] == [b1.id]
    assert [b.id for b in inventory.list_batches(db_session, search="MI-")] == [b2.id]
