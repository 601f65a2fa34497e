import re
from datetime import date
from decimal import Decimal

import pytest

from backend.app.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from backend.app.db.models.core_types import POStatus
from backend.app.db.session import unit_of_work
from backend.services import procurement
from backend.services.numbering import (
    PO_SERIES,
    STOCK_IN_SERIES,
    STOCK_OUT_SERIES,
    next_document_number,
)
from backend.services.procurement import POLineInput
from backend.services.receiving import Delivery, DeliveryLine, receive_delivery


def _create_po(db, supplier, item, qty=50, cost=10):
    return procurement.create_purchase_order(
        db,
        supplier_id=supplier.id,
        lines=[POLineInput(item_id=item.id, quantity_ordered=qty, unit_cost=cost)],
        created_by="buyer",
    )


def test_create_po_is_pending_with_generated_number(db_session, supplier, item):
    po = _create_po(db_session, supplier, item)

    assert po.status == POStatus.pending
    assert re.fullmatch(r"PO-\d{8}-\d{3}", po.po_number)
    assert po.po_number == f"PO-{date.today():%Y%m%d}-001"
    assert po.total_amount == Decimal("500.00")
    assert [(l.item_id, l.quantity_ordered, l.quantity_received) for l in po.lines] == [(item.id, 50, 0)]


def test_create_po_collects_every_line_error(db_session, supplier, item):
    lines = [
        POLineInput(item_id=item.id, quantity_ordered=0, unit_cost=1),
        POLineInput(item_id=item.id, quantity_ordered=1, unit_cost=-5),
        POLineInput(item_id=424242, quantity_ordered=1, unit_cost=1),
    ]
    with pytest.raises(ValidationError) as exc:
        procurement.create_purchase_order(db_session, supplier_id=supplier.id, lines=lines, created_by="buyer")

    reasons = {(e["line"], e["field"]) for e in exc.value.errors}
    assert reasons == {
        (1, "quantity_ordered"),
        (2, "unit_cost"),
        (2, "item_id"),  # doublon de la ligne 1
        (3, "item_id"),
    }
    assert procurement.list_purchase_orders(db_session) == []


def test_create_po_requires_lines_and_known_supplier(db_session, supplier, item):
    with pytest.raises(ValidationError):
        procurement.create_purchase_order(db_session, supplier_id=supplier.id, lines=[], created_by="buyer")
    with pytest.raises(ValidationError):
        procurement.create_purchase_order(
            db_session,
            supplier_id=9999,
            lines=[POLineInput(item_id=item.id, quantity_ordered=1, unit_cost=1)],
            created_by="buyer",
        )


def test_approve_then_approve_again_is_invalid(db_session, supplier, item):
    po = _create_po(db_session, supplier, item)

    po = procurement.approve_purchase_order(db_session, po.id, actor="manager")
    assert po.status == POStatus.approved
    assert po.approved_by == "manager"
    assert po.approved_at is not None

    with pytest.raises(InvalidStateError):
        procurement.approve_purchase_order(db_session, po.id, actor="manager")


def test_lines_can_only_change_while_pending(db_session, supplier, make_item):
    a = make_item("Composite A2")
    b = make_item("Composite A3")
    po = _create_po(db_session, supplier, a)

    po = procurement.update_purchase_order_lines(
        db_session,
        po.id,
        [
            POLineInput(item_id=a.id, quantity_ordered=5, unit_cost=2),
            POLineInput(item_id=b.id, quantity_ordered=3, unit_cost=4),
        ],
    )
    assert sorted((l.item_id, l.quantity_ordered) for l in po.lines) == [(a.id, 5), (b.id, 3)]
    assert po.total_amount == Decimal("22")

    procurement.approve_purchase_order(db_session, po.id, actor="manager")
    with pytest.raises(InvalidStateError):
        procurement.update_purchase_order_lines(
            db_session, po.id, [POLineInput(item_id=a.id, quantity_ordered=1, unit_cost=1)]
        )
    assert len(procurement.get_purchase_order(db_session, po.id).lines) == 2


def test_cancel_pending_and_terminal_states(db_session, supplier, item):
    po = _create_po(db_session, supplier, item)

    po = procurement.cancel_purchase_order(db_session, po.id, actor="manager")
    assert po.status == POStatus.cancelled
    assert po.cancelled_by == "manager"

    with pytest.raises(InvalidStateError):
        procurement.cancel_purchase_order(db_session, po.id, actor="manager")
    with pytest.raises(InvalidStateError):
        procurement.approve_purchase_order(db_session, po.id, actor="manager")


def test_cancel_with_receipts_is_a_conflict(db_session, supplier, item):
    po = _create_po(db_session, supplier, item, qty=50)
    procurement.approve_purchase_order(db_session, po.id, actor="manager")
    receive_delivery(
        db_session,
        Delivery(
            date_received=date.today(),
            received_by="clerk",
            po_id=po.id,
            lines=[DeliveryLine(item_id=item.id, batch_no="LOT-1", qty_received=10, unit_cost=10)],
        ),
    )

    with pytest.raises(ConflictError) as exc:
        procurement.cancel_purchase_order(db_session, po.id, actor="manager")

    assert exc.value.errors == [{"item_id": item.id, "quantity_received": 10}]
    assert procurement.get_purchase_order(db_session, po.id).status == POStatus.approved


def test_transition_table_rejects_unknown_moves(db_session, supplier, item):
    po = _create_po(db_session, supplier, item)

    with pytest.raises(InvalidStateError):
        procurement.transition(po, POStatus.received)
    assert po.status == POStatus.pending


def test_get_unknown_po_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        procurement.get_purchase_order(db_session, 12345)


def test_list_purchase_orders_filters(db_session, supplier, make_item):
    a = make_item()
    po1 = _create_po(db_session, supplier, a)
    po2 = _create_po(db_session, supplier, a)
    procurement.approve_purchase_order(db_session, po2.id, actor="manager")

    assert [p.id for p in procurement.list_purchase_orders(db_session)] == [po2.id, po1.id]
    assert [p.id for p in procurement.list_purchase_orders(db_session, status=POStatus.pending)] == [po1.id]
    assert [p.id for p in procurement.list_purchase_orders(db_session, search=po2.po_number)] == [po2.id]
    assert len(procurement.list_purchase_orders(db_session, search="dental supply")) == 2


def test_thousand_document_numbers_are_unique(db_session):
    day = date(2026, 2, 3)
    with unit_of_work(db_session):
        numbers = [next_document_number(db_session, PO_SERIES, day) for _ in range(1000)]

    assert len(set(numbers)) == 1000
    assert numbers[0] == "PO-20260203-001"
    assert numbers[998] == "PO-20260203-999"
    assert numbers[999] == "PO-20260203-1000"


def test_number_series_are_per_key_and_per_day(db_session):
    d1, d2 = date(2026, 2, 3), date(2026, 2, 4)
    with unit_of_work(db_session):
        assert next_document_number(db_session, STOCK_IN_SERIES, d1) == "SI-20260203-001"
        assert next_document_number(db_session, STOCK_OUT_SERIES, d1) == "SO-20260203-001"
        assert next_document_number(db_session, STOCK_IN_SERIES, d1) == "SI-20260203-002"
        assert next_document_number(db_session, STOCK_IN_SERIES, d2) == "SI-20260204-001"
