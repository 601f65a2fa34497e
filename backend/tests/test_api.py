from datetime import date, timedelta

from sqlalchemy.exc import OperationalError

from backend.app.core.config import settings
from backend.services import catalog, inventory


def _seed(client, headers=None):
    sup = client.post("/v1/suppliers", json={"name": "Dental Supply Co"})
    assert sup.status_code == 201
    item = client.post("/v1/items", json={"code": "LIDO-2", "name": "Lidocaine 2%", "unit_of_measure": "cartridge"})
    assert item.status_code == 201
    return sup.json()["id"], item.json()["id"]


def test_health(client):
    r = client.get("/v1/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_purchase_to_release_flow(client):
    supplier_id, item_id = _seed(client)

    r = client.post(
        "/v1/purchase-orders",
        json={"supplier_id": supplier_id, "lines": [{"item_id": item_id, "quantity_ordered": 50, "unit_cost": 10}]},
        headers={"X-User": "buyer"},
    )
    assert r.status_code == 201
    po = r.json()
    assert po["status"] == "Pending"
    assert po["po_number"].startswith("PO-")

    r = client.post(f"/v1/purchase-orders/{po['po_id']}/approve", headers={"X-User": "manager"})
    assert r.status_code == 200
    assert r.json()["status"] == "Approved"

    r = client.post(
        "/v1/receive-delivery",
        json={
            "po_id": po["po_id"],
            "date_received": date.today().isoformat(),
            "received_by": "clerk",
            "items": [
                {
                    "item_id": item_id,
                    "batch_no": "LOT-A",
                    "qty_received": 50,
                    "unit_cost": 10,
                    "expiry_date": (date.today() + timedelta(days=365)).isoformat(),
                }
            ],
        },
    )
    assert r.status_code == 201
    receipt = r.json()
    assert receipt["total_items"] == 1
    assert receipt["total_amount"] == 500.0

    detail = client.get(f"/v1/purchase-orders/{po['po_id']}").json()
    assert detail["status"] == "Received"
    assert detail["created_by"] == "buyer"
    assert detail["approved_by"] == "manager"
    assert detail["lines"][0]["quantity_received"] == 50

    (batch,) = client.get("/v1/batches", params={"item_id": item_id}).json()
    assert batch["qty_available"] == 50
    assert batch["status"] == "good"

    r = client.post(
        "/v1/stock-out-transaction",
        json={
            "released_to": "Operatory 2",
            "created_by": "nurse",
            "items": [{"item_id": item_id, "batch_id": batch["batch_id"], "qty_released": 30}],
        },
    )
    assert r.status_code == 201
    assert r.json()["reference_no"].startswith("SO-")

    r = client.post(
        "/v1/stock-out-transaction",
        json={
            "released_to": "Operatory 2",
            "created_by": "nurse",
            "items": [{"item_id": item_id, "batch_id": batch["batch_id"], "qty_released": 25}],
        },
    )
    assert r.status_code == 422
    body = r.json()
    assert body["code"] == "insufficient_stock"
    assert body["errors"][0]["available"] == 20

    r = client.post(
        "/v1/stock-adjustments",
        json={"batch_id": batch["batch_id"], "new_qty": 15, "reason": "5 units damaged"},
        headers={"X-User": "stock.manager"},
    )
    assert r.status_code == 201
    assert (r.json()["old_qty"], r.json()["new_qty"]) == (20, 15)

    moves = client.get(f"/v1/batches/{batch['batch_id']}/movements").json()
    assert [m["kind"] for m in moves] == ["RECEIPT", "RELEASE", "ADJUSTMENT"]
    assert moves[-1]["actor"] == "stock.manager"

    (adj,) = client.get("/v1/stock-adjustments", params={"batch_id": batch["batch_id"]}).json()
    assert adj["delta"] == -5
    assert adj["adjusted_by"] == "stock.manager"

    item = client.get(f"/v1/items/{item_id}").json()
    assert item["on_hand"] == 15


def test_actor_defaults_to_unknown(client):
    supplier_id, item_id = _seed(client)

    r = client.post(
        "/v1/purchase-orders",
        json={"supplier_id": supplier_id, "lines": [{"item_id": item_id, "quantity_ordered": 1, "unit_cost": 1}]},
    )
    assert client.get(f"/v1/purchase-orders/{r.json()['po_id']}").json()["created_by"] == "unknown"


def test_error_payloads(client):
    supplier_id, item_id = _seed(client)

    r = client.get("/v1/purchase-orders/999")
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"

    # Rejeté par le schema (qty_received > 0)
    r = client.post(
        "/v1/receive-delivery",
        json={
            "date_received": date.today().isoformat(),
            "received_by": "clerk",
            "items": [
                {"item_id": item_id, "batch_no": "LOT-A", "qty_received": 5},
                {"item_id": item_id, "batch_no": "LOT-B", "qty_received": -1},
            ],
        },
    )
    assert r.status_code == 422
    assert r.json()["code"] == "validation_error"
    assert client.get("/v1/batches").json() == []

    r = client.post(
        "/v1/receive-delivery",
        json={
            "date_received": date.today().isoformat(),
            "received_by": "clerk",
            "items": [{"item_id": item_id, "batch_no": "LOT-A", "qty_received": 5}],
        },
    )
    batch_id = client.get("/v1/batches").json()[0]["batch_id"]

    r = client.post("/v1/stock-adjustments", json={"batch_id": batch_id, "new_qty": 1, "reason": ""})
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_state"

    r = client.get("/v1/batches", params={"expiry_filter": "rotten"})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"

    r = client.post("/v1/items", json={"code": "LIDO-2", "name": "dup"})
    assert r.status_code == 409
    assert r.json()["code"] == "conflict"

    r = client.post(
        "/v1/stock-out-transaction",
        json={"released_to": "Operatory 1", "created_by": "nurse", "items": []},
    )
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "items"


def test_po_cancel_and_line_replacement(client):
    supplier_id, item_id = _seed(client)
    po_id = client.post(
        "/v1/purchase-orders",
        json={"supplier_id": supplier_id, "lines": [{"item_id": item_id, "quantity_ordered": 5, "unit_cost": 2}]},
    ).json()["po_id"]

    r = client.put(
        f"/v1/purchase-orders/{po_id}/lines",
        json={"lines": [{"item_id": item_id, "quantity_ordered": 8, "unit_cost": 2}]},
    )
    assert r.status_code == 200
    assert r.json()["total_amount"] == 16.0

    r = client.post(f"/v1/purchase-orders/{po_id}/cancel")
    assert r.json()["status"] == "Cancelled"

    r = client.post(f"/v1/purchase-orders/{po_id}/approve")
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_state"

    (listed,) = client.get("/v1/purchase-orders", params={"status": "Cancelled"}).json()
    assert listed["id"] == po_id


def test_treatment_usage_endpoints(client):
    _, item_id = _seed(client)
    client.post(
        "/v1/receive-delivery",
        json={
            "date_received": date.today().isoformat(),
            "received_by": "clerk",
            "items": [{"item_id": item_id, "batch_no": "LOT-A", "qty_received": 10}],
        },
    )

    (available,) = client.get("/v1/available-batches", params={"item_id": item_id}).json()
    assert available["status"] == "no-expiry"

    r = client.post(
        "/v1/stock-out-transaction",
        json={
            "released_to": "Dr. Reyes",
            "created_by": "assistant",
            "items": [{"item_id": item_id, "qty_released": 2}],
            "is_treatment_usage": True,
            "patient_id": 7,
            "invoice_id": 70,
        },
    )
    assert r.status_code == 201

    (usage,) = client.get("/v1/treatment-stock-usage", params={"patient_id": 7}).json()
    assert usage["patient_id"] == 7
    assert usage["items"][0]["qty_released"] == 2

    detail = client.get(f"/v1/stock-out-transactions/{r.json()['stock_out_id']}").json()
    assert detail["is_treatment_usage"] is True
    assert detail["items"][0]["batch_id"] == available["batch_id"]


def test_supplier_detail_update_and_delete(client):
    supplier_id, item_id = _seed(client)

    r = client.put(f"/v1/suppliers/{supplier_id}", json={"phone": "+33 1 02 03 04 05", "contact_person": "Orders"})
    assert r.status_code == 200
    assert r.json()["phone"] == "+33 1 02 03 04 05"

    detail = client.get(f"/v1/suppliers/{supplier_id}").json()
    assert detail["contact_person"] == "Orders"
    assert detail["usage"] == {"items": 0, "purchase_orders": 0, "stock_ins": 0}

    client.post(
        "/v1/purchase-orders",
        json={"supplier_id": supplier_id, "lines": [{"item_id": item_id, "quantity_ordered": 1, "unit_cost": 1}]},
    )
    r = client.delete(f"/v1/suppliers/{supplier_id}")
    assert r.status_code == 409
    assert r.json()["errors"] == [{"field": "purchase_orders", "message": "1 record(s) reference this supplier"}]

    r = client.put(f"/v1/suppliers/{supplier_id}", json={"active": False})
    assert r.json()["active"] is False

    unused = client.post("/v1/suppliers", json={"name": "Ortho Parts Ltd"}).json()["id"]
    assert client.put(f"/v1/suppliers/{unused}", json={"name": "Dental Supply Co"}).status_code == 409
    assert client.delete(f"/v1/suppliers/{unused}").status_code == 204
    assert client.get(f"/v1/suppliers/{unused}").status_code == 404


def _db_down():
    return OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly"))


def test_reads_are_retried_on_transient_database_error(client, monkeypatch):
    _seed(client)
    real_list_batches = inventory.list_batches
    calls = []

    def flaky_list_batches(db, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise _db_down()
        return real_list_batches(db, **kwargs)

    monkeypatch.setattr(inventory, "list_batches", flaky_list_batches)

    r = client.get("/v1/batches")
    assert r.status_code == 200
    assert r.json() == []
    assert len(calls) == 2


def test_reads_give_up_with_persistence_error(client, monkeypatch):
    monkeypatch.setattr(settings, "DB_READ_RETRIES", 2)
    calls = []

    def down(db, **kwargs):
        calls.append(1)
        raise _db_down()

    monkeypatch.setattr(inventory, "list_batches", down)

    r = client.get("/v1/batches")
    assert r.status_code == 503
    assert r.json()["code"] == "persistence_error"
    assert len(calls) == 2


def test_writes_are_never_retried(client, monkeypatch):
    calls = []

    def down(db, **kwargs):
        calls.append(1)
        raise _db_down()

    monkeypatch.setattr(catalog, "create_supplier", down)

    r = client.post("/v1/suppliers", json={"name": "Dental Supply Co"})
    assert r.status_code == 503
    assert r.json()["code"] == "persistence_error"
    assert len(calls) == 1
