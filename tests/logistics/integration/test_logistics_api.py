"""Integration tests for the Logistics API endpoints via TestClient."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from logistics.api.errors import register_error_handlers
from logistics.api.routes import routers
from logistics.authorization import get_authorizer

HEADERS = {"X-Actor-Id": "wh-1", "X-Actor-Name": "Armazém 1", "X-Actor-Role": "armazem"}

TOMATO = {"product_id": "TOM", "unit": "kg", "product_name": "Tomate"}


@pytest.fixture()
def client():
    app = FastAPI()
    for router in routers:
        app.include_router(router)
    register_error_handlers(app)
    return TestClient(app, headers=HEADERS)


def _order_body(client_id="C1", qty=10, **overrides):
    body = {
        "client_id": client_id,
        "client_name": f"Client {client_id}",
        "date": "2026-03-10",
        "carrier": "CTT",
        "items": [{**TOMATO, "qty": qty, "unit_price": 2.0}],
    }
    body.update(overrides)
    return body


def _create_order(client, **overrides):
    response = client.post("/orders", json=_order_body(**overrides))
    assert response.status_code == 201
    return response.json()["order_id"]


def _ready_to_bill(client):
    order_id = _create_order(client)
    client.put(f"/orders/{order_id}/warehouse/start")
    client.put(f"/orders/{order_id}/warehouse/close", json={"items": [{**TOMATO, "prepared_qty": 10}]})
    return order_id


class TestOrdersAPI:
    def test_create_returns_201(self, client):
        response = client.post("/orders", json=_order_body())
        assert response.status_code == 201
        assert "order_id" in response.json()

    def test_get_order(self, client):
        order_id = _create_order(client)

        response = client.get(f"/orders/{order_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ESPERA"
        assert data["revision"] == 1
        assert data["items"][0]["qty"] == 10

    def test_get_unknown_order_returns_404(self, client):
        assert client.get("/orders/does-not-exist").status_code == 404

    def test_create_without_items_returns_400(self, client):
        response = client.post("/orders", json=_order_body(items=[]))
        assert response.status_code == 400

    def test_patch_status(self, client):
        order_id = _create_order(client)

        response = client.patch(f"/orders/{order_id}", json={"status": "PREP", "notes": "Urgent"})

        assert response.status_code == 200
        [change] = response.json()["changes"]
        assert change["from_status"] == "ESPERA"
        assert change["to_status"] == "PREP"
        assert change["event_type"] == "SEND_TO_PREP"

    def test_illegal_transition_returns_400(self, client):
        order_id = _create_order(client)
        response = client.patch(f"/orders/{order_id}", json={"status": "ENTREGUE"})
        assert response.status_code == 400

    def test_stale_revision_returns_409(self, client):
        order_id = _create_order(client)
        client.patch(f"/orders/{order_id}", json={"status": "PREP"})

        response = client.patch(f"/orders/{order_id}", json={"status": "ESPERA", "expected_revision": 1})

        assert response.status_code == 409

    def test_events_timeline(self, client):
        order_id = _create_order(client)
        client.patch(f"/orders/{order_id}", json={"status": "PREP"})

        response = client.get(f"/orders/{order_id}/events")

        assert response.status_code == 200
        events = response.json()
        assert [e["type"] for e in events] == ["CREATED", "SEND_TO_PREP"]
        assert events[1]["actor_name"] == "Armazém 1"
        assert events[1]["actor_role"] == "armazem"


class TestWarehouseAPI:
    def test_progress(self, client):
        order_id = _create_order(client)
        client.put(f"/orders/{order_id}/warehouse/start")

        response = client.put(
            f"/orders/{order_id}/warehouse/progress",
            json={"items": [{**TOMATO, "prepared_qty": 9}]},
        )

        assert response.status_code == 200
        assert response.json()["percent"] == 90
        assert client.get(f"/orders/{order_id}/warehouse/progress").json()["done_qty"] == 9

    def test_close_below_threshold_needs_confirmation(self, client):
        order_id = _create_order(client)
        client.put(f"/orders/{order_id}/warehouse/start")
        draft = {"items": [{**TOMATO, "prepared_qty": 2}]}

        assert client.put(f"/orders/{order_id}/warehouse/close", json=draft).status_code == 400

        response = client.put(
            f"/orders/{order_id}/warehouse/close",
            json={**draft, "confirm_low_progress": True},
        )
        assert response.status_code == 200
        assert response.json()["changes"][0]["event_type"] == "PREP_CLOSED_MISSING"

    def test_force_partial(self, client):
        order_id = _create_order(client)
        client.put(f"/orders/{order_id}/warehouse/start")
        client.put(
            f"/orders/{order_id}/warehouse/close",
            json={"items": [{**TOMATO, "prepared_qty": 8}]},
        )

        response = client.put(
            f"/orders/{order_id}/force-partial",
            json={"target_status": "A_FATURAR", "notes": "client accepts 8kg"},
        )

        assert response.status_code == 200
        assert response.json()["changes"][0]["event_type"] == "FORCED_PARTIAL"


class TestBulkOrdersAPI:
    def test_create_and_close_batch(self, client):
        response = client.post(
            "/bulk-orders",
            json={"sub_orders": [_order_body("A", 10), _order_body("B", 5)]},
        )
        assert response.status_code == 201
        batch_id = response.json()["batch_id"]
        sub_ids = response.json()["sub_order_ids"]

        client.put(f"/orders/{batch_id}/warehouse/start")
        client.put(f"/orders/{batch_id}/warehouse/progress", json={"items": [{**TOMATO, "prepared_qty": 15}]})
        response = client.put(f"/bulk-orders/{batch_id}/close")

        assert response.status_code == 200
        assert [c["order_id"] for c in response.json()["changes"]] == [batch_id, *sub_ids]
        assert client.get(f"/orders/{sub_ids[0]}").json()["items"][0]["prepared_qty"] == 10
        assert client.get(f"/orders/{batch_id}").json()["bulk_batch_internal"] is True

        guides = client.get("/shipping-guides").json()
        assert sorted(g["order_id"] for g in guides) == sorted(sub_ids)

        replay = client.put(f"/bulk-orders/{batch_id}/close")
        assert replay.status_code == 200
        assert replay.json()["changes"] == []

    def test_close_unknown_batch_returns_404(self, client):
        assert client.put("/bulk-orders/does-not-exist/close").status_code == 404


class TestBillingAndDeliveryAPI:
    def test_invoice_dispatch_deliver(self, client):
        order_id = _ready_to_bill(client)

        invoice = client.put(f"/orders/{order_id}/invoice")
        assert invoice.status_code == 200
        assert invoice.json()["changes"][0]["meta"]["invoice_number"].startswith("FAT-")

        client.patch(f"/orders/{order_id}", json={"status": "EXPEDIDA"})
        delivery = client.put(
            f"/orders/{order_id}/delivery",
            json={"outcome": "DEVOLVIDO", "lines": [{**TOMATO, "delivered_qty": 9}]},
        )
        assert delivery.status_code == 200
        assert delivery.json()["changes"][0]["meta"]["discrepancy_status"] == "pendente"

        rectification = client.post(
            f"/orders/{order_id}/rectifications",
            json={"kind": "CREDIT_NOTE", "reference": "NC-1", "amount": 2.0},
        )
        assert rectification.status_code == 201

    def test_purchase_restock(self, client):
        order_id = _create_order(client)
        client.put(f"/orders/{order_id}/warehouse/start")
        client.put(
            f"/orders/{order_id}/warehouse/close",
            json={"items": [{**TOMATO, "prepared_qty": 8}]},
        )

        response = client.post("/purchases", json={**TOMATO, "qty": 5})

        assert response.status_code == 200
        data = response.json()
        assert data["allocations"] == [{"order_id": order_id, "qty": 2.0}]
        assert data["remaining"] == 3.0
        assert client.get(f"/orders/{order_id}").json()["status"] == "PREP"

    def test_reactivate(self, client):
        order_id = _create_order(client)
        client.patch(f"/orders/{order_id}", json={"status": "CANCELADA"})

        response = client.put(f"/orders/{order_id}/reactivate")

        assert response.status_code == 200
        assert response.json()["changes"][0]["event_type"] == "REACTIVATED"


class TestAuthorization:
    def test_missing_permission_returns_403(self, client):
        get_authorizer().configure(permissions={"orders.view"})

        response = client.post("/orders", json=_order_body())

        assert response.status_code == 403
        assert "orders.create" in response.json()["detail"]

    def test_granted_permission_passes(self, client):
        get_authorizer().configure(permissions={"orders.create"})
        assert client.post("/orders", json=_order_body()).status_code == 201

    def test_warehouse_close_has_its_own_permission(self, client):
        order_id = _create_order(client)
        get_authorizer().configure(permissions={"warehouse.prepare"})

        assert client.put(f"/orders/{order_id}/warehouse/start").status_code == 200
        assert client.put(f"/orders/{order_id}/warehouse/close", json={"items": []}).status_code == 403
