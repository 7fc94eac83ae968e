"""Integration tests for the Orders API endpoints."""

import hashlib
import hmac
import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from orders.api.routes import order_router, refund_router, register_error_handlers
from orders.gateway import set_gateway
from orders.gateway.fake_adapter import FakeGateway

WEBHOOK_SECRET = b"whsec_orders_test"


class SignedGateway(FakeGateway):
    """Fake processor that signs webhook payloads with HMAC-SHA256."""

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        expected = hmac.new(WEBHOOK_SECRET, payload.encode("utf-8"), hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)


def _sign(raw: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET, raw, hashlib.sha256).hexdigest()


@pytest.fixture()
def client():
    app = FastAPI()
    app.include_router(order_router)
    app.include_router(refund_router)
    register_error_handlers(app)
    return TestClient(app)


def _place(client, **overrides):
    body = {
        "order_number": "AH-4001",
        "tenant_id": "tenant-001",
        "payment_intent_id": "pi_api_001",
        "items": [
            {"id": "api-line-1", "name_snapshot": "Hand loom", "unit_amount": 2000, "quantity": 2},
            {"id": "api-line-2", "name_snapshot": "Wool skein", "unit_amount": 1500, "quantity": 1},
        ],
    }
    body.update(overrides)
    response = client.post("/orders", json=body)
    assert response.status_code == 201
    return response.json()["order_id"]


class TestOrderAPI:
    def test_place_and_read_amounts(self, client):
        order_id = _place(client)
        response = client.get(f"/orders/{order_id}/amounts")
        assert response.status_code == 200
        assert response.json() == {
            "order_id": order_id,
            "subtotal_cents": 5500,
            "tax_total_cents": 0,
            "shipping_total_cents": 0,
            "discount_total_cents": 0,
            "platform_fee_cents": 550,
            "stripe_fee_cents": 0,
            "seller_net_cents": 4950,
            "total_cents": 5500,
        }

    def test_unknown_order_returns_404(self, client):
        assert client.get("/orders/missing/amounts").status_code == 404

    def test_record_shipment(self, client):
        order_id = _place(client)
        response = client.post(
            f"/orders/{order_id}/shipments",
            json={"carrier": "usps", "tracking_number": "9400 1000 0000 0000 0000 00"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "shipment_recorded"

        assert client.put(f"/orders/{order_id}/deliver", json={}).status_code == 200

    def test_malformed_tracking_number_is_rejected(self, client):
        order_id = _place(client)
        response = client.post(f"/orders/{order_id}/shipments", json={"carrier": "ups", "tracking_number": "12345"})
        assert response.status_code == 400

    def test_unknown_carrier_is_rejected(self, client):
        order_id = _place(client)
        response = client.post(f"/orders/{order_id}/shipments", json={"carrier": "dhl", "tracking_number": "1"})
        assert response.status_code == 422

    def test_record_fees(self, client):
        order_id = _place(client)
        response = client.put(f"/orders/{order_id}/fees", json={"stripe_fee_cents": 190})
        assert response.status_code == 200
        assert client.get(f"/orders/{order_id}/amounts").json()["seller_net_cents"] == 5500 - 550 - 190


class TestRefundAPI:
    def test_issue_refund(self, client):
        order_id = _place(client)
        response = client.post(
            f"/orders/{order_id}/refunds",
            json={"selections": [{"item_id": "api-line-1", "quantity": 1}], "reason": "requested_by_customer"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["amount_cents"] == 2000
        assert data["status"] == "succeeded"
        assert data["replayed"] is False
        assert data["order_status"] == "partially_refunded"
        assert data["refunded_total_cents"] == 2000

    def test_double_submit_replays(self, client):
        order_id = _place(client)
        body = {"selections": [{"item_id": "api-line-2", "quantity": 1}]}
        first = client.post(f"/orders/{order_id}/refunds", json=body).json()
        second = client.post(f"/orders/{order_id}/refunds", json=body).json()
        assert second["replayed"] is True
        assert second["refund_record_id"] == first["refund_record_id"]
        assert second["refunded_total_cents"] == 1500

    def test_usd_adjustments(self, client):
        order_id = _place(client)
        response = client.post(
            f"/orders/{order_id}/refunds",
            json={
                "selections": [{"item_id": "api-line-1", "quantity": 2}],
                "restocking_fee_usd": "$5.00",
                "refund_shipping_usd": "2.5",
            },
        )
        assert response.status_code == 201
        assert response.json()["amount_cents"] == 4000 - 500 + 250

    def test_malformed_usd_is_rejected(self, client):
        order_id = _place(client)
        response = client.post(
            f"/orders/{order_id}/refunds",
            json={"selections": [{"item_id": "api-line-1", "quantity": 1}], "restocking_fee_usd": "five"},
        )
        assert response.status_code == 400

    def test_fully_refunded_conflict(self, client):
        order_id = _place(client)
        client.post(
            f"/orders/{order_id}/refunds",
            json={
                "selections": [{"item_id": "api-line-1", "quantity": 2}, {"item_id": "api-line-2", "quantity": 1}],
            },
        )
        response = client.post(
            f"/orders/{order_id}/refunds",
            json={"selections": [{"item_id": "api-line-1", "quantity": 1}], "idempotency_key": "another-try"},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_FULLY_REFUNDED"
        assert response.json()["ceiling_cents"] == 5500

    def test_exceeds_remaining_conflict(self, client):
        order_id = _place(client)
        client.post(
            f"/orders/{order_id}/refunds",
            json={"selections": [{"item_id": "api-line-1", "quantity": 2}], "idempotency_key": "first"},
        )
        response = client.post(
            f"/orders/{order_id}/refunds",
            json={
                "selections": [{"item_id": "api-line-2", "quantity": 1}],
                "refund_shipping_cents": 1000,
                "idempotency_key": "second",
            },
        )
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "EXCEEDS_REMAINING"
        assert body["remaining_cents"] == 1500
        assert body["requested_cents"] == 2500

    def test_processor_decline_returns_502(self, client):
        order_id = _place(client)
        client.post("/refunds/gateway/configure", json={"should_succeed": False, "failure_reason": "Disputed"})
        response = client.post(
            f"/orders/{order_id}/refunds", json={"selections": [{"item_id": "api-line-1", "quantity": 1}]}
        )
        assert response.status_code == 502
        assert response.json()["code"] == "PROCESSOR_DECLINED"

    def test_empty_selections_rejected(self, client):
        order_id = _place(client)
        assert client.post(f"/orders/{order_id}/refunds", json={"selections": []}).status_code == 422

    def test_remaining(self, client):
        order_id = _place(client)
        client.post(f"/orders/{order_id}/refunds", json={"selections": [{"item_id": "api-line-1", "quantity": 1}]})
        response = client.get(f"/orders/{order_id}/refunds/remaining")
        assert response.status_code == 200
        data = response.json()
        assert data["remaining_cents"] == 3500
        assert data["remaining_quantity_by_item"] == {"api-line-1": 1, "api-line-2": 1}

    def test_recompute(self, client):
        order_id = _place(client)
        response = client.post(f"/orders/{order_id}/refunds/recompute", json={})
        assert response.status_code == 200
        assert response.json()["status"] == "unchanged"


class TestRefundWebhookAPI:
    def test_invalid_signature(self, client):
        response = client.post(
            "/refunds/webhook",
            json={"gateway_refund_id": "re_1", "status": "succeeded"},
            headers={"X-Gateway-Signature": "bogus"},
        )
        assert response.status_code == 401

    def test_pending_refund_confirmed(self, client):
        order_id = _place(client)
        client.post("/refunds/gateway/configure", json={"refund_status": "pending"})
        refund = client.post(
            f"/orders/{order_id}/refunds", json={"selections": [{"item_id": "api-line-2", "quantity": 1}]}
        ).json()

        response = client.post(
            "/refunds/webhook",
            json={"gateway_refund_id": refund["gateway_refund_id"], "status": "succeeded"},
            headers={"X-Gateway-Signature": "test-signature"},
        )
        assert response.status_code == 200
        assert response.json() == {"status": "processed", "order_id": order_id}

        remaining = client.get(f"/orders/{order_id}/refunds/remaining").json()
        assert remaining["refunded_cents"] == 1500

    def test_unknown_refund_ignored(self, client):
        response = client.post(
            "/refunds/webhook",
            json={"gateway_refund_id": "re_unknown", "status": "succeeded", "payment_intent_id": "pi_none"},
            headers={"X-Gateway-Signature": "test-signature"},
        )
        assert response.json()["status"] == "ignored"


class TestGatewayConfigureAPI:
    def test_configure(self, client):
        response = client.post("/refunds/gateway/configure", json={"should_succeed": False})
        assert response.status_code == 200
        assert response.json()["should_succeed"] is False

    def test_blocked_in_production(self, client, monkeypatch):
        monkeypatch.setenv("PROTEAN_ENV", "production")
        response = client.post("/refunds/gateway/configure", json={"should_succeed": True})
        assert response.status_code == 403


class TestSignedRefundWebhookAPI:
    @pytest.fixture(autouse=True)
    def _signed_gateway(self):
        set_gateway(SignedGateway())

    def test_signature_covers_raw_bytes(self, client):
        order_id = _place(client, payment_intent_id="pi_signed_001")
        # Compact separators and a processor timestamp format, as sent on the wire
        raw = json.dumps(
            {
                "occurred_at": "2025-06-01T10:00:00Z",
                "status": "succeeded",
                "gateway_refund_id": "re_signed_1",
                "amount_cents": 1500,
                "payment_intent_id": "pi_signed_001",
            },
            separators=(",", ":"),
        ).encode("utf-8")

        response = client.post(
            "/refunds/webhook",
            content=raw,
            headers={"Content-Type": "application/json", "X-Gateway-Signature": _sign(raw)},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "processed", "order_id": order_id}

    def test_tampered_payload_is_rejected(self, client):
        raw = b'{"gateway_refund_id":"re_signed_2","status":"succeeded"}'
        tampered = b'{"gateway_refund_id":"re_signed_2","status":"failed"}'

        response = client.post(
            "/refunds/webhook",
            content=tampered,
            headers={"Content-Type": "application/json", "X-Gateway-Signature": _sign(raw)},
        )

        assert response.status_code == 401

    def test_signed_but_malformed_payload(self, client):
        raw = b'{"status":"succeeded"}'
        response = client.post(
            "/refunds/webhook",
            content=raw,
            headers={"Content-Type": "application/json", "X-Gateway-Signature": _sign(raw)},
        )
        assert response.status_code == 422
