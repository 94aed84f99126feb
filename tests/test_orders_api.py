from __future__ import annotations

from decimal import Decimal

import pytest

from app import crud
from app.enums import OrderStatus, PaymentProvider, PaymentStatus, TransitionSource, UserRole
from tests.utils import auth_headers, make_order

ORDERS_URL = "/api/v1/orders"
OWNER = 1001
STRANGER = 2002
ADMIN = 9009


def _create_payload(**overrides):
    payload = {
        "items": [{"product_id": "sku_1", "quantity": 2}],
        "subtotal": "100.00",
        "tax": "8.00",
        "shipping_cost": "5.00",
        "payment_provider": "stripe",
        "shipping_address": {
            "name": "Ada Lovelace",
            "line1": "1 Infinite Loop",
            "city": "Cupertino",
            "state": "CA",
            "postal_code": "95014",
            "country": "US",
        },
    }
    payload.update(overrides)
    return payload


def test_create_order_computes_total(client):
    r = client.post(ORDERS_URL, headers=auth_headers(OWNER), json=_create_payload())
    assert r.status_code == 201
    body = r.json()
    assert body["code"] == 0
    data = body["data"]
    assert data["total"] == "113.00"
    assert data["status"] == "pending"
    assert data["payment_status"] == "unpaid"
    assert data["owner_id"] == OWNER
    assert data["order_number"].startswith(f"o_{OWNER}_")
    assert data["billing_address"] == data["shipping_address"]
    assert data["version"] == 1


def test_create_order_accepts_matching_total(client):
    r = client.post(ORDERS_URL, headers=auth_headers(OWNER), json=_create_payload(total="113.00"))
    assert r.status_code == 201


def test_create_order_rejects_mismatched_total(client):
    r = client.post(ORDERS_URL, headers=auth_headers(OWNER), json=_create_payload(total="120.00"))
    assert r.status_code == 400
    assert r.json()["code"] == 400001


def test_create_order_total_must_fit_the_amount_column(client):
    r = client.post(
        ORDERS_URL,
        headers=auth_headers(OWNER),
        json=_create_payload(subtotal="99999999.99", tax="1.00", shipping_cost="0.00"),
    )
    assert r.status_code == 400
    assert r.json()["code"] == 400001

    r = client.post(
        ORDERS_URL,
        headers=auth_headers(OWNER),
        json=_create_payload(subtotal="99999999.99", tax="0.00", shipping_cost="0.00"),
    )
    assert r.status_code == 201
    assert r.json()["data"]["total"] == "99999999.99"


@pytest.mark.parametrize(
    "overrides",
    [
        {"items": []},
        {"items": [{"product_id": "sku_1", "quantity": 0}]},
        {"subtotal": "-1.00"},
        {"payment_provider": "bitcoin"},
    ],
)
def test_create_order_validation(client, overrides):
    r = client.post(ORDERS_URL, headers=auth_headers(OWNER), json=_create_payload(**overrides))
    assert r.status_code == 422
    assert r.json()["code"] == 422000


def test_auth_required(client, db):
    order = make_order(db)
    assert client.get(ORDERS_URL).status_code == 401
    assert client.get(f"{ORDERS_URL}/{order.id}").status_code == 401
    r = client.get(ORDERS_URL, headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["code"] == 401001


def test_list_orders_is_scoped_to_caller(client, db):
    mine = make_order(db, owner_id=OWNER)
    make_order(db, owner_id=OWNER, status=OrderStatus.shipped, payment_status=PaymentStatus.paid)
    make_order(db, owner_id=STRANGER)

    r = client.get(ORDERS_URL, headers=auth_headers(OWNER))
    assert r.status_code == 200
    assert r.json()["data"]["count"] == 2

    r = client.get(ORDERS_URL, params={"status": "pending"}, headers=auth_headers(OWNER))
    data = r.json()["data"]
    assert data["count"] == 1
    assert data["data"][0]["id"] == mine.id


def test_order_stats(client, db):
    make_order(db, owner_id=OWNER)
    make_order(db, owner_id=OWNER, status=OrderStatus.delivered, payment_status=PaymentStatus.paid)

    r = client.get(f"{ORDERS_URL}/stats", headers=auth_headers(OWNER))
    data = r.json()["data"]
    assert data["total_orders"] == 2
    assert data["total_spent"] == "226.00"
    assert data["average_order_value"] == "113.00"
    assert data["status_counts"]["pending"] == 1
    assert data["status_counts"]["delivered"] == 1
    assert data["status_counts"]["cancelled"] == 0


def test_get_order_owner_admin_and_stranger(client, db):
    order = make_order(db, owner_id=OWNER)

    assert client.get(f"{ORDERS_URL}/{order.id}", headers=auth_headers(OWNER)).status_code == 200
    assert (
        client.get(f"{ORDERS_URL}/{order.id}", headers=auth_headers(ADMIN, UserRole.admin)).status_code
        == 200
    )

    r = client.get(f"{ORDERS_URL}/{order.id}", headers=auth_headers(STRANGER))
    assert r.status_code == 403
    assert r.json()["code"] == 403001

    r = client.get(f"{ORDERS_URL}/999999", headers=auth_headers(OWNER))
    assert r.status_code == 404


@pytest.mark.parametrize(
    ("method", "suffix", "json"),
    [
        ("post", "/cancel", {"reason": "not mine"}),
        ("post", "/refund", {}),
        ("post", "/payment", None),
        ("get", "/events", None),
    ],
)
def test_stranger_cannot_touch_order(client, db, stripe_client, method, suffix, json):
    order = make_order(db, owner_id=OWNER)
    kwargs = {"headers": auth_headers(STRANGER)}
    if json is not None:
        kwargs["json"] = json
    r = getattr(client, method)(f"{ORDERS_URL}/{order.id}{suffix}", **kwargs)
    assert r.status_code == 403

    db.refresh(order)
    assert order.status == OrderStatus.pending
    assert order.version == 1
    assert order.payment_method_ref is None
    assert stripe_client.calls == []


def test_cancel_pending_order(client, db):
    order = make_order(db, owner_id=OWNER)
    r = client.post(
        f"{ORDERS_URL}/{order.id}/cancel", headers=auth_headers(OWNER), json={"reason": "changed my mind"}
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "cancelled"
    assert data["notes"] == "Cancelled: changed my mind"

    entries = crud.events.list_audit_entries(session=db, order_id=order.id)
    assert len(entries) == 1
    assert entries[0].source == TransitionSource.client
    assert entries[0].actor_id == OWNER
    assert entries[0].canonical_type == "manual_cancel"


def test_cancel_without_reason(client, db):
    order = make_order(db, owner_id=OWNER)
    r = client.post(f"{ORDERS_URL}/{order.id}/cancel", headers=auth_headers(OWNER))
    assert r.status_code == 200
    assert r.json()["data"]["notes"] == "Cancelled: No reason provided"


def test_cancel_voids_outstanding_authorization(client, db, stripe_client):
    order = make_order(db, owner_id=OWNER, payment_method_ref="pi_open_1")
    r = client.post(f"{ORDERS_URL}/{order.id}/cancel", headers=auth_headers(OWNER), json={})
    assert r.status_code == 200
    assert stripe_client.names() == ["payment_intents.cancel"]
    assert stripe_client.calls[0][1]["args"] == ("pi_open_1",)


def test_cancel_shipped_order_is_invalid_transition(client, db):
    order = make_order(db, owner_id=OWNER, status=OrderStatus.shipped, payment_status=PaymentStatus.paid)
    r = client.post(f"{ORDERS_URL}/{order.id}/cancel", headers=auth_headers(OWNER), json={})
    assert r.status_code == 409
    assert r.json()["code"] == 409001
    assert r.headers["X-Retryable"] == "false"

    db.refresh(order)
    assert order.status == OrderStatus.shipped
    assert order.version == 1
    assert crud.events.list_audit_entries(session=db, order_id=order.id) == []


def test_start_stripe_payment_stores_reference(client, db, stripe_client):
    order = make_order(db, owner_id=OWNER)
    r = client.post(f"{ORDERS_URL}/{order.id}/payment", headers=auth_headers(OWNER))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["payment_ref"] == "pi_test_1"
    assert data["client_secret"] == "pi_test_1_secret"

    params = stripe_client.params("payment_intents.create")
    assert params["amount"] == 11300
    assert params["currency"] == "usd"
    assert params["metadata"]["order_id"] == str(order.id)

    db.refresh(order)
    assert order.payment_method_ref == "pi_test_1"
    assert order.status == OrderStatus.pending


def test_start_paypal_payment_returns_approve_url(client, db, paypal):
    order = make_order(db, owner_id=OWNER, provider=PaymentProvider.paypal)
    r = client.post(f"{ORDERS_URL}/{order.id}/payment", headers=auth_headers(OWNER))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["payment_ref"] == "5O190127TN364715T"
    assert data["approve_url"].startswith("https://www.sandbox.paypal.com/checkoutnow")

    _, path, body = paypal.requests[0]
    assert path == "/v2/checkout/orders"
    assert body["purchase_units"][0]["custom_id"] == str(order.id)
    assert body["purchase_units"][0]["amount"] == {"currency_code": "USD", "value": "113.00"}


def test_payment_requires_pending_order(client, db):
    order = make_order(db, owner_id=OWNER, status=OrderStatus.processing, payment_status=PaymentStatus.paid)
    r = client.post(f"{ORDERS_URL}/{order.id}/payment", headers=auth_headers(OWNER))
    assert r.status_code == 409


def test_restarting_payment_voids_previous_intent(client, db, stripe_client):
    order = make_order(db, owner_id=OWNER, payment_method_ref="pi_old")
    r = client.post(f"{ORDERS_URL}/{order.id}/payment", headers=auth_headers(OWNER))
    assert r.status_code == 200

    assert stripe_client.names() == ["payment_intents.create", "payment_intents.cancel"]
    assert stripe_client.calls[1][1]["args"] == ("pi_old",)
    db.refresh(order)
    assert order.payment_method_ref == "pi_test_1"


def test_concurrent_modification_voids_new_intent(client, db, stripe_client, monkeypatch):
    order = make_order(db, owner_id=OWNER)
    monkeypatch.setattr(crud.orders, "compare_and_set", lambda **_kwargs: False)

    r = client.post(f"{ORDERS_URL}/{order.id}/payment", headers=auth_headers(OWNER))
    assert r.status_code == 409
    assert r.json()["code"] == 409002
    assert r.headers["X-Retryable"] == "true"

    assert stripe_client.names() == ["payment_intents.create", "payment_intents.cancel"]
    assert stripe_client.calls[1][1]["args"] == ("pi_test_1",)
    db.refresh(order)
    assert order.payment_method_ref is None


def test_confirm_payment(client, db, stripe_client):
    order = make_order(db, owner_id=OWNER, payment_method_ref="pi_test_1")
    r = client.post(
        f"{ORDERS_URL}/{order.id}/payment/confirm",
        headers=auth_headers(OWNER),
        json={"payment_method_ref": "pm_card_visa"},
    )
    assert r.status_code == 200
    assert stripe_client.names() == ["payment_intents.confirm"]
    assert stripe_client.params("payment_intents.confirm") == {"payment_method": "pm_card_visa"}
    db.refresh(order)
    assert order.status == OrderStatus.pending


def test_refund_request_does_not_change_status(client, db, stripe_client):
    order = make_order(
        db,
        owner_id=OWNER,
        status=OrderStatus.delivered,
        payment_status=PaymentStatus.paid,
        payment_method_ref="pi_test_1",
        payment_capture_ref="pi_captured_1",
    )
    r = client.post(f"{ORDERS_URL}/{order.id}/refund", headers=auth_headers(OWNER), json={"reason": "broken"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["refund_ref"] == "re_test_1"
    assert data["amount"] == "113.00"
    assert data["order_status"] == "delivered"

    params = stripe_client.params("refunds.create")
    assert params["payment_intent"] == "pi_captured_1"
    assert params["amount"] == 11300

    db.refresh(order)
    assert order.status == OrderStatus.delivered


def test_partial_paypal_refund(client, db, paypal):
    order = make_order(
        db,
        owner_id=OWNER,
        provider=PaymentProvider.paypal,
        status=OrderStatus.processing,
        payment_status=PaymentStatus.paid,
        payment_capture_ref="CAP-1",
    )
    r = client.post(f"{ORDERS_URL}/{order.id}/refund", headers=auth_headers(OWNER), json={"amount": "13.00"})
    assert r.status_code == 200
    assert r.json()["data"]["amount"] == "13.00"
    _, path, body = paypal.requests[0]
    assert path == "/v2/payments/captures/CAP-1/refund"
    assert body["amount"] == {"currency_code": "USD", "value": "13.00"}


def test_refund_rules(client, db):
    unpaid = make_order(db, owner_id=OWNER)
    r = client.post(f"{ORDERS_URL}/{unpaid.id}/refund", headers=auth_headers(OWNER), json={})
    assert r.status_code == 409

    paid = make_order(
        db,
        owner_id=OWNER,
        status=OrderStatus.processing,
        payment_status=PaymentStatus.paid,
        payment_capture_ref="pi_1",
    )
    r = client.post(f"{ORDERS_URL}/{paid.id}/refund", headers=auth_headers(OWNER), json={"amount": "500.00"})
    assert r.status_code == 400


def test_admin_sets_status_through_state_machine(client, db):
    order = make_order(db, owner_id=OWNER, status=OrderStatus.processing, payment_status=PaymentStatus.paid)
    admin = auth_headers(ADMIN, UserRole.admin)

    r = client.patch(f"{ORDERS_URL}/{order.id}/status", headers=admin, json={"status": "shipped"})
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "shipped"

    r = client.patch(f"{ORDERS_URL}/{order.id}/status", headers=admin, json={"status": "delivered", "reason": "signed"})
    assert r.status_code == 200
    assert "signed" in r.json()["data"]["notes"]

    # delivered -> processing is not in the table
    r = client.patch(f"{ORDERS_URL}/{order.id}/status", headers=admin, json={"status": "processing"})
    assert r.status_code == 409

    r = client.patch(f"{ORDERS_URL}/{order.id}/status", headers=admin, json={"status": "pending"})
    assert r.status_code == 409

    entries = crud.events.list_audit_entries(session=db, order_id=order.id)
    assert [(e.from_status, e.resulting_status) for e in entries] == [
        (OrderStatus.processing, OrderStatus.shipped),
        (OrderStatus.shipped, OrderStatus.delivered),
    ]
    assert all(e.source == TransitionSource.admin and e.actor_id == ADMIN for e in entries)

    r = client.get(f"{ORDERS_URL}/{order.id}/events", headers=auth_headers(OWNER))
    assert r.json()["data"]["count"] == 2


def test_status_patch_requires_admin(client, db):
    order = make_order(db, owner_id=OWNER, status=OrderStatus.processing, payment_status=PaymentStatus.paid)
    r = client.patch(f"{ORDERS_URL}/{order.id}/status", headers=auth_headers(OWNER), json={"status": "shipped"})
    assert r.status_code == 403
    db.refresh(order)
    assert order.status == OrderStatus.processing


def test_admin_status_unknown_order(client):
    r = client.patch(
        f"{ORDERS_URL}/424242/status",
        headers=auth_headers(ADMIN, UserRole.admin),
        json={"status": "shipped"},
    )
    assert r.status_code == 404


def test_order_money_is_exact(db):
    order = make_order(db)
    assert order.subtotal + order.tax + order.shipping_cost == order.total == Decimal("113.00")
