from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import httpx
from sqlmodel import Session

from app.core.security import create_access_token
from app.enums import OrderStatus, PaymentProvider, PaymentStatus, UserRole
from app.models import Order
from app.services.orders import generate_order_number

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
PAYPAL_WEBHOOK_ID = "WH-TEST-1"
PAYPAL_BASE_URL = "https://api-m.sandbox.paypal.com"
TRUSTED_CERT_URL = "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-360caa42"


class FakeStripeResource:
    """记录调用参数，返回预设对象"""

    def __init__(self, calls: list[tuple[str, Any]], name: str, result: Any) -> None:
        self._calls = calls
        self._name = name
        self.result = result

    def _record(self, method: str, *args: Any, **kwargs: Any) -> Any:
        self._calls.append((f"{self._name}.{method}", {"args": args, **kwargs}))
        return self.result

    def create(self, *args: Any, **kwargs: Any) -> Any:
        return self._record("create", *args, **kwargs)

    def confirm(self, *args: Any, **kwargs: Any) -> Any:
        return self._record("confirm", *args, **kwargs)

    def cancel(self, *args: Any, **kwargs: Any) -> Any:
        return self._record("cancel", *args, **kwargs)

    def detach(self, *args: Any, **kwargs: Any) -> Any:
        return self._record("detach", *args, **kwargs)


class FakeStripeClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.payment_intents = FakeStripeResource(
            self.calls,
            "payment_intents",
            SimpleNamespace(
                id="pi_test_1", status="requires_payment_method", client_secret="pi_test_1_secret"
            ),
        )
        self.refunds = FakeStripeResource(
            self.calls, "refunds", SimpleNamespace(id="re_test_1", status="pending", amount=11300)
        )
        self.payment_methods = FakeStripeResource(
            self.calls, "payment_methods", SimpleNamespace(id="pm_test_1")
        )

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def params(self, name: str) -> dict[str, Any]:
        return next(kw["params"] for n, kw in self.calls if n == name)


class FakePayPal:
    """PayPal REST API 的内存替身（挂在 httpx.MockTransport 上）"""

    def __init__(self) -> None:
        self.verification_status = "SUCCESS"
        self.fail_verification_transport = False
        self.verification_http_status: int | None = None
        self.token_http_status: int | None = None
        self.requests: list[tuple[str, str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v1/oauth2/token":
            if self.token_http_status is not None:
                return httpx.Response(self.token_http_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": "A21-test", "expires_in": 3600})

        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        if path == "/v1/notifications/verify-webhook-signature":
            if self.fail_verification_transport:
                raise httpx.ConnectError("connection refused", request=request)
            if self.verification_http_status is not None:
                return httpx.Response(self.verification_http_status, json={"name": "VALIDATION_ERROR"})
            return httpx.Response(200, json={"verification_status": self.verification_status})
        if path == "/v2/checkout/orders":
            return httpx.Response(
                201,
                json={
                    "id": "5O190127TN364715T",
                    "status": "CREATED",
                    "links": [
                        {"rel": "self", "href": f"{PAYPAL_BASE_URL}/v2/checkout/orders/5O190127TN364715T"},
                        {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=5O190127TN364715T"},
                    ],
                },
            )
        if path.startswith("/v2/payments/captures/") and path.endswith("/refund"):
            return httpx.Response(
                201, json={"id": "1JU08902781691411", "status": "COMPLETED", "amount": body["amount"]}
            )
        if path.startswith("/v2/checkout/orders/") and request.method == "GET":
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "purchase_units": []})
        if path.startswith("/v3/vault/payment-tokens/"):
            return httpx.Response(204)
        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})

    def paths(self) -> list[str]:
        return [path for _, path, _ in self.requests]


def auth_headers(user_id: int, role: UserRole = UserRole.user) -> dict[str, str]:
    token = create_access_token(user_id, expires_delta=timedelta(minutes=5), role=role)
    return {"Authorization": f"Bearer {token}"}


def make_order(
    session: Session,
    *,
    owner_id: int = 1001,
    status: OrderStatus = OrderStatus.pending,
    payment_status: PaymentStatus = PaymentStatus.unpaid,
    provider: PaymentProvider = PaymentProvider.stripe,
    payment_method_ref: str | None = None,
    payment_capture_ref: str | None = None,
) -> Order:
    order = Order(
        order_number=generate_order_number(owner_id),
        owner_id=owner_id,
        items=[{"product_id": "sku_1", "quantity": 2}],
        subtotal=Decimal("100.00"),
        tax=Decimal("8.00"),
        shipping_cost=Decimal("5.00"),
        total=Decimal("113.00"),
        status=status,
        payment_status=payment_status,
        payment_provider=provider,
        payment_method_ref=payment_method_ref,
        payment_capture_ref=payment_capture_ref,
    )
    session.add(order)
    session.commit()
    session.refresh(order)
    return order


def stripe_event(
    event_id: str,
    event_type: str,
    *,
    order_id: int | None = None,
    object_id: str = "pi_test_1",
    **object_fields: Any,
) -> bytes:
    metadata = {"order_id": str(order_id)} if order_id is not None else {}
    payload = {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": {"id": object_id, "metadata": metadata, **object_fields}},
    }
    return json.dumps(payload).encode()


def stripe_signature(secret: str, timestamp: int, raw_body: bytes) -> str:
    """按 Stripe 的方式签名：HMAC-SHA256(secret, "{t}.{payload}")"""
    signed_payload = f"{timestamp}.{raw_body.decode()}".encode()
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def stripe_headers(
    raw_body: bytes, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: int | None = None
) -> dict[str, str]:
    ts = int(time.time()) if timestamp is None else timestamp
    return {
        "Stripe-Signature": f"t={ts},v1={stripe_signature(secret, ts, raw_body)}",
        "Content-Type": "application/json",
    }


def paypal_event(
    event_id: str,
    event_type: str,
    *,
    order_id: int | None = None,
    resource_id: str = "2GG279541U471931P",
    **resource_fields: Any,
) -> bytes:
    resource: dict[str, Any] = {"id": resource_id, "status": "COMPLETED", **resource_fields}
    if order_id is not None:
        resource["custom_id"] = str(order_id)
    payload = {
        "id": event_id,
        "event_type": event_type,
        "create_time": "2026-10-19T08:00:00Z",
        "resource_type": "capture",
        "resource": resource,
    }
    return json.dumps(payload).encode()


def paypal_headers(cert_url: str = TRUSTED_CERT_URL) -> dict[str, str]:
    return {
        "PAYPAL-TRANSMISSION-ID": "69cd13f0-d67a-11e5-baa3-778b53f4ae55",
        "PAYPAL-TRANSMISSION-TIME": "2026-10-19T08:00:01Z",
        "PAYPAL-TRANSMISSION-SIG": "lmI95Jx3Y9nhR5SJWlHVIWpg4AgFk7n9bCHSRxbrd8A9zrhdu2rMyFrmz+Zjh3s3boXB07VXCXUZy",
        "PAYPAL-CERT-URL": cert_url,
        "PAYPAL-AUTH-ALGO": "SHA256withRSA",
        "Content-Type": "application/json",
    }
