"""
PayPal 渠道实现（REST API，通过 httpx 调用）

文档: https://developer.paypal.com/api/rest/
Webhook 验签: https://developer.paypal.com/api/rest/webhooks/rest/#link-verifysignature

验签流程：
1. 请求必须带齐 PAYPAL-TRANSMISSION-* / PAYPAL-CERT-URL / PAYPAL-AUTH-ALGO 头
2. 证书地址必须是 https 且属于 paypal.com 域名
3. 调用 /v1/notifications/verify-webhook-signature，由 PayPal 校验证书链和签名，
   只有 verification_status == "SUCCESS" 才算通过
"""
from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from app.api.errors import provider_error, service_unavailable, validation_error
from app.enums import PaymentProvider

from .base import (
    PaymentGateway,
    PaymentIntentResult,
    ProviderNativeEvent,
    RefundResult,
    load_json_body,
)

if TYPE_CHECKING:
    from app.models import Order

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-transmission-sig",
    "paypal-cert-url",
    "paypal-auth-algo",
)


def is_trusted_cert_url(url: str) -> bool:
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    return parsed.scheme == "https" and (host == "paypal.com" or host.endswith(".paypal.com"))


def _parse_iso(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable PayPal create_time: {value}")
    return datetime.now(timezone.utc)


class PayPalGateway(PaymentGateway):
    """PayPal 渠道"""

    provider = PaymentProvider.paypal

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        webhook_id: str | None,
        base_url: str,
        timeout: float = 10.0,
        frontend_url: str = "",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(webhook_secret=webhook_id)
        self._client_id = client_id
        self._client_secret = client_secret
        self._frontend_url = frontend_url.rstrip("/")
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()
        logger.info(f"PayPal gateway initialized ({base_url})")

    def close(self) -> None:
        self._http.close()

    def _access_token(self) -> str:
        """OAuth2 client-credentials token，过期前 60 秒刷新"""
        with self._token_lock:
            if self._token and time.time() < self._token_expires_at - 60:
                return self._token
            response = self._http.post(
                "/v1/oauth2/token",
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            body = response.json()
            self._token = str(body["access_token"])
            self._token_expires_at = time.time() + int(body.get("expires_in", 0))
            return self._token

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        response = self._http.request(method, path, headers=headers, **kwargs)
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    def verify_signature(
        self, raw_body: bytes, headers: Mapping[str, str], secret: str
    ) -> bool:
        lowered = {k.lower(): v for k, v in headers.items()}
        missing = [h for h in REQUIRED_HEADERS if not lowered.get(h)]
        if missing:
            logger.warning(f"PayPal webhook missing headers: {missing}")
            return False

        cert_url = lowered["paypal-cert-url"]
        if not is_trusted_cert_url(cert_url):
            logger.warning(f"PayPal webhook cert url not trusted: {cert_url}")
            return False

        try:
            webhook_event = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return False

        body = {
            "auth_algo": lowered["paypal-auth-algo"],
            "cert_url": cert_url,
            "transmission_id": lowered["paypal-transmission-id"],
            "transmission_sig": lowered["paypal-transmission-sig"],
            "transmission_time": lowered["paypal-transmission-time"],
            "webhook_id": secret,
            "webhook_event": webhook_event,
        }
        # 取 token 失败属于配置或网络问题，不代表投递本身有问题
        try:
            self._access_token()
        except httpx.HTTPError as e:
            logger.error(f"PayPal access token request failed: {e}")
            raise service_unavailable("PayPal signature verification unavailable")

        try:
            result = self._request("POST", "/v1/notifications/verify-webhook-signature", json=body)
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if 400 <= status_code < 500:
                # PayPal 拒绝了这组传输数据，重试也不会通过
                logger.warning(f"PayPal rejected webhook verification request: {status_code}")
                return False
            logger.error(f"PayPal signature verification call failed: {e}")
            raise service_unavailable("PayPal signature verification unavailable")
        except httpx.HTTPError as e:
            # 无法完成校验时不能放行，返回 503 让 PayPal 稍后重试
            logger.error(f"PayPal signature verification call failed: {e}")
            raise service_unavailable("PayPal signature verification unavailable")

        status = result.get("verification_status")
        if status != "SUCCESS":
            logger.warning(f"PayPal signature verification status: {status}")
            return False
        return True

    def parse_event(self, raw_body: bytes) -> ProviderNativeEvent:
        payload = load_json_body(raw_body)
        event_id = str(payload.get("id") or "")
        event_type = str(payload.get("event_type") or "")
        if not event_id or not event_type:
            raise validation_error("Missing event id/type")

        resource = payload.get("resource")
        if not isinstance(resource, dict):
            resource = {}

        return ProviderNativeEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
            resource=resource,
            occurred_at=_parse_iso(payload.get("create_time")),
            raw=payload,
        )

    def create_intent(self, order: Order) -> PaymentIntentResult:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": order.order_number,
                    "custom_id": str(order.id),
                    "invoice_id": order.order_number,
                    "amount": {"currency_code": order.currency, "value": str(order.total)},
                }
            ],
            "application_context": {
                "return_url": f"{self._frontend_url}/payment/success",
                "cancel_url": f"{self._frontend_url}/payment/cancel",
                "user_action": "PAY_NOW",
                "shipping_preference": "NO_SHIPPING",
            },
        }
        try:
            result = self._request("POST", "/v2/checkout/orders", json=body)
        except httpx.HTTPError as e:
            logger.error(f"PayPal create order failed for order {order.id}: {e}")
            raise provider_error("Failed to create PayPal order")

        approve_url = next(
            (link.get("href") for link in result.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        return PaymentIntentResult(
            ref=str(result["id"]), status=str(result.get("status", "")), approve_url=approve_url
        )

    def confirm(self, intent_ref: str, method_ref: str | None = None) -> PaymentIntentResult:
        try:
            result = self._request("POST", f"/v2/checkout/orders/{intent_ref}/capture", json={})
        except httpx.HTTPError as e:
            logger.error(f"PayPal capture {intent_ref} failed: {e}")
            raise provider_error("Failed to capture PayPal order")
        return PaymentIntentResult(ref=str(result.get("id", intent_ref)), status=str(result.get("status", "")))

    def refund(
        self, payment_ref: str, amount: Decimal, currency: str, reason: str | None
    ) -> RefundResult:
        body = {
            "amount": {"currency_code": currency, "value": str(amount)},
            "note_to_payer": reason or "Refund requested by customer",
        }
        try:
            result = self._request("POST", f"/v2/payments/captures/{payment_ref}/refund", json=body)
        except httpx.HTTPError as e:
            logger.error(f"PayPal refund for capture {payment_ref} failed: {e}")
            raise provider_error("Failed to create PayPal refund")
        refunded = result.get("amount") or {}
        return RefundResult(
            ref=str(result["id"]),
            status=str(result.get("status", "")),
            amount=Decimal(str(refunded.get("value", amount))),
        )

    def void_authorization(self, intent_ref: str) -> None:
        """作废 checkout 订单下所有尚未捕获的授权（没有授权时什么都不做）"""
        try:
            checkout = self._request("GET", f"/v2/checkout/orders/{intent_ref}")
            for unit in checkout.get("purchase_units", []):
                for auth in (unit.get("payments") or {}).get("authorizations", []):
                    if auth.get("status") == "CREATED":
                        self._request("POST", f"/v2/payments/authorizations/{auth['id']}/void")
        except httpx.HTTPError as e:
            logger.error(f"PayPal void for order {intent_ref} failed: {e}")
            raise provider_error("Failed to void PayPal authorization")

    def detach_method(self, method_ref: str) -> None:
        try:
            self._request("DELETE", f"/v3/vault/payment-tokens/{method_ref}")
        except httpx.HTTPError as e:
            logger.error(f"PayPal delete payment token {method_ref} failed: {e}")
            raise provider_error("Failed to delete PayPal payment token")
