"""
Stripe 渠道实现

文档: https://docs.stripe.com/api
Webhook 验签: https://docs.stripe.com/webhooks#verify-events （stripe.WebhookSignature）
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import stripe

from app.api.errors import provider_error, validation_error
from app.enums import PaymentProvider

from .base import (
    PaymentGateway,
    PaymentIntentResult,
    ProviderNativeEvent,
    RefundResult,
    load_json_body,
    to_minor_units,
)

if TYPE_CHECKING:
    from app.models import Order

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"


class StripeGateway(PaymentGateway):
    """Stripe 渠道（使用 StripeClient 实例，不修改 stripe 模块的全局 api_key）"""

    provider = PaymentProvider.stripe

    def __init__(
        self,
        *,
        api_key: str,
        webhook_secret: str | None,
        tolerance_seconds: int = 300,
        client: Any | None = None,
    ) -> None:
        super().__init__(webhook_secret=webhook_secret)
        self._client = client if client is not None else stripe.StripeClient(api_key)
        self._tolerance = tolerance_seconds
        logger.info("Stripe gateway initialized")

    def verify_signature(
        self, raw_body: bytes, headers: Mapping[str, str], secret: str
    ) -> bool:
        """
        校验 Stripe-Signature 头（t=...,v1=...）

        签名格式、多个 v1 签名（密钥轮换）、时间戳容差都由 stripe SDK 处理。
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        header = lowered.get(SIGNATURE_HEADER)
        if not header:
            logger.warning("Stripe webhook without Stripe-Signature header")
            return False

        try:
            stripe.WebhookSignature.verify_header(
                raw_body.decode("utf-8"), header, secret, tolerance=self._tolerance
            )
        except UnicodeDecodeError:
            logger.warning("Stripe webhook body is not valid UTF-8")
            return False
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe signature verification failed: {e}")
            return False
        return True

    def parse_event(self, raw_body: bytes) -> ProviderNativeEvent:
        payload = load_json_body(raw_body)
        event_id = str(payload.get("id") or "")
        event_type = str(payload.get("type") or "")
        if not event_id or not event_type:
            raise validation_error("Missing event id/type")

        data = payload.get("data")
        resource = data.get("object") if isinstance(data, dict) else None
        if not isinstance(resource, dict):
            resource = {}

        created = payload.get("created")
        try:
            occurred_at = datetime.fromtimestamp(int(created), tz=timezone.utc)
        except (TypeError, ValueError):
            occurred_at = datetime.now(timezone.utc)

        return ProviderNativeEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
            resource=resource,
            occurred_at=occurred_at,
            raw=payload,
        )

    def create_intent(self, order: Order) -> PaymentIntentResult:
        params = {
            "amount": to_minor_units(order.total),
            "currency": order.currency.lower(),
            "metadata": {
                "order_id": str(order.id),
                "order_number": order.order_number,
                "user_id": str(order.owner_id),
            },
            "automatic_payment_methods": {"enabled": True},
        }
        try:
            intent = self._client.payment_intents.create(params=params)
        except stripe.StripeError as e:
            logger.error(f"Stripe create payment intent failed for order {order.id}: {e}")
            raise provider_error("Failed to create Stripe payment intent")
        return PaymentIntentResult(
            ref=intent.id, status=intent.status, client_secret=intent.client_secret
        )

    def confirm(self, intent_ref: str, method_ref: str | None = None) -> PaymentIntentResult:
        params: dict[str, Any] = {}
        if method_ref:
            params["payment_method"] = method_ref
        try:
            intent = self._client.payment_intents.confirm(intent_ref, params=params)
        except stripe.StripeError as e:
            logger.error(f"Stripe confirm {intent_ref} failed: {e}")
            raise provider_error("Failed to confirm Stripe payment")
        return PaymentIntentResult(ref=intent.id, status=intent.status)

    def refund(
        self, payment_ref: str, amount: Decimal, currency: str, reason: str | None
    ) -> RefundResult:
        params: dict[str, Any] = {
            "payment_intent": payment_ref,
            "amount": to_minor_units(amount),
            "reason": "requested_by_customer",
        }
        if reason:
            params["metadata"] = {"note": reason}
        try:
            refund = self._client.refunds.create(params=params)
        except stripe.StripeError as e:
            logger.error(f"Stripe refund for {payment_ref} failed: {e}")
            raise provider_error("Failed to create Stripe refund")
        return RefundResult(
            ref=refund.id, status=refund.status, amount=Decimal(refund.amount) / 100
        )

    def void_authorization(self, intent_ref: str) -> None:
        try:
            self._client.payment_intents.cancel(intent_ref)
        except stripe.StripeError as e:
            logger.error(f"Stripe cancel {intent_ref} failed: {e}")
            raise provider_error("Failed to cancel Stripe payment intent")

    def detach_method(self, method_ref: str) -> None:
        try:
            self._client.payment_methods.detach(method_ref)
        except stripe.StripeError as e:
            logger.error(f"Stripe detach {method_ref} failed: {e}")
            raise provider_error("Failed to detach Stripe payment method")
