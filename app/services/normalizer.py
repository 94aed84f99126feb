"""
事件规范化

把两个渠道各自的事件类型映射到固定的规范化事件集合，
并从渠道元数据中提取订单 ID：
- Stripe: data.object.metadata.order_id
- PayPal: resource.custom_id（checkout 订单为 resource.purchase_units[0].custom_id）

不认识的事件类型映射为 unmapped，确认接收但不做任何变更。
退款事件额外提取渠道报告的累计已退金额，用来区分部分退款。
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from app.enums import CanonicalEventType, PaymentProvider
from app.models import PaymentEvent
from app.payments.base import ProviderNativeEvent

logger = logging.getLogger(__name__)

STRIPE_EVENT_TYPES: dict[str, CanonicalEventType] = {
    "payment_intent.succeeded": CanonicalEventType.payment_succeeded,
    "payment_intent.payment_failed": CanonicalEventType.payment_failed,
    "charge.refunded": CanonicalEventType.refund_completed,
    "payment_method.attached": CanonicalEventType.method_attached,
    "payment_method.detached": CanonicalEventType.method_detached,
}

PAYPAL_EVENT_TYPES: dict[str, CanonicalEventType] = {
    "PAYMENT.CAPTURE.COMPLETED": CanonicalEventType.payment_succeeded,
    "PAYMENT.CAPTURE.DENIED": CanonicalEventType.payment_failed,
    "PAYMENT.CAPTURE.REFUNDED": CanonicalEventType.refund_completed,
    "CHECKOUT.ORDER.APPROVED": CanonicalEventType.order_approved,
}


@dataclass(frozen=True)
class CanonicalEvent:
    """
    渠道无关的规范化事件

    resource_ref 是事件关联的渠道对象 ID（PaymentIntent / Charge / Capture / PaymentMethod），
    支付成功时会记录到订单上，供后续退款使用。
    """

    provider: PaymentProvider
    provider_event_id: str
    canonical_type: CanonicalEventType
    native_type: str
    order_ref: int | None
    resource_ref: str | None
    occurred_at: datetime
    raw_payload: dict[str, Any] = field(repr=False)
    # 退款事件携带的累计已退金额；None 表示渠道声明已全额退款或未提供金额
    refunded_total: Decimal | None = None

    def to_model(self) -> PaymentEvent:
        return PaymentEvent(
            provider=self.provider,
            provider_event_id=self.provider_event_id,
            canonical_type=self.canonical_type,
            native_type=self.native_type,
            order_ref=self.order_ref,
            occurred_at=self.occurred_at,
            raw_payload=self.raw_payload,
        )


def _coerce_order_id(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(str(value))
    except ValueError:
        logger.warning(f"Ignoring non-numeric order reference: {value!r}")
        return None


def _stripe_order_ref(resource: dict[str, Any]) -> Any:
    metadata = resource.get("metadata")
    return metadata.get("order_id") if isinstance(metadata, dict) else None


def _paypal_order_ref(resource: dict[str, Any]) -> Any:
    if resource.get("custom_id"):
        return resource["custom_id"]
    units = resource.get("purchase_units")
    if isinstance(units, list) and units and isinstance(units[0], dict):
        return units[0].get("custom_id")
    return None


def _stripe_refunded_total(resource: dict[str, Any]) -> Decimal | None:
    # charge.refunded 在部分退款时也会发送，只有 refunded=true 才是全额
    if resource.get("refunded") is True:
        return None
    amount = resource.get("amount_refunded")
    if isinstance(amount, int) and not isinstance(amount, bool):
        return Decimal(amount) / 100
    return None


def _paypal_refunded_total(resource: dict[str, Any]) -> Decimal | None:
    breakdown = resource.get("seller_payable_breakdown")
    money = breakdown.get("total_refunded_amount") if isinstance(breakdown, dict) else None
    if not isinstance(money, dict):
        money = resource.get("amount")
    if not isinstance(money, dict) or money.get("value") is None:
        return None
    try:
        return Decimal(str(money["value"]))
    except InvalidOperation:
        logger.warning(f"Ignoring unparseable PayPal refund amount: {money['value']!r}")
        return None


_EVENT_TYPES: dict[PaymentProvider, dict[str, CanonicalEventType]] = {
    PaymentProvider.stripe: STRIPE_EVENT_TYPES,
    PaymentProvider.paypal: PAYPAL_EVENT_TYPES,
}

_ORDER_REF_EXTRACTORS: dict[PaymentProvider, Callable[[dict[str, Any]], Any]] = {
    PaymentProvider.stripe: _stripe_order_ref,
    PaymentProvider.paypal: _paypal_order_ref,
}

_REFUNDED_TOTAL_EXTRACTORS: dict[PaymentProvider, Callable[[dict[str, Any]], Decimal | None]] = {
    PaymentProvider.stripe: _stripe_refunded_total,
    PaymentProvider.paypal: _paypal_refunded_total,
}


def normalize(native: ProviderNativeEvent) -> CanonicalEvent:
    canonical_type = _EVENT_TYPES[native.provider].get(
        native.event_type, CanonicalEventType.unmapped
    )
    order_ref = _coerce_order_id(_ORDER_REF_EXTRACTORS[native.provider](native.resource))
    resource_ref = native.resource.get("id")
    refunded_total = None
    if canonical_type == CanonicalEventType.refund_completed:
        refunded_total = _REFUNDED_TOTAL_EXTRACTORS[native.provider](native.resource)

    return CanonicalEvent(
        provider=native.provider,
        provider_event_id=native.event_id,
        canonical_type=canonical_type,
        native_type=native.event_type,
        order_ref=order_ref,
        resource_ref=str(resource_ref) if resource_ref else None,
        occurred_at=native.occurred_at,
        raw_payload=native.raw,
        refunded_total=refunded_total,
    )
