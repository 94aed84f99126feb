"""
支付渠道能力接口

对账逻辑只依赖这里定义的接口，不关心具体是哪个渠道。
渠道差异只出现在接口实现（验签、解析）和事件规范化两处。

webhook 路径只使用 verify_signature / parse_event；
create_intent / confirm / refund / void_authorization / detach_method
由面向用户的接口调用。
"""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from app.api.errors import validation_error
from app.enums import PaymentProvider

if TYPE_CHECKING:
    from app.models import Order


@dataclass(frozen=True)
class ProviderNativeEvent:
    """
    验签通过后的渠道原始事件

    - event_id: 渠道事件 ID（幂等键）
    - event_type: 渠道事件类型，如 "payment_intent.succeeded"
    - resource: 事件关联的渠道对象（Stripe data.object / PayPal resource）
    - raw: 完整的原始负载
    """

    provider: PaymentProvider
    event_id: str
    event_type: str
    resource: dict[str, Any]
    occurred_at: datetime
    raw: dict[str, Any] = field(repr=False)


@dataclass(frozen=True)
class PaymentIntentResult:
    ref: str
    status: str
    client_secret: str | None = None
    approve_url: str | None = None


@dataclass(frozen=True)
class RefundResult:
    ref: str
    status: str
    amount: Decimal


def to_minor_units(amount: Decimal) -> int:
    """金额转换为最小货币单位（分）"""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def load_json_body(raw_body: bytes) -> dict[str, Any]:
    """解析 webhook 原始负载，格式错误时抛出 ValidationError"""
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise validation_error("Webhook payload is not valid JSON")
    if not isinstance(payload, dict):
        raise validation_error("Webhook payload must be a JSON object")
    return payload


class PaymentGateway(ABC):
    """
    支付渠道能力接口

    实现类在启动时构造一次，由 ProviderRegistry 持有并注入到请求处理函数中。
    """

    provider: PaymentProvider

    def __init__(self, *, webhook_secret: str | None) -> None:
        self.webhook_secret = webhook_secret

    @abstractmethod
    def verify_signature(
        self, raw_body: bytes, headers: Mapping[str, str], secret: str
    ) -> bool:
        """校验 webhook 请求是否来自渠道本身（必须使用未解析的原始字节）"""

    @abstractmethod
    def parse_event(self, raw_body: bytes) -> ProviderNativeEvent:
        """解析已验签的负载"""

    @abstractmethod
    def create_intent(self, order: Order) -> PaymentIntentResult:
        """为订单创建渠道侧支付（元数据中带上订单 ID，供 webhook 回查）"""

    @abstractmethod
    def confirm(self, intent_ref: str, method_ref: str | None = None) -> PaymentIntentResult:
        ...

    @abstractmethod
    def refund(self, payment_ref: str, amount: Decimal, currency: str, reason: str | None) -> RefundResult:
        ...

    @abstractmethod
    def void_authorization(self, intent_ref: str) -> None:
        ...

    @abstractmethod
    def detach_method(self, method_ref: str) -> None:
        ...
