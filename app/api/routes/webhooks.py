"""
支付渠道 Webhook 路由

- POST /webhooks/stripe: Stripe 事件（Stripe-Signature 头，HMAC-SHA256）
- POST /webhooks/paypal: PayPal 事件（PAYPAL-TRANSMISSION-* 头，调用 PayPal 接口验签）

验签必须使用未解析的原始请求体。
处理结果只在事务提交后才返回 200；返回错误时渠道会重试，
是否值得重试见响应头 X-Retryable（由 app/main.py 的异常处理器添加）。
"""
from __future__ import annotations

from fastapi import APIRouter, Request

from app.api.deps import ProvidersDep, RawBody, SessionDep
from app.api.schemas import WebhookAck
from app.enums import PaymentProvider
from app.services.reconciliation import WebhookResult, process_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _ack(result: WebhookResult) -> WebhookAck:
    return WebhookAck(
        event_id=result.provider_event_id,
        duplicate=result.duplicate,
        applied=result.applied,
        resulting_status=result.resulting_status,
        reason=result.reason,
    )


@router.post("/stripe", response_model=WebhookAck)
def stripe_webhook(
    request: Request, session: SessionDep, providers: ProvidersDep, raw_body: RawBody
) -> WebhookAck:
    """
    Stripe webhook

    请求路径: POST /api/v1/webhooks/stripe
    """
    result = process_webhook(session, providers, PaymentProvider.stripe, raw_body, request.headers)
    return _ack(result)


@router.post("/paypal", response_model=WebhookAck)
def paypal_webhook(
    request: Request, session: SessionDep, providers: ProvidersDep, raw_body: RawBody
) -> WebhookAck:
    """
    PayPal webhook

    请求路径: POST /api/v1/webhooks/paypal
    """
    result = process_webhook(session, providers, PaymentProvider.paypal, raw_body, request.headers)
    return _ack(result)
