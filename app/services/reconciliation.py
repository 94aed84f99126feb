"""
Webhook 对账

处理流程：
1. 验签（失败直接 400，不做任何持久化）
2. 解析、规范化
3. 幂等检查：(provider, provider_event_id) 已在台账中 -> 直接确认（duplicate）
4. 写入规范化事件 + 幂等台账 + 分发（状态转换、审计记录），同一事务提交
5. 任一步失败整体回滚，渠道重试时会被视为"尚未处理"

渠道不保证顺序、不保证只投递一次，正确性完全依赖：
- 幂等台账拒绝已处理的事件
- 状态转换表拒绝对当前状态非法的转换（例如退款后迟到的支付成功）

错误分类：
- 签名错误、负载格式错误: 400，渠道不应重试
- 非法状态转换、未知订单、未映射事件: 200 确认（applied=false），重试也不会改变结果
- 版本冲突、渠道不可用、内部错误: 409/503/500，渠道应重试
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from app import crud
from app.api.errors import CODE_INVALID_TRANSITION, AppError, signature_error
from app.enums import OrderStatus, PaymentProvider
from app.payments import ProviderRegistry

from .dispatcher import dispatch
from .normalizer import CanonicalEvent, normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    provider_event_id: str
    duplicate: bool = False
    applied: bool = False
    resulting_status: OrderStatus | None = None
    reason: str | None = None


def _record_rejected_event(session: Session, event: CanonicalEvent) -> None:
    """转换被拒绝时仍保留规范化事件用于审计（不写幂等台账）"""
    if crud.events.get_payment_event(
        session=session, provider=event.provider, provider_event_id=event.provider_event_id
    ):
        return
    try:
        crud.events.add_payment_event(session=session, event=event.to_model())
        session.commit()
    except IntegrityError:
        # 并发的重复投递已经写入
        session.rollback()


def apply_event(session: Session, event: CanonicalEvent) -> WebhookResult:
    """
    幂等地应用一个规范化事件

    Raises:
        AppError: 可重试的错误（版本冲突等），事务已回滚
    """
    if crud.events.get_processed(
        session=session, provider=event.provider, provider_event_id=event.provider_event_id
    ):
        logger.info(f"Duplicate {event.provider.value} event {event.provider_event_id}, skipping")
        return WebhookResult(provider_event_id=event.provider_event_id, duplicate=True)

    try:
        # 之前被拒绝的投递已经保存过规范化事件
        if crud.events.get_payment_event(
            session=session, provider=event.provider, provider_event_id=event.provider_event_id
        ) is None:
            crud.events.add_payment_event(session=session, event=event.to_model())
        record = crud.events.add_processed(
            session=session,
            provider=event.provider,
            provider_event_id=event.provider_event_id,
        )
    except IntegrityError:
        # 同一事件的另一次投递正在处理或已提交
        session.rollback()
        logger.info(
            f"Concurrent delivery of {event.provider.value} event {event.provider_event_id}, skipping"
        )
        return WebhookResult(provider_event_id=event.provider_event_id, duplicate=True)

    try:
        outcome = dispatch(session, event)
        record.resulting_status = outcome.resulting_status
        session.add(record)
        session.commit()
    except AppError as e:
        session.rollback()
        if e.code != CODE_INVALID_TRANSITION:
            raise
        logger.warning(
            f"Rejected {event.provider.value} event {event.provider_event_id} "
            f"for order {event.order_ref}: {e.message}"
        )
        _record_rejected_event(session, event)
        return WebhookResult(
            provider_event_id=event.provider_event_id,
            applied=False,
            reason="invalid_transition",
        )
    except Exception:
        session.rollback()
        logger.exception(
            f"Failed to apply {event.provider.value} event {event.provider_event_id}"
        )
        raise

    return WebhookResult(
        provider_event_id=event.provider_event_id,
        applied=outcome.applied,
        resulting_status=outcome.resulting_status,
        reason=outcome.reason,
    )


def process_webhook(
    session: Session,
    providers: ProviderRegistry,
    provider: PaymentProvider,
    raw_body: bytes,
    headers: Mapping[str, str],
) -> WebhookResult:
    """
    处理一次 webhook 投递

    渠道未配置时抛出 503；验签失败抛出 400；其余见模块说明。
    """
    gateway, secret = providers.get_for_webhook(provider)

    if not gateway.verify_signature(raw_body, headers, secret):
        logger.warning(f"{provider.value} webhook signature verification failed")
        raise signature_error()

    native = gateway.parse_event(raw_body)
    event = normalize(native)
    logger.info(
        f"Received {provider.value} webhook {event.provider_event_id}: "
        f"{event.native_type} -> {event.canonical_type.value} (order {event.order_ref})"
    )
    return apply_event(session, event)
