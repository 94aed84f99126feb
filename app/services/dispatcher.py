"""
事件分发与审计

按规范化事件类型把事件路由到处理函数：
- payment_succeeded / payment_failed / refund_completed: 锁定订单，经状态机转换，写审计记录
  （累计退款金额小于订单总额的部分退款不触发转换）
- method_detached: 删除本地保存的对应支付方式
- method_attached / order_approved / unmapped: 只记日志

处理函数只 flush 不提交，提交由调用方（reconciliation）与幂等台账一起完成。
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlmodel import Session

from app import crud
from app.enums import (
    CanonicalEventType,
    OrderStatus,
    OrderTrigger,
    PaymentProvider,
    TransitionSource,
)
from app.models import Order, OrderAuditEntry

from .normalizer import CanonicalEvent
from .state_machine import apply_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    applied: bool
    resulting_status: OrderStatus | None = None
    reason: str | None = None


def record_transition(
    session: Session,
    *,
    order: Order,
    from_status: OrderStatus,
    trigger_name: str,
    source: TransitionSource,
    occurred_at: datetime,
    provider: PaymentProvider | None = None,
    provider_event_id: str | None = None,
    actor_id: int | None = None,
) -> OrderAuditEntry:
    """追加一条状态变更审计记录"""
    return crud.events.append_audit_entry(
        session=session,
        entry=OrderAuditEntry(
            order_id=order.id,
            provider=provider,
            canonical_type=trigger_name,
            provider_event_id=provider_event_id,
            from_status=from_status,
            resulting_status=OrderStatus(order.status),
            source=source,
            actor_id=actor_id,
            occurred_at=occurred_at,
        ),
    )


def _transition_handler(trigger: OrderTrigger) -> Callable[[Session, CanonicalEvent], DispatchOutcome]:
    def handle(session: Session, event: CanonicalEvent) -> DispatchOutcome:
        if event.order_ref is None:
            logger.info(f"{event.provider.value} event {event.provider_event_id} has no order reference")
            return DispatchOutcome(applied=False, reason="no_order_ref")

        order = crud.orders.get(session=session, order_id=event.order_ref, for_update=True)
        if order is None:
            logger.warning(
                f"{event.provider.value} event {event.provider_event_id} references "
                f"unknown order {event.order_ref}"
            )
            return DispatchOutcome(applied=False, reason="order_not_found")

        if (
            trigger == OrderTrigger.refund_completed
            and event.refunded_total is not None
            and event.refunded_total < Decimal(str(order.total))
        ):
            # 部分退款只确认接收，订单保持原状态
            logger.info(
                f"Order {order.id} partially refunded ({event.refunded_total} of {order.total}) "
                f"by {event.provider.value} event {event.provider_event_id}"
            )
            return DispatchOutcome(applied=False, reason="partial_refund")

        from_status = OrderStatus(order.status)
        extra: dict[str, str] = {}
        if trigger == OrderTrigger.payment_succeeded and event.resource_ref:
            extra["payment_capture_ref"] = event.resource_ref
        apply_transition(session, order, trigger, extra=extra)

        record_transition(
            session,
            order=order,
            from_status=from_status,
            trigger_name=event.canonical_type.value,
            source=TransitionSource.webhook,
            occurred_at=event.occurred_at,
            provider=event.provider,
            provider_event_id=event.provider_event_id,
        )
        return DispatchOutcome(applied=True, resulting_status=OrderStatus(order.status))

    return handle


def _handle_method_detached(session: Session, event: CanonicalEvent) -> DispatchOutcome:
    if not event.resource_ref:
        return DispatchOutcome(applied=False, reason="no_resource_ref")
    removed = crud.payment_methods.delete_by_ref(
        session=session, provider=event.provider, ref=event.resource_ref
    )
    logger.info(f"Payment method {event.resource_ref} detached, removed {removed} local record(s)")
    return DispatchOutcome(applied=removed > 0)


def _log_only(session: Session, event: CanonicalEvent) -> DispatchOutcome:
    logger.info(
        f"{event.provider.value} event {event.provider_event_id} "
        f"({event.native_type} -> {event.canonical_type.value}) recorded without state change"
    )
    return DispatchOutcome(applied=False, reason=event.canonical_type.value)


HANDLERS: dict[CanonicalEventType, Callable[[Session, CanonicalEvent], DispatchOutcome]] = {
    CanonicalEventType.payment_succeeded: _transition_handler(OrderTrigger.payment_succeeded),
    CanonicalEventType.payment_failed: _transition_handler(OrderTrigger.payment_failed),
    CanonicalEventType.refund_completed: _transition_handler(OrderTrigger.refund_completed),
    CanonicalEventType.method_detached: _handle_method_detached,
    CanonicalEventType.method_attached: _log_only,
    CanonicalEventType.order_approved: _log_only,
    CanonicalEventType.unmapped: _log_only,
}


def dispatch(session: Session, event: CanonicalEvent) -> DispatchOutcome:
    return HANDLERS[event.canonical_type](session, event)
