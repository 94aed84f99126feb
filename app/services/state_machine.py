"""
订单状态机

所有订单状态变更（webhook、用户取消、管理员修改）都经过这里的转换表，
不存在直接赋值 status 的路径。

转换表（触发器 -> 允许的源状态 -> 目标状态）：

    payment_succeeded      pending                          -> processing
    payment_failed         pending, processing              -> cancelled
    refund_completed       processing, shipped, delivered   -> refunded
    manual_cancel          pending, processing              -> cancelled
    fulfillment_shipped    processing                       -> shipped
    fulfillment_delivered  shipped                          -> delivered

cancelled / refunded 没有任何出边（终态）。

并发：调用方先用 SELECT ... FOR UPDATE 锁住订单行，写入时再做版本号检查，
两个竞争的触发器只有一个能提交，另一个得到 InvalidTransition 或 Conflict。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlmodel import Session

from app import crud
from app.api.errors import conflict, invalid_transition
from app.enums import OrderStatus, OrderTrigger, PaymentStatus
from app.models import Order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    sources: frozenset[OrderStatus]
    target: OrderStatus
    payment_status: PaymentStatus | None = None


TRANSITIONS: dict[OrderTrigger, Transition] = {
    OrderTrigger.payment_succeeded: Transition(
        sources=frozenset({OrderStatus.pending}),
        target=OrderStatus.processing,
        payment_status=PaymentStatus.paid,
    ),
    OrderTrigger.payment_failed: Transition(
        sources=frozenset({OrderStatus.pending, OrderStatus.processing}),
        target=OrderStatus.cancelled,
        payment_status=PaymentStatus.failed,
    ),
    OrderTrigger.refund_completed: Transition(
        sources=frozenset({OrderStatus.processing, OrderStatus.shipped, OrderStatus.delivered}),
        target=OrderStatus.refunded,
        payment_status=PaymentStatus.refunded,
    ),
    OrderTrigger.manual_cancel: Transition(
        sources=frozenset({OrderStatus.pending, OrderStatus.processing}),
        target=OrderStatus.cancelled,
    ),
    OrderTrigger.fulfillment_shipped: Transition(
        sources=frozenset({OrderStatus.processing}),
        target=OrderStatus.shipped,
    ),
    OrderTrigger.fulfillment_delivered: Transition(
        sources=frozenset({OrderStatus.shipped}),
        target=OrderStatus.delivered,
    ),
}

TERMINAL_STATES = frozenset({OrderStatus.cancelled, OrderStatus.refunded})

# 管理员修改状态时，目标状态对应的触发器（pending 不能作为目标）
ADMIN_TRIGGERS: dict[OrderStatus, OrderTrigger] = {
    OrderStatus.processing: OrderTrigger.payment_succeeded,
    OrderStatus.shipped: OrderTrigger.fulfillment_shipped,
    OrderStatus.delivered: OrderTrigger.fulfillment_delivered,
    OrderStatus.cancelled: OrderTrigger.manual_cancel,
    OrderStatus.refunded: OrderTrigger.refund_completed,
}


def next_status(current: OrderStatus | str, trigger: OrderTrigger) -> OrderStatus:
    """
    计算目标状态（纯函数）

    Raises:
        AppError: 当前状态不在触发器允许的源状态集合中（409001）
    """
    current = OrderStatus(current)
    transition = TRANSITIONS[trigger]
    if current not in transition.sources:
        raise invalid_transition(
            f"Cannot apply {trigger.value} to an order in status {current.value}"
        )
    return transition.target


def can_apply(current: OrderStatus | str, trigger: OrderTrigger) -> bool:
    return OrderStatus(current) in TRANSITIONS[trigger].sources


def apply_transition(
    session: Session,
    order: Order,
    trigger: OrderTrigger,
    *,
    expected_version: int | None = None,
    note: str | None = None,
    extra: dict[str, Any] | None = None,
) -> OrderStatus:
    """
    对订单应用触发器

    写入条件为 version == expected_version（默认取订单当前的 version），
    成功后 order 会被刷新为最新值。只 flush，不提交事务，
    调用方负责在同一事务中写入审计记录 / 幂等台账后提交。

    Args:
        session: 数据库会话（order 必须属于该会话）
        order: 订单
        trigger: 触发器
        expected_version: 读取订单时的版本号
        note: 追加到 notes 的文本
        extra: 同时写入的其他字段（status 以转换表为准）

    Returns:
        新状态

    Raises:
        AppError: 非法转换（409001）或版本冲突（409002）
    """
    current = OrderStatus(order.status)
    target = next_status(current, trigger)
    version = order.version if expected_version is None else expected_version

    values: dict[str, Any] = dict(extra or {})
    values["status"] = target.value
    payment_status = TRANSITIONS[trigger].payment_status
    if payment_status is not None:
        values["payment_status"] = payment_status.value
    if note:
        values["notes"] = f"{order.notes}\n{note}" if order.notes else note

    if not crud.orders.compare_and_set(
        session=session, order=order, expected_version=version, values=values
    ):
        logger.warning(
            f"Version conflict applying {trigger.value} to order {order.id} (expected v{version})"
        )
        raise conflict()

    logger.info(f"Order {order.id}: {current.value} -> {target.value} via {trigger.value}")
    return target
