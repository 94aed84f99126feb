"""
订单业务逻辑

面向用户 / 管理员的订单操作：
- create_order: 校验金额并创建订单
- start_payment / confirm_payment: 在支付渠道创建 / 确认支付
- cancel_order: 用户取消（manual_cancel），提交后尽力撤销未完成的授权
- request_refund: 向渠道发起退款，订单状态等 refund_completed webhook 到达后才变更
- admin_set_status: 管理员修改状态，同样经过状态机转换表

渠道调用（撤销授权、退款）都在订单行锁所在的事务之外进行。
"""
from __future__ import annotations

import logging
import secrets
import time
from decimal import Decimal

from sqlmodel import Session

from app import crud
from app.api.errors import AppError, conflict, invalid_transition, not_found, validation_error
from app.api.schemas import OrderCreateRequest
from app.core.security import Principal
from app.enums import (
    OrderStatus,
    OrderTrigger,
    PaymentStatus,
    TransitionSource,
)
from app.models import Order, utc_now
from app.payments import PaymentIntentResult, ProviderRegistry, RefundResult

from .dispatcher import record_transition
from .state_machine import ADMIN_TRIGGERS, apply_transition

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
REFUNDABLE_STATES = frozenset({OrderStatus.processing, OrderStatus.shipped, OrderStatus.delivered})
# orders.total 列为 Numeric(10, 2)
MAX_ORDER_TOTAL = Decimal("100000000")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT)


def generate_order_number(owner_id: int) -> str:
    """订单号格式：o_{owner_id}_{timestamp}_{random}"""
    return f"o_{owner_id}_{int(time.time())}_{secrets.token_hex(6)}"


def create_order(session: Session, owner_id: int, body: OrderCreateRequest) -> Order:
    """
    创建订单

    total 由 subtotal + tax + shipping_cost 计算；请求中带了 total 且与计算值不一致时拒绝。

    Raises:
        AppError: 金额不一致或超出上限（400001）
    """
    subtotal = _money(body.subtotal)
    tax = _money(body.tax)
    shipping_cost = _money(body.shipping_cost)
    total = subtotal + tax + shipping_cost
    if body.total is not None and _money(body.total) != total:
        raise validation_error(
            f"Order total {_money(body.total)} does not match subtotal + tax + shipping ({total})"
        )
    if total >= MAX_ORDER_TOTAL:
        raise validation_error(f"Order total {total} exceeds the maximum of {MAX_ORDER_TOTAL - CENT}")

    shipping = body.shipping_address.model_dump() if body.shipping_address else None
    billing = body.billing_address.model_dump() if body.billing_address else shipping

    order = Order(
        order_number=generate_order_number(owner_id),
        owner_id=owner_id,
        items=[item.model_dump() for item in body.items],
        shipping_address=shipping,
        billing_address=billing,
        subtotal=subtotal,
        tax=tax,
        shipping_cost=shipping_cost,
        total=total,
        currency=body.currency.upper(),
        status=OrderStatus.pending,
        payment_status=PaymentStatus.unpaid,
        payment_provider=body.payment_provider,
        notes=body.notes,
    )
    order = crud.orders.create(session=session, order=order)
    logger.info(f"Order {order.id} ({order.order_number}) created for user {owner_id}, total {total}")
    return order


def _void_quietly(providers: ProviderRegistry, provider: str, intent_ref: str, order_id: int) -> None:
    """尽力撤销渠道侧支付，失败只记日志"""
    try:
        providers.get(provider).void_authorization(intent_ref)
        logger.info(f"Voided {provider} authorization {intent_ref} for order {order_id}")
    except AppError as e:
        logger.error(f"Failed to void authorization {intent_ref} for order {order_id}: {e.message}")


def get_order(session: Session, order_id: int) -> Order:
    order = crud.orders.get(session=session, order_id=order_id)
    if order is None:
        raise not_found("Order not found")
    return order


def _transition_by_actor(
    session: Session,
    order_id: int,
    trigger: OrderTrigger,
    *,
    principal: Principal,
    source: TransitionSource,
    note: str | None = None,
) -> Order:
    """锁定订单、执行转换、写审计记录并提交"""
    order = crud.orders.get(session=session, order_id=order_id, for_update=True)
    if order is None:
        raise not_found("Order not found")

    from_status = OrderStatus(order.status)
    try:
        apply_transition(session, order, trigger, note=note)
        record_transition(
            session,
            order=order,
            from_status=from_status,
            trigger_name=trigger.value,
            source=source,
            occurred_at=utc_now(),
            actor_id=principal.user_id,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(order)
    return order


def cancel_order(
    session: Session,
    providers: ProviderRegistry,
    order_id: int,
    principal: Principal,
    reason: str | None = None,
) -> Order:
    """
    用户取消订单

    只有 pending / processing 可以取消。提交后如果订单仍未支付且有渠道支付引用，
    尽力撤销渠道侧的授权，失败只记日志，不影响取消结果。
    """
    note = f"Cancelled: {reason or 'No reason provided'}"
    order = _transition_by_actor(
        session,
        order_id,
        OrderTrigger.manual_cancel,
        principal=principal,
        source=TransitionSource.client,
        note=note,
    )

    if order.payment_status == PaymentStatus.unpaid and order.payment_method_ref:
        _void_quietly(providers, order.payment_provider, order.payment_method_ref, order.id)
    return order


def request_refund(
    session: Session,
    providers: ProviderRegistry,
    order_id: int,
    amount: Decimal | None = None,
    reason: str | None = None,
) -> RefundResult:
    """
    发起退款

    只允许已支付且处于 processing / shipped / delivered 的订单。
    这里不修改订单状态，状态在 refund_completed webhook 到达时经状态机变更。

    Raises:
        AppError: 订单状态不允许退款（409001）、金额超过订单总额（400001）
    """
    order = get_order(session, order_id)
    status = OrderStatus(order.status)
    if order.payment_status != PaymentStatus.paid or status not in REFUNDABLE_STATES:
        raise invalid_transition(
            f"Order in status {status.value} ({order.payment_status}) cannot be refunded"
        )

    refund_amount = _money(amount) if amount is not None else _money(order.total)
    if refund_amount > _money(order.total):
        raise validation_error("Refund amount cannot exceed order total")

    payment_ref = order.payment_capture_ref or order.payment_method_ref
    if not payment_ref:
        raise validation_error("Order has no payment to refund")

    gateway = providers.get(order.payment_provider)
    result = gateway.refund(payment_ref, refund_amount, order.currency, reason)
    logger.info(
        f"Refund {result.ref} ({result.status}) requested for order {order.id}, amount {refund_amount}"
    )
    return result


def start_payment(session: Session, providers: ProviderRegistry, order_id: int) -> PaymentIntentResult:
    """
    在支付渠道创建支付

    只允许 pending 且未支付的订单。渠道返回的支付引用保存在订单上，
    webhook 通过元数据中的订单 ID 回查订单。
    重复发起时旧的支付会被撤销；写回订单失败时撤销刚创建的支付。
    """
    order = get_order(session, order_id)
    if order.status != OrderStatus.pending or order.payment_status != PaymentStatus.unpaid:
        raise invalid_transition(f"Order in status {order.status} cannot start a payment")

    expected_version = order.version
    previous_ref = order.payment_method_ref
    provider = order.payment_provider
    result = providers.get(provider).create_intent(order)

    locked = crud.orders.get(session=session, order_id=order_id, for_update=True)
    if locked is None:
        raise not_found("Order not found")
    try:
        if not crud.orders.compare_and_set(
            session=session,
            order=locked,
            expected_version=expected_version,
            values={"payment_method_ref": result.ref},
        ):
            raise conflict("Order was modified while starting the payment")
        session.commit()
    except Exception:
        session.rollback()
        _void_quietly(providers, provider, result.ref, order_id)
        raise
    logger.info(f"Created {provider} payment {result.ref} for order {order_id}")

    if previous_ref and previous_ref != result.ref:
        _void_quietly(providers, provider, previous_ref, order_id)
    return result


def confirm_payment(
    session: Session,
    providers: ProviderRegistry,
    order_id: int,
    method_ref: str | None = None,
) -> PaymentIntentResult:
    """
    确认渠道侧支付（Stripe 确认 PaymentIntent / PayPal capture）

    订单状态不在这里修改，以渠道 webhook 为准。
    """
    order = get_order(session, order_id)
    if order.status != OrderStatus.pending or not order.payment_method_ref:
        raise invalid_transition(f"Order in status {order.status} has no payment to confirm")

    gateway = providers.get(order.payment_provider)
    return gateway.confirm(order.payment_method_ref, method_ref)


def admin_set_status(
    session: Session,
    order_id: int,
    target: OrderStatus,
    principal: Principal,
    reason: str | None = None,
) -> Order:
    """
    管理员修改订单状态

    目标状态先映射成触发器，再经过状态机转换表；pending 不能作为目标状态。
    """
    trigger = ADMIN_TRIGGERS.get(target)
    if trigger is None:
        raise invalid_transition(f"Status cannot be set to {target.value}")

    note = f"Status set to {target.value} by admin: {reason}" if reason else None
    order = _transition_by_actor(
        session,
        order_id,
        trigger,
        principal=principal,
        source=TransitionSource.admin,
        note=note,
    )
    logger.info(f"Admin {principal.user_id} set order {order.id} status to {target.value}")
    return order
