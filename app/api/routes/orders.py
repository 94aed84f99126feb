"""
订单路由模块

处理订单相关的 API 端点，包括：
- 创建订单、查询订单列表（分页）、订单统计
- 查询单个订单详情及状态变更历史
- 发起 / 确认支付、取消订单、申请退款
- 管理员修改订单状态

带订单 ID 的接口都经过所有权校验（OwnedOrderId），只有订单所有者或管理员可以访问。
"""
from __future__ import annotations

from fastapi import APIRouter, Query  # FastAPI 路由和查询参数

from app import crud
from app.api.deps import AdminPrincipal, CurrentPrincipal, ProvidersDep, SessionDep  # 依赖注入
from app.api.ownership import OwnedOrderId  # 所有权校验
from app.api.schemas import (
    ApiEnvelope,
    OrderCancelRequest,
    OrderCreateRequest,
    OrderData,
    OrderEventData,
    OrderEventsData,
    OrdersData,
    OrderStatsData,
    OrderStatusUpdateRequest,
    PaymentConfirmRequest,
    PaymentIntentData,
    RefundData,
    RefundRequest,
)
from app.enums import OrderStatus, PaymentProvider  # 订单状态枚举
from app.payments import PaymentIntentResult
from app.services import orders as order_service

router = APIRouter(prefix="/orders", tags=["orders"])


def _intent_data(order_id: int, provider: PaymentProvider | str, result: PaymentIntentResult) -> PaymentIntentData:
    return PaymentIntentData(
        order_id=order_id,
        provider=PaymentProvider(provider),
        payment_ref=result.ref,
        status=result.status,
        client_secret=result.client_secret,
        approve_url=result.approve_url,
    )


@router.post("", response_model=ApiEnvelope, status_code=201)
def create_order(session: SessionDep, principal: CurrentPrincipal, body: OrderCreateRequest) -> ApiEnvelope:
    """
    创建订单

    订单所有者为当前调用方，初始状态 pending / unpaid。

    请求路径: POST /api/v1/orders
    """
    order = order_service.create_order(session, principal.user_id, body)
    return ApiEnvelope(data=OrderData.model_validate(order))


@router.get("", response_model=ApiEnvelope)
def list_orders(
    session: SessionDep,
    principal: CurrentPrincipal,
    status: OrderStatus | None = Query(default=None),  # 按状态过滤（可选）
    page: int = Query(default=1, ge=1),  # 页码，从 1 开始
    page_size: int = Query(default=20, ge=1, le=100),  # 每页数量，1-100
) -> ApiEnvelope:
    """
    获取订单列表（分页）

    查询当前用户的订单，按创建时间倒序排列。

    请求路径: GET /api/v1/orders?page=1&page_size=20&status=pending
    """
    offset = (page - 1) * page_size  # 计算偏移量
    rows, count = crud.orders.list_for_owner(
        session=session, owner_id=principal.user_id, status=status, offset=offset, limit=page_size
    )
    data = [OrderData.model_validate(o) for o in rows]
    return ApiEnvelope(data=OrdersData(data=data, count=count))


@router.get("/stats", response_model=ApiEnvelope)
def order_stats(session: SessionDep, principal: CurrentPrincipal) -> ApiEnvelope:
    """
    订单统计：各状态数量、消费总额、平均订单金额

    请求路径: GET /api/v1/orders/stats
    """
    stats = crud.orders.stats_for_owner(session=session, owner_id=principal.user_id)
    return ApiEnvelope(data=OrderStatsData(**stats))


@router.get("/{order_id}", response_model=ApiEnvelope)
def get_order(session: SessionDep, order_id: OwnedOrderId) -> ApiEnvelope:
    """
    获取订单详情

    请求路径: GET /api/v1/orders/{order_id}
    """
    order = order_service.get_order(session, order_id)
    return ApiEnvelope(data=OrderData.model_validate(order))


@router.get("/{order_id}/events", response_model=ApiEnvelope)
def list_order_events(session: SessionDep, order_id: OwnedOrderId) -> ApiEnvelope:
    """
    获取订单状态变更历史（按发生顺序）

    请求路径: GET /api/v1/orders/{order_id}/events
    """
    entries = crud.events.list_audit_entries(session=session, order_id=order_id)
    data = [OrderEventData.model_validate(e) for e in entries]
    return ApiEnvelope(data=OrderEventsData(data=data, count=len(data)))


@router.post("/{order_id}/payment", response_model=ApiEnvelope)
def start_payment(session: SessionDep, providers: ProvidersDep, order_id: OwnedOrderId) -> ApiEnvelope:
    """
    在支付渠道创建支付

    Stripe 返回 client_secret，PayPal 返回 approve_url。

    请求路径: POST /api/v1/orders/{order_id}/payment
    """
    result = order_service.start_payment(session, providers, order_id)
    order = order_service.get_order(session, order_id)
    return ApiEnvelope(data=_intent_data(order_id, order.payment_provider, result))


@router.post("/{order_id}/payment/confirm", response_model=ApiEnvelope)
def confirm_payment(
    session: SessionDep,
    providers: ProvidersDep,
    order_id: OwnedOrderId,
    body: PaymentConfirmRequest | None = None,
) -> ApiEnvelope:
    """
    确认支付

    订单状态以渠道随后发送的 webhook 为准，这里只返回渠道侧的支付状态。

    请求路径: POST /api/v1/orders/{order_id}/payment/confirm
    """
    result = order_service.confirm_payment(session, providers, order_id, body.payment_method_ref if body else None)
    order = order_service.get_order(session, order_id)
    return ApiEnvelope(data=_intent_data(order_id, order.payment_provider, result))


@router.post("/{order_id}/cancel", response_model=ApiEnvelope)
def cancel_order(
    session: SessionDep,
    providers: ProvidersDep,
    principal: CurrentPrincipal,
    order_id: OwnedOrderId,
    body: OrderCancelRequest | None = None,
) -> ApiEnvelope:
    """
    取消订单

    只有 pending / processing 状态可以取消，其余状态返回 409001。

    请求路径: POST /api/v1/orders/{order_id}/cancel
    """
    order = order_service.cancel_order(session, providers, order_id, principal, body.reason if body else None)
    return ApiEnvelope(data=OrderData.model_validate(order))


@router.post("/{order_id}/refund", response_model=ApiEnvelope)
def request_refund(
    session: SessionDep,
    providers: ProvidersDep,
    order_id: OwnedOrderId,
    body: RefundRequest | None = None,
) -> ApiEnvelope:
    """
    申请退款

    向支付渠道发起退款，订单在收到 refund_completed webhook 后才变为 refunded。

    请求路径: POST /api/v1/orders/{order_id}/refund
    """
    body = body or RefundRequest()
    result = order_service.request_refund(session, providers, order_id, body.amount, body.reason)
    order = order_service.get_order(session, order_id)
    return ApiEnvelope(
        data=RefundData(
            refund_ref=result.ref,
            status=result.status,
            amount=result.amount,
            order_status=OrderStatus(order.status),
        )
    )


@router.patch("/{order_id}/status", response_model=ApiEnvelope)
def update_order_status(
    session: SessionDep,
    principal: AdminPrincipal,
    order_id: int,
    body: OrderStatusUpdateRequest,
) -> ApiEnvelope:
    """
    管理员修改订单状态

    目标状态映射为触发器后经过状态机，非法转换返回 409001。

    请求路径: PATCH /api/v1/orders/{order_id}/status
    """
    order = order_service.admin_set_status(session, order_id, body.status, principal, body.reason)
    return ApiEnvelope(data=OrderData.model_validate(order))
