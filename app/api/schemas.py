"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

关键概念：
- BaseModel: Pydantic 的模型基类，用于数据验证
- Field: 字段验证器，定义字段的约束（长度、范围等）
- 这些模型不是数据库表，只用于 API 数据交换
- 金额统一用 Decimal，序列化为字符串（例如 "113.00"），避免浮点误差
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal  # 精确数值类型，用于金额
from typing import Annotated, Any  # 任意类型

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer  # Pydantic 核心类

from app.enums import (
    OrderStatus,  # 订单状态枚举
    PaymentProvider,  # 支付渠道枚举
    PaymentStatus,  # 支付状态枚举
    TransitionSource,  # 审计来源枚举
    UserRole,  # 用户角色枚举
)

# ============================================================
# 通用响应模型
# ============================================================


class Message(BaseModel):
    """
    消息响应模型

    用于 API 返回简单的文本消息。
    """
    message: str


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    sub (subject) 存储用户 ID，role 缺省为普通用户。
    """
    sub: str | None = None
    role: UserRole = UserRole.user


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    所有 API 响应都使用这个格式，包含：
    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 409001, "message": "Cannot apply manual_cancel to an order in status shipped", "data": None}
    """
    code: int = 0  # 默认成功
    message: str = "success"  # 默认成功消息
    data: Any | None = None  # 业务数据（可选）


# 金额：序列化为两位小数的字符串
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: f"{Decimal(v).quantize(Decimal('0.01'))}", return_type=str),
]


# ============================================================
# 订单
# ============================================================


class OrderItem(BaseModel):
    """订单商品"""
    product_id: str = Field(min_length=1, max_length=64)  # 商品 ID
    quantity: int = Field(ge=1, le=100000)  # 数量（至少 1）


class Address(BaseModel):
    """收货 / 账单地址"""
    name: str | None = Field(default=None, max_length=128)
    line1: str = Field(min_length=1, max_length=256)
    line2: str | None = Field(default=None, max_length=256)
    city: str = Field(min_length=1, max_length=128)
    state: str | None = Field(default=None, max_length=128)
    postal_code: str | None = Field(default=None, max_length=32)
    country: str = Field(min_length=2, max_length=2)  # ISO 3166-1 alpha-2


class OrderCreateRequest(BaseModel):
    """
    创建订单请求模型

    total 可选：传了就必须等于 subtotal + tax + shipping_cost，否则拒绝。
    billing_address 缺省时使用 shipping_address。
    """
    items: list[OrderItem] = Field(min_length=1)  # 商品列表（至少一项）
    subtotal: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2)
    shipping_cost: Decimal = Field(
        default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2
    )
    total: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)  # 货币类型
    payment_provider: PaymentProvider  # 支付渠道
    shipping_address: Address | None = None
    billing_address: Address | None = None
    notes: str | None = Field(default=None, max_length=1000)


class OrderData(BaseModel):
    """
    订单数据模型

    返回订单的详细信息。
    """
    model_config = ConfigDict(from_attributes=True)

    id: int  # 订单 ID
    order_number: str  # 订单号
    owner_id: int  # 下单用户
    items: list[dict[str, Any]]  # 商品列表
    subtotal: Money
    tax: Money
    shipping_cost: Money
    total: Money
    currency: str  # 货币
    status: OrderStatus  # 订单状态
    payment_status: PaymentStatus  # 支付状态
    payment_provider: PaymentProvider  # 支付渠道
    payment_method_ref: str | None = None  # 渠道支付引用
    shipping_address: dict[str, Any] | None = None
    billing_address: dict[str, Any] | None = None
    notes: str | None = None
    version: int
    created_at: datetime  # 创建时间
    updated_at: datetime


class OrdersData(BaseModel):
    """
    订单列表响应模型

    返回用户的订单历史。
    """
    data: list[OrderData]  # 订单列表
    count: int  # 总记录数


class OrderStatsData(BaseModel):
    """订单统计"""
    total_orders: int
    total_spent: Money
    average_order_value: Money
    status_counts: dict[str, int]


class OrderCancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class RefundRequest(BaseModel):
    """退款请求，amount 缺省为全额退款"""
    amount: Decimal | None = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    reason: str | None = Field(default=None, max_length=500)


class RefundData(BaseModel):
    refund_ref: str  # 渠道退款 ID
    status: str  # 渠道退款状态
    amount: Money
    order_status: OrderStatus  # 订单状态（退款完成前不变）


class PaymentIntentData(BaseModel):
    """
    支付意图响应

    Stripe 返回 client_secret，由前端完成支付；
    PayPal 返回 approve_url，用户跳转到 PayPal 确认支付。
    """
    order_id: int
    provider: PaymentProvider
    payment_ref: str
    status: str
    client_secret: str | None = None
    approve_url: str | None = None


class PaymentConfirmRequest(BaseModel):
    """确认支付，payment_method_ref 为 Stripe 支付方式 ID（PayPal 不需要）"""
    payment_method_ref: str | None = Field(default=None, max_length=128)


class OrderStatusUpdateRequest(BaseModel):
    """管理员修改订单状态"""
    status: OrderStatus
    reason: str | None = Field(default=None, max_length=500)


class OrderEventData(BaseModel):
    """订单状态变更审计记录"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    canonical_type: str
    provider: PaymentProvider | None = None
    provider_event_id: str | None = None
    from_status: OrderStatus
    resulting_status: OrderStatus
    source: TransitionSource
    actor_id: int | None = None
    occurred_at: datetime
    created_at: datetime


class OrderEventsData(BaseModel):
    data: list[OrderEventData]
    count: int


# ============================================================
# 支付方式
# ============================================================


class PaymentMethodCreateRequest(BaseModel):
    """保存支付方式（渠道侧已经创建好的引用）"""
    provider: PaymentProvider
    payment_method_ref: str = Field(min_length=1, max_length=128)
    kind: str = Field(default="card", max_length=32)
    brand: str | None = Field(default=None, max_length=32)
    last4: str | None = Field(default=None, min_length=4, max_length=4)


class PaymentMethodData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider: PaymentProvider
    payment_method_ref: str
    kind: str
    brand: str | None = None
    last4: str | None = None
    created_at: datetime


class PaymentMethodsData(BaseModel):
    data: list[PaymentMethodData]
    count: int


# ============================================================
# Webhook
# ============================================================


class WebhookAck(BaseModel):
    """
    Webhook 确认响应

    - duplicate: 该事件已经处理过
    - applied: 是否引起了状态变更
    - reason: 未变更的原因（invalid_transition / order_not_found / unmapped 等）
    """
    received: bool = True
    event_id: str
    duplicate: bool = False
    applied: bool = False
    resulting_status: OrderStatus | None = None
    reason: str | None = None
