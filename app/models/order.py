"""
订单模型模块

定义订单相关的数据库模型。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, Integer, Numeric, String, Text
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import OrderStatus, PaymentProvider, PaymentStatus

from .base import utc_now


class Order(SQLModel, table=True):
    """
    订单模型

    字段说明：
    - id: 主键（Snowflake ID）
    - order_number: 订单号（唯一，面向用户展示，创建后不可修改）
    - owner_id: 下单用户 ID（外部身份服务中的用户，创建后不可修改）
    - items: 商品列表 [{"product_id": ..., "quantity": ...}]
    - subtotal / tax / shipping_cost / total: 金额（Decimal，创建时 total = 三者之和）
    - status: 订单状态，只能通过状态机变更
    - payment_status: 支付状态
    - payment_provider: 支付渠道（stripe / paypal）
    - payment_method_ref: 渠道侧的支付引用（PaymentIntent ID / PayPal 订单 ID）
    - payment_capture_ref: 支付成功时渠道回传的收款引用，退款时使用
    - notes: 备注，只追加（例如取消原因）
    - version: 版本号，每次状态写入加 1，用于乐观锁
    """
    __tablename__ = "orders"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_number: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False)
    )
    owner_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))

    items: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    shipping_address: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    billing_address: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    subtotal: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    tax: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    shipping_cost: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    total: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    currency: str = Field(default="USD", max_length=8)

    status: OrderStatus = Field(
        default=OrderStatus.pending, sa_column=Column(String(16), index=True, nullable=False)
    )
    payment_status: PaymentStatus = Field(
        default=PaymentStatus.unpaid, sa_column=Column(String(16), nullable=False)
    )
    payment_provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))
    payment_method_ref: str | None = Field(
        default=None, sa_column=Column(String(128), index=True, nullable=True)
    )
    payment_capture_ref: str | None = Field(default=None, max_length=128)

    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
