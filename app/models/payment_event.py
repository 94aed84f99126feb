"""
支付事件模型模块

定义 webhook 对账相关的数据库模型：
- PaymentEvent: 规范化后的渠道事件（只写一次，不修改）
- ProcessedEvent: 幂等台账，(provider, provider_event_id) 唯一
- OrderAuditEntry: 订单状态变更审计记录（只追加）
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import (
    CanonicalEventType,
    OrderStatus,
    PaymentProvider,
    TransitionSource,
)

from .base import utc_now


class PaymentEvent(SQLModel, table=True):
    """
    规范化支付事件

    字段说明：
    - provider / provider_event_id: 渠道及渠道事件 ID（联合唯一）
    - canonical_type: 规范化事件类型
    - native_type: 渠道原始事件类型（如 "payment_intent.succeeded"）
    - order_ref: 从渠道元数据中解析出的订单 ID（可能为空）
    - occurred_at: 事件在渠道侧发生的时间
    - raw_payload: 原始负载，仅用于审计和排查问题
    """
    __tablename__ = "payment_events"
    __table_args__ = (
        UniqueConstraint("provider", "provider_event_id", name="uq_payment_events_provider_event"),
    )
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))
    provider_event_id: str = Field(sa_column=Column(String(128), nullable=False))
    canonical_type: CanonicalEventType = Field(sa_column=Column(String(32), nullable=False))
    native_type: str = Field(max_length=128)
    order_ref: int | None = Field(
        default=None, sa_column=Column(BigInteger, index=True, nullable=True)
    )
    occurred_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    raw_payload: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    received_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class ProcessedEvent(SQLModel, table=True):
    """
    幂等台账

    每个 (provider, provider_event_id) 只会有一条记录。
    记录与对应的订单状态写入在同一事务中提交。
    resulting_status 为空表示该事件没有引起状态变更。
    """
    __tablename__ = "processed_events"
    __table_args__ = (
        UniqueConstraint(
            "provider", "provider_event_id", name="uq_processed_events_provider_event"
        ),
    )
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))
    provider_event_id: str = Field(sa_column=Column(String(128), nullable=False))
    applied_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    resulting_status: OrderStatus | None = Field(
        default=None, sa_column=Column(String(16), nullable=True)
    )


class OrderAuditEntry(SQLModel, table=True):
    """
    订单状态变更审计记录

    webhook 触发的变更记录 provider 和 provider_event_id；
    用户或管理员触发的变更记录 actor_id，canonical_type 为触发器名称。
    """
    __tablename__ = "order_audit_entries"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    provider: PaymentProvider | None = Field(
        default=None, sa_column=Column(String(16), nullable=True)
    )
    canonical_type: str = Field(max_length=32)
    provider_event_id: str | None = Field(default=None, max_length=128)
    from_status: OrderStatus = Field(sa_column=Column(String(16), nullable=False))
    resulting_status: OrderStatus = Field(sa_column=Column(String(16), nullable=False))
    source: TransitionSource = Field(sa_column=Column(String(16), nullable=False))
    actor_id: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    occurred_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
