"""
支付方式模型模块
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import PaymentProvider

from .base import utc_now


class PaymentMethod(SQLModel, table=True):
    """
    用户保存的支付方式

    只保存渠道侧引用和展示信息（卡品牌、后四位），不保存卡号。
    渠道通知 method_detached 时对应记录会被删除。
    """
    __tablename__ = "payment_methods"
    __table_args__ = (
        UniqueConstraint(
            "provider", "payment_method_ref", name="uq_payment_methods_provider_ref"
        ),
    )
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    owner_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))
    payment_method_ref: str = Field(sa_column=Column(String(128), nullable=False))
    kind: str = Field(default="card", max_length=32)
    brand: str | None = Field(default=None, max_length=32)
    last4: str | None = Field(default=None, max_length=4)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
