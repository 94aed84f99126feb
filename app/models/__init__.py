"""
数据库模型定义模块

本模块使用 SQLModel 定义所有数据库表结构。

模型按功能拆分：
- order.py: 订单模型
- payment_method.py: 用户保存的支付方式
- payment_event.py: 支付事件、幂等台账、订单审计记录
"""
from sqlmodel import SQLModel

from .base import utc_now
from .order import Order
from .payment_event import OrderAuditEntry, PaymentEvent, ProcessedEvent
from .payment_method import PaymentMethod

__all__ = [
    "SQLModel",
    "utc_now",
    "Order",
    "PaymentMethod",
    "PaymentEvent",
    "ProcessedEvent",
    "OrderAuditEntry",
]
