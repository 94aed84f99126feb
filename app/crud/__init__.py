"""CRUD 操作模块（实体存储）"""
from . import events, orders, payment_methods

__all__ = ["events", "orders", "payment_methods"]
