"""
基础模型模块

所有表的时间字段都使用带时区的 UTC 时间。
"""
from datetime import datetime, timezone

from sqlmodel import SQLModel


def utc_now() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


__all__ = ["SQLModel", "utc_now"]
