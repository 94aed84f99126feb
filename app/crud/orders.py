"""订单 CRUD 操作"""
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from sqlalchemy import update
from sqlmodel import Session, func, select

from app.enums import OrderStatus
from app.models import Order, utc_now


def get(*, session: Session, order_id: int, for_update: bool = False) -> Order | None:
    """根据 ID 查询订单，for_update=True 时加行锁"""
    stmt = select(Order).where(Order.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def get_owner_id(*, session: Session, order_id: int) -> int | None:
    """查询订单所有者"""
    return session.exec(select(Order.owner_id).where(Order.id == order_id)).first()


def create(*, session: Session, order: Order) -> Order:
    """保存新订单"""
    session.add(order)
    session.commit()
    session.refresh(order)
    return order


def list_for_owner(
    *,
    session: Session,
    owner_id: int,
    status: OrderStatus | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Order], int]:
    """分页查询用户订单，按创建时间倒序"""
    conditions = [Order.owner_id == owner_id]
    if status is not None:
        conditions.append(Order.status == status.value)

    count = session.exec(select(func.count()).select_from(Order).where(*conditions)).one()
    rows = session.exec(
        select(Order)
        .where(*conditions)
        .order_by(Order.created_at.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return list(rows), count


def stats_for_owner(*, session: Session, owner_id: int) -> dict[str, Any]:
    """按状态统计订单数量和金额"""
    rows = session.exec(
        select(Order.status, func.count(), func.coalesce(func.sum(Order.total), 0))
        .where(Order.owner_id == owner_id)
        .group_by(Order.status)
    ).all()

    status_counts = {s.value: 0 for s in OrderStatus}
    total_orders = 0
    total_spent = Decimal("0.00")
    for status, count, amount in rows:
        status_counts[str(status)] = count
        total_orders += count
        total_spent += Decimal(str(amount))

    total_spent = total_spent.quantize(Decimal("0.01"))
    average = (total_spent / total_orders).quantize(Decimal("0.01")) if total_orders else Decimal("0.00")
    return {
        "total_orders": total_orders,
        "total_spent": total_spent,
        "status_counts": status_counts,
        "average_order_value": average,
    }


def compare_and_set(
    *,
    session: Session,
    order: Order,
    expected_version: int,
    values: Mapping[str, Any],
) -> bool:
    """
    带版本号检查的条件更新

    只有数据库中的 version 仍等于 expected_version 时才写入，并把 version 加 1。
    返回 False 表示订单已被其他请求修改。不提交事务。
    """
    stmt = (
        update(Order)
        .where(Order.id == order.id, Order.version == expected_version)
        .values(**values, version=expected_version + 1, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)  # type: ignore[call-overload]
    if result.rowcount != 1:
        return False
    session.refresh(order)
    return True
