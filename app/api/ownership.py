"""
资源所有权校验

每种受保护的资源登记一个"查询所有者"函数：

    @register_owner_lookup(ResourceKind.order)
    def _order_owner(session, order_id) -> int | None: ...

新增受保护资源只需要登记一个函数，校验逻辑本身不需要改动。

校验顺序：
1. 调用方未认证 -> 401
2. 资源不存在 -> 404
3. 所有者不是调用方且调用方不是管理员 -> 403
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request
from sqlmodel import Session

from app import crud
from app.api.deps import CurrentPrincipal, SessionDep
from app.api.errors import forbidden, not_found, unauthorized, validation_error
from app.core.security import Principal
from app.enums import ResourceKind

OwnerLookup = Callable[[Session, int], int | None]

_OWNER_LOOKUPS: dict[ResourceKind, OwnerLookup] = {}


def register_owner_lookup(kind: ResourceKind) -> Callable[[OwnerLookup], OwnerLookup]:
    def decorator(fn: OwnerLookup) -> OwnerLookup:
        _OWNER_LOOKUPS[kind] = fn
        return fn

    return decorator


@register_owner_lookup(ResourceKind.order)
def _order_owner(session: Session, order_id: int) -> int | None:
    return crud.orders.get_owner_id(session=session, order_id=order_id)


@register_owner_lookup(ResourceKind.payment_method)
def _payment_method_owner(session: Session, method_id: int) -> int | None:
    return crud.payment_methods.get_owner_id(session=session, method_id=method_id)


def authorize(
    *,
    session: Session,
    principal: Principal | None,
    kind: ResourceKind,
    resource_id: int,
) -> None:
    """
    校验调用方是否可以操作该资源

    Raises:
        AppError: 401 / 404 / 403
    """
    if principal is None:
        raise unauthorized()

    lookup = _OWNER_LOOKUPS.get(kind)
    if lookup is None:
        raise validation_error(f"Unsupported resource type: {kind.value}")

    owner_id = lookup(session, resource_id)
    if owner_id is None:
        raise not_found(f"{kind.value} not found")
    if owner_id != principal.user_id and not principal.is_admin:
        raise forbidden()


def require_owner(kind: ResourceKind, param: str = "id") -> Callable[..., int]:
    """
    生成 FastAPI 依赖：从路径参数 param 中取资源 ID 并校验所有权，返回资源 ID

    使用示例：
        @router.get("/{order_id}")
        def get_order(order_id: Annotated[int, Depends(require_owner(ResourceKind.order, "order_id"))]):
            ...
    """

    def dependency(request: Request, session: SessionDep, principal: CurrentPrincipal) -> int:
        raw = request.path_params.get(param)
        try:
            resource_id = int(raw)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise validation_error("Invalid resource id")
        authorize(session=session, principal=principal, kind=kind, resource_id=resource_id)
        return resource_id

    return dependency


OwnedOrderId = Annotated[int, Depends(require_owner(ResourceKind.order, "order_id"))]
OwnedPaymentMethodId = Annotated[
    int, Depends(require_owner(ResourceKind.payment_method, "method_id"))
]
