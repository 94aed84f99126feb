"""
支付方式路由模块

- 保存支付方式（渠道侧已创建的引用）
- 查询当前用户的支付方式
- 删除支付方式：先在渠道侧解绑，再删除本地记录
"""
from __future__ import annotations

import logging

from fastapi import APIRouter
from sqlalchemy.exc import IntegrityError

from app import crud
from app.api.deps import CurrentPrincipal, ProvidersDep, SessionDep
from app.api.errors import AppError, not_found
from app.api.ownership import OwnedPaymentMethodId
from app.api.schemas import (
    ApiEnvelope,
    Message,
    PaymentMethodCreateRequest,
    PaymentMethodData,
    PaymentMethodsData,
)
from app.models import PaymentMethod

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment-methods", tags=["payment-methods"])


@router.post("", response_model=ApiEnvelope, status_code=201)
def create_payment_method(
    session: SessionDep, principal: CurrentPrincipal, body: PaymentMethodCreateRequest
) -> ApiEnvelope:
    """
    保存支付方式

    同一渠道引用只能保存一次，重复保存返回 409101。

    请求路径: POST /api/v1/payment-methods
    """
    method = PaymentMethod(
        owner_id=principal.user_id,
        provider=body.provider,
        payment_method_ref=body.payment_method_ref,
        kind=body.kind,
        brand=body.brand,
        last4=body.last4,
    )
    try:
        method = crud.payment_methods.create(session=session, method=method)
    except IntegrityError:
        session.rollback()
        raise AppError(code=409101, message="Payment method already saved", status_code=409)
    return ApiEnvelope(data=PaymentMethodData.model_validate(method))


@router.get("", response_model=ApiEnvelope)
def list_payment_methods(session: SessionDep, principal: CurrentPrincipal) -> ApiEnvelope:
    """
    获取当前用户的支付方式

    请求路径: GET /api/v1/payment-methods
    """
    rows = crud.payment_methods.list_for_owner(session=session, owner_id=principal.user_id)
    data = [PaymentMethodData.model_validate(m) for m in rows]
    return ApiEnvelope(data=PaymentMethodsData(data=data, count=len(data)))


@router.delete("/{method_id}", response_model=ApiEnvelope)
def delete_payment_method(
    session: SessionDep, providers: ProvidersDep, method_id: OwnedPaymentMethodId
) -> ApiEnvelope:
    """
    删除支付方式

    先在渠道侧解绑，成功后删除本地记录；渠道调用失败时本地记录保留。

    请求路径: DELETE /api/v1/payment-methods/{method_id}
    """
    method = crud.payment_methods.get(session=session, method_id=method_id)
    if method is None:
        raise not_found("Payment method not found")

    providers.get(method.provider).detach_method(method.payment_method_ref)
    session.delete(method)
    session.commit()
    logger.info(f"Payment method {method_id} deleted")
    return ApiEnvelope(data=Message(message="Payment method deleted"))
