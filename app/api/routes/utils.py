"""
工具路由模块

提供健康检查等运维端点。
"""
from fastapi import APIRouter
from sqlmodel import select

from app.api.deps import ProvidersDep, SessionDep
from app.api.schemas import ApiEnvelope
from app.enums import PaymentProvider

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
def health_check(session: SessionDep) -> bool:
    """
    健康检查端点

    数据库可以连接时返回 True，用于负载均衡器和容器编排系统的探活。

    请求路径: GET /api/v1/utils/health-check/
    """
    session.exec(select(1))
    return True


@router.get("/providers", response_model=ApiEnvelope)
def provider_status(providers: ProvidersDep) -> ApiEnvelope:
    """
    各支付渠道是否已配置

    请求路径: GET /api/v1/utils/providers
    """
    return ApiEnvelope(data={p.value: providers.is_available(p) for p in PaymentProvider})
