"""
FastAPI 依赖注入模块

提供可复用的依赖项，用于路由处理函数中。

- SessionDep: 数据库会话
- CurrentPrincipal: 当前调用方（从 Bearer JWT 解析）
- AdminPrincipal: 当前调用方，且必须是管理员
- ProvidersDep: 支付渠道注册表（启动时构建，见 app/main.py）
- RawBody: 未解析的请求体（webhook 验签需要原始字节）
"""
from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from app.api.errors import forbidden, unauthorized
from app.api.schemas import TokenPayload
from app.core import security
from app.core.db import engine
from app.core.security import Principal
from app.enums import UserRole
from app.payments import ProviderRegistry

# auto_error=False: 缺少凭证时由 get_current_principal 统一返回 401
reusable_bearer = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    使用 yield 确保会话在请求结束后自动关闭。
    """
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[HTTPAuthorizationCredentials | None, Depends(reusable_bearer)]


def get_current_principal(token: TokenDep) -> Principal:
    """
    解析当前调用方

    Raises:
        AppError: token 缺失、无效、过期，或 sub 不是用户 ID 时返回 401
    """
    if token is None:
        raise unauthorized("Access token required")
    try:
        payload = security.decode_access_token(token.credentials)
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise unauthorized()
    if not token_data.sub:
        raise unauthorized()
    try:
        user_id = int(token_data.sub)
    except ValueError:
        raise unauthorized()
    return Principal(user_id=user_id, role=token_data.role)


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def get_admin_principal(principal: CurrentPrincipal) -> Principal:
    if principal.role != UserRole.admin:
        raise forbidden("Administrator role required")
    return principal


AdminPrincipal = Annotated[Principal, Depends(get_admin_principal)]


def get_providers(request: Request) -> ProviderRegistry:
    return request.app.state.providers


ProvidersDep = Annotated[ProviderRegistry, Depends(get_providers)]


async def get_raw_body(request: Request) -> bytes:
    return await request.body()


RawBody = Annotated[bytes, Depends(get_raw_body)]
