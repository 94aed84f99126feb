"""
身份凭证模块

身份认证由外部身份服务负责，本服务只消费它签发的 Bearer JWT：
- sub: 用户 ID
- role: 用户角色（user / admin），缺省为 user

create_access_token 用于本地开发和测试签发凭证。
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from app.core.config import settings
from app.enums import UserRole

ALGORITHM = "HS256"


@dataclass(frozen=True)
class Principal:
    """已认证的调用方"""

    user_id: int
    role: UserRole = UserRole.user

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


def create_access_token(
    subject: str | Any,
    expires_delta: timedelta | None = None,
    role: UserRole = UserRole.user,
) -> str:
    if expires_delta is None:
        expires_delta = timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject), "role": role.value}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> dict[str, Any]:
    """
    校验并解析 JWT

    Raises:
        jwt.InvalidTokenError: 签名错误、过期或格式错误
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
