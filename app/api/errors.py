"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。

错误码约定：HTTP 状态码 * 1000 + 序号，例如 409001 表示非法状态转换。

retryable 用于 webhook：
- True: 瞬时错误（版本冲突、渠道不可用、内部错误），支付渠道应重试
- False: 永久错误（签名错误、负载格式错误），重试也不会成功
"""
from __future__ import annotations

CODE_INVALID_TRANSITION = 409001
CODE_CONFLICT = 409002


class AppError(Exception):
    """
    应用自定义异常类

    使用示例：
        raise AppError(code=404101, message="Order not found", status_code=404)
    """

    def __init__(
        self,
        *,
        code: int,
        message: str,
        status_code: int = 400,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.retryable = retryable


def validation_error(message: str) -> AppError:
    return AppError(code=400001, message=message, status_code=400)


def unauthorized(message: str = "Could not validate credentials") -> AppError:
    return AppError(code=401001, message=message, status_code=401)


def forbidden(message: str = "You do not have permission to access this resource") -> AppError:
    return AppError(code=403001, message=message, status_code=403)


def not_found(message: str = "Resource not found") -> AppError:
    return AppError(code=404001, message=message, status_code=404)


def invalid_transition(message: str) -> AppError:
    """当前状态不在触发器允许的源状态集合中"""
    return AppError(code=CODE_INVALID_TRANSITION, message=message, status_code=409)


def conflict(message: str = "Order was modified concurrently") -> AppError:
    """
    乐观锁冲突：订单在读取之后被其他请求修改

    对 webhook 来说这是瞬时错误，重试时会基于最新状态重新判断。
    """
    return AppError(code=CODE_CONFLICT, message=message, status_code=409, retryable=True)


def signature_error(message: str = "Invalid webhook signature") -> AppError:
    return AppError(code=400101, message=message, status_code=400)


def service_unavailable(message: str) -> AppError:
    return AppError(code=503001, message=message, status_code=503, retryable=True)


def provider_error(message: str) -> AppError:
    """调用支付渠道 API 失败"""
    return AppError(code=502001, message=message, status_code=502, retryable=True)


def internal_error(message: str = "Internal server error") -> AppError:
    return AppError(code=500000, message=message, status_code=500, retryable=True)
