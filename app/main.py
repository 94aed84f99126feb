"""
FastAPI 应用主入口

这是应用的启动文件，负责：
1. 创建 FastAPI 应用实例，启动时构建支付渠道注册表
2. 配置全局中间件（CORS、Sentry）
3. 注册全局异常处理器
4. 注册 API 路由

运行方式：
    uvicorn app.main:app --reload  # 开发模式
    fastapi dev app/main.py  # 或使用 FastAPI CLI
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk  # Sentry 错误监控
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError  # 请求验证错误
from fastapi.middleware.cors import CORSMiddleware  # CORS 中间件
from fastapi.responses import JSONResponse  # JSON 响应
from fastapi.routing import APIRoute  # 路由类型

from app.api.errors import AppError
from app.api.main import api_router
from app.core.config import settings
from app.payments import build_registry

logger = logging.getLogger(__name__)

RETRYABLE_HEADER = "X-Retryable"


def custom_generate_unique_id(route: APIRoute) -> str:
    """
    自定义 OpenAPI 操作 ID 生成函数

    格式：{tag}-{route_name}，例如 "orders-create_order"
    """
    return f"{route.tags[0]}-{route.name}"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    应用生命周期

    启动时按配置构建一次支付渠道注册表，挂在 app.state.providers 上，
    关闭时释放渠道客户端持有的连接。
    """
    app.state.providers = build_registry(settings)
    try:
        yield
    finally:
        app.state.providers.close()


# 初始化 Sentry 错误监控（仅在生产/测试环境）
if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":  # pragma: no cover
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

# 创建 FastAPI 应用实例
app = FastAPI(
    title=settings.PROJECT_NAME,  # API 文档标题
    openapi_url=f"{settings.API_V1_STR}/openapi.json",  # OpenAPI 规范 URL
    generate_unique_id_function=custom_generate_unique_id,  # 自定义操作 ID
    lifespan=lifespan,
)


def _error_response(status_code: int, code: Any, message: str, retryable: bool, data: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": message, "data": data},
        headers={RETRYABLE_HEADER: "true" if retryable else "false"},
    )


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    """
    应用自定义异常处理器

    捕获所有 AppError 异常，返回统一的错误响应格式。
    X-Retryable 告诉调用方（主要是支付渠道的 webhook 投递）重试是否有意义。
    """
    return _error_response(exc.status_code, exc.code, exc.message, exc.retryable)


@app.exception_handler(HTTPException)
async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """
    HTTP 异常处理器

    捕获 FastAPI 的 HTTPException，转换为统一的响应格式。
    支持两种格式的 detail：
    1. 字典格式：{"code": 123, "message": "错误消息"}
    2. 字符串格式：自动生成错误码（状态码 * 1000）
    """
    payload: dict[str, Any]
    if isinstance(exc.detail, dict) and {"code", "message"} <= set(exc.detail.keys()):
        payload = {"code": exc.detail.get("code"), "message": exc.detail.get("message")}
    else:
        payload = {"code": exc.status_code * 1000, "message": str(exc.detail)}
    return _error_response(
        exc.status_code, payload["code"], payload["message"], retryable=exc.status_code >= 500
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """
    请求验证错误处理器

    捕获 Pydantic 的验证错误（如字段类型错误、必填字段缺失等），
    返回详细的验证错误信息。
    """
    return _error_response(
        422,
        422000,
        "Validation error",
        retryable=False,
        data={"errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """未预期的异常：记录堆栈，返回通用 500，不暴露内部信息"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return _error_response(500, 500000, "Internal server error", retryable=True)


# 配置 CORS（跨域资源共享）中间件
if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,  # 允许的源（域名列表）
        allow_credentials=True,  # 允许携带凭证（如 cookies）
        allow_methods=["*"],  # 允许所有 HTTP 方法
        allow_headers=["*"],  # 允许所有请求头
    )

# 注册 API 路由，所有路由都会添加 /api/v1 前缀
app.include_router(api_router, prefix=settings.API_V1_STR)
