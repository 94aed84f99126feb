"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中。
这个 router 会被注册到主应用（app/main.py）上。

路由模块说明：
- orders: 订单相关（创建、查询、支付、取消、退款、管理员改状态）
- payment_methods: 支付方式（保存、查询、删除）
- webhooks: 支付渠道回调（Stripe、PayPal）
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from app.api.routes import (
    orders,  # 订单路由
    payment_methods,  # 支付方式路由
    utils,  # 工具路由
    webhooks,  # Webhook 路由
)

# 创建主 API 路由器
api_router = APIRouter()

# 每个模块的路径前缀在各自的 router 中定义
api_router.include_router(orders.router)  # /orders/*
api_router.include_router(payment_methods.router)  # /payment-methods/*
api_router.include_router(webhooks.router)  # /webhooks/*
api_router.include_router(utils.router)  # /utils/*
