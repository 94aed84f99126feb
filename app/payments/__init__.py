"""
支付渠道模块

- base.py: 渠道能力接口（PaymentGateway）
- stripe_gateway.py / paypal_gateway.py: 两个渠道的实现
- registry.py: 启动时按配置构建的渠道注册表
"""
from .base import PaymentGateway, PaymentIntentResult, ProviderNativeEvent, RefundResult
from .registry import ProviderRegistry, build_registry

__all__ = [
    "PaymentGateway",
    "PaymentIntentResult",
    "ProviderNativeEvent",
    "ProviderRegistry",
    "RefundResult",
    "build_registry",
]
