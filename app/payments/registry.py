"""
支付渠道注册表

应用启动时按配置构建一次（见 app/main.py 的 lifespan），挂在 app.state 上，
通过依赖注入传给路由（app/api/deps.py 的 ProvidersDep）。
未配置凭证的渠道登记为 None，访问时返回 503。
"""
from __future__ import annotations

import logging

from app.api.errors import service_unavailable
from app.core.config import Settings
from app.enums import PaymentProvider

from .base import PaymentGateway
from .paypal_gateway import PayPalGateway
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self, gateways: dict[PaymentProvider, PaymentGateway | None]) -> None:
        self._gateways = gateways

    def is_available(self, provider: PaymentProvider) -> bool:
        return self._gateways.get(provider) is not None

    def get(self, provider: PaymentProvider | str) -> PaymentGateway:
        """
        获取渠道实现

        Raises:
            AppError: 渠道未配置（503）
        """
        provider = PaymentProvider(provider)
        gateway = self._gateways.get(provider)
        if gateway is None:
            raise service_unavailable(f"{provider.value} service is not available")
        return gateway

    def get_for_webhook(self, provider: PaymentProvider) -> tuple[PaymentGateway, str]:
        """获取渠道实现和 webhook 验签密钥，任一缺失都视为渠道未配置"""
        gateway = self.get(provider)
        if not gateway.webhook_secret:
            logger.error(f"{provider.value} webhook secret not configured")
            raise service_unavailable(f"{provider.value} webhook is not configured")
        return gateway, gateway.webhook_secret

    def close(self) -> None:
        for gateway in self._gateways.values():
            if isinstance(gateway, PayPalGateway):
                gateway.close()


def build_registry(settings: Settings) -> ProviderRegistry:
    gateways: dict[PaymentProvider, PaymentGateway | None] = {
        PaymentProvider.stripe: None,
        PaymentProvider.paypal: None,
    }

    if settings.STRIPE_SECRET_KEY:
        gateways[PaymentProvider.stripe] = StripeGateway(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    else:
        logger.warning("Stripe secret key not found, Stripe features will be disabled")

    if settings.PAYPAL_CLIENT_ID and settings.PAYPAL_CLIENT_SECRET:
        gateways[PaymentProvider.paypal] = PayPalGateway(
            client_id=settings.PAYPAL_CLIENT_ID,
            client_secret=settings.PAYPAL_CLIENT_SECRET,
            webhook_id=settings.PAYPAL_WEBHOOK_ID,
            base_url=settings.PAYPAL_API_BASE,
            timeout=settings.PAYMENT_HTTP_TIMEOUT_SECONDS,
            frontend_url=settings.FRONTEND_URL,
        )
    else:
        logger.warning("PayPal credentials not found, PayPal features will be disabled")

    return ProviderRegistry(gateways)
