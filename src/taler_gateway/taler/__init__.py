"""GNU Taler payment method.

Contains:
- Merchant backend client and pay URI normalization
- Payment-method handler (order provisioning)
- Settlement listener (background poller)
"""

from taler_gateway.taler.config import (
    AssetConfig,
    TalerPluginConfiguration,
    TalerServerSettings,
    build_plugin_configuration,
)
from taler_gateway.taler.merchant.client import TalerMerchantClient
from taler_gateway.taler.merchant.pay_uri import (
    normalize_to_wallet_pay_uri,
    rewrite_public_pay_uri,
)
from taler_gateway.taler.payments.handler import TalerPaymentMethodHandler
from taler_gateway.taler.plugin import TalerPlugin
from taler_gateway.taler.services.listener import TalerPaymentListener

__all__ = [
    "AssetConfig",
    "TalerPluginConfiguration",
    "TalerServerSettings",
    "build_plugin_configuration",
    "TalerMerchantClient",
    "normalize_to_wallet_pay_uri",
    "rewrite_public_pay_uri",
    "TalerPaymentMethodHandler",
    "TalerPlugin",
    "TalerPaymentListener",
]
