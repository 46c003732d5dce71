"""Merchant backend client."""

from taler_gateway.taler.merchant.base import (
    BankAccount,
    DiscoveredAsset,
    MerchantApiError,
    MerchantConfig,
    MerchantResponseError,
    OrderStatus,
    TalerError,
    TokenResponse,
)
from taler_gateway.taler.merchant.client import TalerMerchantClient

__all__ = [
    "BankAccount",
    "DiscoveredAsset",
    "MerchantApiError",
    "MerchantConfig",
    "MerchantResponseError",
    "OrderStatus",
    "TalerError",
    "TokenResponse",
    "TalerMerchantClient",
]
