"""Taler configuration objects.

Two layers:
    TalerServerSettings - mutable, persisted settings edited by operators.
    TalerPluginConfiguration - immutable snapshot built once at process start.

Rules:
    1. The snapshot is built exactly once per process (build_plugin_configuration).
    2. Provisioning and polling share the same snapshot by reference.
    3. Changing stored settings requires a restart to take effect.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from taler_gateway.taler.merchant.base import MAX_DIVISIBILITY, DiscoveredAsset

TALER_PAYMENT_TYPE = "Taler"
TALER_DISPLAY_NAME = "Taler"
SERVER_SETTINGS_KEY = "Taler_Server_Settings"
DEFAULT_INSTANCE_ID = "default"

TALER_LOGO_PATH = "/static/taler/taler-logo.svg"


def payment_method_id(asset_code: str) -> str:
    """Build the payment-method identifier for an asset."""
    return f"{asset_code}-{TALER_PAYMENT_TYPE}"


@dataclass(frozen=True)
class AssetConfig:
    """
    Runtime configuration of one enabled Taler asset.

    Attributes:
        asset_code: Currency code reported by the merchant backend (e.g. "CHF").
        display_name: Human readable name shown at checkout.
        divisibility: Decimal places used for order amounts.
        symbol: Optional currency symbol.
        merchant_base_url: Internal merchant backend URL used for API calls.
        merchant_public_base_url: Public URL wallets should reach, if different.
        merchant_instance_id: Merchant instance; "default" when unset.
        api_token: Instance API token (plain or "secret-token:" form).
        image_path: Logo shown on the checkout page.
    """

    asset_code: str
    display_name: str
    divisibility: int
    symbol: str | None = None
    merchant_base_url: str | None = None
    merchant_public_base_url: str | None = None
    merchant_instance_id: str | None = None
    api_token: str | None = None
    image_path: str | None = TALER_LOGO_PATH

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.asset_code or not self.asset_code.strip():
            raise ValueError("asset_code is required")
        if self.divisibility < 0 or self.divisibility > MAX_DIVISIBILITY:
            raise ValueError(f"divisibility must be between 0 and {MAX_DIVISIBILITY}")

    @property
    def payment_method_id(self) -> str:
        return payment_method_id(self.asset_code)

    @property
    def instance_id(self) -> str:
        """Instance id with the "default" fallback applied."""
        if self.merchant_instance_id and self.merchant_instance_id.strip():
            return self.merchant_instance_id.strip()
        return DEFAULT_INSTANCE_ID


@dataclass(frozen=True)
class TalerPluginConfiguration:
    """Read-only map of payment-method id to asset configuration."""

    assets: Mapping[str, AssetConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "assets", MappingProxyType(dict(self.assets)))

    def __len__(self) -> int:
        return len(self.assets)

    def get(self, payment_method_id: str) -> AssetConfig | None:
        return self.assets.get(payment_method_id)


@dataclass
class TalerAssetSettings:
    """One persisted asset entry."""

    asset_code: str
    display_name: str = ""
    divisibility: int = 2
    symbol: str | None = None
    enabled: bool = False
    is_manual: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TalerAssetSettings:
        return cls(
            asset_code=str(data.get("asset_code", "")),
            display_name=str(data.get("display_name") or ""),
            divisibility=int(data.get("divisibility", 2)),
            symbol=data.get("symbol"),
            enabled=bool(data.get("enabled", False)),
            is_manual=bool(data.get("is_manual", False)),
        )


@dataclass
class TalerServerSettings:
    """Persisted server-wide Taler settings."""

    merchant_base_url: str | None = None
    merchant_public_base_url: str | None = None
    merchant_instance_id: str | None = None
    api_token: str | None = None
    instance_password: str | None = None
    assets: list[TalerAssetSettings] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TalerServerSettings:
        return cls(
            merchant_base_url=data.get("merchant_base_url"),
            merchant_public_base_url=data.get("merchant_public_base_url"),
            merchant_instance_id=data.get("merchant_instance_id"),
            api_token=data.get("api_token"),
            instance_password=data.get("instance_password"),
            assets=[TalerAssetSettings.from_dict(a) for a in data.get("assets") or []],
        )

    def find_asset(self, asset_code: str) -> TalerAssetSettings | None:
        for asset in self.assets:
            if asset.asset_code.lower() == asset_code.lower():
                return asset
        return None

    @classmethod
    def from_env_settings(cls, settings: Any) -> TalerServerSettings:
        """Seed server settings from process environment settings."""
        return cls(
            merchant_base_url=settings.merchant_base_url,
            merchant_public_base_url=settings.merchant_public_base_url,
            merchant_instance_id=settings.merchant_instance_id,
            api_token=settings.api_token,
            instance_password=settings.instance_password,
            assets=parse_assets(settings.assets),
        )


def parse_assets(value: str) -> list[TalerAssetSettings]:
    """Parse ``CODE[:divisibility[:display name]]`` entries separated by commas.

    Assets listed this way are enabled and marked manual.
    """
    assets: list[TalerAssetSettings] = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = entry.split(":", 2)
        code = parts[0].strip()
        divisibility = int(parts[1]) if len(parts) > 1 and parts[1].strip() else 2
        display_name = parts[2].strip() if len(parts) > 2 else ""
        assets.append(
            TalerAssetSettings(
                asset_code=code,
                display_name=display_name or code,
                divisibility=divisibility,
                enabled=True,
                is_manual=True,
            )
        )
    return assets


def build_plugin_configuration(settings: TalerServerSettings) -> TalerPluginConfiguration:
    """Build the immutable runtime snapshot from stored settings.

    Only enabled assets are included. Every asset shares the server-wide
    merchant coordinates and credentials.
    """
    assets: dict[str, AssetConfig] = {}
    for asset in settings.assets:
        if not asset.enabled:
            continue
        config = AssetConfig(
            asset_code=asset.asset_code,
            display_name=asset.display_name.strip() or asset.asset_code,
            divisibility=asset.divisibility,
            symbol=asset.symbol,
            merchant_base_url=settings.merchant_base_url,
            merchant_public_base_url=settings.merchant_public_base_url,
            merchant_instance_id=settings.merchant_instance_id,
            api_token=settings.api_token,
        )
        assets[config.payment_method_id] = config
    return TalerPluginConfiguration(assets=assets)


def merge_discovered_assets(
    settings: TalerServerSettings, discovered: Iterable[DiscoveredAsset]
) -> tuple[int, int]:
    """Merge currencies discovered on the backend into the stored asset list.

    Known assets get their name, divisibility and symbol refreshed and keep
    their enabled flag. New assets are appended disabled.

    Returns:
        (added, updated) counts.
    """
    added = updated = 0
    for item in discovered:
        existing = settings.find_asset(item.asset_code)
        if existing is None:
            settings.assets.append(
                TalerAssetSettings(
                    asset_code=item.asset_code,
                    display_name=item.display_name,
                    divisibility=item.divisibility,
                    symbol=item.symbol,
                    enabled=False,
                    is_manual=False,
                )
            )
            added += 1
            continue
        existing.display_name = item.display_name
        existing.divisibility = item.divisibility
        existing.symbol = item.symbol
        existing.is_manual = False
        updated += 1
    return added, updated
