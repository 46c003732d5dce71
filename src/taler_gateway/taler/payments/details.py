"""Detail blobs stored by the Taler payment method.

OrderIntent lives in the invoice's payment prompt; SettlementDetails is attached
to the settled payment. Both are immutable once written and serialize to plain
JSON (amounts as strings).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any


@dataclass(frozen=True)
class OrderIntent:
    """Remote order created for one invoice and asset.

    ``order_id`` is the join key between the prompt, the remote order and the
    recorded payment.
    """

    order_id: str
    taler_pay_uri: str
    asset_code: str
    amount: Decimal
    merchant_base_url: str | None = None
    merchant_instance_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "taler_pay_uri": self.taler_pay_uri,
            "asset_code": self.asset_code,
            "amount": f"{self.amount:f}",
            "merchant_base_url": self.merchant_base_url,
            "merchant_instance_id": self.merchant_instance_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrderIntent:
        """Parse a stored blob. Raises ValueError when it is incomplete."""
        order_id = _required_str(data, "order_id")
        return cls(
            order_id=order_id,
            taler_pay_uri=_required_str(data, "taler_pay_uri"),
            asset_code=_required_str(data, "asset_code"),
            amount=_decimal(data.get("amount")),
            merchant_base_url=data.get("merchant_base_url") or None,
            merchant_instance_id=data.get("merchant_instance_id") or None,
        )


@dataclass(frozen=True)
class SettlementDetails:
    """Payment detail recorded when an order is first seen paid."""

    order_id: str
    asset_code: str
    amount: Decimal
    taler_pay_uri: str | None = None
    merchant_base_url: str | None = None
    merchant_instance_id: str | None = None

    @classmethod
    def from_intent(cls, intent: OrderIntent) -> SettlementDetails:
        return cls(
            order_id=intent.order_id,
            asset_code=intent.asset_code,
            amount=intent.amount,
            taler_pay_uri=intent.taler_pay_uri,
            merchant_base_url=intent.merchant_base_url,
            merchant_instance_id=intent.merchant_instance_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "asset_code": self.asset_code,
            "amount": f"{self.amount:f}",
            "taler_pay_uri": self.taler_pay_uri,
            "merchant_base_url": self.merchant_base_url,
            "merchant_instance_id": self.merchant_instance_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SettlementDetails:
        return cls(
            order_id=_required_str(data, "order_id"),
            asset_code=_required_str(data, "asset_code"),
            amount=_decimal(data.get("amount")),
            taler_pay_uri=data.get("taler_pay_uri") or None,
            merchant_base_url=data.get("merchant_base_url") or None,
            merchant_instance_id=data.get("merchant_instance_id") or None,
        )


def _required_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} is required")
    return value


def _decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValueError("amount is required")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"invalid amount: {value!r}") from e
