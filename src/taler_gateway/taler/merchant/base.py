"""Result types and errors for the Taler merchant backend API."""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal

BODY_SNIPPET_LENGTH = 300
MAX_DIVISIBILITY = 18


@dataclass(frozen=True)
class DiscoveredAsset:
    """Currency advertised by the merchant backend ``/config``."""

    asset_code: str
    display_name: str
    divisibility: int = 2
    symbol: str | None = None


@dataclass(frozen=True)
class BankAccount:
    """Wire account configured on a merchant instance."""

    payto_uri: str
    h_wire: str
    active: bool


@dataclass(frozen=True)
class OrderStatus:
    """Remote order state. Never cached; fetched fresh on each poll."""

    order_id: str
    paid: bool
    taler_pay_uri: str | None = None
    amount: Decimal | None = None
    currency: str | None = None


@dataclass(frozen=True)
class MerchantConfig:
    """Subset of merchant ``/config`` relevant for provisioning."""

    self_provisioning: bool = False


@dataclass(frozen=True)
class TokenResponse:
    """Access token issued by the merchant backend."""

    access_token: str


class TalerError(Exception):
    """Base class for Taler integration errors."""


class MerchantApiError(TalerError):
    """Raised when the merchant backend answers with a non-2xx status."""

    def __init__(
        self,
        operation: str,
        status_code: int,
        uri: str,
        body: str = "",
        reason: str = "",
    ):
        self.operation = operation
        self.status_code = status_code
        self.uri = uri
        self.body = body[:BODY_SNIPPET_LENGTH]
        self.reason = reason
        self.body_is_json, self.code = _parse_error_body(body)
        super().__init__(
            f"Taler merchant {operation} failed with {status_code} ({reason}) "
            f"at {uri}. Body: {self.body}"
        )


class MerchantResponseError(TalerError):
    """Raised when a successful response lacks a required field."""


def _parse_error_body(body: str) -> tuple[bool, int | None]:
    """Return whether the body is a JSON object, and its numeric ``code``."""
    if not body:
        return False, None
    try:
        data = json.loads(body)
    except ValueError:
        return False, None
    if not isinstance(data, dict):
        return False, None
    code = data.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        return True, None
    return True, code
