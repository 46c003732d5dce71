"""HTTP client for the GNU Taler merchant backend.

Maps typed operations onto the merchant REST API:
- Discovery (/config): currencies and self-provisioning flag
- Provisioning: instance creation and access tokens
- Orders: creation and status
- Wire accounts: list, add, delete

Private endpoints exist in two URL layouts. A base URL ending in
``/instances/{id}`` is instance-scoped and private paths hang directly off it;
any other base URL is the multi-instance root and private paths are built as
``/instances/{id}/private/...``. Order calls try the layout implied by the base
URL first and fall back to the other one on 404.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable
from urllib.parse import quote, urljoin, urlsplit

import httpx

from taler_gateway.taler.merchant.base import (
    MAX_DIVISIBILITY,
    BankAccount,
    DiscoveredAsset,
    MerchantApiError,
    MerchantConfig,
    MerchantResponseError,
    OrderStatus,
    TokenResponse,
)

logger = logging.getLogger(__name__)

# Defaults sent when self-provisioning an instance, in microseconds
DEFAULT_PAY_DELAY_US = 15 * 60 * 1_000_000
DEFAULT_REFUND_DELAY_US = 7 * 24 * 60 * 60 * 1_000_000
DEFAULT_WIRE_TRANSFER_DELAY_US = 60 * 60 * 1_000_000


def build_uri(base_url: str, relative: str) -> str:
    """Join a relative endpoint onto a base URL treated as a directory."""
    return urljoin(base_url.rstrip("/") + "/", relative)


def is_instance_base_url(base_url: str) -> bool:
    """True when the base URL path ends with ``/instances/{id}``."""
    try:
        parsed = urlsplit(base_url)
    except ValueError:
        return False
    if not parsed.scheme or not parsed.netloc:
        return False
    segments = [s.strip() for s in parsed.path.split("/") if s.strip()]
    return len(segments) >= 2 and segments[-2].lower() == "instances"


def server_root_base_url(base_url: str) -> str:
    """Strip the path from a base URL, keeping scheme, host and port."""
    parsed = urlsplit(base_url)
    return f"{parsed.scheme}://{parsed.netloc}/"


def build_instance_private_uri(base_url: str, instance_id: str, relative: str) -> str:
    """Preferred private endpoint for the layout implied by ``base_url``."""
    if is_instance_base_url(base_url):
        return build_uri(base_url, f"private/{relative}")
    return build_uri(base_url, f"instances/{instance_id}/private/{relative}")


def build_alternative_instance_private_uri(
    base_url: str, instance_id: str, relative: str
) -> str:
    """Private endpoint for the other URL layout, rooted at the same host."""
    if is_instance_base_url(base_url):
        return build_uri(
            server_root_base_url(base_url),
            f"instances/{instance_id}/private/{relative}",
        )
    return build_uri(base_url, f"private/{relative}")


def authorization_header(api_token: str | None) -> dict[str, str]:
    """Build the Authorization header for private merchant APIs.

    Pre-formed ``Bearer ...`` values pass through unchanged. Plain tokens and
    legacy ``secret-token:...`` credentials are wrapped as bearer tokens. An
    empty token yields no header.
    """
    if not api_token or not api_token.strip():
        return {}
    token = api_token.strip()
    if token.lower().startswith("bearer "):
        return {"Authorization": token}
    return {"Authorization": f"Bearer {token}"}


def parse_amount(value: Any) -> tuple[Decimal | None, str | None]:
    """Parse a ``CURRENCY:VALUE`` amount string into (amount, currency)."""
    if not isinstance(value, str) or ":" not in value:
        return None, None
    currency, raw_amount = value.split(":", 1)
    try:
        amount = Decimal(raw_amount.strip())
    except InvalidOperation:
        return None, currency
    if not amount.is_finite():
        return None, currency
    return amount, currency


def parse_order_status(order_id: str, payload: dict[str, Any]) -> OrderStatus:
    """Interpret an order status document.

    Either ``paid: true`` or ``order_status == "paid"`` (any case) marks the
    order as paid.
    """
    paid = payload.get("paid") is True
    if not paid:
        order_status = payload.get("order_status")
        paid = isinstance(order_status, str) and order_status.lower() == "paid"

    pay_uri = payload.get("taler_pay_uri")
    amount, currency = parse_amount(payload.get("amount"))
    return OrderStatus(
        order_id=order_id,
        paid=paid,
        taler_pay_uri=pay_uri if isinstance(pay_uri, str) else None,
        amount=amount,
        currency=currency,
    )


class TalerMerchantClient:
    """Stateless request/response mapping onto the merchant HTTP API.

    The client holds no per-merchant state; every call receives the base URL,
    instance and credentials it needs.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 30.0,
    ):
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def get_currencies(self, base_url: str) -> list[DiscoveredAsset]:
        """Discover currencies advertised by ``/config``.

        Discovery never raises: failures are logged and yield an empty list.
        """
        if not base_url or not base_url.strip():
            return []

        payload = await self._get_config_document(base_url)
        if payload is None:
            return []

        currencies = payload.get("currencies")
        if not isinstance(currencies, dict):
            return []

        result: list[DiscoveredAsset] = []
        for code, spec in currencies.items():
            if not isinstance(spec, dict):
                spec = {}
            name = spec.get("name")
            fraction = spec.get("fraction")
            symbol = spec.get("symbol")
            if not isinstance(fraction, int) or isinstance(fraction, bool):
                fraction = 2
            elif fraction < 0 or fraction > MAX_DIVISIBILITY:
                logger.warning(
                    "Skipping Taler currency %s: fraction %d outside 0..%d",
                    code,
                    fraction,
                    MAX_DIVISIBILITY,
                )
                continue
            result.append(
                DiscoveredAsset(
                    asset_code=code,
                    display_name=name if isinstance(name, str) and name.strip() else code,
                    divisibility=fraction,
                    symbol=symbol if isinstance(symbol, str) else None,
                )
            )
        return result

    async def get_config(self, base_url: str) -> MerchantConfig:
        """Read the self-provisioning flag. Any failure reads as disabled."""
        if not base_url or not base_url.strip():
            return MerchantConfig(self_provisioning=False)

        payload = await self._get_config_document(base_url)
        if payload is None:
            return MerchantConfig(self_provisioning=False)
        return MerchantConfig(self_provisioning=payload.get("have_self_provisioning") is True)

    async def _get_config_document(self, base_url: str) -> dict[str, Any] | None:
        uri = build_uri(base_url, "config")
        try:
            response = await self.http.get(uri)
        except httpx.HTTPError as e:
            logger.warning("Taler merchant /config unreachable at %s: %s", uri, e)
            return None

        if not response.is_success:
            logger.warning("Taler merchant /config returned %s", response.status_code)
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Taler merchant /config returned a non-JSON body")
            return None
        if not isinstance(payload, dict):
            logger.warning("Taler merchant /config returned an unexpected document")
            return None
        return payload

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def create_instance(self, base_url: str, instance_id: str, password: str) -> None:
        """Create a merchant instance through the management API.

        Falls back to the legacy ``/instances`` endpoint when the management
        endpoint does not exist. An instance that already exists (409) is not
        an error.
        """
        payload = {
            "id": instance_id,
            "name": instance_id,
            "auth": {"method": "token", "password": password},
            "address": {"country": "ZZ"},
            "jurisdiction": {"country": "ZZ"},
            "default_pay_delay": {"d_us": DEFAULT_PAY_DELAY_US},
            "default_refund_delay": {"d_us": DEFAULT_REFUND_DELAY_US},
            "default_wire_transfer_delay": {"d_us": DEFAULT_WIRE_TRANSFER_DELAY_US},
            "use_stefan": False,
        }

        response = await self._send_with_fallback(
            "POST",
            [build_uri(base_url, "management/instances"), build_uri(base_url, "instances")],
            "create instance",
            json=payload,
            accept_statuses={409},
        )
        if response.status_code == 409:
            logger.info("Taler instance %s already exists", instance_id)
            return
        logger.info("Taler instance %s created", instance_id)

    async def create_token(
        self,
        base_url: str,
        instance_id: str,
        password: str,
        scope: str,
    ) -> TokenResponse:
        """Request a non-expiring, non-refreshable access token."""
        payload = {
            "scope": scope,
            "refreshable": False,
            "duration": {"d_us": "forever"},
        }
        uri = build_instance_private_uri(base_url, instance_id, "token")
        response = await self.http.post(
            uri,
            json=payload,
            auth=httpx.BasicAuth(instance_id, password),
        )
        _ensure_success(response, "create token")

        try:
            data = response.json()
        except ValueError:
            data = None
        token = data.get("access_token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token.strip():
            raise MerchantResponseError("Merchant backend did not return access_token")
        return TokenResponse(access_token=token)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def create_order(
        self,
        base_url: str,
        instance_id: str,
        api_token: str,
        order_id: str,
        summary: str,
        amount: str,
    ) -> str:
        """Create an order and return the order id confirmed by the backend.

        Args:
            amount: Taler amount string, ``CURRENCY:VALUE``.

        Returns:
            The echoed ``order_id``, or ``order_id`` if the backend echoes none.
        """
        payload = {
            "order_id": order_id,
            "order": {"summary": summary, "amount": amount},
        }
        response = await self._send_with_fallback(
            "POST",
            self._order_candidates(base_url, instance_id, "orders"),
            "create order",
            json=payload,
            headers=authorization_header(api_token),
        )

        try:
            data = response.json()
        except ValueError:
            return order_id
        if isinstance(data, dict) and isinstance(data.get("order_id"), str):
            return data["order_id"]
        return order_id

    async def get_order_status(
        self,
        base_url: str,
        instance_id: str,
        api_token: str,
        order_id: str,
    ) -> OrderStatus:
        """Fetch the current state of an order."""
        response = await self._send_with_fallback(
            "GET",
            self._order_candidates(base_url, instance_id, f"orders/{quote(order_id, safe='')}"),
            "get order status",
            headers=authorization_header(api_token),
        )

        try:
            data = response.json()
        except ValueError as e:
            raise MerchantResponseError(f"Order {order_id} status is not valid JSON") from e
        if not isinstance(data, dict):
            raise MerchantResponseError(f"Order {order_id} status is not a JSON object")
        return parse_order_status(order_id, data)

    @staticmethod
    def _order_candidates(base_url: str, instance_id: str, relative: str) -> list[str]:
        return [
            build_instance_private_uri(base_url, instance_id, relative),
            build_alternative_instance_private_uri(base_url, instance_id, relative),
        ]

    # ------------------------------------------------------------------
    # Wire accounts
    # ------------------------------------------------------------------

    async def get_bank_accounts(
        self, base_url: str, instance_id: str, api_token: str
    ) -> list[BankAccount]:
        """List wire accounts of an instance."""
        response = await self.http.get(
            build_instance_private_uri(base_url, instance_id, "accounts"),
            headers=authorization_header(api_token),
        )
        _ensure_success(response, "get bank accounts")

        try:
            data = response.json()
        except ValueError as e:
            raise MerchantResponseError("Bank account list is not valid JSON") from e
        accounts = data.get("accounts") if isinstance(data, dict) else None
        if not isinstance(accounts, list):
            return []

        result: list[BankAccount] = []
        for account in accounts:
            if not isinstance(account, dict):
                continue
            payto = account.get("payto_uri")
            h_wire = account.get("h_wire")
            if not isinstance(payto, str) or not payto.strip():
                continue
            if not isinstance(h_wire, str) or not h_wire.strip():
                continue
            result.append(
                BankAccount(payto_uri=payto, h_wire=h_wire, active=account.get("active") is True)
            )
        return result

    async def add_bank_account(
        self,
        base_url: str,
        instance_id: str,
        api_token: str,
        payto_uri: str,
        credit_facade_url: str | None = None,
    ) -> None:
        """Register a payto wire account on an instance."""
        payload: dict[str, Any] = {"payto_uri": payto_uri}
        if credit_facade_url and credit_facade_url.strip():
            payload["credit_facade_url"] = credit_facade_url.strip()

        response = await self.http.post(
            build_instance_private_uri(base_url, instance_id, "accounts"),
            json=payload,
            headers=authorization_header(api_token),
        )
        _ensure_success(response, "add bank account")

    async def delete_bank_account(
        self, base_url: str, instance_id: str, api_token: str, h_wire: str
    ) -> None:
        """Remove a wire account, identified by its ``h_wire`` hash."""
        response = await self.http.delete(
            build_instance_private_uri(
                base_url, instance_id, f"accounts/{quote(h_wire, safe='')}"
            ),
            headers=authorization_header(api_token),
        )
        _ensure_success(response, "delete bank account")

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    async def _send_with_fallback(
        self,
        method: str,
        candidates: Iterable[str],
        operation: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
        accept_statuses: set[int] | None = None,
    ) -> httpx.Response:
        """Try candidate URIs in order.

        Stops at the first 2xx (or accepted) response, or at the first
        non-404 rejection. When every candidate answers 404, the first 404 is
        reported.
        """
        accept_statuses = accept_statuses or set()
        not_found: httpx.Response | None = None
        tried: list[str] = []

        for uri in candidates:
            if uri in tried:
                continue
            tried.append(uri)

            response = await self.http.request(method, uri, json=json, headers=headers)
            if response.is_success or response.status_code in accept_statuses:
                return response
            if response.status_code != 404:
                _ensure_success(response, operation)

            logger.debug("Taler merchant %s got 404 at %s", operation, uri)
            if not_found is None:
                not_found = response

        if not_found is None:
            raise RuntimeError(f"No candidate URI for Taler merchant {operation}")
        _ensure_success(not_found, operation)
        return not_found


def _ensure_success(response: httpx.Response, operation: str) -> None:
    """Raise MerchantApiError for non-2xx responses."""
    if response.is_success:
        return
    raise MerchantApiError(
        operation=operation,
        status_code=response.status_code,
        uri=str(response.request.url),
        body=response.text,
        reason=response.reason_phrase,
    )
