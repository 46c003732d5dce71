"""Taler payment-method handler.

Hooks called by the host while it builds an invoice's payment prompts:
    before_fetching_rates - fix currency and divisibility to the asset's
    configure_prompt      - create the remote order and store its OrderIntent
    parse_*               - deserialize stored detail blobs
"""

from __future__ import annotations

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable

import httpx

from taler_gateway.host.base import PaymentMethodContext, PaymentMethodUnavailableError
from taler_gateway.taler.config import AssetConfig
from taler_gateway.taler.merchant.base import MerchantApiError, TalerError
from taler_gateway.taler.merchant.client import TalerMerchantClient
from taler_gateway.taler.merchant.pay_uri import rewrite_public_pay_uri
from taler_gateway.taler.payments.details import OrderIntent, SettlementDetails

logger = logging.getLogger(__name__)

# Merchant backend error codes with operator guidance
ERROR_INSTANCE_UNKNOWN = 2000
ERROR_NO_ACTIVE_BANK_ACCOUNT = 2500
ERROR_LEGAL_LIMITS = 2513


def round_amount(amount: Decimal, divisibility: int) -> Decimal:
    """Round half away from zero to ``divisibility`` decimal places."""
    return amount.quantize(Decimal(1).scaleb(-divisibility), rounding=ROUND_HALF_UP)


def new_order_id(asset_code: str) -> str:
    """Random 128-bit token suffixed with the asset code."""
    return f"{uuid.uuid4().hex}-{asset_code}"


def map_order_error(error: MerchantApiError, instance_id: str) -> PaymentMethodUnavailableError:
    """Translate an order-creation failure into checkout guidance.

    The structured ``code`` of a JSON error body is authoritative. Message
    matching is only used when the body could not be parsed.
    """
    if error.body_is_json:
        instance_unknown = error.code == ERROR_INSTANCE_UNKNOWN
        no_bank_account = error.code == ERROR_NO_ACTIVE_BANK_ACCOUNT
        legal_limits = error.code == ERROR_LEGAL_LIMITS
    else:
        message = str(error).lower()
        instance_unknown = (
            f'"code": {ERROR_INSTANCE_UNKNOWN}' in message or "merchant instance" in message
        )
        no_bank_account = (
            f'"code": {ERROR_NO_ACTIVE_BANK_ACCOUNT}' in message
            or "bank accounts configured" in message
        )
        legal_limits = f'"code": {ERROR_LEGAL_LIMITS}' in message

    if instance_unknown:
        return PaymentMethodUnavailableError(
            f"Taler instance '{instance_id}' was not found. Initialize the instance, "
            "generate an API token, save the settings and restart the service."
        )
    if no_bank_account:
        return PaymentMethodUnavailableError(
            f"Taler instance '{instance_id}' has no active bank account. "
            "Add a bank account, then retry."
        )
    if legal_limits:
        return PaymentMethodUnavailableError(
            f"Taler instance '{instance_id}' cannot accept this order because of exchange "
            "legal or KYC limits. Complete the exchange KYC requirements; retrying will not help."
        )
    return PaymentMethodUnavailableError(f"Taler merchant backend rejected the order: {error}")


class TalerPaymentMethodHandler:
    """Payment-method handler for one configured Taler asset."""

    def __init__(
        self,
        asset: AssetConfig,
        client: TalerMerchantClient,
        order_id_factory: Callable[[str], str] = new_order_id,
    ):
        self.asset = asset
        self.client = client
        self.order_id_factory = order_id_factory

    @property
    def payment_method_id(self) -> str:
        return self.asset.payment_method_id

    async def before_fetching_rates(self, context: PaymentMethodContext) -> None:
        context.prompt.currency = self.asset.asset_code
        context.prompt.divisibility = self.asset.divisibility
        context.prompt.rate_divisibility = None

    async def configure_prompt(self, context: PaymentMethodContext) -> None:
        """Create the remote order and attach its OrderIntent to the prompt.

        Raises:
            PaymentMethodUnavailableError: configuration missing, backend
                rejection, backend unreachable, or no pay URI returned.
        """
        asset = self.asset
        base_url = asset.merchant_base_url
        if not base_url or not base_url.strip():
            raise PaymentMethodUnavailableError("Taler merchant backend is not configured")

        instance_id = asset.instance_id
        api_token = asset.api_token or ""
        amount_value = round_amount(context.prompt.due, asset.divisibility)
        amount = f"{asset.asset_code}:{amount_value:f}"
        order_id = self.order_id_factory(asset.asset_code)
        summary = f"Invoice {context.invoice.id} ({asset.asset_code})"

        try:
            created_order_id = await self.client.create_order(
                base_url, instance_id, api_token, order_id, summary, amount
            )
        except MerchantApiError as e:
            logger.warning("Taler order creation failed for invoice %s: %s", context.invoice.id, e)
            raise map_order_error(e, instance_id) from e
        except (TalerError, httpx.HTTPError) as e:
            logger.warning("Taler order creation failed for invoice %s: %s", context.invoice.id, e)
            raise PaymentMethodUnavailableError(
                f"Taler merchant backend is unavailable: {e}"
            ) from e

        try:
            status = await self.client.get_order_status(
                base_url, instance_id, api_token, created_order_id
            )
        except (TalerError, httpx.HTTPError) as e:
            raise PaymentMethodUnavailableError(
                f"Taler order {created_order_id} status could not be read: {e}"
            ) from e

        if not status.taler_pay_uri or not status.taler_pay_uri.strip():
            raise PaymentMethodUnavailableError("Taler pay URI not returned by merchant backend")

        pay_uri = rewrite_public_pay_uri(status.taler_pay_uri, asset.merchant_public_base_url)

        context.prompt.payment_method_fee = Decimal("0")
        context.prompt.details = OrderIntent(
            order_id=created_order_id,
            taler_pay_uri=pay_uri,
            asset_code=asset.asset_code,
            amount=amount_value,
            merchant_base_url=base_url,
            merchant_instance_id=instance_id,
        ).to_dict()
        logger.info(
            "Taler order %s created for invoice %s (%s)",
            created_order_id,
            context.invoice.id,
            amount,
        )

    def parse_payment_prompt_details(self, details: dict[str, Any] | None) -> OrderIntent | None:
        """Parse a prompt's OrderIntent; None when absent or malformed."""
        if not details:
            return None
        try:
            return OrderIntent.from_dict(details)
        except (ValueError, TypeError, AttributeError):
            return None

    def parse_payment_details(self, details: dict[str, Any]) -> SettlementDetails:
        try:
            return SettlementDetails.from_dict(details)
        except (ValueError, TypeError, AttributeError) as e:
            raise ValueError(f"Invalid {type(self).__name__} payment details") from e
