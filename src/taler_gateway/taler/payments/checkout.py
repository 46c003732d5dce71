"""Checkout rendering for Taler payment prompts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from taler_gateway.host.base import PaymentPrompt
from taler_gateway.taler.config import AssetConfig
from taler_gateway.taler.payments.handler import TalerPaymentMethodHandler


@dataclass
class CheckoutModel:
    """Values the checkout page renders for one payment method."""

    payment_method_id: str
    payment_link: str | None = None
    qr_value: str | None = None
    show_pay_in_wallet_button: bool = False
    currency_display_name: str | None = None
    image: str = ""
    badge: str = ""


@dataclass
class CheckoutModelContext:
    handler: Any
    prompt: PaymentPrompt
    model: CheckoutModel


class TalerPaymentLinkExtension:
    """Extracts the wallet URI from a prompt's OrderIntent."""

    def __init__(self, payment_method_id: str):
        self.payment_method_id = payment_method_id

    def get_payment_link(self, prompt: PaymentPrompt) -> str | None:
        if not prompt.details:
            return None
        link = prompt.details.get("taler_pay_uri")
        return link if isinstance(link, str) and link else None


class TalerCheckoutModelExtension:
    """Fills link and QR fields of the checkout model for Taler prompts."""

    def __init__(self, asset: AssetConfig, link_extension: TalerPaymentLinkExtension):
        if link_extension.payment_method_id != asset.payment_method_id:
            raise ValueError("link extension belongs to another payment method")
        self.asset = asset
        self.link_extension = link_extension

    @property
    def payment_method_id(self) -> str:
        return self.asset.payment_method_id

    def modify_checkout_model(self, context: CheckoutModelContext) -> None:
        if not isinstance(context.handler, TalerPaymentMethodHandler):
            return

        link = self.link_extension.get_payment_link(context.prompt)
        context.model.payment_link = link
        context.model.qr_value = link
        context.model.show_pay_in_wallet_button = True
        context.model.currency_display_name = self.asset.display_name
        context.model.image = self.asset.image_path or ""
