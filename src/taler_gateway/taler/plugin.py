"""Startup wiring for the Taler payment methods.

Builds the immutable configuration snapshot once and derives from it every
per-asset collaborator: payment-method handlers, link and checkout extensions,
and the settlement listener.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from taler_gateway.host.base import (
    EventPublisher,
    InvoiceRepository,
    PaymentPrompt,
    PaymentService,
)
from taler_gateway.taler.config import (
    TalerPluginConfiguration,
    TalerServerSettings,
    build_plugin_configuration,
)
from taler_gateway.taler.merchant.client import TalerMerchantClient
from taler_gateway.taler.payments.checkout import (
    CheckoutModel,
    CheckoutModelContext,
    TalerCheckoutModelExtension,
    TalerPaymentLinkExtension,
)
from taler_gateway.taler.payments.handler import TalerPaymentMethodHandler
from taler_gateway.taler.services.listener import POLL_INTERVAL_SECONDS, TalerPaymentListener

logger = logging.getLogger(__name__)


@dataclass
class TalerPlugin:
    """All Taler payment integrations for one process."""

    configuration: TalerPluginConfiguration
    client: TalerMerchantClient
    handlers: dict[str, TalerPaymentMethodHandler] = field(default_factory=dict)
    link_extensions: dict[str, TalerPaymentLinkExtension] = field(default_factory=dict)
    checkout_extensions: dict[str, TalerCheckoutModelExtension] = field(default_factory=dict)

    @classmethod
    def build(cls, settings: TalerServerSettings, client: TalerMerchantClient) -> TalerPlugin:
        configuration = build_plugin_configuration(settings)
        plugin = cls(configuration=configuration, client=client)

        for pmi, asset in configuration.assets.items():
            link = TalerPaymentLinkExtension(pmi)
            plugin.handlers[pmi] = TalerPaymentMethodHandler(asset, client)
            plugin.link_extensions[pmi] = link
            plugin.checkout_extensions[pmi] = TalerCheckoutModelExtension(asset, link)

        logger.info("Taler payment methods enabled: %s", ", ".join(plugin.handlers) or "none")
        return plugin

    @property
    def display_names(self) -> dict[str, str]:
        return {pmi: asset.display_name for pmi, asset in self.configuration.assets.items()}

    def create_listener(
        self,
        invoices: InvoiceRepository,
        payments: PaymentService,
        events: EventPublisher,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> TalerPaymentListener:
        return TalerPaymentListener(
            self.configuration,
            self.handlers,
            self.client,
            invoices,
            payments,
            events,
            poll_interval=poll_interval,
        )

    def build_checkout_model(self, prompt: PaymentPrompt) -> CheckoutModel | None:
        """Render the checkout model of a prompt; None for foreign payment methods."""
        pmi = prompt.payment_method_id
        extension = self.checkout_extensions.get(pmi)
        if extension is None:
            return None

        model = CheckoutModel(payment_method_id=pmi)
        extension.modify_checkout_model(
            CheckoutModelContext(handler=self.handlers[pmi], prompt=prompt, model=model)
        )
        return model
