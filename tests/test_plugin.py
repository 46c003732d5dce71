"""Tests for plugin wiring and checkout rendering."""

import pytest

from taler_gateway.host.base import PaymentPrompt
from taler_gateway.taler.config import TalerAssetSettings, TalerServerSettings
from taler_gateway.taler.payments.checkout import (
    TalerCheckoutModelExtension,
    TalerPaymentLinkExtension,
)
from taler_gateway.taler.plugin import TalerPlugin
from tests.conftest import API_TOKEN, MERCHANT_BASE_URL, make_asset

PAY_URI = "taler://pay/merchant:9966/instances/default/o1-CHF/"


@pytest.fixture
def plugin(merchant_client):
    settings = TalerServerSettings(
        merchant_base_url=MERCHANT_BASE_URL,
        api_token=API_TOKEN,
        assets=[
            TalerAssetSettings("CHF", "Swiss Franc", 2, enabled=True),
            TalerAssetSettings("EUR", "Euro", 2, enabled=False),
        ],
    )
    return TalerPlugin.build(settings, merchant_client)


class TestTalerPlugin:
    """Tests for per-asset wiring."""

    def test_one_integration_per_enabled_asset(self, plugin):
        assert list(plugin.handlers) == ["CHF-Taler"]
        assert list(plugin.link_extensions) == ["CHF-Taler"]
        assert list(plugin.checkout_extensions) == ["CHF-Taler"]
        assert plugin.display_names == {"CHF-Taler": "Swiss Franc"}

    def test_create_listener(self, plugin, invoice_repository, payment_service, event_recorder):
        listener = plugin.create_listener(
            invoice_repository, payment_service, event_recorder, poll_interval=1.5
        )
        assert listener.poll_interval == 1.5
        assert listener.configuration is plugin.configuration

    def test_checkout_model(self, plugin):
        prompt = PaymentPrompt("CHF-Taler", details={"taler_pay_uri": PAY_URI})

        model = plugin.build_checkout_model(prompt)

        assert model.payment_link == PAY_URI
        assert model.qr_value == PAY_URI
        assert model.show_pay_in_wallet_button is True
        assert model.currency_display_name == "Swiss Franc"
        assert model.image

    def test_checkout_model_without_order(self, plugin):
        """A prompt without an order still renders, but without a link."""
        model = plugin.build_checkout_model(PaymentPrompt("CHF-Taler"))
        assert model.payment_link is None
        assert model.show_pay_in_wallet_button is True

    def test_checkout_model_foreign_method(self, plugin):
        assert plugin.build_checkout_model(PaymentPrompt("BTC-CHAIN")) is None


class TestExtensions:
    def test_payment_link(self):
        link = TalerPaymentLinkExtension("CHF-Taler")
        assert link.get_payment_link(PaymentPrompt("CHF-Taler", details={"taler_pay_uri": PAY_URI})) == PAY_URI
        assert link.get_payment_link(PaymentPrompt("CHF-Taler", details={"taler_pay_uri": ""})) is None
        assert link.get_payment_link(PaymentPrompt("CHF-Taler")) is None

    def test_mismatched_link_extension(self):
        with pytest.raises(ValueError):
            TalerCheckoutModelExtension(make_asset(), TalerPaymentLinkExtension("EUR-Taler"))
