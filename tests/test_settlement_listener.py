"""Tests for the Taler settlement listener."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from taler_gateway.events.types import InvoiceNeedUpdate, TalerOrderSettled
from taler_gateway.host.base import InvoiceStatus, PaymentStatus
from taler_gateway.taler.config import TalerPluginConfiguration
from taler_gateway.taler.payments.handler import TalerPaymentMethodHandler
from taler_gateway.taler.services.listener import ListenerState, TalerPaymentListener
from tests.conftest import make_asset, make_invoice

pytestmark = pytest.mark.asyncio

ORDERS_PATH = "/instances/default/private/orders"
FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def listener(
    plugin_configuration,
    merchant_client,
    invoice_repository,
    payment_service,
    event_recorder,
):
    handlers = {
        pmi: TalerPaymentMethodHandler(asset, merchant_client)
        for pmi, asset in plugin_configuration.assets.items()
    }
    return TalerPaymentListener(
        plugin_configuration,
        handlers,
        merchant_client,
        invoice_repository,
        payment_service,
        event_recorder,
        poll_interval=0.01,
        clock=lambda: FIXED_NOW,
    )


class TestSweep:
    """Tests for a single settlement sweep."""

    async def test_paid_order_is_recorded(
        self, backend, listener, invoice_repository, payment_service, event_recorder
    ):
        """A paid order becomes one settled payment and two events."""
        invoice = invoice_repository.add(make_invoice(order_id="o1-CHF"))
        backend.add("GET", f"{ORDERS_PATH}/o1-CHF", json_body={"paid": True})

        [result] = await listener.run_once()

        assert result.payments_recorded == 1
        assert result.success
        [payment] = invoice.payments
        assert payment.id == "o1-CHF"
        assert payment.payment_method_id == "CHF-Taler"
        assert payment.status is PaymentStatus.SETTLED
        assert payment.amount == Decimal("10.00")
        assert payment.currency == "CHF"
        assert payment.created == FIXED_NOW
        assert payment.details["order_id"] == "o1-CHF"
        assert payment.details["amount"] == "10.00"

        update, settled = event_recorder.events
        assert isinstance(update, InvoiceNeedUpdate)
        assert update.invoice_id == invoice.id
        assert isinstance(settled, TalerOrderSettled)
        assert settled.order_id == "o1-CHF"

    async def test_unpaid_order_is_left_alone(
        self, backend, listener, invoice_repository, event_recorder
    ):
        invoice = invoice_repository.add(make_invoice(order_id="o1-CHF"))
        backend.add(
            "GET",
            f"{ORDERS_PATH}/o1-CHF",
            json_body={"paid": False, "order_status": "unpaid"},
        )

        [result] = await listener.run_once()

        assert result.orders_unpaid == 1
        assert invoice.payments == []
        assert event_recorder.events == []

    async def test_settlement_is_idempotent(
        self, backend, listener, invoice_repository, payment_service, event_recorder
    ):
        """Polling an already settled order again creates no second payment."""
        invoice = invoice_repository.add(make_invoice(order_id="o1-CHF"))
        backend.add("GET", f"{ORDERS_PATH}/o1-CHF", json_body={"order_status": "paid"})

        await listener.run_once()
        [second] = await listener.run_once()

        assert len(invoice.payments) == 1
        assert len(payment_service.added) == 1
        assert second.already_recorded == 1
        assert len(event_recorder.events) == 2
        # Recorded payments short-circuit the remote call
        assert len(backend.requests) == 1

    async def test_duplicate_rejected_by_ledger(
        self, backend, listener, invoice_repository, payment_service, event_recorder
    ):
        """A payment recorded concurrently is reported as already recorded."""
        invoice = invoice_repository.add(make_invoice(order_id="o1-CHF"))
        backend.add("GET", f"{ORDERS_PATH}/o1-CHF", json_body={"paid": True})

        async def always_duplicate(payment):
            return None

        payment_service.add_payment = always_duplicate

        [result] = await listener.run_once()

        assert result.already_recorded == 1
        assert result.payments_recorded == 0
        assert invoice.payments == []
        assert event_recorder.events == []

    async def test_skips_inactive_and_finished_invoices(
        self, backend, listener, invoice_repository
    ):
        """Only new/processing invoices with an activated prompt are polled."""
        invoice_repository.add(make_invoice("inv-a", "a-CHF", activated=False))
        invoice_repository.add(make_invoice("inv-b", "b-CHF", status=InvoiceStatus.SETTLED))
        invoice_repository.add(make_invoice("inv-c", "c-CHF", status=InvoiceStatus.EXPIRED))
        invoice_repository.add(make_invoice("inv-d", order_id=None))

        [result] = await listener.run_once()

        assert result.invoices_checked == 0
        assert backend.requests == []

    async def test_processing_invoice_is_polled(self, backend, listener, invoice_repository):
        invoice = invoice_repository.add(
            make_invoice(order_id="o1-CHF", status=InvoiceStatus.PROCESSING)
        )
        backend.add("GET", f"{ORDERS_PATH}/o1-CHF", json_body={"paid": True})

        await listener.run_once()

        assert len(invoice.payments) == 1

    async def test_one_failing_invoice_does_not_abort_sweep(
        self, backend, listener, invoice_repository
    ):
        """Backend errors are counted per invoice and the sweep continues."""
        invoice_repository.add(make_invoice("inv-a", "a-CHF"))
        good = invoice_repository.add(make_invoice("inv-b", "b-CHF"))
        backend.add("GET", f"{ORDERS_PATH}/a-CHF", status_code=500, text="boom")
        backend.add("GET", f"{ORDERS_PATH}/b-CHF", json_body={"paid": True})

        [result] = await listener.run_once()

        assert result.failed == 1
        assert not result.success
        assert result.errors[0]["order_id"] == "a-CHF"
        assert result.payments_recorded == 1
        assert len(good.payments) == 1

    async def test_order_coordinates_come_from_intent(
        self, backend, merchant_client, invoice_repository, payment_service, event_recorder
    ):
        """Orders are polled where they were created, even if settings changed since."""
        created_with = make_asset(merchant_base_url="http://old-merchant/", merchant_instance_id="shop")
        current = make_asset(merchant_base_url="http://new-merchant/")
        configuration = TalerPluginConfiguration(assets={current.payment_method_id: current})
        listener = TalerPaymentListener(
            configuration,
            {current.payment_method_id: TalerPaymentMethodHandler(current, merchant_client)},
            merchant_client,
            invoice_repository,
            payment_service,
            event_recorder,
        )
        invoice_repository.add(make_invoice(order_id="o1-CHF", asset=created_with))
        backend.add("GET", "/instances/shop/private/orders/o1-CHF", json_body={"paid": True})

        await listener.run_once()

        assert str(backend.requests[0].url) == "http://old-merchant/instances/shop/private/orders/o1-CHF"
        assert len(payment_service.added) == 1


class TestLifecycle:
    """Tests for starting and stopping the background loop."""

    async def test_start_without_assets(
        self, merchant_client, invoice_repository, payment_service, event_recorder
    ):
        """With nothing configured the listener stays stopped."""
        listener = TalerPaymentListener(
            TalerPluginConfiguration(),
            {},
            merchant_client,
            invoice_repository,
            payment_service,
            event_recorder,
        )

        assert listener.start() is False
        assert listener.state is ListenerState.STOPPED
        await listener.stop()

    async def test_start_and_stop(self, listener):
        assert listener.start() is True
        assert listener.state is ListenerState.RUNNING

        await listener.stop()

        assert listener.state is ListenerState.STOPPED

    async def test_double_start_rejected(self, listener):
        listener.start()
        try:
            with pytest.raises(RuntimeError):
                listener.start()
        finally:
            await listener.stop()

    async def test_loop_survives_sweep_failures(self, listener, invoice_repository):
        """A failing sweep is logged and the next sweep still runs."""
        calls = 0
        original = invoice_repository.get_monitored_invoices

        async def flaky(payment_method_id):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("database down")
            return await original(payment_method_id)

        invoice_repository.get_monitored_invoices = flaky

        listener.start()
        for _ in range(100):
            if calls >= 2:
                break
            await asyncio.sleep(0.01)
        await listener.stop()

        assert calls >= 2

    async def test_loop_records_payments(self, backend, listener, invoice_repository):
        """The running loop settles paid orders without manual sweeps."""
        invoice = invoice_repository.add(make_invoice(order_id="o1-CHF"))
        backend.add("GET", f"{ORDERS_PATH}/o1-CHF", json_body={"paid": True})

        listener.start()
        for _ in range(100):
            if invoice.payments:
                break
            await asyncio.sleep(0.01)
        await listener.stop()

        assert len(invoice.payments) == 1
