"""Taler settlement listener.

Background poller that detects paid merchant orders and records them as
settled payments on the host ledger.

Each sweep, per configured asset:
1. Load invoices in new/processing with an activated prompt for the asset
2. Skip invoices whose ledger already holds a payment for the order id
3. Query the merchant backend for the order status
4. On paid, record one settled payment and publish InvoiceNeedUpdate

The listener keeps no memory between sweeps. The host's payment list is the
only de-duplication source, so a restarted listener never double-settles.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from taler_gateway.events.types import InvoiceNeedUpdate, TalerOrderSettled
from taler_gateway.host.base import (
    STATUS_TO_TRACK,
    EventPublisher,
    Invoice,
    InvoiceRepository,
    PaymentEntity,
    PaymentService,
    PaymentStatus,
)
from taler_gateway.taler.config import AssetConfig, TalerPluginConfiguration
from taler_gateway.taler.merchant.client import TalerMerchantClient
from taler_gateway.taler.payments.details import OrderIntent, SettlementDetails
from taler_gateway.taler.payments.handler import TalerPaymentMethodHandler

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 15.0


class ListenerState(str, Enum):
    """Lifecycle: stopped -> running -> stopping -> stopped."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SweepResult:
    """Outcome of checking one asset's invoices."""

    payment_method_id: str
    invoices_checked: int = 0
    orders_unpaid: int = 0
    payments_recorded: int = 0
    already_recorded: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TalerPaymentListener:
    """Polls the merchant backend for settlement of outstanding orders."""

    def __init__(
        self,
        configuration: TalerPluginConfiguration,
        handlers: Mapping[str, TalerPaymentMethodHandler],
        client: TalerMerchantClient,
        invoices: InvoiceRepository,
        payments: PaymentService,
        events: EventPublisher,
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.configuration = configuration
        self.handlers = handlers
        self.client = client
        self.invoices = invoices
        self.payments = payments
        self.events = events
        self.poll_interval = poll_interval
        self.clock = clock
        self._state = ListenerState.STOPPED
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ListenerState:
        return self._state

    def start(self) -> bool:
        """Start the background loop.

        Returns:
            False when no asset is configured; the listener then stays
            stopped for the process lifetime.
        """
        if len(self.configuration) == 0:
            logger.info("No Taler assets configured, settlement listener not started")
            return False
        if self._state is not ListenerState.STOPPED:
            raise RuntimeError(f"Settlement listener is {self._state.value}")

        self._state = ListenerState.RUNNING
        self._task = asyncio.create_task(self._loop(), name="taler-settlement-listener")
        logger.info(
            "Taler settlement listener started for %s",
            ", ".join(sorted(self.configuration.assets)),
        )
        return True

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit. In-flight calls are aborted."""
        task = self._task
        if task is None:
            return

        self._state = ListenerState.STOPPING
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
            self._state = ListenerState.STOPPED
            logger.info("Taler settlement listener stopped")

    async def _loop(self) -> None:
        while self._state is ListenerState.RUNNING:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error while checking Taler payments")
            await asyncio.sleep(self.poll_interval)

    async def run_once(self) -> list[SweepResult]:
        """Run one sweep over every configured asset."""
        results = []
        for asset in self.configuration.assets.values():
            results.append(await self.check_payments_for_asset(asset))
        return results

    async def check_payments_for_asset(self, asset: AssetConfig) -> SweepResult:
        """Check outstanding orders of one asset.

        Per-invoice failures are logged and counted; they never abort the
        sweep. Failures loading the invoices propagate to the caller.
        """
        pmi = asset.payment_method_id
        handler = self.handlers[pmi]
        result = SweepResult(payment_method_id=pmi)

        invoices = [
            invoice
            for invoice in await self.invoices.get_monitored_invoices(pmi)
            if invoice.status in STATUS_TO_TRACK and self._is_activated(invoice, pmi)
        ]

        for invoice in invoices:
            prompt = invoice.get_payment_prompt(pmi)
            intent = handler.parse_payment_prompt_details(prompt.details if prompt else None)
            if intent is None:
                continue

            if invoice.has_payment(pmi, intent.order_id):
                result.already_recorded += 1
                continue

            result.invoices_checked += 1
            try:
                recorded = await self._check_order(invoice, asset, intent)
            except Exception as e:
                logger.warning("Failed to check Taler order %s: %s", intent.order_id, e)
                result.failed += 1
                result.errors.append({
                    "invoice_id": invoice.id,
                    "order_id": intent.order_id,
                    "message": str(e),
                })
                continue

            if recorded is None:
                result.orders_unpaid += 1
            elif recorded:
                result.payments_recorded += 1
            else:
                result.already_recorded += 1

        return result

    @staticmethod
    def _is_activated(invoice: Invoice, payment_method_id: str) -> bool:
        prompt = invoice.get_payment_prompt(payment_method_id)
        return prompt is not None and prompt.activated

    async def _check_order(
        self,
        invoice: Invoice,
        asset: AssetConfig,
        intent: OrderIntent,
    ) -> bool | None:
        """Poll one order.

        Returns:
            None if unpaid, True if a payment was recorded, False if the
            ledger already had it.
        """
        status = await self.client.get_order_status(
            intent.merchant_base_url or asset.merchant_base_url or "",
            intent.merchant_instance_id or asset.instance_id,
            asset.api_token or "",
            intent.order_id,
        )
        if not status.paid:
            return None

        details = SettlementDetails.from_intent(intent)
        payment = PaymentEntity(
            id=intent.order_id,
            invoice_id=invoice.id,
            payment_method_id=asset.payment_method_id,
            status=PaymentStatus.SETTLED,
            amount=intent.amount,
            currency=intent.asset_code,
            created=self.clock(),
            details=details.to_dict(),
        )

        stored = await self.payments.add_payment(payment)
        if stored is None:
            logger.debug("Taler order %s already recorded", intent.order_id)
            return False

        logger.info(
            "Taler order %s paid, recorded %s %s on invoice %s",
            intent.order_id,
            intent.amount,
            intent.asset_code,
            invoice.id,
        )
        await self.events.publish(InvoiceNeedUpdate(invoice_id=invoice.id))
        await self.events.publish(
            TalerOrderSettled(
                invoice_id=invoice.id,
                order_id=intent.order_id,
                asset_code=intent.asset_code,
                amount=intent.amount,
            )
        )
        return True
