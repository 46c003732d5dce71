"""Invoice lifecycle on the host side.

Creates invoices by running each payment method's prompt hooks, and
re-evaluates invoice status when an InvoiceNeedUpdate event arrives.
"""

from __future__ import annotations

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from taler_gateway.events.types import InvoiceNeedUpdate
from taler_gateway.host.base import (
    STATUS_TO_TRACK,
    Invoice,
    InvoiceStatus,
    PaymentMethodContext,
    PaymentMethodUnavailableError,
    PaymentPrompt,
    PaymentStatus,
)
from taler_gateway.host.sql import SqlInvoiceRepository

logger = logging.getLogger(__name__)


class UnknownPaymentMethodError(ValueError):
    """Raised when an invoice requests a payment method nobody handles."""


class InvoiceService:
    """Invoice creation and status re-evaluation."""

    def __init__(self, repository: SqlInvoiceRepository, handlers: Mapping[str, Any]):
        self.repository = repository
        self.handlers = handlers

    async def create_invoice(
        self,
        amount: Decimal,
        currency: str,
        payment_method_ids: list[str] | None = None,
        rates: Mapping[str, Decimal] | None = None,
    ) -> Invoice:
        """Create an invoice and configure a prompt per payment method.

        Args:
            amount: Invoice amount in ``currency``.
            currency: Invoice currency.
            payment_method_ids: Methods to offer; all registered when None.
            rates: Price of one unit of a payment currency, in ``currency``.
                Not needed when the payment currency equals ``currency``.

        A payment method that cannot be offered leaves its prompt inactive
        with the reason recorded; the invoice is still created.
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        rates = rates or {}
        invoice = Invoice(
            id=uuid.uuid4().hex,
            status=InvoiceStatus.NEW,
            amount=amount,
            currency=currency,
        )

        for pmi in payment_method_ids if payment_method_ids is not None else list(self.handlers):
            handler = self.handlers.get(pmi)
            if handler is None:
                raise UnknownPaymentMethodError(f"Unknown payment method {pmi}")

            prompt = PaymentPrompt(payment_method_id=pmi)
            invoice.prompts[pmi] = prompt
            context = PaymentMethodContext(invoice=invoice, prompt=prompt)

            await handler.before_fetching_rates(context)
            if prompt.currency is None or prompt.currency.upper() == currency.upper():
                rate = Decimal("1")
            else:
                rate = rates.get(prompt.currency)
            if rate is None or rate <= 0:
                prompt.inactive_reason = f"No rate available for {prompt.currency}/{currency}"
                continue
            prompt.due = amount / rate

            try:
                await handler.configure_prompt(context)
            except PaymentMethodUnavailableError as e:
                logger.info("Payment method %s unavailable for invoice %s: %s", pmi, invoice.id, e)
                prompt.inactive_reason = str(e)
                continue
            prompt.activated = True

        await self.repository.add_invoice(invoice)
        return invoice

    async def update_status(self, invoice_id: str) -> InvoiceStatus | None:
        """Settle the invoice when settled payments cover an activated prompt."""
        invoice = await self.repository.get_invoice(invoice_id)
        if invoice is None:
            return None
        if invoice.status not in STATUS_TO_TRACK:
            return invoice.status

        new_status = invoice.status
        for prompt in invoice.prompts.values():
            if not prompt.activated:
                continue
            paid = sum(
                (p.amount for p in invoice.get_payments(prompt.payment_method_id)
                 if p.status is PaymentStatus.SETTLED),
                Decimal("0"),
            )
            required = (prompt.due + prompt.payment_method_fee).quantize(
                Decimal(1).scaleb(-prompt.divisibility), rounding=ROUND_HALF_UP
            )
            if paid >= required:
                new_status = InvoiceStatus.SETTLED
                break
            if paid > 0:
                new_status = InvoiceStatus.PROCESSING

        if new_status is not invoice.status:
            await self.repository.set_status(invoice_id, new_status)
            logger.info("Invoice %s is now %s", invoice_id, new_status.value)
        return new_status

    async def on_invoice_need_update(self, event: InvoiceNeedUpdate) -> None:
        await self.update_status(event.invoice_id)
