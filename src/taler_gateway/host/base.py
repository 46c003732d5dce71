"""Host ledger contract consumed by the Taler payment method.

The invoicing host owns invoice state, persists payments and reacts to
"invoice needs update" notifications. Payment-method code talks to it only
through the types and protocols in this module.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""

    NEW = "new"
    PROCESSING = "processing"
    SETTLED = "settled"
    EXPIRED = "expired"
    INVALID = "invalid"


class PaymentStatus(str, Enum):
    """Payment states recorded by the host."""

    PROCESSING = "processing"
    SETTLED = "settled"


# Invoices the settlement poller keeps watching
STATUS_TO_TRACK = (InvoiceStatus.NEW, InvoiceStatus.PROCESSING)


class PaymentMethodUnavailableError(Exception):
    """Raised when a payment method cannot be offered for an invoice.

    The message is shown to the payer at checkout.
    """


@dataclass
class PaymentPrompt:
    """Per-invoice, per-payment-method payment request.

    Attributes:
        payment_method_id: e.g. "CHF-Taler".
        currency: Currency the payer pays in. Set by the payment method.
        divisibility: Decimal places of ``currency``.
        due: Amount due in ``currency``, computed by the host after rates.
        activated: True once the payment method configured the prompt.
        details: Opaque detail blob owned by the payment method.
        payment_method_fee: Extra fee charged by the payment method.
        inactive_reason: Why the prompt could not be activated, if it failed.
    """

    payment_method_id: str
    currency: str | None = None
    divisibility: int = 2
    rate_divisibility: int | None = None
    due: Decimal = Decimal("0")
    activated: bool = False
    details: dict[str, Any] | None = None
    payment_method_fee: Decimal = Decimal("0")
    inactive_reason: str | None = None


@dataclass
class PaymentEntity:
    """A payment recorded against an invoice."""

    id: str
    invoice_id: str
    payment_method_id: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    created: datetime.datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class Invoice:
    """Host invoice with its payment prompts and recorded payments."""

    id: str
    status: InvoiceStatus
    amount: Decimal
    currency: str
    prompts: dict[str, PaymentPrompt] = field(default_factory=dict)
    payments: list[PaymentEntity] = field(default_factory=list)

    def get_payment_prompt(self, payment_method_id: str) -> PaymentPrompt | None:
        return self.prompts.get(payment_method_id)

    def get_payments(self, payment_method_id: str | None = None) -> list[PaymentEntity]:
        if payment_method_id is None:
            return list(self.payments)
        return [p for p in self.payments if p.payment_method_id == payment_method_id]

    def has_payment(self, payment_method_id: str, payment_id: str) -> bool:
        return any(
            p.payment_method_id == payment_method_id and p.id == payment_id
            for p in self.payments
        )


@dataclass
class PaymentMethodContext:
    """State handed to payment-method hooks while building a prompt."""

    invoice: Invoice
    prompt: PaymentPrompt


class InvoiceRepository(Protocol):
    """Read access to invoices."""

    async def get_monitored_invoices(self, payment_method_id: str) -> list[Invoice]:
        """Invoices in a tracked state that carry a prompt for this method."""
        ...

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        ...


class PaymentService(Protocol):
    """Write access to the payment ledger."""

    async def add_payment(self, payment: PaymentEntity) -> PaymentEntity | None:
        """Record a payment.

        Returns:
            The stored payment, or None when a payment with the same
            (invoice_id, payment_method_id, id) already exists.
        """
        ...


class EventPublisher(Protocol):
    """Publishes host events such as InvoiceNeedUpdate."""

    async def publish(self, event: Any) -> None:
        ...
