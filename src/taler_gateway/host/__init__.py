"""Invoicing host: ledger contract, SQL adapter and invoice lifecycle."""

from taler_gateway.host.base import (
    STATUS_TO_TRACK,
    EventPublisher,
    Invoice,
    InvoiceRepository,
    InvoiceStatus,
    PaymentEntity,
    PaymentMethodContext,
    PaymentMethodUnavailableError,
    PaymentPrompt,
    PaymentService,
    PaymentStatus,
)

__all__ = [
    "STATUS_TO_TRACK",
    "EventPublisher",
    "Invoice",
    "InvoiceRepository",
    "InvoiceStatus",
    "PaymentEntity",
    "PaymentMethodContext",
    "PaymentMethodUnavailableError",
    "PaymentPrompt",
    "PaymentService",
    "PaymentStatus",
]
