"""SQLAlchemy implementation of the host ledger contract.

Every call opens its own session, so one repository can be shared by request
handlers and the long-lived settlement listener.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taler_gateway.host.base import (
    STATUS_TO_TRACK,
    Invoice,
    InvoiceStatus,
    PaymentEntity,
    PaymentPrompt,
    PaymentStatus,
)
from taler_gateway.models import (
    InvoiceRecord,
    PaymentPromptRecord,
    PaymentRecord,
    ServerSetting,
)

logger = logging.getLogger(__name__)


class SqlInvoiceRepository:
    """Invoice reads and writes."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        async with self.session_factory() as session:
            record = await session.get(InvoiceRecord, invoice_id)
            return _to_invoice(record) if record else None

    async def get_monitored_invoices(self, payment_method_id: str) -> list[Invoice]:
        """Invoices in new/processing carrying a prompt for the payment method."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(InvoiceRecord)
                .join(PaymentPromptRecord, PaymentPromptRecord.invoice_id == InvoiceRecord.invoice_id)
                .where(
                    InvoiceRecord.status.in_([s.value for s in STATUS_TO_TRACK]),
                    PaymentPromptRecord.payment_method_id == payment_method_id,
                )
                .order_by(InvoiceRecord.created_at)
            )
            return [_to_invoice(r) for r in result.scalars().unique().all()]

    async def add_invoice(self, invoice: Invoice) -> None:
        async with self.session_factory() as session:
            record = InvoiceRecord(
                invoice_id=invoice.id,
                status=invoice.status.value,
                amount=invoice.amount,
                currency=invoice.currency,
            )
            record.prompts = [
                PaymentPromptRecord(
                    payment_method_id=prompt.payment_method_id,
                    currency=prompt.currency,
                    divisibility=prompt.divisibility,
                    due=prompt.due,
                    activated=prompt.activated,
                    details=prompt.details,
                    payment_method_fee=prompt.payment_method_fee,
                    inactive_reason=prompt.inactive_reason,
                )
                for prompt in invoice.prompts.values()
            ]
            session.add(record)
            await session.commit()

    async def set_status(self, invoice_id: str, status: InvoiceStatus) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(InvoiceRecord)
                .where(InvoiceRecord.invoice_id == invoice_id)
                .values(status=status.value)
            )
            await session.commit()


class SqlPaymentService:
    """Payment ledger writes.

    The unique key (invoice_id, payment_method_id, payment_id) is the
    authoritative guard against recording one external payment twice.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add_payment(self, payment: PaymentEntity) -> PaymentEntity | None:
        async with self.session_factory() as session:
            existing = await session.execute(
                select(PaymentRecord.payment_row_id).where(
                    PaymentRecord.invoice_id == payment.invoice_id,
                    PaymentRecord.payment_method_id == payment.payment_method_id,
                    PaymentRecord.payment_id == payment.id,
                )
            )
            if existing.first() is not None:
                return None

            session.add(
                PaymentRecord(
                    payment_id=payment.id,
                    invoice_id=payment.invoice_id,
                    payment_method_id=payment.payment_method_id,
                    status=payment.status.value,
                    amount=payment.amount,
                    currency=payment.currency,
                    created=payment.created,
                    details=payment.details,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                # Concurrent writer recorded the same payment first
                await session.rollback()
                logger.info("Payment %s already recorded on invoice %s", payment.id, payment.invoice_id)
                return None
        return payment


class SqlSettingsRepository:
    """JSON documents keyed by name."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_setting(self, key: str) -> dict[str, Any] | None:
        async with self.session_factory() as session:
            record = await session.get(ServerSetting, key)
            return dict(record.value) if record else None

    async def update_setting(self, key: str, value: dict[str, Any]) -> None:
        async with self.session_factory() as session:
            record = await session.get(ServerSetting, key)
            if record is None:
                session.add(ServerSetting(key=key, value=value))
            else:
                record.value = value
            await session.commit()


def _to_invoice(record: InvoiceRecord) -> Invoice:
    return Invoice(
        id=record.invoice_id,
        status=InvoiceStatus(record.status),
        amount=record.amount,
        currency=record.currency,
        prompts={
            p.payment_method_id: PaymentPrompt(
                payment_method_id=p.payment_method_id,
                currency=p.currency,
                divisibility=p.divisibility,
                due=p.due,
                activated=p.activated,
                details=dict(p.details) if p.details is not None else None,
                payment_method_fee=p.payment_method_fee,
                inactive_reason=p.inactive_reason,
            )
            for p in record.prompts
        },
        payments=[
            PaymentEntity(
                id=p.payment_id,
                invoice_id=p.invoice_id,
                payment_method_id=p.payment_method_id,
                status=PaymentStatus(p.status),
                amount=p.amount,
                currency=p.currency,
                created=p.created,
                details=dict(p.details or {}),
            )
            for p in record.payments
        ],
    )
