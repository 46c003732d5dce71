"""Invoice, payment prompt and payment models of the host ledger."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taler_gateway.models.base import Base, TimestampMixin


class InvoiceRecord(Base, TimestampMixin):
    """Invoice awaiting or having received payment."""

    __tablename__ = "invoice"

    invoice_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="new")
    amount: Mapped[Decimal] = mapped_column(Numeric(28, 8), nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('new', 'processing', 'settled', 'expired', 'invalid')",
            name="invoice_status_check",
        ),
    )

    prompts: Mapped[list[PaymentPromptRecord]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    payments: Mapped[list[PaymentRecord]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PaymentRecord.payment_row_id",
    )


class PaymentPromptRecord(Base):
    """Payment request for one invoice and payment method."""

    __tablename__ = "payment_prompt"

    payment_prompt_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("invoice.invoice_id", ondelete="CASCADE"),
        nullable=False,
    )
    payment_method_id: Mapped[str] = mapped_column(String(64), nullable=False)
    currency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    divisibility: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    due: Mapped[Decimal] = mapped_column(Numeric(28, 8), nullable=False, default=Decimal("0"))
    activated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    payment_method_fee: Mapped[Decimal] = mapped_column(
        Numeric(28, 8), nullable=False, default=Decimal("0")
    )
    inactive_reason: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("invoice_id", "payment_method_id", name="payment_prompt_method_key"),
    )

    invoice: Mapped[InvoiceRecord] = relationship(back_populates="prompts")


class PaymentRecord(Base):
    """Payment recorded against an invoice.

    (invoice_id, payment_method_id, payment_id) is unique: recording the same
    external payment twice is rejected by the database.
    """

    __tablename__ = "payment"

    payment_row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_id: Mapped[str] = mapped_column(String(128), nullable=False)
    invoice_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("invoice.invoice_id", ondelete="CASCADE"),
        nullable=False,
    )
    payment_method_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(28, 8), nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    created: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint(
            "invoice_id", "payment_method_id", "payment_id", name="payment_invoice_method_id_key"
        ),
        CheckConstraint("status IN ('processing', 'settled')", name="payment_status_check"),
    )

    invoice: Mapped[InvoiceRecord] = relationship(back_populates="payments")
