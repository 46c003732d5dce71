"""Invoice API endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, status

from taler_gateway.api.dependencies import InvoiceRepo, Invoices, Plugin
from taler_gateway.api.schemas import (
    CheckoutResponse,
    ErrorResponse,
    InvoiceCreate,
    InvoiceResponse,
)
from taler_gateway.host.invoices import UnknownPaymentMethodError

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_invoice(invoices: Invoices, payload: InvoiceCreate) -> InvoiceResponse:
    """Create an invoice and provision a payment prompt per payment method."""
    try:
        invoice = await invoices.create_invoice(
            amount=payload.amount,
            currency=payload.currency,
            payment_method_ids=payload.payment_methods,
            rates=payload.rates,
        )
    except UnknownPaymentMethodError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return InvoiceResponse.from_invoice(invoice)


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_invoice(
    repository: InvoiceRepo,
    invoice_id: Annotated[str, Path()],
) -> InvoiceResponse:
    """Get an invoice with its prompts and payments."""
    invoice = await repository.get_invoice(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return InvoiceResponse.from_invoice(invoice)


@router.get(
    "/{invoice_id}/checkout/{payment_method_id}",
    response_model=CheckoutResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_checkout(
    repository: InvoiceRepo,
    plugin: Plugin,
    invoice_id: Annotated[str, Path()],
    payment_method_id: Annotated[str, Path()],
) -> CheckoutResponse:
    """Checkout values (wallet link, QR payload) for one payment method."""
    invoice = await repository.get_invoice(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")

    prompt = invoice.get_payment_prompt(payment_method_id)
    model = plugin.build_checkout_model(prompt) if prompt else None
    if model is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {payment_method_id} payment prompt on invoice",
        )

    return CheckoutResponse(
        payment_method_id=model.payment_method_id,
        payment_link=model.payment_link,
        qr_value=model.qr_value,
        show_pay_in_wallet_button=model.show_pay_in_wallet_button,
        currency_display_name=model.currency_display_name,
        image=model.image,
    )
