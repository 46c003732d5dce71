"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from taler_gateway.host.base import Invoice, PaymentEntity, PaymentPrompt
from taler_gateway.taler.config import TalerAssetSettings, TalerServerSettings
from taler_gateway.taler.merchant.base import BankAccount


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    code: str | None = None


class MessageResponse(BaseModel):
    message: str


# ============================================================================
# Invoice schemas
# ============================================================================


class InvoiceCreate(BaseModel):
    """Schema for creating an invoice."""

    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=1)
    payment_methods: list[str] | None = None
    rates: dict[str, Decimal] | None = None


class PaymentPromptResponse(BaseModel):
    payment_method_id: str
    currency: str | None
    divisibility: int
    due: Decimal
    activated: bool
    payment_method_fee: Decimal
    inactive_reason: str | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def from_prompt(cls, prompt: PaymentPrompt) -> "PaymentPromptResponse":
        return cls(
            payment_method_id=prompt.payment_method_id,
            currency=prompt.currency,
            divisibility=prompt.divisibility,
            due=prompt.due,
            activated=prompt.activated,
            payment_method_fee=prompt.payment_method_fee,
            inactive_reason=prompt.inactive_reason,
            details=prompt.details,
        )


class PaymentResponse(BaseModel):
    id: str
    payment_method_id: str
    status: str
    amount: Decimal
    currency: str
    created: datetime
    details: dict[str, Any]

    @classmethod
    def from_payment(cls, payment: PaymentEntity) -> "PaymentResponse":
        return cls(
            id=payment.id,
            payment_method_id=payment.payment_method_id,
            status=payment.status.value,
            amount=payment.amount,
            currency=payment.currency,
            created=payment.created,
            details=payment.details,
        )


class InvoiceResponse(BaseModel):
    """Invoice with its payment prompts and recorded payments."""

    id: str
    status: str
    amount: Decimal
    currency: str
    prompts: list[PaymentPromptResponse]
    payments: list[PaymentResponse]

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceResponse":
        return cls(
            id=invoice.id,
            status=invoice.status.value,
            amount=invoice.amount,
            currency=invoice.currency,
            prompts=[PaymentPromptResponse.from_prompt(p) for p in invoice.prompts.values()],
            payments=[PaymentResponse.from_payment(p) for p in invoice.payments],
        )


class CheckoutResponse(BaseModel):
    payment_method_id: str
    payment_link: str | None = None
    qr_value: str | None = None
    show_pay_in_wallet_button: bool = False
    currency_display_name: str | None = None
    image: str = ""


# ============================================================================
# Taler server settings schemas
# ============================================================================


class AssetSettingsSchema(BaseModel):
    asset_code: str = Field(min_length=1)
    display_name: str = ""
    divisibility: int = Field(default=2, ge=0, le=18)
    symbol: str | None = None
    enabled: bool = False
    is_manual: bool = False

    def to_settings(self) -> TalerAssetSettings:
        return TalerAssetSettings(**self.model_dump())


class BankAccountResponse(BaseModel):
    payto_uri: str
    h_wire: str
    active: bool

    @classmethod
    def from_account(cls, account: BankAccount) -> "BankAccountResponse":
        return cls(payto_uri=account.payto_uri, h_wire=account.h_wire, active=account.active)


class TalerServerSettingsResponse(BaseModel):
    """Stored server settings. Secrets are reported as present or absent only."""

    merchant_base_url: str | None = None
    merchant_public_base_url: str | None = None
    merchant_instance_id: str | None = None
    has_api_token: bool = False
    has_instance_password: bool = False
    assets: list[AssetSettingsSchema] = []
    bank_accounts: list[BankAccountResponse] = []
    bank_accounts_error: str | None = None

    @classmethod
    def from_settings(cls, settings: TalerServerSettings, **extra: Any) -> "TalerServerSettingsResponse":
        return cls(
            merchant_base_url=settings.merchant_base_url,
            merchant_public_base_url=settings.merchant_public_base_url,
            merchant_instance_id=settings.merchant_instance_id,
            has_api_token=bool(settings.api_token),
            has_instance_password=bool(settings.instance_password),
            assets=[AssetSettingsSchema(**vars(a)) for a in settings.assets],
            **extra,
        )


class TalerServerSettingsUpdate(BaseModel):
    """Settings update. Omitted secrets keep their stored value."""

    merchant_base_url: str | None = None
    merchant_public_base_url: str | None = None
    merchant_instance_id: str | None = None
    api_token: str | None = None
    instance_password: str | None = None
    assets: list[AssetSettingsSchema] | None = None


class RefreshAssetsResponse(BaseModel):
    added: int
    updated: int
    assets: list[AssetSettingsSchema]


class InstanceCredentials(BaseModel):
    """Instance provisioning input. Omitted fields fall back to stored settings."""

    merchant_base_url: str | None = None
    instance_id: str | None = None
    password: str | None = None


class BankAccountCreate(BaseModel):
    payto_uri: str = Field(min_length=1)
    credit_facade_url: str | None = None
