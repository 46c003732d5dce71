"""Pytest fixtures for Taler gateway tests."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Callable

import httpx
import pytest

from taler_gateway.host.base import (
    Invoice,
    InvoiceStatus,
    PaymentEntity,
    PaymentPrompt,
)
from taler_gateway.taler.config import AssetConfig, TalerPluginConfiguration
from taler_gateway.taler.merchant.client import TalerMerchantClient
from taler_gateway.taler.payments.details import OrderIntent

MERCHANT_BASE_URL = "http://merchant:9966/"
API_TOKEN = "secret-token:sandbox"

Route = Callable[[httpx.Request], httpx.Response]


class FakeMerchantBackend:
    """Routes requests by (method, path); anything unrouted answers 404."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json_body: Any = None,
        text: str | None = None,
    ) -> None:
        def route(request: httpx.Request) -> httpx.Response:
            if text is not None:
                return httpx.Response(status_code, text=text)
            return httpx.Response(status_code, json=json_body if json_body is not None else {})

        self.routes[(method.upper(), path)] = route

    def add_handler(self, method: str, path: str, handler: Route) -> None:
        self.routes[(method.upper(), path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"code": 10, "hint": "not found"})
        return route(request)

    def paths(self) -> list[str]:
        return [f"{r.method} {r.url.path}" for r in self.requests]

    def last_json(self) -> Any:
        return json.loads(self.requests[-1].content)

    def client(self) -> TalerMerchantClient:
        return TalerMerchantClient(httpx.AsyncClient(transport=httpx.MockTransport(self)))


class InMemoryInvoiceRepository:
    """Invoice store keyed by invoice id."""

    def __init__(self) -> None:
        self.invoices: dict[str, Invoice] = {}
        self.fail_with: Exception | None = None

    def add(self, invoice: Invoice) -> Invoice:
        self.invoices[invoice.id] = invoice
        return invoice

    async def get_monitored_invoices(self, payment_method_id: str) -> list[Invoice]:
        if self.fail_with is not None:
            raise self.fail_with
        return [
            invoice
            for invoice in self.invoices.values()
            if payment_method_id in invoice.prompts
        ]

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        return self.invoices.get(invoice_id)


class InMemoryPaymentService:
    """Appends payments to the invoice; duplicates are rejected with None."""

    def __init__(self, repository: InMemoryInvoiceRepository) -> None:
        self.repository = repository
        self.added: list[PaymentEntity] = []

    async def add_payment(self, payment: PaymentEntity) -> PaymentEntity | None:
        invoice = self.repository.invoices[payment.invoice_id]
        if invoice.has_payment(payment.payment_method_id, payment.id):
            return None
        invoice.payments.append(payment)
        self.added.append(payment)
        return payment


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[Any] = []

    async def publish(self, event: Any) -> None:
        self.events.append(event)


def make_asset(**overrides: Any) -> AssetConfig:
    values: dict[str, Any] = {
        "asset_code": "CHF",
        "display_name": "Swiss Franc",
        "divisibility": 2,
        "merchant_base_url": MERCHANT_BASE_URL,
        "merchant_instance_id": "default",
        "api_token": API_TOKEN,
    }
    values.update(overrides)
    return AssetConfig(**values)


def make_invoice(
    invoice_id: str = "inv-1",
    order_id: str | None = "order-1-CHF",
    status: InvoiceStatus = InvoiceStatus.NEW,
    activated: bool = True,
    asset: AssetConfig | None = None,
    amount: Decimal = Decimal("10.00"),
) -> Invoice:
    """Invoice with one Taler prompt; the prompt carries an OrderIntent when order_id is set."""
    asset = asset or make_asset()
    details = None
    if order_id is not None:
        details = OrderIntent(
            order_id=order_id,
            taler_pay_uri=f"taler://pay/merchant:9966/instances/default/{order_id}/",
            asset_code=asset.asset_code,
            amount=amount,
            merchant_base_url=asset.merchant_base_url,
            merchant_instance_id=asset.instance_id,
        ).to_dict()
    prompt = PaymentPrompt(
        payment_method_id=asset.payment_method_id,
        currency=asset.asset_code,
        divisibility=asset.divisibility,
        due=amount,
        activated=activated,
        details=details,
    )
    return Invoice(
        id=invoice_id,
        status=status,
        amount=amount,
        currency=asset.asset_code,
        prompts={prompt.payment_method_id: prompt},
    )


@pytest.fixture
def backend() -> FakeMerchantBackend:
    return FakeMerchantBackend()


@pytest.fixture
def merchant_client(backend: FakeMerchantBackend) -> TalerMerchantClient:
    return backend.client()


@pytest.fixture
def chf_asset() -> AssetConfig:
    return make_asset()


@pytest.fixture
def plugin_configuration(chf_asset: AssetConfig) -> TalerPluginConfiguration:
    return TalerPluginConfiguration(assets={chf_asset.payment_method_id: chf_asset})


@pytest.fixture
def invoice_repository() -> InMemoryInvoiceRepository:
    return InMemoryInvoiceRepository()


@pytest.fixture
def payment_service(invoice_repository: InMemoryInvoiceRepository) -> InMemoryPaymentService:
    return InMemoryPaymentService(invoice_repository)


@pytest.fixture
def event_recorder() -> EventRecorder:
    return EventRecorder()
