"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taler_gateway.host.invoices import InvoiceService
from taler_gateway.host.sql import SqlInvoiceRepository
from taler_gateway.taler.merchant.client import TalerMerchantClient
from taler_gateway.taler.plugin import TalerPlugin
from taler_gateway.taler.settings_store import TalerSettingsStore


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_plugin(request: Request) -> TalerPlugin:
    return request.app.state.plugin


def get_merchant_client(request: Request) -> TalerMerchantClient:
    return request.app.state.plugin.client


def get_invoice_service(request: Request) -> InvoiceService:
    return request.app.state.invoice_service


def get_invoice_repository(request: Request) -> SqlInvoiceRepository:
    return request.app.state.invoice_repository


def get_settings_store(request: Request) -> TalerSettingsStore:
    return request.app.state.settings_store


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Plugin = Annotated[TalerPlugin, Depends(get_plugin)]
MerchantClient = Annotated[TalerMerchantClient, Depends(get_merchant_client)]
Invoices = Annotated[InvoiceService, Depends(get_invoice_service)]
InvoiceRepo = Annotated[SqlInvoiceRepository, Depends(get_invoice_repository)]
SettingsStore = Annotated[TalerSettingsStore, Depends(get_settings_store)]
