"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taler_gateway.api.routes import health_router, invoices_router, taler_server_router
from taler_gateway.config import Settings, get_settings
from taler_gateway.database import create_schema, dispose_db, init_db
from taler_gateway.events import EventAggregator, InvoiceNeedUpdate
from taler_gateway.host.base import PaymentMethodUnavailableError
from taler_gateway.host.invoices import InvoiceService
from taler_gateway.host.sql import SqlInvoiceRepository, SqlPaymentService, SqlSettingsRepository
from taler_gateway.logging_utils import configure_logging
from taler_gateway.taler.config import TalerServerSettings
from taler_gateway.taler.merchant.base import MerchantApiError, TalerError
from taler_gateway.taler.merchant.client import TalerMerchantClient
from taler_gateway.taler.plugin import TalerPlugin
from taler_gateway.taler.settings_store import TalerSettingsStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings: Settings = app.state.settings or get_settings()
    configure_logging(settings.log_level)

    engine, session_factory = init_db(settings.database_url)
    await create_schema(engine)

    invoices = SqlInvoiceRepository(session_factory)
    payments = SqlPaymentService(session_factory)
    store = TalerSettingsStore(
        SqlSettingsRepository(session_factory),
        TalerServerSettings.from_env_settings(settings),
    )

    client = app.state.merchant_client or TalerMerchantClient(
        timeout=settings.http_timeout_seconds
    )
    # Snapshot of the stored settings, fixed until restart
    plugin = TalerPlugin.build(await store.load(), client)

    events = EventAggregator()
    invoice_service = InvoiceService(invoices, plugin.handlers)
    events.subscribe(InvoiceNeedUpdate, invoice_service.on_invoice_need_update)
    listener = plugin.create_listener(
        invoices, payments, events, poll_interval=settings.poll_interval_seconds
    )

    app.state.session_factory = session_factory
    app.state.invoice_repository = invoices
    app.state.invoice_service = invoice_service
    app.state.settings_store = store
    app.state.events = events
    app.state.plugin = plugin
    app.state.listener = listener

    listener.start()
    try:
        yield
    finally:
        # Shutdown
        await listener.stop()
        await client.aclose()
        await dispose_db()


def create_app(
    settings: Settings | None = None,
    merchant_client: TalerMerchantClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Taler Gateway API",
        description="GNU Taler payment method for an invoicing host",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.merchant_client = merchant_client

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PaymentMethodUnavailableError)
    async def unavailable_exception_handler(
        request: Request, exc: PaymentMethodUnavailableError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc), "code": "PAYMENT_METHOD_UNAVAILABLE"},
        )

    @app.exception_handler(MerchantApiError)
    async def merchant_api_exception_handler(
        request: Request, exc: MerchantApiError
    ) -> JSONResponse:
        """Report merchant backend rejections as a bad gateway."""
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": str(exc),
                "code": "MERCHANT_BACKEND_ERROR",
                "merchant_status": exc.status_code,
                "merchant_code": exc.code,
            },
        )

    @app.exception_handler(TalerError)
    async def taler_exception_handler(request: Request, exc: TalerError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": str(exc), "code": "MERCHANT_BACKEND_ERROR"},
        )

    @app.exception_handler(httpx.HTTPError)
    async def transport_exception_handler(
        request: Request, exc: httpx.HTTPError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": f"Merchant backend unreachable: {exc}",
                "code": "MERCHANT_BACKEND_UNREACHABLE",
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(invoices_router, prefix="/api/v1")
    app.include_router(taler_server_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
